"""
Ingest stream messages from Hootsuite
"""
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from core.sentiment import from_label, from_unit_score
from core.timeutils import to_iso, utcnow
from ingestion.advanced import AdvancedPlatformAdapter, ConversationData, ConversationEngagement
from ingestion.auth import OAuth2TokenExchange

logger = logging.getLogger(__name__)

BASE_URL = "https://platform.hootsuite.com/v1"
TOKEN_URL = "https://platform.hootsuite.com/oauth2/token"
STREAM_NETWORKS = ["twitter", "facebook", "instagram", "linkedin"]


class HootsuiteAdapter(AdvancedPlatformAdapter):
    """
    Keywords are tracked as search streams. The access token is refreshed
    with the stored refresh token whenever the API rejects it.
    """

    platform_name = "hootsuite"

    def __init__(
        self,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        **kwargs,
    ):
        kwargs.setdefault(
            "token_provider",
            OAuth2TokenExchange(
                TOKEN_URL,
                grant_type="refresh_token",
                client_id=client_id,
                client_secret=client_secret,
                refresh_token=refresh_token,
                access_token=access_token,
                platform=self.platform_name,
                transport=kwargs.get("transport"),
            ),
        )
        super().__init__(**kwargs)
        self.access_token = access_token
        self.refresh_token = refresh_token

    def has_credentials(self) -> bool:
        return bool(self.access_token or self.refresh_token)

    async def get_streams(self) -> List[Dict[str, Any]]:
        data = await self._get(f"{BASE_URL}/streams", context="get_streams")
        return data.get("data") or []

    async def create_stream(self, keyword: str) -> Dict[str, Any]:
        data = await self._post(
            f"{BASE_URL}/streams",
            json={"name": f"Monitor: {keyword}", "query": keyword, "networks": STREAM_NETWORKS},
            context="create_stream",
        )
        return data.get("data") or data

    async def get_stream_messages(self, stream_id: str, limit: int = 50) -> List[ConversationData]:
        params = {"limit": limit, "since": to_iso(utcnow() - timedelta(hours=24))}
        data = await self._get(f"{BASE_URL}/streams/{stream_id}/messages", params=params, context="get_stream_messages")
        return [self.transform(m) for m in data.get("data") or [] if m.get("id") is not None]

    async def monitor(self, keywords: List[str]) -> List[ConversationData]:
        streams = await self.get_streams()

        async def fetch(keyword: str) -> List[ConversationData]:
            stream = next(
                (s for s in streams if keyword.lower() in str(s.get("query", "")).lower()),
                None,
            )
            if stream is None:
                stream = await self.create_stream(keyword)
                streams.append(stream)
            return await self.get_stream_messages(str(stream.get("id")))

        return await self._collect(keywords, fetch)

    def map_sentiment(self, sentiment: Any) -> str:
        if not isinstance(sentiment, dict):
            return from_label(sentiment)
        if sentiment.get("label"):
            return from_label(sentiment["label"])
        return from_unit_score(sentiment.get("score"), self.thresholds)

    def transform(self, message: Dict[str, Any]) -> ConversationData:
        text = message.get("text") or ""
        author = message.get("author") or {}
        network = message.get("network") or "unknown"
        engagement = message.get("engagement") or {}
        screen_name = author.get("screen_name")

        return ConversationData(
            id=f"hootsuite_{message['id']}",
            content=text,
            title=text[:100] + "..." if len(text) > 100 else text,
            author=author.get("name") or screen_name or "unknown",
            author_url=f"https://{network}.com/{screen_name}" if screen_name else None,
            platform=self.platform_name,
            url=message.get("url") or "",
            published_at=self.parse_date(message.get("created_time")),
            engagement=ConversationEngagement(
                reach=self.count(message.get("reach")),
                likes=self.count(engagement.get("likes")),
                shares=self.count(engagement.get("shares")),
                comments=self.count(engagement.get("comments")),
            ),
            sentiment=self.map_sentiment(message.get("sentiment")),
            platform_specific={
                "hootsuite_id": message["id"],
                "network": network,
                "author_id": author.get("id"),
                "author_followers": author.get("followers_count"),
            },
            metadata={
                "source": "hootsuite",
                "network": network,
                "language": message.get("language"),
                "tags": message.get("tags") or [],
            },
        )
