"""
Ingest listening messages from Sprout Social
"""
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from core.sentiment import from_label, from_percent_score
from core.timeutils import to_iso, utcnow
from ingestion.advanced import AdvancedPlatformAdapter, ConversationData, ConversationEngagement
from ingestion.auth import StaticBearer

logger = logging.getLogger(__name__)

BASE_URL = "https://api.sproutsocial.com/v1"


class SproutSocialAdapter(AdvancedPlatformAdapter):
    platform_name = "sprout-social"

    def __init__(self, access_token: Optional[str] = None, customer_id: Optional[str] = None, **kwargs):
        kwargs.setdefault("token_provider", StaticBearer(access_token, platform=self.platform_name))
        super().__init__(**kwargs)
        self.access_token = access_token
        self.customer_id = customer_id

    def has_credentials(self) -> bool:
        return bool(self.access_token)

    def _params(self, **params) -> Dict[str, Any]:
        if self.customer_id:
            params["customer_id"] = self.customer_id
        return params

    async def get_queries(self) -> List[Dict[str, Any]]:
        data = await self._get(f"{BASE_URL}/listening/queries", params=self._params(), context="get_queries")
        return data.get("data") or []

    async def create_query(self, keyword: str) -> Dict[str, Any]:
        data = await self._post(
            f"{BASE_URL}/listening/queries",
            params=self._params(),
            json={"name": f"Monitor: {keyword}", "query": keyword},
            context="create_query",
        )
        return data.get("data") or data

    async def get_messages(self, query_id: str, limit: int = 50) -> List[ConversationData]:
        params = self._params(limit=limit, since=to_iso(utcnow() - timedelta(hours=24)))
        data = await self._get(f"{BASE_URL}/listening/queries/{query_id}/messages", params=params, context="get_messages")
        return [self.transform(m) for m in data.get("data") or [] if m.get("id") is not None]

    async def monitor(self, keywords: List[str]) -> List[ConversationData]:
        queries = await self.get_queries()

        async def fetch(keyword: str) -> List[ConversationData]:
            query = next(
                (q for q in queries if keyword.lower() in str(q.get("query", "")).lower()),
                None,
            )
            if query is None:
                query = await self.create_query(keyword)
                queries.append(query)
            return await self.get_messages(str(query.get("id")))

        return await self._collect(keywords, fetch)

    def map_sentiment(self, sentiment: Any) -> str:
        """Prefer the polarity label; fall back to the 0-100 score."""
        if not isinstance(sentiment, dict):
            return from_label(sentiment)
        if sentiment.get("polarity"):
            return from_label(sentiment["polarity"])
        return from_percent_score(sentiment.get("score"), self.thresholds)

    def transform(self, message: Dict[str, Any]) -> ConversationData:
        author = message.get("author") or {}
        metrics = message.get("metrics") or {}
        sentiment = message.get("sentiment") or {}
        network = message.get("network") or "unknown"

        return ConversationData(
            id=f"sprout-social_{message['id']}",
            content=message.get("text") or "",
            author=author.get("name") or author.get("username") or "unknown",
            author_url=author.get("profile_url"),
            platform=self.platform_name,
            url=message.get("permalink") or message.get("url") or "",
            published_at=self.parse_date(message.get("created_time")),
            engagement=ConversationEngagement(
                reach=self.count(metrics.get("reach")),
                likes=self.count(metrics.get("likes")),
                shares=self.count(metrics.get("shares")),
                comments=self.count(metrics.get("comments")),
            ),
            sentiment=self.map_sentiment(sentiment),
            platform_specific={
                "sprout_id": message["id"],
                "network": network,
                "sentiment_score": sentiment.get("score") if isinstance(sentiment, dict) else None,
                "sentiment_confidence": sentiment.get("confidence") if isinstance(sentiment, dict) else None,
            },
            metadata={
                "source": "sprout-social",
                "network": network,
                "language": message.get("language"),
                "tags": message.get("tags") or [],
            },
        )
