"""
Ingest mentions from Mention.com
"""
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from core.sentiment import from_label
from core.timeutils import to_iso, utcnow
from ingestion.advanced import AdvancedPlatformAdapter, ConversationData, ConversationEngagement
from ingestion.auth import StaticBearer

logger = logging.getLogger(__name__)

BASE_URL = "https://web.mention.com/api"


class MentionAdapter(AdvancedPlatformAdapter):
    platform_name = "mention"

    def __init__(self, api_token: Optional[str] = None, alert_id: Optional[str] = None, lookback_hours: int = 24, **kwargs):
        kwargs.setdefault("token_provider", StaticBearer(api_token, platform=self.platform_name))
        super().__init__(**kwargs)
        self.api_token = api_token
        self.alert_id = alert_id
        self.lookback = timedelta(hours=lookback_hours)

    def has_credentials(self) -> bool:
        return bool(self.api_token)

    async def search_mentions(self, keyword: str, limit: int = 50) -> List[ConversationData]:
        params: Dict[str, Any] = {
            "q": keyword,
            "limit": limit,
            "since": to_iso(utcnow() - self.lookback),
        }
        if self.alert_id:
            params["alert_id"] = self.alert_id
        data = await self._get(f"{BASE_URL}/accounts/current/mentions", params=params, context="search_mentions")
        return [self.transform(m) for m in data.get("mentions") or [] if m.get("id") is not None]

    async def monitor(self, keywords: List[str]) -> List[ConversationData]:
        return await self._collect(keywords, self.search_mentions)

    def transform(self, mention: Dict[str, Any]) -> ConversationData:
        reach = self.count(mention.get("reach"))
        return ConversationData(
            id=f"mention_{mention['id']}",
            content=mention.get("description") or mention.get("title") or "",
            title=mention.get("title"),
            author=mention.get("author_name") or "unknown",
            author_url=mention.get("author_url"),
            platform=self.platform_name,
            url=mention.get("url") or "",
            published_at=self.parse_date(mention.get("published_at")),
            engagement=ConversationEngagement(reach=reach),
            sentiment=from_label(mention.get("tone")),
            platform_specific={
                "mention_id": mention["id"],
                "source_name": mention.get("source_name"),
                "source_url": mention.get("source_url"),
                "tone": mention.get("tone"),
            },
            metadata={
                "source": "mention.com",
                "country": mention.get("country"),
                "language": mention.get("language"),
                "tags": mention.get("tags") or [],
            },
        )
