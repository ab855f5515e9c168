"""
Ingest top-shared articles from BuzzSumo
"""
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from core.errors import ConfigurationMissing
from core.sentiment import NEUTRAL
from core.timeutils import utcnow
from ingestion.advanced import AdvancedPlatformAdapter, ConversationData, ConversationEngagement

logger = logging.getLogger(__name__)

BASE_URL = "https://api.buzzsumo.com/v1"


class BuzzSumoAdapter(AdvancedPlatformAdapter):
    """
    BuzzSumo reports share counts but no sentiment; reach is estimated at
    ten readers per share.
    """

    platform_name = "buzzsumo"
    rate_limit_per_minute = 30

    def __init__(self, api_key: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self.api_key = api_key

    def has_credentials(self) -> bool:
        return bool(self.api_key)

    async def search_articles(self, keyword: str, limit: int = 50) -> List[ConversationData]:
        if not self.api_key:
            raise ConfigurationMissing("buzzsumo API key is not configured")
        params = {
            "q": keyword,
            "api_key": self.api_key,
            "num_results": limit,
            "begin_date": int((utcnow() - timedelta(hours=24)).timestamp()),
        }
        data = await self._get(f"{BASE_URL}/articles/search", params=params, context="search_articles")
        return [self.transform(a) for a in data.get("results") or [] if a.get("id") is not None or a.get("url")]

    async def monitor(self, keywords: List[str]) -> List[ConversationData]:
        return await self._collect(keywords, self.search_articles)

    def transform(self, article: Dict[str, Any]) -> ConversationData:
        shares = self.count(article.get("total_shares"))
        article_id = article.get("id") or article.get("url")
        return ConversationData(
            id=f"buzzsumo_{article_id}",
            content=article.get("excerpt") or article.get("title") or "",
            title=article.get("title"),
            author=article.get("author_name") or article.get("domain_name") or "unknown",
            platform=self.platform_name,
            url=article.get("url") or "",
            published_at=self.parse_date(article.get("published_date")),
            engagement=ConversationEngagement(
                reach=shares * 10,
                likes=self.count(article.get("total_facebook_shares")),
                shares=shares,
                comments=self.count(article.get("num_comments")),
            ),
            sentiment=NEUTRAL,
            platform_specific={
                "buzzsumo_id": article_id,
                "domain": article.get("domain_name"),
                "evergreen_score": article.get("evergreen_score"),
            },
            metadata={
                "source": "buzzsumo",
                "domain": article.get("domain_name"),
                "language": article.get("language"),
            },
        )
