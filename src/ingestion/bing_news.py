"""
Ingest articles from the Bing News Search API
"""
import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from core.errors import ConfigurationMissing
from core.schemas import SearchOptions
from core.timeutils import ensure_utc, parse_timestamp
from ingestion.base import PlatformAdapter, RawContent, stable_id

logger = logging.getLogger(__name__)

BASE_URL = "https://api.bing.microsoft.com/v7.0/news"


class BingNewsAdapter(PlatformAdapter):
    platform_name = "bing-news"
    rate_limit_per_hour = 3000
    requires_auth = True
    max_results = 100

    def __init__(self, api_key: Optional[str] = None, market: str = "en-US", **kwargs):
        super().__init__(**kwargs)
        self.api_key = api_key
        self.market = market

    def has_credentials(self) -> bool:
        return bool(self.api_key)

    async def search(
        self,
        keyword: str,
        options: Union[SearchOptions, Mapping[str, Any], None] = None,
    ) -> List[RawContent]:
        clean, opts = self._prepare(keyword, options)
        if not self.api_key:
            raise ConfigurationMissing("BING_NEWS_API_KEY is not configured")

        resp = await self._request(
            "GET",
            f"{BASE_URL}/search",
            params={
                "q": clean,
                "count": self._clamp_limit(opts.limit),
                "mkt": self.market,
                "safeSearch": "Moderate",
                "sortBy": "Date" if opts.sort_by == "date" else "Relevance",
            },
            headers={"Ocp-Apim-Subscription-Key": self.api_key},
            context="search",
        )
        data = self._json(resp, "search")

        items = []
        for article in data.get("value") or []:
            item = self.parse_article(article)
            if item is None:
                continue
            # date ranges are not supported upstream
            published = parse_timestamp(item.timestamp)
            if published and opts.since and published < ensure_utc(opts.since):
                continue
            if published and opts.until and published > ensure_utc(opts.until):
                continue
            items.append(item)
        return items[:opts.limit]

    @staticmethod
    def parse_article(article: Optional[Dict[str, Any]]) -> Optional[RawContent]:
        if not article:
            return None
        key = article.get("url") or article.get("name")
        if not key:
            return None

        providers = article.get("provider") or []
        provider = providers[0].get("name") if providers and isinstance(providers[0], dict) else None
        content = article.get("name") or ""
        if article.get("description"):
            content += f"\n\n{article['description']}"

        return RawContent(
            id=f"bing-news_{stable_id(key)}",
            content=content,
            author=provider or "unknown",
            url=article.get("url") or "",
            timestamp=article.get("datePublished"),
            engagement={},
            metadata={
                "source": provider,
                "category": article.get("category"),
                "about": [a.get("name") for a in article.get("about") or [] if isinstance(a, dict)],
                "image_url": ((article.get("image") or {}).get("thumbnail") or {}).get("contentUrl"),
                "clustered_articles": len(article.get("clusteredArticles") or []),
            },
        )
