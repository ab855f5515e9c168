"""
Ingest articles from NewsAPI
"""
import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from core.errors import ConfigurationMissing
from core.schemas import SearchOptions
from core.timeutils import ensure_utc, parse_timestamp
from ingestion.base import PlatformAdapter, RawContent, stable_id

logger = logging.getLogger(__name__)

BASE_URL = "https://newsapi.org/v2"


class NewsAdapter(PlatformAdapter):
    platform_name = "news"
    rate_limit_per_hour = 1000
    requires_auth = True
    max_results = 100

    def __init__(self, api_key: Optional[str] = None, language: str = "en", **kwargs):
        super().__init__(**kwargs)
        self.api_key = api_key
        self.language = language

    def has_credentials(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> Dict[str, str]:
        if not self.api_key:
            raise ConfigurationMissing("NEWS_API_KEY is not configured")
        return {"X-Api-Key": self.api_key}

    def build_search_params(self, keyword: str, options: SearchOptions) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "q": keyword,
            "pageSize": self._clamp_limit(options.limit),
            "language": self.language,
            "sortBy": "publishedAt" if options.sort_by == "date" else "relevancy",
        }
        if options.since:
            params["from"] = ensure_utc(options.since).strftime("%Y-%m-%d")
        if options.until:
            params["to"] = ensure_utc(options.until).strftime("%Y-%m-%d")
        return params

    async def search(
        self,
        keyword: str,
        options: Union[SearchOptions, Mapping[str, Any], None] = None,
    ) -> List[RawContent]:
        clean, opts = self._prepare(keyword, options)
        resp = await self._request(
            "GET",
            f"{BASE_URL}/everything",
            params=self.build_search_params(clean, opts),
            headers=self._headers(),
            context="search",
        )
        data = self._json(resp, "search")
        if data.get("status") == "error":
            raise self.handle_error(None, data.get("message") or data.get("code") or "", "search")

        items = []
        for article in data.get("articles") or []:
            item = self.parse_article(article)
            if item is None:
                continue
            # the API filters by day only
            published = parse_timestamp(item.timestamp)
            if published and opts.since and published < ensure_utc(opts.since):
                continue
            if published and opts.until and published > ensure_utc(opts.until):
                continue
            items.append(item)
        return items[:opts.limit]

    @staticmethod
    def parse_article(article: Optional[Dict[str, Any]]) -> Optional[RawContent]:
        if not article or article.get("title") == "[Removed]":
            return None

        title = article.get("title") or ""
        description = article.get("description") or ""
        source = article.get("source") or {}
        key = article.get("url") or title
        if not key:
            return None

        return RawContent(
            id=f"news_{stable_id(key)}",
            content=f"{title}\n\n{description}" if description else title,
            author=article.get("author") or source.get("name") or "unknown",
            url=article.get("url") or "",
            timestamp=article.get("publishedAt"),
            engagement={},
            metadata={
                "source": source.get("name"),
                "source_id": source.get("id"),
                "url_to_image": article.get("urlToImage"),
                "content_preview": (article.get("content") or "")[:200] or None,
            },
        )
