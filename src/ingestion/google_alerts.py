"""
Ingest Google News search results and Google Alerts feeds
"""
import logging
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional, Union
from urllib.parse import parse_qs, quote_plus, urlsplit

from core.errors import ProviderError
from core.schemas import SearchOptions
from ingestion.base import RawContent
from ingestion.rss import FeedEntry, FeedSource, RSSAdapter, matches_keyword, within_window

logger = logging.getLogger(__name__)

NEWS_SEARCH_URL = "https://news.google.com/rss/search?q={query}&hl=en-US&gl=US&ceid=US:en"


def unwrap_google_link(link: str) -> str:
    """Alert feeds wrap targets as https://www.google.com/url?...&url=<target>."""
    parts = urlsplit(link)
    if parts.netloc.endswith("google.com") and parts.path == "/url":
        target = parse_qs(parts.query).get("url")
        if target:
            return target[0]
    return link


class GoogleAlertsAdapter(RSSAdapter):
    """
    Queries the Google News RSS search for the keyword and reads any
    configured Google Alerts feeds, keeping alert entries that mention it.
    """

    platform_name = "google-alerts"
    rate_limit_per_hour = 100
    max_results = 20

    def __init__(self, alert_feeds: Optional[List[str]] = None, **kwargs):
        feeds = [FeedSource(url, "Google Alerts") for url in alert_feeds or []]
        super().__init__(feeds=feeds, **kwargs)
        # RSSAdapter falls back to its default feeds when handed an empty list
        self.feeds = feeds

    async def search(
        self,
        keyword: str,
        options: Union[SearchOptions, Mapping[str, Any], None] = None,
    ) -> List[RawContent]:
        clean, opts = self._prepare(keyword, options)
        search_feed = FeedSource(NEWS_SEARCH_URL.format(query=quote_plus(clean)), "Google News")
        sources = [(search_feed, False)] + [(feed, True) for feed in self.feeds]

        collected: List[tuple[Optional[datetime], RawContent]] = []
        errors: List[ProviderError] = []
        seen = set()

        for feed, needs_filter in sources:
            try:
                entries = await self._fetch_feed(feed)
            except ProviderError as e:
                errors.append(e)
                logger.warning(f"Skipping alerts feed {feed.url}: {e}")
                continue

            for entry in entries:
                if needs_filter and not matches_keyword(entry, clean):
                    continue
                if not within_window(entry.published, opts):
                    continue
                entry = FeedEntry(
                    id=entry.id,
                    title=entry.title,
                    summary=entry.summary,
                    link=unwrap_google_link(entry.link),
                    author=entry.author,
                    published=entry.published,
                    tags=entry.tags,
                )
                if entry.link in seen:
                    continue
                seen.add(entry.link)
                collected.append((entry.published, self.to_raw(entry, feed)))

        if len(errors) == len(sources):
            raise errors[-1]

        oldest = datetime.min.replace(tzinfo=timezone.utc)
        collected.sort(key=lambda pair: pair[0] or oldest, reverse=True)
        return [raw for _, raw in collected[:self._clamp_limit(opts.limit)]]

    async def validate_configuration(self) -> bool:
        try:
            await self._fetch_feed(FeedSource(NEWS_SEARCH_URL.format(query="test"), "Google News"))
            return True
        except ProviderError as e:
            logger.warning(f"google-alerts configuration check failed: {e}")
            return False
