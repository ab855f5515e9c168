"""
Ingestion from RSS sources
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional, Union

import feedparser

from core.errors import ProviderError
from core.schemas import SearchOptions
from core.timeutils import ensure_utc, to_iso
from ingestion.base import PlatformAdapter, RawContent, stable_id
from services.scraper import WebScraper

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeedSource:
    url: str
    title: str


DEFAULT_FEEDS = [
    FeedSource("https://feeds.feedburner.com/TechCrunch", "TechCrunch"),
    FeedSource("https://feeds.bbci.co.uk/news/rss.xml", "BBC News"),
    FeedSource("https://www.reddit.com/.rss", "Reddit Front Page"),
    FeedSource("https://hnrss.org/frontpage", "Hacker News"),
]


@dataclass
class FeedEntry:
    id: str
    title: str
    summary: str
    link: str
    author: str
    published: Optional[datetime]
    tags: List[str]


def parse_feed(text: str) -> List[FeedEntry]:
    """Parse an RSS/Atom document. Malformed feeds yield whatever entries feedparser recovered."""
    feed = feedparser.parse(text)
    entries = []
    for entry in feed.entries:
        published = None
        parsed = entry.get("published_parsed") or entry.get("updated_parsed")
        if parsed:
            published = datetime(*parsed[:6], tzinfo=timezone.utc)

        link = entry.get("link", "")
        entries.append(
            FeedEntry(
                id=entry.get("id") or link or entry.get("title", ""),
                title=entry.get("title", ""),
                summary=WebScraper.extract_text_content(entry.get("summary", "")),
                link=link,
                author=entry.get("author", ""),
                published=published,
                tags=[t.get("term") for t in entry.get("tags", []) if t.get("term")],
            )
        )
    return entries


def matches_keyword(entry: FeedEntry, keyword: str) -> bool:
    needle = keyword.lower()
    return needle in entry.title.lower() or needle in entry.summary.lower()


def within_window(published: Optional[datetime], options: SearchOptions) -> bool:
    if published is None:
        return options.since is None
    if options.since and published < ensure_utc(options.since):
        return False
    if options.until and published > ensure_utc(options.until):
        return False
    return True


class RSSAdapter(PlatformAdapter):
    """
    Keyword search over a fixed list of feeds.
    """

    platform_name = "rss"
    rate_limit_per_hour = 500
    max_results = 100

    def __init__(self, feeds: Optional[List[FeedSource]] = None, **kwargs):
        super().__init__(**kwargs)
        self.feeds = feeds or list(DEFAULT_FEEDS)

    async def _fetch_feed(self, feed: FeedSource) -> List[FeedEntry]:
        resp = await self._request("GET", feed.url, context=f"feed {feed.title}")
        return parse_feed(resp.text)

    async def search(
        self,
        keyword: str,
        options: Union[SearchOptions, Mapping[str, Any], None] = None,
    ) -> List[RawContent]:
        clean, opts = self._prepare(keyword, options)
        items: List[tuple[Optional[datetime], RawContent]] = []
        failures = 0
        last_error: Optional[ProviderError] = None

        for feed in self.feeds:
            try:
                entries = await self._fetch_feed(feed)
            except ProviderError as e:
                failures += 1
                last_error = e
                logger.warning(f"Skipping feed {feed.url}: {e}")
                continue

            for entry in entries:
                if not matches_keyword(entry, clean) or not within_window(entry.published, opts):
                    continue
                items.append((entry.published, self.to_raw(entry, feed)))

        if failures and failures == len(self.feeds):
            raise last_error

        oldest = datetime.min.replace(tzinfo=timezone.utc)
        items.sort(key=lambda pair: pair[0] or oldest, reverse=True)
        return [raw for _, raw in items[:self._clamp_limit(opts.limit)]]

    async def validate_configuration(self) -> bool:
        if not self.feeds:
            return False
        try:
            await self._fetch_feed(self.feeds[0])
            return True
        except ProviderError as e:
            logger.warning(f"rss configuration check failed: {e}")
            return False

    def to_raw(self, entry: FeedEntry, feed: FeedSource) -> RawContent:
        content = f"{entry.title}\n\n{entry.summary}" if entry.summary else entry.title
        return RawContent(
            id=f"{self.platform_name}_{stable_id(entry.id)}",
            content=content,
            author=entry.author or feed.title,
            url=entry.link,
            timestamp=to_iso(entry.published) if entry.published else None,
            engagement={},
            metadata={
                "feed_title": feed.title,
                "feed_url": feed.url,
                "categories": entry.tags,
            },
        )
