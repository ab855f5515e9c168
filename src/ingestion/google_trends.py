"""
Ingest daily search trends from Google Trends
"""
import logging
import re
from datetime import datetime, timezone
from typing import List, Optional

import feedparser

from core.sentiment import NEUTRAL
from ingestion.advanced import AdvancedPlatformAdapter, ConversationData, ConversationEngagement
from ingestion.base import stable_id
from services.scraper import WebScraper, parse_count

logger = logging.getLogger(__name__)

TRENDS_FEED_URL = "https://trends.google.com/trending/rss?geo={geo}"


def parse_traffic(value: Optional[str]) -> int:
    """"200K+" -> 200000"""
    return parse_count(re.sub(r"[+,]", "", value or ""))


class GoogleTrendsAdapter(AdvancedPlatformAdapter):
    """
    Reads the public daily trends feed for a region and keeps trending
    searches that mention one of the keywords. Needs no credentials.
    """

    platform_name = "google-trends"
    rate_limit_per_minute = 10

    def __init__(self, geo: str = "US", **kwargs):
        super().__init__(**kwargs)
        self.geo = geo

    async def fetch_trends(self) -> List[ConversationData]:
        self._throttle()
        resp = await self._request("GET", TRENDS_FEED_URL.format(geo=self.geo), context="daily_trends")
        feed = feedparser.parse(resp.text)

        trends = []
        for entry in feed.entries:
            title = entry.get("title", "")
            if not title:
                continue
            published = None
            parsed = entry.get("published_parsed")
            if parsed:
                published = datetime(*parsed[:6], tzinfo=timezone.utc)

            traffic = parse_traffic(entry.get("ht_approx_traffic"))
            news_title = entry.get("ht_news_item_title", "")
            summary = WebScraper.extract_text_content(entry.get("summary", "") or news_title)

            trends.append(
                ConversationData(
                    id=f"google-trends_{stable_id(self.geo, title, entry.get('published', ''))}",
                    content=f"{title}\n\n{summary}" if summary else title,
                    title=title,
                    author="Google Trends",
                    platform=self.platform_name,
                    url=entry.get("ht_news_item_url") or entry.get("link", ""),
                    published_at=published,
                    engagement=ConversationEngagement(reach=traffic),
                    sentiment=NEUTRAL,
                    platform_specific={"approx_traffic": entry.get("ht_approx_traffic"), "geo": self.geo},
                    metadata={"source": "google-trends", "geo": self.geo},
                )
            )
        return trends

    async def monitor(self, keywords: List[str]) -> List[ConversationData]:
        cleaned = [k.lower() for k in self._clean_keywords(keywords)]
        trends = await self.fetch_trends()
        return [
            t for t in trends
            if any(k in t.content.lower() for k in cleaned)
        ]
