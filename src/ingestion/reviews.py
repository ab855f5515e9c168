"""
Ingest product reviews from public review sites
"""
import logging
import re
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Union
from urllib.parse import quote_plus, urljoin

from core.errors import ProviderError
from core.schemas import SearchOptions
from core.sentiment import from_star_rating
from core.timeutils import ensure_utc, parse_timestamp, to_iso
from ingestion.base import PlatformAdapter, RawContent, stable_id
from services.scraper import WebScraper

logger = logging.getLogger(__name__)

_NUMBER = re.compile(r"(\d+(?:\.\d+)?)")
_STARS = re.compile(r"[★⭐]")


@dataclass(frozen=True)
class ReviewSite:
    name: str
    base_url: str
    search_path: str
    item_selector: str
    title_selector: str = ""
    link_selector: str = ""
    author_selector: str = ""
    date_selector: str = ""
    rating_selector: str = ""
    content_selector: str = ""


DEFAULT_SITES = [
    ReviewSite(
        name="trustpilot",
        base_url="https://www.trustpilot.com",
        search_path="/search?query=",
        item_selector="article[data-service-review-card-paper], .review-card",
        title_selector="h2, .review-content__title",
        link_selector="a[href*='/reviews/']@href",
        author_selector="[data-consumer-name-typography], .consumer-information__name",
        date_selector="time@datetime",
        rating_selector="[data-service-review-rating]@data-service-review-rating",
        content_selector="[data-service-review-text-typography], .review-content__text",
    ),
    ReviewSite(
        name="g2",
        base_url="https://www.g2.com",
        search_path="/search?query=",
        item_selector=".review-item",
        title_selector=".review-title",
        author_selector=".reviewer-name",
        date_selector=".review-date",
        rating_selector=".rating-stars",
        content_selector=".review-text",
    ),
    ReviewSite(
        name="capterra",
        base_url="https://www.capterra.com",
        search_path="/search?query=",
        item_selector=".review-card",
        title_selector=".review-title",
        author_selector=".reviewer-info",
        date_selector=".review-date",
        rating_selector=".rating",
        content_selector=".review-content",
    ),
]


def parse_rating(text: str) -> float:
    """A numeric rating when one is present, else the number of star glyphs."""
    match = _NUMBER.search(text or "")
    if match:
        return float(match.group(1))
    return float(len(_STARS.findall(text or "")))


class ReviewAdapter(PlatformAdapter):
    platform_name = "reviews"
    rate_limit_per_hour = 200
    max_results = 20

    def __init__(self, sites: Optional[List[ReviewSite]] = None, scraper: Optional[WebScraper] = None, **kwargs):
        super().__init__(**kwargs)
        self.sites = list(DEFAULT_SITES) if sites is None else sites
        self.scraper = scraper or WebScraper(transport=kwargs.get("transport"))

    async def search(
        self,
        keyword: str,
        options: Union[SearchOptions, Mapping[str, Any], None] = None,
    ) -> List[RawContent]:
        clean, opts = self._prepare(keyword, options)
        results: List[RawContent] = []
        errors: List[ProviderError] = []

        for site in self.sites:
            try:
                results.extend(await self.search_site(site, clean))
            except ProviderError as e:
                errors.append(e)
                logger.warning(f"Review search failed for {site.name}: {e}")

        if self.sites and len(errors) == len(self.sites):
            raise errors[-1]

        filtered = []
        for item in results:
            published = parse_timestamp(item.timestamp)
            if published and opts.since and published < ensure_utc(opts.since):
                continue
            if published and opts.until and published > ensure_utc(opts.until):
                continue
            filtered.append(item)
        return filtered[:self._clamp_limit(opts.limit)]

    async def search_site(self, site: ReviewSite, keyword: str) -> List[RawContent]:
        url = f"{site.base_url}{site.search_path}{quote_plus(keyword)}"
        html = await self.scraper.scrape_url(url)
        rows = WebScraper.extract_items(
            html,
            site.item_selector,
            {
                "title": site.title_selector,
                "link": site.link_selector,
                "author": site.author_selector,
                "date": site.date_selector,
                "rating": site.rating_selector,
                "content": site.content_selector,
            },
        )

        items = []
        for row in rows:
            if not row["title"] and not row["content"]:
                continue
            rating = parse_rating(row["rating"])
            link = urljoin(site.base_url, row["link"]) if row["link"] else url
            parsed = parse_timestamp(row["date"])
            items.append(
                RawContent(
                    id=f"{self.platform_name}_{site.name}_{stable_id(link, row['title'], row['content'][:200])}",
                    content=f"{row['title']}\n\n{row['content']}" if row["title"] else row["content"],
                    author=row["author"] or "unknown",
                    url=link,
                    timestamp=to_iso(parsed) if parsed else None,
                    # rating doubles as the engagement signal
                    engagement={"likes": int(round(rating))},
                    metadata={
                        "review_site": site.name,
                        "rating": rating,
                        "sentiment": from_star_rating(rating),
                    },
                )
            )
        return items
