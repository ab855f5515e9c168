"""
Ingest discussions from developer forums and Hacker News
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Union
from urllib.parse import quote_plus, urljoin

from core.errors import ProviderError
from core.schemas import SearchOptions
from core.timeutils import ensure_utc, parse_timestamp, to_iso
from ingestion.base import PlatformAdapter, RawContent, stable_id
from services.scraper import WebScraper, parse_count

logger = logging.getLogger(__name__)

HN_SEARCH_URL = "https://hn.algolia.com/api/v1"


@dataclass(frozen=True)
class ForumSite:
    """
    CSS selectors describing one forum's search results page.
    A selector ending in "@attr" reads that attribute.
    """
    name: str
    base_url: str
    search_path: str
    item_selector: str
    title_selector: str = ""
    link_selector: str = ""
    author_selector: str = ""
    date_selector: str = ""
    content_selector: str = ""
    score_selector: str = ""
    answers_selector: str = ""
    tags_selector: str = ""


DEFAULT_SITES = [
    ForumSite(
        name="stackoverflow",
        base_url="https://stackoverflow.com",
        search_path="/search?q=",
        item_selector=".s-post-summary, .question-summary",
        title_selector=".s-post-summary--content-title a, .question-hyperlink",
        link_selector=".s-post-summary--content-title a@href",
        author_selector=".s-user-card--link a, .user-details a",
        date_selector=".relativetime@title",
        content_selector=".s-post-summary--content-excerpt, .excerpt",
        score_selector=".s-post-summary--stats-item-number, .vote-count-post",
        answers_selector=".s-post-summary--stats-item.has-answers .s-post-summary--stats-item-number",
        tags_selector=".s-post-summary--meta-tags",
    ),
    ForumSite(
        name="discourse",
        base_url="https://meta.discourse.org",
        search_path="/search?q=",
        item_selector=".fps-result",
        title_selector=".search-link .topic-title",
        link_selector=".search-link@href",
        author_selector=".author a",
        date_selector=".date",
        content_selector=".blurb",
    ),
]


class ForumAdapter(PlatformAdapter):
    """
    Scrapes each configured forum's search page and queries the Hacker News
    Algolia API. A failing site is skipped; the search only fails when
    every source failed.
    """

    platform_name = "forum"
    rate_limit_per_hour = 300
    max_results = 50

    def __init__(
        self,
        sites: Optional[List[ForumSite]] = None,
        include_hackernews: bool = True,
        scraper: Optional[WebScraper] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.sites = list(DEFAULT_SITES) if sites is None else sites
        self.include_hackernews = include_hackernews
        self.scraper = scraper or WebScraper(transport=kwargs.get("transport"))

    async def search(
        self,
        keyword: str,
        options: Union[SearchOptions, Mapping[str, Any], None] = None,
    ) -> List[RawContent]:
        clean, opts = self._prepare(keyword, options)
        results: List[RawContent] = []
        attempted = 0
        errors: List[ProviderError] = []

        for site in self.sites:
            attempted += 1
            try:
                results.extend(await self.search_site(site, clean, opts))
            except ProviderError as e:
                errors.append(e)
                logger.warning(f"Forum search failed for {site.name}: {e}")

        if self.include_hackernews:
            attempted += 1
            try:
                results.extend(await self.search_hackernews(clean, opts))
            except ProviderError as e:
                errors.append(e)
                logger.warning(f"Hacker News search failed: {e}")

        if attempted and len(errors) == attempted:
            raise errors[-1]

        filtered = []
        for item in results:
            published = parse_timestamp(item.timestamp)
            if published and opts.since and published < ensure_utc(opts.since):
                continue
            if published and opts.until and published > ensure_utc(opts.until):
                continue
            filtered.append((published, item))

        oldest = datetime.min.replace(tzinfo=timezone.utc)
        filtered.sort(key=lambda pair: pair[0] or oldest, reverse=True)
        return [item for _, item in filtered[:self._clamp_limit(opts.limit)]]

    async def search_site(self, site: ForumSite, keyword: str, options: SearchOptions) -> List[RawContent]:
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
                "content": site.content_selector,
                "score": site.score_selector,
                "answers": site.answers_selector,
                "tags": site.tags_selector,
            },
        )

        items = []
        for row in rows:
            title = row["title"]
            if not title and not row["content"]:
                continue
            link = urljoin(site.base_url, row["link"]) if row["link"] else url
            parsed = parse_timestamp(row["date"])
            items.append(
                RawContent(
                    id=f"{self.platform_name}_{site.name}_{stable_id(link, title)}",
                    content=f"{title}\n\n{row['content']}" if row["content"] else title,
                    author=row["author"] or "unknown",
                    url=link,
                    timestamp=to_iso(parsed) if parsed else None,
                    engagement={"likes": parse_count(row["score"]), "comments": parse_count(row["answers"])},
                    metadata={
                        "forum": site.name,
                        "tags": row["tags"].split() if row["tags"] else [],
                        "question_score": parse_count(row["score"]),
                        "answer_count": parse_count(row["answers"]),
                    },
                )
            )
        return items[:options.limit]

    async def search_hackernews(self, keyword: str, options: SearchOptions) -> List[RawContent]:
        endpoint = "search_by_date" if options.sort_by == "date" else "search"
        params: Dict[str, Any] = {
            "query": keyword,
            "tags": "story",
            "hitsPerPage": self._clamp_limit(options.limit),
        }
        if options.since:
            params["numericFilters"] = f"created_at_i>{int(ensure_utc(options.since).timestamp())}"

        resp = await self._request("GET", f"{HN_SEARCH_URL}/{endpoint}", params=params, context="hackernews")
        data = self._json(resp, "hackernews")
        return [item for item in (self.parse_hit(hit) for hit in data.get("hits") or []) if item]

    @staticmethod
    def parse_hit(hit: Dict[str, Any]) -> Optional[RawContent]:
        object_id = hit.get("objectID")
        if not object_id:
            return None
        title = hit.get("title") or hit.get("story_title") or ""
        text = WebScraper.extract_text_content(hit.get("story_text") or "")
        return RawContent(
            id=f"forum_hackernews_{object_id}",
            content=f"{title}\n\n{text}" if text else title,
            author=hit.get("author") or "unknown",
            url=hit.get("url") or f"https://news.ycombinator.com/item?id={object_id}",
            timestamp=hit.get("created_at"),
            engagement={"likes": hit.get("points") or 0, "comments": hit.get("num_comments") or 0},
            metadata={
                "forum": "hackernews",
                "story_id": object_id,
                "tags": hit.get("_tags") or [],
                "question_score": hit.get("points") or 0,
                "answer_count": hit.get("num_comments") or 0,
            },
        )
