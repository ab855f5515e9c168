"""
Polite HTML fetching for sources without an official API
"""
import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, List, Optional, Tuple
from urllib.parse import urljoin, urlsplit

import httpx
from bs4 import BeautifulSoup
from soupsieve import SelectorSyntaxError

from core.errors import ProviderError, ProviderUnavailable, RateLimitExceeded
from core.timeutils import utcnow

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "ConversationMonitor-Bot/1.0"
ROBOTS_CACHE_TTL = timedelta(hours=1)

_BROWSER_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}


@dataclass(frozen=True)
class ScrapingOptions:
    respect_robots_txt: bool = True
    user_agent: str = DEFAULT_USER_AGENT
    delay: float = 1.0  # seconds between requests and base for backoff
    max_retries: int = 3
    timeout: float = 10.0


@dataclass
class RobotsRules:
    """
    Directives from the robots.txt groups that apply to our user agent,
    in file order.
    """
    rules: List[Tuple[str, str]] = field(default_factory=list)  # (allow|disallow, pattern)
    crawl_delay: Optional[float] = None
    sitemaps: List[str] = field(default_factory=list)

    def is_allowed(self, path: str) -> bool:
        allowed = True
        for directive, pattern in self.rules:
            if path_matches(path or "/", pattern):
                allowed = directive == "allow"
        return allowed


def path_matches(path: str, pattern: str) -> bool:
    if pattern == "/":
        return True
    if pattern.endswith("*"):
        return path.startswith(pattern[:-1])
    return path == pattern or path.startswith(pattern.rstrip("/") + "/")


def parse_robots_txt(text: str, user_agent: str) -> RobotsRules:
    robots = RobotsRules()
    agent = user_agent.lower()
    bot_name = agent.split("/")[0]
    relevant = False

    for raw_line in text.splitlines():
        line = raw_line.split("#", 1)[0].strip()
        if not line or ":" not in line:
            continue

        directive, value = line.split(":", 1)
        directive = directive.strip().lower()
        value = value.strip()

        if directive == "user-agent":
            ua = value.lower()
            relevant = ua == "*" or (bool(ua) and (ua in agent or ua == bot_name))
        elif directive in ("allow", "disallow"):
            if relevant and value:
                robots.rules.append((directive, value))
        elif directive == "crawl-delay":
            if relevant:
                try:
                    robots.crawl_delay = float(value)
                except ValueError:
                    logger.debug(f"Ignoring malformed crawl-delay: {value}")
        elif directive == "sitemap":
            robots.sitemaps.append(value)

    return robots


class WebScraper:
    """
    Fetches pages with retry and exponential backoff, honouring robots.txt.
    Rules are cached per origin for an hour.
    """

    def __init__(
        self,
        options: Optional[ScrapingOptions] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.options = options or ScrapingOptions()
        self._transport = transport
        self._clock = clock
        self._sleep = sleep
        self._robots_cache: Dict[str, Tuple[datetime, RobotsRules]] = {}

    def _client(self, options: ScrapingOptions, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout or options.timeout,
            headers={"User-Agent": options.user_agent, **_BROWSER_HEADERS},
            transport=self._transport,
            follow_redirects=True,
        )

    async def get_robots_rules(self, url: str, options: Optional[ScrapingOptions] = None) -> RobotsRules:
        opts = options or self.options
        parts = urlsplit(url)
        origin = f"{parts.scheme}://{parts.netloc}"
        now = self._clock()

        cached = self._robots_cache.get(origin)
        if cached and now - cached[0] < ROBOTS_CACHE_TTL:
            return cached[1]

        rules = RobotsRules()
        try:
            async with self._client(opts, timeout=min(opts.timeout, 5.0)) as client:
                resp = await client.get(f"{origin}/robots.txt")
            if resp.status_code == 200:
                rules = parse_robots_txt(resp.text, opts.user_agent)
        except httpx.HTTPError as e:
            logger.warning(f"Failed to fetch robots.txt for {origin}: {e}")

        self._robots_cache[origin] = (now, rules)
        return rules

    def purge_robots_cache(self) -> int:
        """Evict expired robots.txt entries. Returns how many were removed."""
        now = self._clock()
        expired = [origin for origin, (fetched, _) in self._robots_cache.items() if now - fetched >= ROBOTS_CACHE_TTL]
        for origin in expired:
            del self._robots_cache[origin]
        return len(expired)

    async def scrape_url(self, url: str, options: Optional[ScrapingOptions] = None) -> str:
        opts = options or self.options
        delay = opts.delay

        if opts.respect_robots_txt:
            rules = await self.get_robots_rules(url, opts)
            if not rules.is_allowed(urlsplit(url).path):
                raise ProviderError(f"Scraping not allowed by robots.txt for {url}")
            if rules.crawl_delay and rules.crawl_delay > delay:
                delay = rules.crawl_delay

        return await self._fetch_with_retry(url, opts, delay)

    async def scrape_multiple_urls(
        self,
        urls: List[str],
        options: Optional[ScrapingOptions] = None,
    ) -> Dict[str, str]:
        """
        Fetch pages one after another. Failed pages map to an empty string.
        """
        opts = options or self.options
        results: Dict[str, str] = {}

        for index, url in enumerate(urls):
            try:
                results[url] = await self.scrape_url(url, opts)
            except ProviderError as e:
                logger.error(f"Failed to scrape {url}: {e}")
                results[url] = ""
            if opts.delay > 0 and index < len(urls) - 1:
                await self._sleep(opts.delay)

        return results

    async def _fetch_with_retry(self, url: str, options: ScrapingOptions, delay: float) -> str:
        last_error: Optional[ProviderError] = None
        attempts = max(1, options.max_retries)

        for attempt in range(1, attempts + 1):
            try:
                async with self._client(options) as client:
                    resp = await client.get(url)
                if resp.status_code == 429:
                    raise RateLimitExceeded(f"HTTP 429 fetching {url}", status=429)
                if resp.status_code >= 500:
                    raise ProviderUnavailable(f"HTTP {resp.status_code} fetching {url}", status=resp.status_code)
                if resp.status_code >= 400:
                    raise ProviderError(f"HTTP {resp.status_code} fetching {url}", status=resp.status_code)
                return resp.text

            except httpx.HTTPError as e:
                last_error = ProviderError(f"Request to {url} failed: {e}")
            except ProviderError as e:
                last_error = e

            logger.warning(f"Attempt {attempt}/{attempts} failed for {url}: {last_error}")
            if attempt < attempts:
                await self._sleep(delay * (2 ** (attempt - 1)))

        raise last_error

    @staticmethod
    def extract_text_content(html: str) -> str:
        soup = BeautifulSoup(html or "", "html.parser")
        for tag in soup(["script", "style", "noscript"]):
            tag.decompose()
        return re.sub(r"\s+", " ", soup.get_text(separator=" ")).strip()

    @staticmethod
    def extract_links(html: str, base_url: str) -> List[str]:
        soup = BeautifulSoup(html or "", "html.parser")
        links: List[str] = []
        seen = set()
        for anchor in soup.find_all("a", href=True):
            try:
                absolute = urljoin(base_url, anchor["href"].strip())
            except ValueError:
                continue
            if urlsplit(absolute).scheme not in ("http", "https") or absolute in seen:
                continue
            seen.add(absolute)
            links.append(absolute)
        return links

    @staticmethod
    def extract_metadata(html: str) -> Dict[str, str]:
        soup = BeautifulSoup(html or "", "html.parser")
        metadata: Dict[str, str] = {}

        if soup.title and soup.title.string:
            metadata["title"] = soup.title.string.strip()

        for meta in soup.find_all("meta"):
            name = meta.get("name") or meta.get("property")
            content = meta.get("content")
            if name and content:
                metadata[name] = content.strip()

        return metadata

    @staticmethod
    def extract_items(html: str, item_selector: str, fields: Dict[str, str]) -> List[Dict[str, str]]:
        """
        Pull one dict per element matching item_selector. Each field maps to a
        CSS selector relative to the item; a trailing "@attr" reads an
        attribute instead of text. Missing or malformed parts yield "".
        """
        soup = BeautifulSoup(html or "", "html.parser")
        try:
            nodes = soup.select(item_selector)
        except SelectorSyntaxError as e:
            logger.warning(f"Invalid item selector {item_selector!r}: {e}")
            return []

        items = []
        for node in nodes:
            item = {}
            for name, selector in fields.items():
                item[name] = _select_value(node, selector)
            items.append(item)
        return items


def _select_value(node, selector: str) -> str:
    if not selector:
        return ""
    selector, _, attr = selector.partition("@")
    try:
        target = node.select_one(selector) if selector else node
    except SelectorSyntaxError:
        return ""
    if target is None:
        return ""
    if attr:
        value = target.get(attr, "")
        if isinstance(value, list):
            value = " ".join(value)
        return str(value).strip()
    return re.sub(r"\s+", " ", target.get_text(separator=" ")).strip()


_COUNT = re.compile(r"(\d+(?:[.,]\d+)?)\s*([kKmM]?)(?![A-Za-z])")


def parse_count(text: str) -> int:
    """
    Read the first number in text, honouring k/m suffixes ("1.2k" -> 1200).
    Returns 0 when nothing numeric is present.
    """
    match = _COUNT.search(text or "")
    if not match:
        return 0
    number, suffix = match.groups()
    if suffix:
        value = float(number.replace(",", "."))
        value *= 1000 if suffix.lower() == "k" else 1_000_000
    else:
        value = float(number.replace(",", ""))
    return int(value)
