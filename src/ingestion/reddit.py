"""
Ingest mentions from Reddit search
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Union

from core.schemas import SearchOptions
from core.timeutils import ensure_utc, parse_timestamp, to_iso, utcnow
from ingestion.auth import OAuth2TokenExchange
from ingestion.base import PlatformAdapter, RawContent

logger = logging.getLogger(__name__)

PUBLIC_URL = "https://www.reddit.com"
OAUTH_URL = "https://oauth.reddit.com"
TOKEN_URL = "https://www.reddit.com/api/v1/access_token"


def _time_filter(since: Optional[datetime]) -> Optional[str]:
    if since is None:
        return None
    age = utcnow() - ensure_utc(since)
    hours = age.total_seconds() / 3600
    if hours <= 1:
        return "hour"
    if hours <= 24:
        return "day"
    if hours <= 24 * 7:
        return "week"
    if hours <= 24 * 31:
        return "month"
    if hours <= 24 * 366:
        return "year"
    return "all"


class RedditAdapter(PlatformAdapter):
    """
    Public JSON search by default. With a client id and secret the adapter
    switches to the OAuth API using the client-credentials grant.
    """

    platform_name = "reddit"
    rate_limit_per_hour = 600
    max_results = 100

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        subreddit: Optional[str] = None,
        **kwargs,
    ):
        token_provider = kwargs.pop("token_provider", None)
        if token_provider is None and client_id and client_secret:
            token_provider = OAuth2TokenExchange(
                TOKEN_URL,
                client_id=client_id,
                client_secret=client_secret,
                use_basic_auth=True,
                platform=self.platform_name,
                transport=kwargs.get("transport"),
            )
        super().__init__(token_provider=token_provider, **kwargs)
        self.requires_auth = token_provider is not None
        self.subreddit = subreddit

    @property
    def base_url(self) -> str:
        return OAUTH_URL if self.token_provider else PUBLIC_URL

    def build_search_params(self, keyword: str, options: SearchOptions) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "q": keyword,
            "type": "link",
            "limit": self._clamp_limit(options.limit),
            "sort": "new" if options.sort_by == "date" else "relevance",
        }
        if self.subreddit:
            params["restrict_sr"] = "on"
        window = _time_filter(options.since)
        if window:
            params["t"] = window
        return params

    async def search(
        self,
        keyword: str,
        options: Union[SearchOptions, Mapping[str, Any], None] = None,
    ) -> List[RawContent]:
        clean, opts = self._prepare(keyword, options)
        path = f"/r/{self.subreddit}/search.json" if self.subreddit else "/search.json"

        resp = await self._authorized_request(
            "GET",
            f"{self.base_url}{path}",
            params=self.build_search_params(clean, opts),
            context="search",
        )
        data = self._json(resp, "search")

        items = []
        for child in (data.get("data") or {}).get("children") or []:
            item = self.parse_post(child.get("data"))
            if item is None:
                continue
            published = parse_timestamp(item.timestamp)
            if published and opts.since and published < ensure_utc(opts.since):
                continue
            if published and opts.until and published > ensure_utc(opts.until):
                continue
            items.append(item)
        return items[:opts.limit]

    async def get_content(self, content_id: str) -> Optional[RawContent]:
        post_id = content_id[len("reddit_"):] if content_id.startswith("reddit_") else content_id
        resp = await self._authorized_request(
            "GET",
            f"{self.base_url}/comments/{post_id}.json",
            context="get_content",
            allow_not_found=True,
        )
        if resp is None:
            return None

        data = self._json(resp, "get_content")
        try:
            post = data[0]["data"]["children"][0]["data"]
        except (KeyError, IndexError, TypeError):
            return None
        return self.parse_post(post)

    async def validate_configuration(self) -> bool:
        try:
            await self._authorized_request(
                "GET",
                f"{self.base_url}/r/test.json",
                params={"limit": 1},
                context="validate_configuration",
            )
            return True
        except Exception as e:
            logger.warning(f"reddit configuration check failed: {e}")
            return False

    @staticmethod
    def parse_post(post: Optional[Dict[str, Any]]) -> Optional[RawContent]:
        if not post or not post.get("id"):
            return None

        title = post.get("title") or ""
        selftext = post.get("selftext") or ""
        content = f"{title}\n\n{selftext}" if selftext else title

        timestamp = None
        if post.get("created_utc") not in (None, ""):
            try:
                created = datetime.fromtimestamp(float(post["created_utc"]), tz=timezone.utc)
                timestamp = to_iso(created)
            except (TypeError, ValueError, OverflowError, OSError):
                pass

        return RawContent(
            id=f"reddit_{post['id']}",
            content=content,
            author=post.get("author") or "unknown",
            url=f"https://reddit.com{post.get('permalink', '')}",
            timestamp=timestamp,
            engagement={
                "likes": post.get("ups") or 0,
                "comments": post.get("num_comments") or 0,
                "shares": 0,
            },
            metadata={
                "subreddit": post.get("subreddit"),
                "score": post.get("score"),
                "upvote_ratio": post.get("upvote_ratio"),
                "is_self": post.get("is_self"),
                "domain": post.get("domain"),
                "flair": post.get("link_flair_text"),
            },
        )
