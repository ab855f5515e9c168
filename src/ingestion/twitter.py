"""
Ingest mentions from the X/Twitter v2 recent search API
"""
import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from core.schemas import SearchOptions
from core.timeutils import ensure_utc, to_iso
from ingestion.auth import StaticBearer
from ingestion.base import PlatformAdapter, RawContent

logger = logging.getLogger(__name__)

BASE_URL = "https://api.twitter.com/2"
TWEET_FIELDS = "created_at,author_id,public_metrics,context_annotations,lang"
USER_FIELDS = "username,name,verified"


class TwitterAdapter(PlatformAdapter):
    platform_name = "twitter"
    rate_limit_per_hour = 300
    requires_auth = True
    max_results = 100

    def __init__(self, bearer_token: Optional[str] = None, **kwargs):
        kwargs.setdefault("token_provider", StaticBearer(bearer_token, platform=self.platform_name))
        super().__init__(**kwargs)
        self.bearer_token = bearer_token

    def has_credentials(self) -> bool:
        return bool(self.bearer_token) or not isinstance(self.token_provider, StaticBearer)

    def build_query(self, keyword: str, options: SearchOptions) -> Dict[str, Any]:
        query = f'"{keyword}" -is:retweet' if " " in keyword else f"{keyword} -is:retweet"
        if not options.include_replies:
            query += " -is:reply"

        params: Dict[str, Any] = {
            "query": query,
            # the endpoint rejects fewer than 10
            "max_results": max(10, self._clamp_limit(options.limit)),
            "tweet.fields": TWEET_FIELDS,
            "user.fields": USER_FIELDS,
            "expansions": "author_id",
        }
        if options.sort_by == "date":
            params["sort_order"] = "recency"
        if options.since:
            params["start_time"] = to_iso(ensure_utc(options.since))
        if options.until:
            params["end_time"] = to_iso(ensure_utc(options.until))
        return params

    async def search(
        self,
        keyword: str,
        options: Union[SearchOptions, Mapping[str, Any], None] = None,
    ) -> List[RawContent]:
        clean, opts = self._prepare(keyword, options)
        resp = await self._authorized_request(
            "GET",
            f"{BASE_URL}/tweets/search/recent",
            params=self.build_query(clean, opts),
            context="search",
        )
        data = self._json(resp, "search")
        users = {u.get("id"): u for u in (data.get("includes") or {}).get("users") or []}

        items = []
        for tweet in data.get("data") or []:
            item = self.parse_tweet(tweet, users.get(tweet.get("author_id")))
            if item:
                items.append(item)
        return items[:opts.limit]

    async def get_content(self, content_id: str) -> Optional[RawContent]:
        tweet_id = content_id[len("twitter_"):] if content_id.startswith("twitter_") else content_id
        resp = await self._authorized_request(
            "GET",
            f"{BASE_URL}/tweets/{tweet_id}",
            params={"tweet.fields": TWEET_FIELDS, "user.fields": USER_FIELDS, "expansions": "author_id"},
            context="get_content",
            allow_not_found=True,
        )
        if resp is None:
            return None
        data = self._json(resp, "get_content")
        tweet = data.get("data")
        if not tweet:
            return None
        users = (data.get("includes") or {}).get("users") or []
        return self.parse_tweet(tweet, users[0] if users else None)

    @staticmethod
    def parse_tweet(tweet: Dict[str, Any], user: Optional[Dict[str, Any]] = None) -> Optional[RawContent]:
        if not tweet or not tweet.get("id"):
            return None

        user = user or {}
        username = user.get("username") or "unknown"
        display_name = user.get("name") or username
        metrics = tweet.get("public_metrics") or {}

        return RawContent(
            id=f"twitter_{tweet['id']}",
            content=tweet.get("text") or "",
            author=f"{display_name} (@{username})",
            url=f"https://twitter.com/{username}/status/{tweet['id']}",
            timestamp=tweet.get("created_at"),
            engagement={
                "likes": metrics.get("like_count", 0),
                "retweets": metrics.get("retweet_count", 0),
                "replies": metrics.get("reply_count", 0),
                "views": metrics.get("impression_count", 0),
            },
            metadata={
                "author_id": tweet.get("author_id"),
                "language": tweet.get("lang"),
                "verified": bool(user.get("verified", False)),
                "context_annotations": tweet.get("context_annotations") or [],
                "quote_count": metrics.get("quote_count", 0),
            },
        )
