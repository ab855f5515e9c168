"""
Ingest videos from the YouTube Data API v3
"""
import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from core.errors import ConfigurationMissing
from core.schemas import SearchOptions
from core.timeutils import ensure_utc, to_iso
from ingestion.base import PlatformAdapter, RawContent

logger = logging.getLogger(__name__)

BASE_URL = "https://www.googleapis.com/youtube/v3"


class YouTubeAdapter(PlatformAdapter):
    platform_name = "youtube"
    rate_limit_per_hour = 400
    requires_auth = True
    max_results = 50

    def __init__(self, api_key: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self.api_key = api_key

    def has_credentials(self) -> bool:
        return bool(self.api_key)

    def _key(self) -> str:
        if not self.api_key:
            raise ConfigurationMissing("YOUTUBE_API_KEY is not configured")
        return self.api_key

    async def _statistics(self, video_ids: List[str]) -> Dict[str, Dict[str, Any]]:
        if not video_ids:
            return {}
        resp = await self._request(
            "GET",
            f"{BASE_URL}/videos",
            params={"part": "statistics", "id": ",".join(video_ids), "key": self._key()},
            context="statistics",
        )
        data = self._json(resp, "statistics")
        return {item.get("id"): item.get("statistics") or {} for item in data.get("items") or []}

    async def search(
        self,
        keyword: str,
        options: Union[SearchOptions, Mapping[str, Any], None] = None,
    ) -> List[RawContent]:
        clean, opts = self._prepare(keyword, options)
        params: Dict[str, Any] = {
            "part": "snippet",
            "q": clean,
            "type": "video",
            "maxResults": self._clamp_limit(opts.limit),
            "order": "date" if opts.sort_by == "date" else "relevance",
            "key": self._key(),
        }
        if opts.since:
            params["publishedAfter"] = to_iso(ensure_utc(opts.since))
        if opts.until:
            params["publishedBefore"] = to_iso(ensure_utc(opts.until))

        resp = await self._request("GET", f"{BASE_URL}/search", params=params, context="search")
        data = self._json(resp, "search")

        entries = [
            item for item in data.get("items") or []
            if isinstance(item.get("id"), dict) and item["id"].get("videoId")
        ]
        stats = await self._statistics([item["id"]["videoId"] for item in entries])

        results = []
        for item in entries:
            video_id = item["id"]["videoId"]
            results.append(self.parse_video(video_id, item.get("snippet") or {}, stats.get(video_id, {})))
        return results[:opts.limit]

    async def get_content(self, content_id: str) -> Optional[RawContent]:
        video_id = content_id[len("youtube_"):] if content_id.startswith("youtube_") else content_id
        resp = await self._request(
            "GET",
            f"{BASE_URL}/videos",
            params={"part": "snippet,statistics", "id": video_id, "key": self._key()},
            context="get_content",
            allow_not_found=True,
        )
        if resp is None:
            return None
        items = self._json(resp, "get_content").get("items") or []
        if not items:
            return None
        item = items[0]
        return self.parse_video(video_id, item.get("snippet") or {}, item.get("statistics") or {})

    @staticmethod
    def parse_video(video_id: str, snippet: Dict[str, Any], statistics: Dict[str, Any]) -> RawContent:
        title = snippet.get("title") or ""
        description = snippet.get("description") or ""
        return RawContent(
            id=f"youtube_{video_id}",
            content=f"{title}\n\n{description}" if description else title,
            author=snippet.get("channelTitle") or "unknown",
            url=f"https://www.youtube.com/watch?v={video_id}",
            timestamp=snippet.get("publishedAt"),
            engagement={
                "likes": statistics.get("likeCount", 0),
                "comments": statistics.get("commentCount", 0),
                "views": statistics.get("viewCount", 0),
            },
            metadata={
                "channel_id": snippet.get("channelId"),
                "channel_title": snippet.get("channelTitle"),
                "thumbnail": ((snippet.get("thumbnails") or {}).get("high") or {}).get("url"),
            },
        )
