"""
Ingest mentions from Brandwatch Consumer Research
"""
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from core.errors import ProviderError
from core.sentiment import from_five_point_score
from core.timeutils import to_iso, utcnow
from ingestion.advanced import AdvancedPlatformAdapter, ConversationData, ConversationEngagement
from ingestion.auth import OAuth2TokenExchange

logger = logging.getLogger(__name__)

BASE_URL = "https://api.brandwatch.com/projects"
TOKEN_URL = "https://api.brandwatch.com/oauth/token"


class BrandwatchAdapter(AdvancedPlatformAdapter):
    """
    Username/password credentials are exchanged for a bearer token that is
    cached until it expires. Sentiment is scored in [-5, 5].
    """

    platform_name = "brandwatch"

    def __init__(
        self,
        username: Optional[str] = None,
        password: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        project_id: Optional[str] = None,
        **kwargs,
    ):
        kwargs.setdefault(
            "token_provider",
            OAuth2TokenExchange(
                TOKEN_URL,
                grant_type="password",
                client_id=client_id,
                client_secret=client_secret,
                username=username,
                password=password,
                platform=self.platform_name,
                transport=kwargs.get("transport"),
            ),
        )
        super().__init__(**kwargs)
        self.username = username
        self.password = password
        self.client_id = client_id
        self.project_id = project_id

    def has_credentials(self) -> bool:
        return bool(self.username and self.password and self.client_id)

    async def get_projects(self) -> List[Dict[str, Any]]:
        data = await self._get(BASE_URL, context="get_projects")
        return data.get("results") or []

    async def _resolve_project(self) -> str:
        if self.project_id:
            return self.project_id
        projects = await self.get_projects()
        if not projects:
            raise ProviderError("brandwatch error: no projects available", platform=self.platform_name)
        self.project_id = str(projects[0].get("id"))
        return self.project_id

    async def search_mentions(self, project_id: str, keyword: str, limit: int = 50) -> List[ConversationData]:
        now = utcnow()
        params = {
            "search": keyword,
            "limit": limit,
            "startDate": to_iso(now - timedelta(hours=24)),
            "endDate": to_iso(now),
            "orderBy": "date",
        }
        data = await self._get(f"{BASE_URL}/{project_id}/data/mentions", params=params, context="search_mentions")
        return [self.transform(m) for m in data.get("results") or [] if m.get("id") is not None]

    async def monitor(self, keywords: List[str]) -> List[ConversationData]:
        project_id = await self._resolve_project()

        async def fetch(keyword: str) -> List[ConversationData]:
            return await self.search_mentions(project_id, keyword)

        return await self._collect(keywords, fetch)

    def transform(self, mention: Dict[str, Any]) -> ConversationData:
        author = mention.get("author") or {}
        if not isinstance(author, dict):
            author = {"name": str(author)}
        source = mention.get("source") or {}
        engagement = mention.get("engagement") or {}

        return ConversationData(
            id=f"brandwatch_{mention['id']}",
            content=mention.get("content") or mention.get("title") or "",
            title=mention.get("title"),
            author=author.get("name") or "unknown",
            author_url=author.get("url"),
            platform=self.platform_name,
            url=mention.get("url") or "",
            published_at=self.parse_date(mention.get("date")),
            engagement=ConversationEngagement(
                reach=self.count(mention.get("reach")),
                likes=self.count(engagement.get("likes")),
                shares=self.count(engagement.get("shares")),
                comments=self.count(engagement.get("comments")),
            ),
            sentiment=from_five_point_score(mention.get("sentiment"), self.thresholds),
            platform_specific={
                "brandwatch_id": mention["id"],
                "source_type": source.get("type"),
                "source_name": source.get("name"),
                "author_followers": author.get("followers"),
            },
            metadata={
                "source": "brandwatch",
                "source_type": source.get("type"),
                "language": mention.get("language"),
                "tags": mention.get("tags") or [],
                "categories": mention.get("categories") or [],
            },
        )
