"""
Ingest mentions from Brand24 projects
"""
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from core.sentiment import from_unit_score
from core.timeutils import utcnow
from ingestion.advanced import AdvancedPlatformAdapter, ConversationData, ConversationEngagement
from ingestion.auth import StaticBearer

logger = logging.getLogger(__name__)

BASE_URL = "https://api.brand24.com/v2"


class Brand24Adapter(AdvancedPlatformAdapter):
    """
    Brand24 tracks keywords as projects: each keyword is matched to an
    existing project or a new one is created before mentions are read.
    Sentiment arrives as a score in [-1, 1].
    """

    platform_name = "brand24"

    def __init__(self, api_token: Optional[str] = None, **kwargs):
        kwargs.setdefault("token_provider", StaticBearer(api_token, platform=self.platform_name))
        super().__init__(**kwargs)
        self.api_token = api_token

    def has_credentials(self) -> bool:
        return bool(self.api_token)

    async def get_projects(self) -> List[Dict[str, Any]]:
        data = await self._get(f"{BASE_URL}/projects", context="get_projects")
        return data.get("results") or []

    async def create_project(self, keyword: str) -> Dict[str, Any]:
        data = await self._post(
            f"{BASE_URL}/projects",
            json={"name": f"Monitor: {keyword}", "keyword": keyword},
            context="create_project",
        )
        return data.get("result") or data

    async def search_mentions(self, project_id: str, limit: int = 50) -> List[ConversationData]:
        params = {
            "project": project_id,
            "limit": limit,
            "date_from": self.format_date(utcnow() - timedelta(hours=24)),
        }
        data = await self._get(f"{BASE_URL}/mentions", params=params, context="search_mentions")
        return [self.transform(m) for m in data.get("results") or [] if m.get("id") is not None]

    async def monitor(self, keywords: List[str]) -> List[ConversationData]:
        projects = await self.get_projects()

        async def fetch(keyword: str) -> List[ConversationData]:
            project = next(
                (p for p in projects if keyword.lower() in str(p.get("keyword", "")).lower()),
                None,
            )
            if project is None:
                project = await self.create_project(keyword)
                projects.append(project)
            return await self.search_mentions(str(project.get("id")))

        return await self._collect(keywords, fetch)

    def transform(self, mention: Dict[str, Any]) -> ConversationData:
        return ConversationData(
            id=f"brand24_{mention['id']}",
            content=mention.get("snippet") or mention.get("title") or "",
            title=mention.get("title"),
            author=mention.get("author") or "unknown",
            platform=self.platform_name,
            url=mention.get("url") or "",
            published_at=self.parse_date(mention.get("date")),
            engagement=ConversationEngagement(reach=self.count(mention.get("reach"))),
            sentiment=from_unit_score(mention.get("sentiment"), self.thresholds),
            platform_specific={
                "brand24_id": mention["id"],
                "source_type": mention.get("source_type"),
                "influence_score": mention.get("influence_score"),
            },
            metadata={
                "source": "brand24",
                "source_type": mention.get("source_type"),
                "country": mention.get("country"),
                "language": mention.get("language"),
                "tags": mention.get("tags") or [],
            },
        )
