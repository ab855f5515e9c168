"""
Shared fixtures: a fresh SQLite store per test, a controllable clock and
helpers for faking provider HTTP APIs with httpx.MockTransport.
"""
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List

import httpx
import pytest
import pytest_asyncio

from core.entities import Conversation, Engagement, Keyword
from services.database import Database

NOW = datetime(2024, 1, 8, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = NOW):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class Recorder:
    """Routes requests to a handler and keeps every request it saw."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.handler = handler
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def json_response(payload: Any, status: int = 200, headers: Dict[str, str] | None = None) -> httpx.Response:
    return httpx.Response(status, content=json.dumps(payload), headers={"Content-Type": "application/json", **(headers or {})})


def make_conversation(
    id: str,
    platform: str = "reddit",
    content: str = "",
    timestamp: datetime = NOW,
    tenant_id: str = "tenant-1",
    keywords: List[str] | None = None,
    sentiment: str | None = None,
    likes: int = 0,
    shares: int = 0,
    comments: int = 0,
) -> Conversation:
    return Conversation(
        id=id,
        tenant_id=tenant_id,
        keyword_id="kw-1",
        platform=platform,
        content=content,
        author="someone",
        url=f"https://example.com/{id}",
        timestamp=timestamp,
        engagement=Engagement(likes=likes, shares=shares, comments=comments),
        keywords=keywords or [],
        sentiment=sentiment,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def db(tmp_path) -> Database:
    database = Database(str(tmp_path / "monitor.db"))
    await database.init_tables()
    return database


@pytest_asyncio.fixture
async def keyword(db: Database) -> Keyword:
    kw = Keyword(
        id="kw-1",
        tenant_id="tenant-1",
        term="acme widgets",
        platforms=["reddit", "twitter"],
        monitoring_frequency="hourly",
    )
    await db.upsert_keyword(kw)
    return kw
