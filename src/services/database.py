import aiosqlite
import json
import os
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Iterable, List, Optional
import logging

from core.entities import Conversation, Engagement, Keyword, MonitoringJob
from core.errors import PersistenceError
from core.timeutils import parse_timestamp, to_iso, utcnow

logger = logging.getLogger(__name__)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return to_iso(value) if value else None


def _loads(value: Optional[str], default):
    if not value:
        return default
    try:
        return json.loads(value)
    except ValueError:
        return default


class Database:
    """
    aiosqlite store for keywords, conversations and monitoring jobs.
    Timestamps are stored as UTC ISO-8601 strings so they compare lexically.
    Any sqlite failure surfaces as PersistenceError.
    """

    def __init__(self, path: str):
        self.path = path

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[aiosqlite.Connection]:
        try:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            conn = await aiosqlite.connect(self.path)
        except (aiosqlite.Error, OSError) as e:
            raise PersistenceError(f"Cannot open database {self.path}: {e}") from e
        try:
            conn.row_factory = aiosqlite.Row
            await conn.execute("PRAGMA journal_mode=WAL;")
            await conn.execute("PRAGMA foreign_keys=ON;")
            yield conn
        except aiosqlite.Error as e:
            raise PersistenceError(f"Database error: {e}") from e
        finally:
            await conn.close()

    async def execute(self, query: str, params: tuple = ()) -> int:
        async with self.connect() as conn:
            cursor = await conn.execute(query, params)
            await conn.commit()
            return cursor.rowcount

    async def fetchone(self, query: str, params: tuple = ()):
        async with self.connect() as conn:
            cursor = await conn.execute(query, params)
            return await cursor.fetchone()

    async def fetchall(self, query: str, params: tuple = ()):
        async with self.connect() as conn:
            cursor = await conn.execute(query, params)
            return await cursor.fetchall()

    async def init_tables(self) -> None:
        """Initialize database tables for keywords, conversations and monitoring jobs."""
        async with self.connect() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS keywords (
                    id TEXT NOT NULL,
                    tenant_id TEXT NOT NULL,
                    term TEXT NOT NULL,
                    platforms TEXT NOT NULL DEFAULT '[]',
                    monitoring_frequency TEXT NOT NULL DEFAULT 'hourly',
                    is_active INTEGER NOT NULL DEFAULT 0,
                    updated_at TEXT,
                    PRIMARY KEY (id, tenant_id)
                )
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS conversations (
                    id TEXT NOT NULL,
                    tenant_id TEXT NOT NULL,
                    keyword_id TEXT,
                    platform TEXT NOT NULL,
                    content TEXT NOT NULL,
                    author TEXT NOT NULL,
                    url TEXT NOT NULL,
                    timestamp TEXT NOT NULL,
                    likes INTEGER NOT NULL DEFAULT 0,
                    shares INTEGER NOT NULL DEFAULT 0,
                    comments INTEGER NOT NULL DEFAULT 0,
                    metadata TEXT NOT NULL DEFAULT '{}',
                    keywords TEXT NOT NULL DEFAULT '[]',
                    sentiment TEXT,
                    tags TEXT NOT NULL DEFAULT '[]',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (tenant_id, id)
                )
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_conversations_tenant_time ON conversations(tenant_id, timestamp)
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS monitoring_jobs (
                    keyword_id TEXT NOT NULL,
                    tenant_id TEXT NOT NULL,
                    platforms TEXT NOT NULL DEFAULT '[]',
                    frequency TEXT NOT NULL DEFAULT 'hourly',
                    is_active INTEGER NOT NULL DEFAULT 1,
                    last_run TEXT,
                    next_run TEXT,
                    last_error TEXT,
                    PRIMARY KEY (keyword_id, tenant_id)
                )
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_monitoring_jobs_due ON monitoring_jobs(is_active, next_run)
            """)
            await conn.commit()
            logger.info("Database tables initialized")

    # Keywords

    async def upsert_keyword(self, keyword: Keyword) -> None:
        await self.execute(
            """
            INSERT INTO keywords (id, tenant_id, term, platforms, monitoring_frequency, is_active, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id, tenant_id) DO UPDATE SET
                term = excluded.term,
                platforms = excluded.platforms,
                monitoring_frequency = excluded.monitoring_frequency,
                is_active = excluded.is_active,
                updated_at = excluded.updated_at
            """,
            (
                keyword.id,
                keyword.tenant_id,
                keyword.term,
                json.dumps(keyword.platforms),
                keyword.monitoring_frequency,
                int(keyword.is_active),
                to_iso(utcnow()),
            ),
        )

    async def get_keyword(self, keyword_id: str, tenant_id: str) -> Optional[Keyword]:
        row = await self.fetchone(
            "SELECT * FROM keywords WHERE id = ? AND tenant_id = ?",
            (keyword_id, tenant_id),
        )
        if row is None:
            return None
        return Keyword(
            id=row["id"],
            tenant_id=row["tenant_id"],
            term=row["term"],
            platforms=_loads(row["platforms"], []),
            monitoring_frequency=row["monitoring_frequency"],
            is_active=bool(row["is_active"]),
        )

    async def set_keyword_active(self, keyword_id: str, tenant_id: str, is_active: bool) -> bool:
        updated = await self.execute(
            "UPDATE keywords SET is_active = ?, updated_at = ? WHERE id = ? AND tenant_id = ?",
            (int(is_active), to_iso(utcnow()), keyword_id, tenant_id),
        )
        return updated > 0

    # Conversations

    async def upsert_conversations(self, conversations: Iterable[Conversation]) -> int:
        """
        Insert or replace by (tenant_id, id), last write wins. Enrichment
        (sentiment, tags) already stored is kept when the new row has none.
        """
        now = to_iso(utcnow())
        rows = [
            (
                c.id,
                c.tenant_id,
                c.keyword_id,
                c.platform,
                c.content,
                c.author,
                c.url,
                to_iso(c.timestamp),
                c.engagement.likes,
                c.engagement.shares,
                c.engagement.comments,
                json.dumps(c.metadata, default=str),
                json.dumps(c.keywords),
                c.sentiment,
                json.dumps(c.tags),
                now,
                now,
            )
            for c in conversations
        ]
        if not rows:
            return 0

        async with self.connect() as conn:
            await conn.executemany(
                """
                INSERT INTO conversations (
                    id, tenant_id, keyword_id, platform, content, author, url, timestamp,
                    likes, shares, comments, metadata, keywords, sentiment, tags, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(tenant_id, id) DO UPDATE SET
                    keyword_id = excluded.keyword_id,
                    platform = excluded.platform,
                    content = excluded.content,
                    author = excluded.author,
                    url = excluded.url,
                    timestamp = excluded.timestamp,
                    likes = excluded.likes,
                    shares = excluded.shares,
                    comments = excluded.comments,
                    metadata = excluded.metadata,
                    keywords = excluded.keywords,
                    sentiment = COALESCE(excluded.sentiment, conversations.sentiment),
                    tags = CASE WHEN excluded.tags = '[]' THEN conversations.tags ELSE excluded.tags END,
                    updated_at = excluded.updated_at
                """,
                rows,
            )
            await conn.commit()
        return len(rows)

    async def get_conversation(self, tenant_id: str, conversation_id: str) -> Optional[Conversation]:
        row = await self.fetchone(
            "SELECT * FROM conversations WHERE tenant_id = ? AND id = ?",
            (tenant_id, conversation_id),
        )
        return self._to_conversation(row) if row else None

    async def get_conversations(
        self,
        tenant_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        platforms: Optional[List[str]] = None,
        sentiment: Optional[str] = None,
        keyword: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Conversation]:
        """Conversations for a tenant, oldest first."""
        clauses = ["tenant_id = ?"]
        params: list = [tenant_id]

        if start:
            clauses.append("timestamp >= ?")
            params.append(to_iso(start))
        if end:
            clauses.append("timestamp <= ?")
            params.append(to_iso(end))
        if platforms:
            clauses.append(f"platform IN ({', '.join('?' for _ in platforms)})")
            params.extend(platforms)
        if sentiment:
            clauses.append("sentiment = ?")
            params.append(sentiment)
        if keyword:
            clauses.append("EXISTS (SELECT 1 FROM json_each(conversations.keywords) WHERE value = ?)")
            params.append(keyword.lower())

        query = f"SELECT * FROM conversations WHERE {' AND '.join(clauses)} ORDER BY timestamp ASC, id ASC"
        if limit:
            query += " LIMIT ?"
            params.append(limit)

        rows = await self.fetchall(query, tuple(params))
        return [self._to_conversation(row) for row in rows]

    async def update_enrichment(
        self,
        tenant_id: str,
        conversation_id: str,
        sentiment: Optional[str] = None,
        tags: Optional[List[str]] = None,
    ) -> bool:
        """Set sentiment and/or tags on a stored conversation. False when it does not exist."""
        assignments = ["updated_at = ?"]
        params: list = [to_iso(utcnow())]
        if sentiment is not None:
            assignments.append("sentiment = ?")
            params.append(sentiment)
        if tags is not None:
            assignments.append("tags = ?")
            params.append(json.dumps(tags))
        params.extend([tenant_id, conversation_id])

        updated = await self.execute(
            f"UPDATE conversations SET {', '.join(assignments)} WHERE tenant_id = ? AND id = ?",
            tuple(params),
        )
        return updated > 0

    @staticmethod
    def _to_conversation(row) -> Conversation:
        return Conversation(
            id=row["id"],
            tenant_id=row["tenant_id"],
            keyword_id=row["keyword_id"],
            platform=row["platform"],
            content=row["content"],
            author=row["author"],
            url=row["url"],
            timestamp=parse_timestamp(row["timestamp"]),
            engagement=Engagement(likes=row["likes"], shares=row["shares"], comments=row["comments"]),
            metadata=_loads(row["metadata"], {}),
            keywords=_loads(row["keywords"], []),
            sentiment=row["sentiment"],
            tags=_loads(row["tags"], []),
        )

    # Monitoring jobs

    async def upsert_job(self, job: MonitoringJob) -> None:
        await self.execute(
            """
            INSERT INTO monitoring_jobs (keyword_id, tenant_id, platforms, frequency, is_active, last_run, next_run, last_error)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(keyword_id, tenant_id) DO UPDATE SET
                platforms = excluded.platforms,
                frequency = excluded.frequency,
                is_active = excluded.is_active,
                last_run = COALESCE(excluded.last_run, monitoring_jobs.last_run),
                next_run = excluded.next_run,
                last_error = excluded.last_error
            """,
            (
                job.keyword_id,
                job.tenant_id,
                json.dumps(job.platforms),
                job.frequency,
                int(job.is_active),
                _iso(job.last_run),
                _iso(job.next_run),
                job.last_error,
            ),
        )

    async def get_job(self, keyword_id: str, tenant_id: str) -> Optional[MonitoringJob]:
        row = await self.fetchone(
            "SELECT * FROM monitoring_jobs WHERE keyword_id = ? AND tenant_id = ?",
            (keyword_id, tenant_id),
        )
        return self._to_job(row) if row else None

    async def get_jobs(self, tenant_id: str) -> List[MonitoringJob]:
        rows = await self.fetchall(
            "SELECT * FROM monitoring_jobs WHERE tenant_id = ? ORDER BY keyword_id",
            (tenant_id,),
        )
        return [self._to_job(row) for row in rows]

    async def deactivate_job(self, keyword_id: str, tenant_id: str) -> bool:
        updated = await self.execute(
            "UPDATE monitoring_jobs SET is_active = 0 WHERE keyword_id = ? AND tenant_id = ?",
            (keyword_id, tenant_id),
        )
        return updated > 0

    async def record_job_run(
        self,
        keyword_id: str,
        tenant_id: str,
        last_run: datetime,
        next_run: datetime,
        last_error: Optional[str] = None,
    ) -> bool:
        updated = await self.execute(
            "UPDATE monitoring_jobs SET last_run = ?, next_run = ?, last_error = ? WHERE keyword_id = ? AND tenant_id = ?",
            (to_iso(last_run), to_iso(next_run), last_error, keyword_id, tenant_id),
        )
        return updated > 0

    async def get_due_jobs(self, now: Optional[datetime] = None, limit: int = 50) -> List[MonitoringJob]:
        """Active jobs whose next_run is not in the future, most overdue first."""
        now = now or utcnow()
        rows = await self.fetchall(
            """SELECT * FROM monitoring_jobs
               WHERE is_active = 1 AND next_run IS NOT NULL AND next_run <= ?
               ORDER BY next_run ASC
               LIMIT ?""",
            (to_iso(now), limit),
        )
        return [self._to_job(row) for row in rows]

    @staticmethod
    def _to_job(row) -> MonitoringJob:
        return MonitoringJob(
            keyword_id=row["keyword_id"],
            tenant_id=row["tenant_id"],
            platforms=_loads(row["platforms"], []),
            frequency=row["frequency"],
            is_active=bool(row["is_active"]),
            last_run=parse_timestamp(row["last_run"]),
            next_run=parse_timestamp(row["next_run"]),
            last_error=row["last_error"],
        )
