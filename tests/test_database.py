from datetime import timedelta

import pytest

from conftest import NOW, make_conversation
from core.entities import Keyword, MonitoringJob
from core.errors import PersistenceError
from services.database import Database


class TestKeywords:
    @pytest.mark.asyncio
    async def test_round_trip_and_activation(self, db, keyword):
        stored = await db.get_keyword("kw-1", "tenant-1")
        assert stored == keyword

        assert await db.set_keyword_active("kw-1", "tenant-1", True) is True
        assert (await db.get_keyword("kw-1", "tenant-1")).is_active is True
        assert await db.set_keyword_active("missing", "tenant-1", True) is False

    @pytest.mark.asyncio
    async def test_keywords_are_tenant_scoped(self, db, keyword):
        assert await db.get_keyword("kw-1", "tenant-2") is None
        await db.upsert_keyword(Keyword(id="kw-1", tenant_id="tenant-2", term="other"))
        assert (await db.get_keyword("kw-1", "tenant-1")).term == "acme widgets"


class TestConversations:
    @pytest.mark.asyncio
    async def test_upsert_is_last_write_wins(self, db):
        await db.upsert_conversations([make_conversation("reddit_1", content="first", likes=1)])
        await db.upsert_conversations([make_conversation("reddit_1", content="second", likes=9)])

        rows = await db.get_conversations("tenant-1")
        assert len(rows) == 1
        assert rows[0].content == "second"
        assert rows[0].engagement.likes == 9

    @pytest.mark.asyncio
    async def test_same_id_in_other_tenant_is_separate(self, db):
        await db.upsert_conversations([
            make_conversation("reddit_1", tenant_id="tenant-1"),
            make_conversation("reddit_1", tenant_id="tenant-2"),
        ])
        assert len(await db.get_conversations("tenant-1")) == 1
        assert len(await db.get_conversations("tenant-2")) == 1

    @pytest.mark.asyncio
    async def test_enrichment_survives_rescan(self, db):
        await db.upsert_conversations([make_conversation("reddit_1")])
        assert await db.update_enrichment("tenant-1", "reddit_1", sentiment="negative", tags=["complaint"]) is True

        await db.upsert_conversations([make_conversation("reddit_1", content="edited")])

        stored = await db.get_conversation("tenant-1", "reddit_1")
        assert stored.content == "edited"
        assert stored.sentiment == "negative"
        assert stored.tags == ["complaint"]

    @pytest.mark.asyncio
    async def test_update_enrichment_missing(self, db):
        assert await db.update_enrichment("tenant-1", "nope", sentiment="positive") is False

    @pytest.mark.asyncio
    async def test_filters(self, db):
        await db.upsert_conversations([
            make_conversation("a", platform="reddit", timestamp=NOW - timedelta(days=3), keywords=["acme"], sentiment="positive"),
            make_conversation("b", platform="twitter", timestamp=NOW - timedelta(days=1), keywords=["acme", "widgets"]),
            make_conversation("c", platform="news", timestamp=NOW, keywords=["widgets"], sentiment="positive"),
        ])

        async def ids(**filters):
            return [c.id for c in await db.get_conversations("tenant-1", **filters)]

        assert await ids() == ["a", "b", "c"]
        assert await ids(start=NOW - timedelta(days=2)) == ["b", "c"]
        assert await ids(end=NOW - timedelta(days=1)) == ["a", "b"]
        assert await ids(platforms=["reddit", "news"]) == ["a", "c"]
        assert await ids(sentiment="positive") == ["a", "c"]
        assert await ids(keyword="Widgets") == ["b", "c"]
        assert await ids(limit=2) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_round_trip_fields(self, db):
        original = make_conversation("x", platform="twitter", content="hello", likes=3, shares=2, comments=1, keywords=["hello"])
        original.metadata = {"language": "en", "verified": True}
        await db.upsert_conversations([original])

        stored = await db.get_conversation("tenant-1", "x")
        assert stored == original

    @pytest.mark.asyncio
    async def test_empty_batch(self, db):
        assert await db.upsert_conversations([]) == 0


class TestJobs:
    def _job(self, keyword_id="kw-1", next_run=NOW, is_active=True, tenant_id="tenant-1"):
        return MonitoringJob(
            keyword_id=keyword_id,
            tenant_id=tenant_id,
            platforms=["reddit"],
            frequency="hourly",
            is_active=is_active,
            next_run=next_run,
        )

    @pytest.mark.asyncio
    async def test_due_jobs(self, db):
        await db.upsert_job(self._job("late", next_run=NOW - timedelta(hours=2)))
        await db.upsert_job(self._job("now", next_run=NOW))
        await db.upsert_job(self._job("later", next_run=NOW + timedelta(minutes=1)))
        await db.upsert_job(self._job("off", next_run=NOW - timedelta(hours=5), is_active=False))

        due = await db.get_due_jobs(NOW)
        assert [j.keyword_id for j in due] == ["late", "now"]
        assert [j.keyword_id for j in await db.get_due_jobs(NOW, limit=1)] == ["late"]

    @pytest.mark.asyncio
    async def test_record_run_and_deactivate(self, db):
        await db.upsert_job(self._job())
        assert await db.record_job_run("kw-1", "tenant-1", NOW, NOW + timedelta(hours=1), "boom") is True

        job = await db.get_job("kw-1", "tenant-1")
        assert job.last_run == NOW
        assert job.next_run == NOW + timedelta(hours=1)
        assert job.last_error == "boom"

        assert await db.deactivate_job("kw-1", "tenant-1") is True
        assert (await db.get_job("kw-1", "tenant-1")).is_active is False
        assert await db.record_job_run("missing", "tenant-1", NOW, NOW) is False

    @pytest.mark.asyncio
    async def test_upsert_keeps_last_run(self, db):
        await db.upsert_job(self._job())
        await db.record_job_run("kw-1", "tenant-1", NOW, NOW + timedelta(hours=1))

        await db.upsert_job(self._job(next_run=NOW + timedelta(minutes=5)))

        job = await db.get_job("kw-1", "tenant-1")
        assert job.last_run == NOW
        assert job.next_run == NOW + timedelta(minutes=5)

    @pytest.mark.asyncio
    async def test_jobs_for_tenant(self, db):
        await db.upsert_job(self._job("b"))
        await db.upsert_job(self._job("a"))
        await db.upsert_job(self._job("c", tenant_id="tenant-2"))
        assert [j.keyword_id for j in await db.get_jobs("tenant-1")] == ["a", "b"]


class TestFailures:
    @pytest.mark.asyncio
    async def test_missing_tables(self, tmp_path):
        database = Database(str(tmp_path / "empty.db"))
        with pytest.raises(PersistenceError):
            await database.get_conversations("tenant-1")

    @pytest.mark.asyncio
    async def test_unopenable_path(self, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("x")
        database = Database(str(blocker / "monitor.db"))
        with pytest.raises(PersistenceError):
            await database.init_tables()

    @pytest.mark.asyncio
    async def test_creates_parent_directory(self, tmp_path):
        database = Database(str(tmp_path / "nested" / "dir" / "monitor.db"))
        await database.init_tables()
        assert (tmp_path / "nested" / "dir" / "monitor.db").exists()
