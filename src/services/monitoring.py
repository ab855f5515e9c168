"""
Keyword monitoring: fan a keyword out to platform adapters, normalize and
store what they return, and keep the per-keyword schedule up to date.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from core.entities import Conversation, Keyword, MonitoringJob, MonitoringStatus, NormalizedContent, ScanResult
from core.errors import KeywordNotFound, MonitoringError, PersistenceError
from core.schemas import SearchOptions
from core.sentiment import SENTIMENTS
from core.timeutils import parse_timestamp, utcnow
from ingestion.base import PlatformAdapter, RawContent
from processing.normalizer import ContentNormalizer, extract_keywords
from services.database import Database
from services.rate_limiter import RateLimiter
from services.scheduler import interval_for, next_run_time, retry_time

logger = logging.getLogger(__name__)


class MonitoringService:
    """
    Entry point for scans. A failing platform is reported in its own
    ScanResult and never stops the other platforms or the bookkeeping.
    """

    def __init__(
        self,
        db: Database,
        adapters: Dict[str, PlatformAdapter],
        rate_limiter: Optional[RateLimiter] = None,
        normalizer: Optional[ContentNormalizer] = None,
        max_concurrency: int = 4,
        search_limit: int = 50,
        lookback_hours: int = 24,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.adapters = adapters
        self.rate_limiter = rate_limiter or RateLimiter()
        self.normalizer = normalizer or ContentNormalizer()
        self.max_concurrency = max(1, max_concurrency)
        self.search_limit = search_limit
        self.lookback = timedelta(hours=lookback_hours)
        self._clock = clock

        for name, adapter in adapters.items():
            if not self.rate_limiter.has_limit(name):
                self.rate_limiter.set_limit(name, adapter.get_rate_limit())

    async def _require_keyword(self, keyword_id: str, tenant_id: str) -> Keyword:
        keyword = await self.db.get_keyword(keyword_id, tenant_id)
        if keyword is None:
            raise KeywordNotFound(keyword_id, tenant_id)
        return keyword

    async def start_monitoring(self, keyword_id: str, tenant_id: str) -> MonitoringJob:
        """Activate the keyword and schedule its job to run immediately."""
        keyword = await self._require_keyword(keyword_id, tenant_id)
        await self.db.set_keyword_active(keyword_id, tenant_id, True)

        job = MonitoringJob(
            keyword_id=keyword_id,
            tenant_id=tenant_id,
            platforms=list(keyword.platforms),
            frequency=keyword.monitoring_frequency,
            is_active=True,
            next_run=self._clock(),
        )
        await self.db.upsert_job(job)
        logger.info(
            f"Started monitoring '{keyword.term}'",
            extra={"tenant_id": tenant_id, "keyword_id": keyword_id},
        )
        return job

    async def stop_monitoring(self, keyword_id: str, tenant_id: str) -> None:
        keyword = await self._require_keyword(keyword_id, tenant_id)
        await self.db.set_keyword_active(keyword_id, tenant_id, False)
        await self.db.deactivate_job(keyword_id, tenant_id)
        logger.info(
            f"Stopped monitoring '{keyword.term}'",
            extra={"tenant_id": tenant_id, "keyword_id": keyword_id},
        )

    async def scan_keyword(
        self,
        keyword_id: str,
        tenant_id: str,
        platforms: Optional[List[str]] = None,
    ) -> List[ScanResult]:
        """
        Search every requested platform (default: the keyword's own list)
        and return one ScanResult per platform, in request order.
        """
        keyword = await self._require_keyword(keyword_id, tenant_id)
        targets = list(platforms) if platforms else list(keyword.platforms)
        scanned_at = self._clock()

        job = await self.db.get_job(keyword_id, tenant_id)
        # overlap the previous window so a platform that failed last time is asked again
        since = scanned_at - self.lookback
        if job and job.last_run and job.last_run < since:
            since = job.last_run
        options = SearchOptions(limit=self.search_limit, since=since, sort_by="date")

        semaphore = asyncio.Semaphore(self.max_concurrency)
        results = await asyncio.gather(*[
            self._scan_platform(keyword, platform, options, scanned_at, semaphore)
            for platform in targets
        ])

        await self._update_schedule(keyword, job, results, scanned_at)

        found = sum(len(r.mentions) for r in results)
        failed = sum(1 for r in results if r.errors)
        logger.info(
            f"Scanned '{keyword.term}' on {len(results)} platforms: {found} mentions, {failed} failed",
            extra={"tenant_id": tenant_id, "keyword_id": keyword_id},
        )
        return results

    async def _scan_platform(
        self,
        keyword: Keyword,
        platform: str,
        options: SearchOptions,
        scanned_at: datetime,
        semaphore: asyncio.Semaphore,
    ) -> ScanResult:
        log_extra = {"platform": platform, "tenant_id": keyword.tenant_id, "keyword_id": keyword.id}

        adapter = self.adapters.get(platform)
        if adapter is None:
            return ScanResult(platform=platform, errors=[f"No adapter available for platform: {platform}"])

        if not self.rate_limiter.has_limit(platform):
            self.rate_limiter.set_limit(platform, adapter.get_rate_limit())

        # check and record in one step so concurrent scans cannot overshoot the quota
        status = self.rate_limiter.acquire(platform, keyword.tenant_id)
        if not status.allowed:
            logger.warning(f"Rate limit exceeded for {platform}", extra=log_extra)
            return ScanResult(
                platform=platform,
                errors=[f"Rate limit exceeded for {platform}, retry after {status.retry_after}s"],
            )

        try:
            async with semaphore:
                raw_items = await adapter.search(keyword.term, options)

            mentions = [
                self.normalizer.normalize(raw, platform, ingested_at=scanned_at)
                for raw in raw_items
            ]
            await self.db.upsert_conversations(
                self._to_conversation(mention, raw, keyword)
                for mention, raw in zip(mentions, raw_items)
            )
            return ScanResult(platform=platform, mentions=mentions)

        except Exception as e:
            logger.error(f"Error scanning {platform} for '{keyword.term}': {e}", extra=log_extra)
            return ScanResult(platform=platform, errors=[str(e) or type(e).__name__])

    @staticmethod
    def _to_conversation(mention: NormalizedContent, raw: RawContent, keyword: Keyword) -> Conversation:
        sentiment = (raw.metadata or {}).get("sentiment")
        return Conversation(
            id=mention.id,
            tenant_id=keyword.tenant_id,
            keyword_id=keyword.id,
            platform=mention.platform,
            content=mention.content,
            author=mention.author,
            url=mention.url,
            timestamp=parse_timestamp(mention.timestamp),
            engagement=mention.engagement,
            metadata=mention.metadata,
            keywords=extract_keywords(mention.content),
            sentiment=sentiment if sentiment in SENTIMENTS else None,
        )

    async def _update_schedule(
        self,
        keyword: Keyword,
        job: Optional[MonitoringJob],
        results: List[ScanResult],
        scanned_at: datetime,
    ) -> None:
        all_failed = bool(results) and all(r.errors for r in results)
        if all_failed:
            next_run = retry_time(keyword.monitoring_frequency, scanned_at)
            last_error = "; ".join(e for r in results for e in r.errors)
        else:
            next_run = next_run_time(keyword.monitoring_frequency, scanned_at)
            last_error = None

        try:
            if job is None:
                # manual scan of an unmonitored keyword: keep an inactive job for status
                await self.db.upsert_job(MonitoringJob(
                    keyword_id=keyword.id,
                    tenant_id=keyword.tenant_id,
                    platforms=list(keyword.platforms),
                    frequency=keyword.monitoring_frequency,
                    is_active=False,
                    last_run=scanned_at,
                    next_run=next_run,
                    last_error=last_error,
                ))
            else:
                await self.db.record_job_run(keyword.id, keyword.tenant_id, scanned_at, next_run, last_error)
        except PersistenceError as e:
            logger.error(
                f"Failed to update schedule for '{keyword.term}': {e}",
                extra={"tenant_id": keyword.tenant_id, "keyword_id": keyword.id},
            )

    async def get_monitoring_status(self, tenant_id: str) -> List[MonitoringStatus]:
        statuses = []
        now = self._clock()
        for job in await self.db.get_jobs(tenant_id):
            keyword = await self.db.get_keyword(job.keyword_id, tenant_id)

            next_scan = None
            if job.is_active:
                next_scan = job.next_run
                if next_scan is None:
                    next_scan = job.last_run + interval_for(job.frequency) if job.last_run else now

            statuses.append(MonitoringStatus(
                keyword_id=job.keyword_id,
                keyword=keyword.term if keyword else job.keyword_id,
                is_active=job.is_active,
                last_scan=job.last_run,
                platforms=list(job.platforms),
                next_scan=next_scan,
            ))
        return statuses

    async def run_due_jobs(self, limit: int = 50) -> Dict[str, int]:
        """
        Scan every active job whose next run is due. Jobs whose keyword no
        longer exists are deactivated.
        """
        jobs = await self.db.get_due_jobs(self._clock(), limit)
        processed = 0
        errors = 0

        for job in jobs:
            try:
                await self.scan_keyword(job.keyword_id, job.tenant_id, job.platforms or None)
                processed += 1
            except KeywordNotFound:
                errors += 1
                logger.warning(
                    f"Keyword {job.keyword_id} no longer exists, deactivating its job",
                    extra={"tenant_id": job.tenant_id, "keyword_id": job.keyword_id},
                )
                await self.db.deactivate_job(job.keyword_id, job.tenant_id)
            except MonitoringError as e:
                errors += 1
                logger.error(
                    f"Scheduled scan failed for keyword {job.keyword_id}: {e}",
                    extra={"tenant_id": job.tenant_id, "keyword_id": job.keyword_id},
                )

        logger.info(f"Processed {processed} due monitoring jobs with {errors} errors")
        return {"processed": processed, "errors": errors, "total": len(jobs)}
