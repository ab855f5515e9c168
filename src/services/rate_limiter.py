"""
Sliding-window request admission per platform and tenant.

Pacing is advisory: providers enforce their own limits, the limiter only
keeps scans from tripping them needlessly and tells the orchestrator when
to back off.
"""
import asyncio
import logging
import math
import random
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, List, Optional

from core.timeutils import utcnow

logger = logging.getLogger(__name__)

USAGE_RETENTION = timedelta(hours=24)


@dataclass(frozen=True)
class RateLimitConfig:
    requests_per_hour: int
    burst_limit: Optional[int] = None  # requests per minute
    window_size_minutes: int = 60


@dataclass(frozen=True)
class RateLimitStatus:
    allowed: bool
    remaining_requests: int
    reset_time: datetime
    retry_after: Optional[float] = None  # seconds


DEFAULT_LIMITS: Dict[str, RateLimitConfig] = {
    "reddit": RateLimitConfig(requests_per_hour=600, burst_limit=60),
    "twitter": RateLimitConfig(requests_per_hour=300, burst_limit=30),
    "news": RateLimitConfig(requests_per_hour=1000, burst_limit=100),
    "forum": RateLimitConfig(requests_per_hour=300, burst_limit=30),
    "default": RateLimitConfig(requests_per_hour=100, burst_limit=10),
}


class RateLimiter:
    """
    Thread-safe store of request timestamps keyed by "platform:tenant".

    check_limit and record_request are separate so callers can record
    attempted requests; acquire performs both under one lock for
    concurrent scans.
    """

    def __init__(
        self,
        limits: Optional[Dict[str, RateLimitConfig]] = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._limits: Dict[str, RateLimitConfig] = dict(DEFAULT_LIMITS)
        if limits:
            self._limits.update(limits)
        self._usage: Dict[str, List[datetime]] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self._sleep = sleep

    @staticmethod
    def _key(platform: str, tenant_id: str) -> str:
        return f"{platform}:{tenant_id}"

    def get_limit(self, platform: str) -> RateLimitConfig:
        return self._limits.get(platform) or self._limits["default"]

    def has_limit(self, platform: str) -> bool:
        return platform in self._limits

    def set_limit(self, platform: str, config: RateLimitConfig) -> None:
        if config.requests_per_hour < 1:
            raise ValueError("requests_per_hour must be positive")
        with self._lock:
            self._limits[platform] = config

    def _pruned(self, key: str, window_start: datetime) -> List[datetime]:
        # caller holds the lock
        requests = [ts for ts in self._usage.get(key, []) if ts > window_start]
        self._usage[key] = requests
        return requests

    def _status(self, config: RateLimitConfig, requests: List[datetime], now: datetime) -> RateLimitStatus:
        window = timedelta(minutes=config.window_size_minutes)
        count = len(requests)
        allowed = count < config.requests_per_hour
        remaining = max(0, config.requests_per_hour - count)
        reset_time = (min(requests) + window) if requests else now

        retry_after = None
        if not allowed:
            retry_after = max(1, math.ceil((reset_time - now).total_seconds()))

        return RateLimitStatus(
            allowed=allowed,
            remaining_requests=remaining,
            reset_time=reset_time,
            retry_after=retry_after,
        )

    def check_limit(self, platform: str, tenant_id: str) -> RateLimitStatus:
        config = self.get_limit(platform)
        now = self._clock()
        window_start = now - timedelta(minutes=config.window_size_minutes)

        with self._lock:
            requests = self._pruned(self._key(platform, tenant_id), window_start)
            return self._status(config, requests, now)

    def record_request(self, platform: str, tenant_id: str) -> None:
        now = self._clock()
        with self._lock:
            self._usage.setdefault(self._key(platform, tenant_id), []).append(now)

    def acquire(self, platform: str, tenant_id: str) -> RateLimitStatus:
        """
        Check the window and, when allowed, record the request atomically.
        """
        config = self.get_limit(platform)
        now = self._clock()
        window_start = now - timedelta(minutes=config.window_size_minutes)
        key = self._key(platform, tenant_id)

        with self._lock:
            requests = self._pruned(key, window_start)
            status = self._status(config, requests, now)
            if status.allowed:
                requests.append(now)
                status = RateLimitStatus(
                    allowed=True,
                    remaining_requests=max(0, status.remaining_requests - 1),
                    reset_time=min(requests) + timedelta(minutes=config.window_size_minutes),
                )
            return status

    def get_usage_stats(self, platform: str, tenant_id: str) -> Dict[str, Optional[int]]:
        config = self.get_limit(platform)
        now = self._clock()
        last_hour = now - timedelta(hours=1)
        last_minute = now - timedelta(minutes=1)

        with self._lock:
            requests = list(self._usage.get(self._key(platform, tenant_id), []))

        in_hour = sum(1 for ts in requests if ts > last_hour)
        return {
            "requests_last_hour": in_hour,
            "requests_last_minute": sum(1 for ts in requests if ts > last_minute),
            "limit": config.requests_per_hour,
            "remaining": max(0, config.requests_per_hour - in_hour),
            "burst_limit": config.burst_limit,
        }

    def reset_usage(self, platform: Optional[str] = None, tenant_id: Optional[str] = None) -> None:
        """Forget recorded requests for one key, or for everything when called bare."""
        with self._lock:
            if platform is None and tenant_id is None:
                self._usage.clear()
                return
            if platform is not None and tenant_id is not None:
                self._usage.pop(self._key(platform, tenant_id), None)
                return
            for key in list(self._usage):
                key_platform, _, key_tenant = key.partition(":")
                if key_platform == platform or key_tenant == tenant_id:
                    del self._usage[key]

    def cleanup(self) -> int:
        """
        Drop timestamps older than 24 hours and empty keys.
        Returns the number of timestamps removed.
        """
        cutoff = self._clock() - USAGE_RETENTION
        removed = 0
        with self._lock:
            for key in list(self._usage):
                kept = [ts for ts in self._usage[key] if ts > cutoff]
                removed += len(self._usage[key]) - len(kept)
                if kept:
                    self._usage[key] = kept
                else:
                    del self._usage[key]
        if removed:
            logger.debug(f"Rate limiter cleanup removed {removed} stale entries")
        return removed

    def calculate_optimal_delay(self, platform: str) -> float:
        """
        Seconds to wait so requests spread evenly over the hour, plus up to
        one second of jitter. Never less than one second.
        """
        config = self.get_limit(platform)
        base = 3600.0 / config.requests_per_hour
        return max(1.0, base + random.random())

    async def wait_for_optimal_timing(self, platform: str, tenant_id: Optional[str] = None) -> float:
        """
        Sleep until the next request is sensible. When the tenant's window is
        exhausted the wait is the retry-after period instead of the pacing delay.
        """
        delay = self.calculate_optimal_delay(platform)
        if tenant_id is not None:
            status = self.check_limit(platform, tenant_id)
            if not status.allowed and status.retry_after:
                delay = status.retry_after
        await self._sleep(delay)
        return delay

    def can_use_burst(self, platform: str, tenant_id: str) -> bool:
        config = self.get_limit(platform)
        if not config.burst_limit:
            return False
        last_minute = self._clock() - timedelta(minutes=1)
        with self._lock:
            recent = sum(1 for ts in self._usage.get(self._key(platform, tenant_id), []) if ts > last_minute)
        return recent < config.burst_limit
