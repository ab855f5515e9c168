import threading
from datetime import timedelta

import pytest

from conftest import FakeClock
from services.rate_limiter import DEFAULT_LIMITS, RateLimitConfig, RateLimiter


@pytest.fixture
def limiter(clock):
    return RateLimiter({"tiny": RateLimitConfig(requests_per_hour=3, burst_limit=2)}, clock=clock)


class TestCheckLimit:
    def test_allowed_below_quota(self, limiter):
        for _ in range(2):
            limiter.record_request("tiny", "t1")
        status = limiter.check_limit("tiny", "t1")
        assert status.allowed is True
        assert status.remaining_requests == 1
        assert status.retry_after is None

    def test_denied_at_quota(self, limiter, clock):
        for _ in range(3):
            limiter.record_request("tiny", "t1")
            clock.advance(minutes=10)

        status = limiter.check_limit("tiny", "t1")
        assert status.allowed is False
        assert status.remaining_requests == 0
        # oldest request was 30 minutes ago, it leaves the window in 30 minutes
        assert status.retry_after == 30 * 60
        assert status.reset_time == clock.now + timedelta(minutes=30)

    def test_window_slides(self, limiter, clock):
        for _ in range(3):
            limiter.record_request("tiny", "t1")
        clock.advance(minutes=61)
        assert limiter.check_limit("tiny", "t1").allowed is True

    def test_tenants_are_isolated(self, limiter):
        for _ in range(3):
            limiter.record_request("tiny", "t1")
        assert limiter.check_limit("tiny", "t1").allowed is False
        assert limiter.check_limit("tiny", "t2").allowed is True

    def test_unknown_platform_uses_fallback(self, limiter):
        assert limiter.get_limit("somewhere") == DEFAULT_LIMITS["default"]
        assert limiter.has_limit("somewhere") is False

    def test_reset_time_is_now_without_history(self, limiter, clock):
        assert limiter.check_limit("tiny", "t1").reset_time == clock.now


class TestAcquire:
    def test_records_only_when_allowed(self, limiter):
        results = [limiter.acquire("tiny", "t1") for _ in range(5)]
        assert [r.allowed for r in results] == [True, True, True, False, False]
        assert results[0].remaining_requests == 2
        assert limiter.get_usage_stats("tiny", "t1")["requests_last_hour"] == 3

    def test_concurrent_acquire_never_overshoots(self, clock):
        limiter = RateLimiter({"busy": RateLimitConfig(requests_per_hour=50)}, clock=clock)
        granted = []

        def worker():
            for _ in range(20):
                if limiter.acquire("busy", "t1").allowed:
                    granted.append(1)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(granted) == 50


class TestMaintenance:
    def test_cleanup_drops_old_entries(self, limiter, clock):
        limiter.record_request("tiny", "t1")
        limiter.record_request("tiny", "t2")
        clock.advance(hours=25)
        limiter.record_request("tiny", "t2")

        assert limiter.cleanup() == 2
        assert limiter.get_usage_stats("tiny", "t1")["requests_last_hour"] == 0
        assert limiter.get_usage_stats("tiny", "t2")["requests_last_hour"] == 1

    def test_reset_usage_for_platform(self, limiter):
        limiter.record_request("tiny", "t1")
        limiter.record_request("reddit", "t1")
        limiter.reset_usage(platform="tiny")
        assert limiter.get_usage_stats("tiny", "t1")["requests_last_hour"] == 0
        assert limiter.get_usage_stats("reddit", "t1")["requests_last_hour"] == 1

    def test_set_limit_rejects_zero(self, limiter):
        with pytest.raises(ValueError):
            limiter.set_limit("tiny", RateLimitConfig(requests_per_hour=0))

    def test_burst(self, limiter, clock):
        assert limiter.can_use_burst("tiny", "t1") is True
        limiter.record_request("tiny", "t1")
        limiter.record_request("tiny", "t1")
        assert limiter.can_use_burst("tiny", "t1") is False
        clock.advance(minutes=2)
        assert limiter.can_use_burst("tiny", "t1") is True


class TestPacing:
    def test_optimal_delay_spreads_over_hour(self, limiter):
        delay = limiter.calculate_optimal_delay("tiny")
        assert 1200 <= delay <= 1201

    def test_optimal_delay_has_floor(self, clock):
        limiter = RateLimiter({"fast": RateLimitConfig(requests_per_hour=100_000)}, clock=clock)
        assert limiter.calculate_optimal_delay("fast") >= 1.0

    @pytest.mark.asyncio
    async def test_wait_uses_retry_after_when_exhausted(self):
        clock = FakeClock()
        slept = []

        async def fake_sleep(seconds):
            slept.append(seconds)

        limiter = RateLimiter({"tiny": RateLimitConfig(requests_per_hour=1)}, clock=clock, sleep=fake_sleep)
        limiter.record_request("tiny", "t1")
        clock.advance(minutes=45)

        delay = await limiter.wait_for_optimal_timing("tiny", "t1")
        assert delay == 15 * 60
        assert slept == [15 * 60]
