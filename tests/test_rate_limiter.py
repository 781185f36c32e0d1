"""
Tests for the rate limiter, response cache and admission control.
"""
import asyncio
import threading

import pytest

from votepay.core.admission import AdmissionControl
from votepay.core.cache import CacheTTL, ResponseCache
from votepay.core.exceptions import RateLimited
from votepay.core.rate_limiter import RateLimiter


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestRateLimiter:
    """Test suite for RateLimiter."""

    @pytest.mark.unit
    def test_admits_limit_plus_burst(self) -> None:
        """Exactly L + B requests are admitted per window."""
        clock = FakeClock()
        limiter = RateLimiter("test", limit=5, window_seconds=60, burst_limit=2, clock=clock)

        decisions = [limiter.check("1.2.3.4") for _ in range(8)]

        assert [d.allowed for d in decisions] == [True] * 7 + [False]
        assert decisions[0].remaining == 4
        assert decisions[4].remaining == 0

    @pytest.mark.unit
    def test_default_burst_is_half_limit(self) -> None:
        limiter = RateLimiter("test", limit=10, window_seconds=60)
        assert limiter.burst_limit == 5

    @pytest.mark.unit
    def test_burst_extends_reset_time(self) -> None:
        clock = FakeClock()
        limiter = RateLimiter(
            "test",
            limit=1,
            window_seconds=5,
            burst_limit=1,
            burst_window_extension_seconds=10,
            clock=clock,
        )

        first = limiter.check("k")
        burst = limiter.check("k")

        assert first.reset_time == clock.now + 5
        assert burst.allowed
        assert burst.reset_time == clock.now + 10

    @pytest.mark.unit
    def test_window_expiry_resets_counters(self) -> None:
        clock = FakeClock()
        limiter = RateLimiter("test", limit=1, window_seconds=60, burst_limit=0, clock=clock)

        assert limiter.check("k").allowed
        assert not limiter.check("k").allowed

        clock.advance(61)
        decision = limiter.check("k")

        assert decision.allowed
        assert decision.remaining == 0

    @pytest.mark.unit
    def test_keys_are_independent(self) -> None:
        limiter = RateLimiter("test", limit=1, window_seconds=60, burst_limit=0)

        assert limiter.check("a").allowed
        assert limiter.check("b").allowed
        assert not limiter.check("a").allowed

    @pytest.mark.unit
    def test_retry_after_is_at_least_one_second(self) -> None:
        clock = FakeClock()
        limiter = RateLimiter("test", limit=1, window_seconds=60, burst_limit=0, clock=clock)
        limiter.check("k")
        clock.advance(59.9)

        rejected = limiter.check("k")

        assert rejected.retry_after(clock()) == 1

    @pytest.mark.unit
    def test_cleanup_removes_expired_entries(self) -> None:
        clock = FakeClock()
        limiter = RateLimiter("test", limit=5, window_seconds=60, clock=clock)
        limiter.check("a")
        limiter.check("b")

        clock.advance(120)

        assert limiter.cleanup() == 2
        assert len(limiter) == 0

    @pytest.mark.unit
    def test_rejects_invalid_configuration(self) -> None:
        with pytest.raises(ValueError):
            RateLimiter("test", limit=0, window_seconds=60)

    @pytest.mark.race
    def test_concurrent_checks_never_over_admit(self) -> None:
        """Threads hammering one key are admitted exactly L + B times."""
        limiter = RateLimiter("test", limit=50, window_seconds=60, burst_limit=25)
        admitted = []
        lock = threading.Lock()

        def worker() -> None:
            for _ in range(20):
                decision = limiter.check("shared")
                if decision.allowed:
                    with lock:
                        admitted.append(decision)

        threads = [threading.Thread(target=worker) for _ in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(admitted) == 75

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_start_and_stop(self) -> None:
        limiter = RateLimiter("test", limit=5, window_seconds=60)
        limiter.start()
        limiter.check("k")

        await limiter.stop()

        assert len(limiter) == 0
        assert limiter._cleanup_task is None


class TestResponseCache:
    """Test suite for ResponseCache."""

    @pytest.mark.unit
    def test_entries_expire(self) -> None:
        clock = FakeClock()
        cache = ResponseCache(clock=clock)
        cache.set("k", "v", ttl=5)

        assert cache.get("k") == "v"
        clock.advance(5)
        assert cache.get("k") is None

    @pytest.mark.unit
    def test_non_positive_ttl_is_not_stored(self) -> None:
        cache = ResponseCache()
        cache.set("k", "v", ttl=0)
        assert cache.get("k", "missing") == "missing"

    @pytest.mark.unit
    def test_sweep(self) -> None:
        clock = FakeClock()
        cache = ResponseCache(clock=clock)
        cache.set("short", 1, ttl=1)
        cache.set("long", 2, ttl=CacheTTL.LONG)

        clock.advance(2)

        assert cache.sweep() == 1
        assert len(cache) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_memoize_caches_by_arguments(self) -> None:
        cache = ResponseCache()
        calls = []

        @cache.memoize(ttl=CacheTTL.SHORT)
        async def lookup(key: str) -> str:
            calls.append(key)
            return key.upper()

        assert await lookup("a") == "A"
        assert await lookup("a") == "A"
        assert await lookup("b") == "B"
        assert calls == ["a", "b"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_stop_clears_entries(self) -> None:
        cache = ResponseCache(sweep_interval_seconds=0.01)
        cache.start()
        cache.set("k", "v")
        await asyncio.sleep(0)

        await cache.stop()

        assert len(cache) == 0


class TestAdmissionControl:
    """Test suite for AdmissionControl."""

    @pytest.mark.unit
    def test_admissions_are_never_cached(self) -> None:
        """Every admitted request is counted by the limiter."""
        clock = FakeClock()
        limiter = RateLimiter("vote", limit=3, window_seconds=60, burst_limit=0, clock=clock)
        admission = AdmissionControl(limiter, ResponseCache(clock=clock), clock=clock)

        results = [admission.check("k").allowed for _ in range(4)]

        assert results == [True, True, True, False]

    @pytest.mark.unit
    def test_rejection_is_served_from_cache(self) -> None:
        clock = FakeClock()
        limiter = RateLimiter("vote", limit=1, window_seconds=60, burst_limit=0, clock=clock)
        cache = ResponseCache(clock=clock)
        admission = AdmissionControl(limiter, cache, cache_ttl_seconds=1.0, clock=clock)

        admission.check("k")
        rejected = admission.check("k")

        assert not rejected.allowed
        assert cache.get("rate_limit:vote:k") == rejected

    @pytest.mark.unit
    def test_cached_rejection_never_outlives_window(self) -> None:
        clock = FakeClock()
        limiter = RateLimiter("vote", limit=1, window_seconds=60, burst_limit=0, clock=clock)
        admission = AdmissionControl(
            limiter, ResponseCache(clock=clock), cache_ttl_seconds=30.0, clock=clock
        )

        admission.check("k")
        clock.advance(59.5)
        assert not admission.check("k").allowed

        clock.advance(1)
        assert admission.check("k").allowed

    @pytest.mark.unit
    def test_admit_raises_rate_limited(self) -> None:
        clock = FakeClock()
        limiter = RateLimiter("api", limit=1, window_seconds=60, burst_limit=0, clock=clock)
        admission = AdmissionControl(limiter, ResponseCache(clock=clock), clock=clock)
        admission.admit("k")

        with pytest.raises(RateLimited) as exc_info:
            admission.admit("k")

        error = exc_info.value
        assert error.http_status == 429
        assert error.retry_after == 60
        assert error.limit == 1
