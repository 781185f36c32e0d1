"""Admission control: rate limiter fronted by a short-lived decision cache."""
import time
from typing import Callable

import structlog

from votepay.monitoring.metrics import metrics

from .cache import ResponseCache
from .exceptions import RateLimited
from .rate_limiter import RateLimitDecision, RateLimiter

logger = structlog.get_logger(__name__)


class AdmissionControl:
    """
    Guards an entry point with a rate limiter.

    Rejections are cached for a sub-second TTL so a flood from one key stops
    paying for limiter checks. Admissions are never cached: every admitted
    request is counted by the limiter itself, and a cache miss always falls
    through to the limiter.
    """

    def __init__(
        self,
        limiter: RateLimiter,
        cache: ResponseCache,
        cache_ttl_seconds: float = 1.0,
        clock: Callable[[], float] = time.time,
    ):
        self.limiter = limiter
        self.cache = cache
        self.cache_ttl_seconds = cache_ttl_seconds
        self._clock = clock

    def _cache_key(self, key: str) -> str:
        return f"rate_limit:{self.limiter.name}:{key}"

    def check(self, key: str) -> RateLimitDecision:
        """Return the admission decision for ``key``."""
        cache_key = self._cache_key(key)
        cached = self.cache.get(cache_key)
        if isinstance(cached, RateLimitDecision):
            metrics.record_rate_limit_decision(self.limiter.name, allowed=False, cached=True)
            return cached

        decision = self.limiter.check(key)
        metrics.record_rate_limit_decision(self.limiter.name, decision.allowed, cached=False)

        if not decision.allowed:
            ttl = min(self.cache_ttl_seconds, decision.reset_time - self._clock())
            self.cache.set(cache_key, decision, ttl)
        return decision

    def admit(self, key: str) -> RateLimitDecision:
        """
        Admit ``key`` or raise.

        Raises:
            RateLimited: If the key has exhausted its base and burst allowance
        """
        decision = self.check(key)
        if not decision.allowed:
            retry_after = decision.retry_after(self._clock())
            logger.warning(
                "rate_limit_exceeded",
                limiter=self.limiter.name,
                client_key=key,
                retry_after=retry_after,
            )
            raise RateLimited(
                key=key,
                retry_after=retry_after,
                reset_time=decision.reset_time,
                limit=self.limiter.limit,
            )
        return decision
