"""
In-memory rate limiting with burst allowance.

Each key gets a fixed window with a base request ceiling. Once the base
ceiling is exhausted, a burst allowance admits extra requests, and every
burst admission pushes the window reset time out by the burst extension.
Expired windows are replaced wholesale; nothing carries over.
"""
import asyncio
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of a rate-limit check."""

    allowed: bool
    remaining: int
    reset_time: float

    def retry_after(self, now: Optional[float] = None) -> int:
        """Whole seconds until the window resets (at least 1 when rejected)."""
        now = time.time() if now is None else now
        seconds = math.ceil(self.reset_time - now)
        return max(1, seconds) if not self.allowed else max(0, seconds)


@dataclass
class RateLimitEntry:
    """Per-key counters for the current window."""

    count: int
    reset_time: float
    burst_count: int
    burst_reset_time: float


class RateLimiter:
    """
    Fixed-window limiter with a burst allowance per key.

    A key is admitted exactly ``limit + burst_limit`` times per window.
    Counter updates happen under a lock so concurrent checks for one key
    never read and write separately.
    """

    def __init__(
        self,
        name: str,
        limit: int,
        window_seconds: float,
        burst_limit: Optional[int] = None,
        burst_window_extension_seconds: float = 10.0,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize rate limiter.

        Args:
            name: Limiter name used in logs and metrics
            limit: Base admissions per window
            window_seconds: Window length
            burst_limit: Extra admissions once the base limit is used (defaults to half)
            burst_window_extension_seconds: Reset-time extension per burst admission
            clock: Time source returning epoch seconds
        """
        if limit <= 0 or window_seconds <= 0:
            raise ValueError("limit and window_seconds must be positive")
        self.name = name
        self.limit = limit
        self.window_seconds = window_seconds
        self.burst_limit = burst_limit if burst_limit is not None else limit // 2
        self.burst_window_extension_seconds = burst_window_extension_seconds
        self._clock = clock
        self._store: Dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()
        self._cleanup_task: Optional[asyncio.Task] = None

    def check(self, key: str) -> RateLimitDecision:
        """
        Count a request for ``key`` and decide whether it is admitted.

        Args:
            key: Caller identity (typically the client IP)

        Returns:
            RateLimitDecision: Admission decision, remaining base quota and reset time
        """
        with self._lock:
            now = self._clock()
            entry = self._store.get(key)

            if entry is None or entry.reset_time <= now:
                reset_time = now + self.window_seconds
                self._store[key] = RateLimitEntry(
                    count=1,
                    reset_time=reset_time,
                    burst_count=0,
                    burst_reset_time=reset_time,
                )
                return RateLimitDecision(True, self.limit - 1, reset_time)

            if entry.count < self.limit:
                entry.count += 1
                return RateLimitDecision(True, self.limit - entry.count, entry.reset_time)

            if entry.burst_count < self.burst_limit:
                entry.burst_count += 1
                entry.reset_time = max(
                    entry.reset_time, now + self.burst_window_extension_seconds
                )
                entry.burst_reset_time = entry.reset_time
                return RateLimitDecision(True, 0, entry.reset_time)

            return RateLimitDecision(False, 0, entry.reset_time)

    def cleanup(self) -> int:
        """
        Remove expired entries.

        Returns:
            int: Number of entries removed
        """
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._store.items() if entry.reset_time <= now]
            for key in expired:
                del self._store[key]
        if expired:
            logger.debug("rate_limiter_cleanup", limiter=self.name, removed=len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._store)

    async def _cleanup_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.cleanup()

    def start(self) -> None:
        """Start periodic cleanup, at most once per minute."""
        if self._cleanup_task is None:
            interval = min(self.window_seconds, 60.0)
            self._cleanup_task = asyncio.create_task(self._cleanup_loop(interval))
            logger.info("rate_limiter_started", limiter=self.name, cleanup_interval=interval)

    async def stop(self) -> None:
        """Stop periodic cleanup and drop all counters."""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
        with self._lock:
            self._store.clear()
        logger.info("rate_limiter_stopped", limiter=self.name)
