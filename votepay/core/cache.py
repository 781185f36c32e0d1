"""
Short-TTL in-memory response cache.

Per-process memoisation only. Entries expire on read and are swept
periodically.
"""
import asyncio
import functools
import json
import threading
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")

_MISSING = object()


class CacheTTL:
    """TTL presets in seconds."""

    SHORT = 60.0
    MEDIUM = 5 * 60.0
    LONG = 30 * 60.0


@dataclass
class _CacheItem:
    value: Any
    expiry: float


class ResponseCache:
    """Thread-safe TTL cache with periodic sweeping."""

    def __init__(
        self,
        default_ttl: float = CacheTTL.MEDIUM,
        sweep_interval_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_ttl = default_ttl
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._items: Dict[str, _CacheItem] = {}
        self._lock = threading.Lock()
        self._sweep_task: Optional[asyncio.Task] = None

    def get(self, key: str, default: Any = None) -> Any:
        """Return the cached value, or ``default`` if absent or expired."""
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return default
            if item.expiry <= self._clock():
                del self._items[key]
                return default
            return item.value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Store ``value`` under ``key`` for ``ttl`` seconds."""
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            return
        with self._lock:
            self._items[key] = _CacheItem(value=value, expiry=self._clock() + ttl)

    def delete(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def sweep(self) -> int:
        """
        Remove expired entries.

        Returns:
            int: Number of entries removed
        """
        with self._lock:
            now = self._clock()
            expired = [key for key, item in self._items.items() if item.expiry <= now]
            for key in expired:
                del self._items[key]
        if expired:
            logger.debug("cache_swept", removed=len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._items)

    def memoize(
        self, ttl: Optional[float] = None
    ) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
        """
        Cache results of an async function keyed by its arguments.

        Example:
            @cache.memoize(ttl=CacheTTL.SHORT)
            async def list_candidates():
                ...
        """

        def decorator(fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
            @functools.wraps(fn)
            async def wrapper(*args: Any, **kwargs: Any) -> T:
                key = "memo:{}:{}".format(
                    fn.__qualname__,
                    json.dumps([args, kwargs], sort_keys=True, default=str),
                )
                cached = self.get(key, _MISSING)
                if cached is not _MISSING:
                    return cached
                result = await fn(*args, **kwargs)
                self.set(key, result, ttl)
                return result

            return wrapper

        return decorator

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            self.sweep()

    def start(self) -> None:
        """Start the periodic sweep task."""
        if self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self._sweep_loop())
            logger.info("cache_sweeper_started", interval=self.sweep_interval_seconds)

    async def stop(self) -> None:
        """Stop sweeping and drop all entries."""
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        self.clear()
        logger.info("cache_sweeper_stopped")
