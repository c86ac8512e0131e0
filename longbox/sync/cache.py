"""
Response Cache: TTL Store with Single-Flight Fetches.

INVARIANTS:
- At most ONE in-flight fetch per key; concurrent callers attach to it and
  receive its result or its exception
- Successful values live until their TTL elapses
- Failures are NOT cached unless the caller passes negative_ttl
- Expired entries are evicted lazily on access; there is no sweeper
- A shared fetch is cancelled only when its LAST waiter is cancelled
  (reference-counted cancellation)
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from longbox.sync.clock import Clock, SystemClock

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """A stored value or a negatively cached error."""

    key: str
    expires_at: float
    value: Any = None
    error: BaseException | None = None


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    attaches: int = 0
    fetches: int = 0
    evictions: int = 0
    size: int = 0


class _Flight:
    """One outstanding upstream fetch and the callers waiting on it."""

    __slots__ = ("task", "waiters", "stale")

    task: "asyncio.Task[Any]"

    def __init__(self) -> None:
        self.waiters = 0
        self.stale = False


def _consume_result(task: "asyncio.Task[Any]") -> None:
    # Retrieve the exception so an abandoned flight never logs "never retrieved"
    if not task.cancelled():
        task.exception()


class ResponseCache:
    """
    Keyed cache of upstream responses.

    Usage:
        cache = ResponseCache()
        record = await cache.get_or_fetch(
            "comicvine:saga:1", ttl=3600, fetch_fn=lambda: client.fetch_issue("saga", "1")
        )
    """

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or SystemClock()
        self._entries: dict[str, CacheEntry] = {}
        self._flights: dict[str, _Flight] = {}
        self._stats = CacheStats()

    def _lookup(self, key: str) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock.monotonic():
            del self._entries[key]
            self._stats.evictions += 1
            return None
        return entry

    def peek(self, key: str) -> Any:
        """Cached value for key, or None. Never fetches."""
        entry = self._lookup(key)
        if entry is None or entry.error is not None:
            return None
        return entry.value

    async def get_or_fetch(
        self,
        key: str,
        ttl: float,
        fetch_fn: Callable[[], Awaitable[Any]],
        negative_ttl: float | None = None,
        negative_types: tuple[type[BaseException], ...] = (Exception,),
    ) -> Any:
        """
        Return the cached value for key, fetching it at most once.

        Args:
            key: Cache key
            ttl: Seconds a successful value stays valid (<= 0 stores nothing)
            fetch_fn: Zero-argument coroutine factory performing the fetch
            negative_ttl: When set, errors matching negative_types are cached
                for this many seconds
            negative_types: Error types eligible for negative caching

        Raises:
            Whatever fetch_fn raised (or the negatively cached error).
        """
        entry = self._lookup(key)
        if entry is not None:
            self._stats.hits += 1
            if entry.error is not None:
                raise entry.error
            return entry.value

        flight = self._flights.get(key)
        if flight is None:
            self._stats.misses += 1
            self._stats.fetches += 1
            flight = _Flight()
            flight.task = asyncio.create_task(
                self._run(key, flight, ttl, fetch_fn, negative_ttl, negative_types)
            )
            flight.task.add_done_callback(_consume_result)
            self._flights[key] = flight
        else:
            self._stats.attaches += 1
            logger.debug("CACHE_ATTACH", extra={"key": key, "waiters": flight.waiters + 1})

        flight.waiters += 1
        try:
            return await asyncio.shield(flight.task)
        finally:
            flight.waiters -= 1
            if flight.waiters == 0 and not flight.task.done():
                logger.info("CACHE_FLIGHT_CANCELLED", extra={"key": key})
                flight.task.cancel()
                if self._flights.get(key) is flight:
                    del self._flights[key]

    async def _run(
        self,
        key: str,
        flight: _Flight,
        ttl: float,
        fetch_fn: Callable[[], Awaitable[Any]],
        negative_ttl: float | None,
        negative_types: tuple[type[BaseException], ...],
    ) -> Any:
        try:
            value = await fetch_fn()
        except Exception as exc:
            if negative_ttl and negative_ttl > 0 and isinstance(exc, negative_types):
                self._store(flight, CacheEntry(key, self._expiry(negative_ttl), error=exc))
            raise
        else:
            if ttl > 0:
                self._store(flight, CacheEntry(key, self._expiry(ttl), value=value))
            return value
        finally:
            if self._flights.get(key) is flight:
                del self._flights[key]

    def _expiry(self, seconds: float) -> float:
        return self._clock.monotonic() + seconds

    def _store(self, flight: _Flight, entry: CacheEntry) -> None:
        # Invalidated while in flight: the result is served but not kept
        if flight.stale:
            return
        self._entries[entry.key] = entry

    def invalidate(self, key: str) -> bool:
        """
        Drop a key. An in-flight fetch still completes for its waiters, but
        its result is not stored and later callers start a fresh fetch.
        """
        removed = self._entries.pop(key, None) is not None
        flight = self._flights.pop(key, None)
        if flight is not None:
            flight.stale = True
            removed = True
        return removed

    def invalidate_prefix(self, prefix: str) -> int:
        """Invalidate every key starting with prefix. Returns the count dropped."""
        keys = {k for k in self._entries if k.startswith(prefix)}
        keys.update(k for k in self._flights if k.startswith(prefix))
        for key in keys:
            self.invalidate(key)
        if keys:
            logger.info("CACHE_INVALIDATED", extra={"prefix": prefix, "count": len(keys)})
        return len(keys)

    def in_flight(self, key: str) -> bool:
        return key in self._flights

    def stats(self) -> CacheStats:
        return CacheStats(
            hits=self._stats.hits,
            misses=self._stats.misses,
            attaches=self._stats.attaches,
            fetches=self._stats.fetches,
            evictions=self._stats.evictions,
            size=len(self._entries),
        )
