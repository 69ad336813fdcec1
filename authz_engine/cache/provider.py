"""
Cache Provider Abstraction with Sliding and Absolute Expiration

This module implements the cache capability injected into both authorization
decision paths. A provider stores values under composite string keys with two
independent expirations:

- a sliding window reset on every hit
- an absolute ceiling fixed at insertion, independent of access pattern

An entry is valid only while both windows are open.

Key Components:
- CacheEntry: stored value with insertion/access timestamps and both TTLs
- CacheProvider: abstract provider implementing get-or-compute with collapsing
  of concurrent misses for the same key inside one event loop
- InMemoryCacheProvider: process-wide, thread-safe dictionary implementation
  with an injectable clock for deterministic tests

A computation that fails or is cancelled stores nothing; its exception
propagates to the caller and to every caller collapsed onto it. Callers may
also pass an invalidation generation: a value computed while the generation
moved is returned but never stored, and later callers do not join it.
"""

import asyncio
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, NamedTuple, Optional, Tuple

import structlog

from authz_engine.cache.monitoring import (
    cache_operation_metrics,
    record_invalidation,
    record_lookup,
)

logger = structlog.get_logger(__name__)

Clock = Callable[[], float]
ComputeFn = Callable[[], Awaitable[Any]]
GenerationFn = Callable[[], Awaitable[int]]
StoreHook = Callable[[], Awaitable[None]]


@dataclass
class CacheEntry:
    """
    Cached value with its two expiration windows.

    Timestamps and TTLs are expressed in seconds on the provider clock.
    """

    key: str
    value: Any
    inserted_at: float
    last_accessed_at: float
    sliding_ttl: float
    absolute_ttl: float

    def is_valid(self, now: float) -> bool:
        return (
            now < self.last_accessed_at + self.sliding_ttl
            and now < self.inserted_at + self.absolute_ttl
        )

    def touch(self, now: float) -> None:
        self.last_accessed_at = now


class _AbandonedComputation(Exception):
    """Set on a shared computation whose owner was cancelled."""


class _Inflight(NamedTuple):
    future: asyncio.Future
    generation: Optional[int]


class CacheProvider(ABC):
    """
    Injected cache capability used by the authorization engine.

    Subclasses implement the storage primitives `_lookup`, `_store`, `evict`
    and `evict_prefix`; this base class implements get-or-compute on top of
    them. Concurrent misses for the same key collapse into one computation
    when they run on the same event loop; callers on other loops compute
    independently, which is tolerable because decisions are idempotent.
    """

    cache_type = "abstract"

    def __init__(self) -> None:
        self._inflight: Dict[str, _Inflight] = {}
        self._inflight_lock = threading.Lock()

    @abstractmethod
    async def _lookup(self, key: str) -> Tuple[bool, Any]:
        """Return (found, value) and refresh the sliding window on a hit."""

    @abstractmethod
    async def _store(self, key: str, value: Any, sliding_ttl: float, absolute_ttl: float) -> None:
        """Insert or replace an entry."""

    @abstractmethod
    async def evict(self, key: str) -> bool:
        """Remove one entry; returns True if it existed."""

    @abstractmethod
    async def evict_prefix(self, prefix: str) -> int:
        """Remove every entry whose key starts with prefix; returns the count."""

    async def get(self, key: str, default: Any = None) -> Any:
        found, value = await self._lookup(key)
        record_lookup(key, found)
        return value if found else default

    async def set(self, key: str, value: Any, sliding_ttl: float, absolute_ttl: float) -> None:
        _validate_ttls(sliding_ttl, absolute_ttl)
        await self._store(key, value, sliding_ttl, absolute_ttl)

    async def get_or_set(
        self,
        key: str,
        compute: ComputeFn,
        sliding_ttl: float,
        absolute_ttl: float,
        generation: Optional[GenerationFn] = None,
        on_store: Optional[StoreHook] = None
    ) -> Any:
        """
        Return the cached value for key, computing and storing it on a miss.

        Args:
            key: Composite cache key
            compute: Coroutine function producing the value on a miss
            sliding_ttl: Sliding expiration in seconds, reset on each hit
            absolute_ttl: Absolute expiration in seconds from insertion
            generation: Returns the current invalidation generation; the
                value is stored only if it did not move during compute
            on_store: Awaited right before the value is written

        Returns:
            The cached or freshly computed value (None is a cacheable value)

        Raises:
            Whatever compute or the backend raises; nothing is stored then.
        """
        _validate_ttls(sliding_ttl, absolute_ttl)

        while True:
            found, value = await self._lookup(key)
            record_lookup(key, found)
            if found:
                return value

            current = await generation() if generation is not None else None
            loop = asyncio.get_running_loop()
            with self._inflight_lock:
                inflight = self._inflight.get(key)
                owner = (
                    inflight is None
                    or inflight.future.get_loop() is not loop
                    or inflight.generation != current
                )
                if owner:
                    inflight = _Inflight(loop.create_future(), current)
                    self._inflight[key] = inflight

            if owner:
                return await self._compute_and_store(
                    key, inflight, compute, sliding_ttl, absolute_ttl, generation, on_store
                )

            try:
                return await asyncio.shield(inflight.future)
            except _AbandonedComputation:
                # Owner was cancelled; retry as a fresh miss
                continue

    @cache_operation_metrics("compute", "provider")
    async def _compute_and_store(
        self,
        key: str,
        inflight: _Inflight,
        compute: ComputeFn,
        sliding_ttl: float,
        absolute_ttl: float,
        generation: Optional[GenerationFn],
        on_store: Optional[StoreHook]
    ) -> Any:
        try:
            value = await compute()
            if await _is_current(generation, inflight.generation):
                if on_store is not None:
                    await on_store()
                await self._store(key, value, sliding_ttl, absolute_ttl)
                if not await _is_current(generation, inflight.generation):
                    # Invalidated while the write was in flight
                    await self.evict(key)
            else:
                logger.debug("Cache write skipped after invalidation", cache_key=key)
        except Exception as e:
            self._settle(key, inflight, exception=e)
            raise
        except BaseException:
            # Cancellation: waiters retry instead of inheriting the cancel
            self._settle(key, inflight, exception=_AbandonedComputation(key))
            logger.debug("Cache computation abandoned", cache_key=key)
            raise

        self._settle(key, inflight, result=value)
        return value

    def _settle(
        self,
        key: str,
        inflight: _Inflight,
        result: Any = None,
        exception: Optional[BaseException] = None
    ) -> None:
        with self._inflight_lock:
            if self._inflight.get(key) is inflight:
                del self._inflight[key]
        pending = inflight.future
        if pending.done():
            return
        if exception is not None:
            pending.set_exception(exception)
            # Mark retrieved so an unobserved failure is not reported at GC
            pending.exception()
        else:
            pending.set_result(result)


async def _is_current(generation: Optional[GenerationFn], started: Optional[int]) -> bool:
    return generation is None or await generation() == started


def _validate_ttls(sliding_ttl: float, absolute_ttl: float) -> None:
    if sliding_ttl <= 0 or absolute_ttl <= 0:
        raise ValueError(
            f"Cache TTLs must be positive (sliding={sliding_ttl}, absolute={absolute_ttl})"
        )


class InMemoryCacheProvider(CacheProvider):
    """
    Process-wide in-memory cache with sliding and absolute expiration.

    Expired entries are dropped lazily on access and in bulk by
    `purge_expired`, which also runs on a write once `purge_interval` seconds
    have passed since the previous purge. Every map operation runs under a
    lock and never awaits, so the provider is safe to share between threads
    and event loops.

    Args:
        clock: Time source in seconds; defaults to wall-clock time
        purge_interval: Minimum seconds between purges triggered by writes
    """

    cache_type = "memory"

    def __init__(self, clock: Optional[Clock] = None, purge_interval: float = 60.0):
        super().__init__()
        self._clock = clock or time.time
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._purge_interval = purge_interval
        self._last_purge = self._clock()
        self._purge_listeners: List[Callable[[], Any]] = []

        logger.info("In-memory cache provider initialized", purge_interval=purge_interval)

    @property
    def clock(self) -> Clock:
        return self._clock

    def add_purge_listener(self, listener: Callable[[], Any]) -> None:
        """Register a callable run after every purge of expired entries."""
        self._purge_listeners.append(listener)

    async def _lookup(self, key: str) -> Tuple[bool, Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False, None

            now = self._clock()
            if not entry.is_valid(now):
                del self._entries[key]
                return False, None

            entry.touch(now)
            return True, entry.value

    async def _store(self, key: str, value: Any, sliding_ttl: float, absolute_ttl: float) -> None:
        now = self._clock()
        with self._lock:
            self._entries[key] = CacheEntry(
                key=key,
                value=value,
                inserted_at=now,
                last_accessed_at=now,
                sliding_ttl=sliding_ttl,
                absolute_ttl=absolute_ttl
            )

        if now - self._last_purge >= self._purge_interval:
            self.purge_expired()

    @cache_operation_metrics("evict", "memory")
    async def evict(self, key: str) -> bool:
        with self._lock:
            removed = self._entries.pop(key, None) is not None
        return removed

    @cache_operation_metrics("evict_prefix", "memory")
    async def evict_prefix(self, prefix: str) -> int:
        with self._lock:
            doomed = [key for key in self._entries if key.startswith(prefix)]
            for key in doomed:
                del self._entries[key]

        logger.debug("Cache prefix evicted", prefix=prefix, evicted=len(doomed))
        return len(doomed)

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        """Return the raw entry without touching it, expired or not."""
        with self._lock:
            return self._entries.get(key)

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            self._last_purge = now
            expired = [key for key, entry in self._entries.items() if not entry.is_valid(now)]
            for key in expired:
                del self._entries[key]
        record_invalidation('expired', len(expired))

        for listener in self._purge_listeners:
            listener()
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and entry.is_valid(self._clock())
