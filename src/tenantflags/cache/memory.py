"""
In-process evaluation caches.

``ShardedTTLCache`` spreads entries over independently locked
``cachetools.TLRUCache`` shards. Each entry carries its own absolute expiry,
so entries written with different TTLs coexist in one shard.
"""

import asyncio
import contextlib
import threading
import time
from collections.abc import Callable
from typing import Any

import structlog
from cachetools import TLRUCache

from tenantflags.cache.interfaces import EvaluationCache
from tenantflags.cache.models import CacheEntry, CacheKey, CacheStatistics
from tenantflags.settings import Environment

logger = structlog.get_logger(__name__)

Clock = Callable[[], float]


def _entry_expiry(_key: CacheKey, entry: CacheEntry, _now: float) -> float:
    return entry.expires_at


class _Shard:
    __slots__ = ("entries", "lock", "stats")

    def __init__(self, maxsize: int, clock: Clock) -> None:
        self.entries: TLRUCache = TLRUCache(maxsize=maxsize, ttu=_entry_expiry, timer=clock)
        self.lock = threading.Lock()
        self.stats = CacheStatistics()


class ShardedTTLCache(EvaluationCache):
    """TTL-bounded memo of resolved booleans.

    Args:
        shards: Number of independently locked shards
        max_entries_per_shard: LRU bound of every shard
        clock: Monotonic clock in seconds, injectable for tests
    """

    def __init__(
        self,
        shards: int = 16,
        max_entries_per_shard: int = 10_000,
        clock: Clock | None = None,
    ) -> None:
        if shards < 1:
            raise ValueError("shards must be >= 1")
        self._clock: Clock = clock or time.monotonic
        self._max_entries = max_entries_per_shard
        self._shards = [_Shard(max_entries_per_shard, self._clock) for _ in range(shards)]
        self._sweeper: asyncio.Task[None] | None = None

    @classmethod
    def from_settings(cls, cache_settings: Any, clock: Clock | None = None) -> "ShardedTTLCache":
        return cls(
            shards=cache_settings.shards,
            max_entries_per_shard=cache_settings.max_entries_per_shard,
            clock=clock,
        )

    def _shard_for(self, key: CacheKey) -> _Shard:
        return self._shards[hash(key) % len(self._shards)]

    def get(self, key: CacheKey) -> bool | None:
        shard = self._shard_for(key)
        with shard.lock:
            expired = shard.entries.expire(self._clock())
            shard.stats.expirations += len(expired)
            entry = shard.entries.get(key)
            if entry is None:
                shard.stats.misses += 1
                return None
            shard.stats.hits += 1
            return entry.value

    def set(self, key: CacheKey, value: bool, ttl: float) -> None:
        if ttl <= 0:
            return
        shard = self._shard_for(key)
        with shard.lock:
            shard.entries[key] = CacheEntry(value=value, expires_at=self._clock() + ttl)
            shard.stats.sets += 1

    def delete(self, key: CacheKey) -> bool:
        shard = self._shard_for(key)
        with shard.lock:
            removed = shard.entries.pop(key, None) is not None
            if removed:
                shard.stats.deletes += 1
            return removed

    def delete_flag(self, environment: Environment, flag_key: str) -> int:
        removed = 0
        for shard in self._shards:
            with shard.lock:
                keys = [
                    key
                    for key in list(shard.entries.keys())
                    if key.environment == environment and key.flag_key == flag_key
                ]
                for key in keys:
                    shard.entries.pop(key, None)
                shard.stats.deletes += len(keys)
                removed += len(keys)
        return removed

    def clear(self) -> None:
        for shard in self._shards:
            with shard.lock:
                shard.stats.deletes += len(shard.entries)
                shard.entries.clear()

    def sweep(self) -> int:
        reclaimed = 0
        for shard in self._shards:
            with shard.lock:
                expired = shard.entries.expire(self._clock())
                shard.stats.expirations += len(expired)
                reclaimed += len(expired)
        if reclaimed:
            logger.debug("flag.cache.swept", reclaimed=reclaimed)
        return reclaimed

    def get_stats(self) -> dict[str, Any]:
        totals = CacheStatistics()
        size = 0
        for shard in self._shards:
            with shard.lock:
                totals.hits += shard.stats.hits
                totals.misses += shard.stats.misses
                totals.sets += shard.stats.sets
                totals.deletes += shard.stats.deletes
                totals.expirations += shard.stats.expirations
                size += len(shard.entries)
        return {
            "backend": "memory",
            "shards": len(self._shards),
            "max_entries_per_shard": self._max_entries,
            "size": size,
            **totals.to_dict(),
        }

    def __len__(self) -> int:
        size = 0
        for shard in self._shards:
            with shard.lock:
                shard.stats.expirations += len(shard.entries.expire(self._clock()))
                size += len(shard.entries)
        return size

    # ============================================================
    # Background sweeper
    # ============================================================

    def start_sweeper(self, interval: float = 60.0) -> asyncio.Task[None]:
        """Reclaim expired entries every ``interval`` seconds on the running loop."""
        if interval <= 0:
            raise ValueError("interval must be positive")
        if self._sweeper is not None and not self._sweeper.done():
            return self._sweeper

        async def _run() -> None:
            while True:
                await asyncio.sleep(interval)
                self.sweep()

        self._sweeper = asyncio.get_running_loop().create_task(_run())
        logger.info("flag.cache.sweeper.started", interval=interval)
        return self._sweeper

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._sweeper
        self._sweeper = None
        logger.info("flag.cache.sweeper.stopped")

    @property
    def sweeper_running(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()


class NullEvaluationCache(EvaluationCache):
    """Cache that never stores anything, for environments with caching off."""

    def __init__(self) -> None:
        self._stats = CacheStatistics()

    def get(self, key: CacheKey) -> bool | None:
        self._stats.misses += 1
        return None

    def set(self, key: CacheKey, value: bool, ttl: float) -> None:
        return None

    def delete(self, key: CacheKey) -> bool:
        return False

    def delete_flag(self, environment: Environment, flag_key: str) -> int:
        return 0

    def clear(self) -> None:
        return None

    def sweep(self) -> int:
        return 0

    def get_stats(self) -> dict[str, Any]:
        return {"backend": "null", "size": 0, **self._stats.to_dict()}

    def __len__(self) -> int:
        return 0
