"""In-memory cache policy.

Entries live for the lifetime of the process. An optional capacity evicts
the least recently used entry first.
"""

import asyncio
import time
from collections import OrderedDict
from datetime import timedelta

import structlog

from quantdata.cache.base import CacheEntry, DataCache, utcnow
from quantdata.core.models import CacheKey

logger = structlog.get_logger(__name__)


class InMemoryCache(DataCache):
    """Process-local cache backed by an ordered dict.

    Example:
        cache = InMemoryCache(max_entries=10_000)
        registry = RegistryBuilder().with_cache(cache).build()
    """

    name = "memory"

    def __init__(self, max_entries: int | None = None) -> None:
        """Initialize the cache.

        Args:
            max_entries: Capacity; the least recently used entry is evicted
                when exceeded. None means unbounded.
        """
        super().__init__()
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = asyncio.Lock()
        self._logger = logger.bind(component="memory_cache")

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: CacheKey) -> CacheEntry | None:
        start = time.monotonic()
        expired = False
        async with self._lock:
            entry = self._entries.get(key.value)
            if entry is not None and entry.is_expired():
                del self._entries[key.value]
                entry = None
                expired = True
                self._logger.debug("cache_expired", key=key.value)
            if entry is not None:
                self._entries.move_to_end(key.value)
                entry = entry.copy()
        latency_ms = (time.monotonic() - start) * 1000

        if entry is None:
            await self.metrics.record_miss(expired)
            self._logger.debug("cache_miss", key=key.value)
            return None

        await self.metrics.record_hit()
        self._logger.debug("cache_hit", key=key.value, latency_ms=round(latency_ms, 2))
        return entry

    async def put(self, key: CacheKey, entry: CacheEntry) -> bool:
        evicted = 0
        async with self._lock:
            self._entries[key.value] = entry.copy()
            self._entries.move_to_end(key.value)
            if self.max_entries is not None:
                while len(self._entries) > self.max_entries:
                    self._entries.popitem(last=False)
                    evicted += 1

        if evicted:
            await self.metrics.record_evictions(evicted)
            self._logger.debug("cache_evicted", count=evicted)
        self._logger.debug("cache_set", key=key.value, provider=entry.provider)
        return True

    async def invalidate(self, key: CacheKey) -> bool:
        async with self._lock:
            removed = self._entries.pop(key.value, None) is not None
        self._logger.debug("cache_delete", key=key.value, deleted=removed)
        return removed

    async def clear(self) -> None:
        async with self._lock:
            count = len(self._entries)
            self._entries.clear()
        self._logger.info("cache_cleared", deleted_count=count)

    async def invalidate_stale(self, max_age: timedelta) -> int:
        now = utcnow()
        async with self._lock:
            stale = [
                key
                for key, entry in self._entries.items()
                if entry.is_expired(now) or entry.age(now) > max_age
            ]
            for key in stale:
                del self._entries[key]

        if stale:
            await self.metrics.record_evictions(len(stale))
        self._logger.info("cache_stale_invalidated", deleted_count=len(stale))
        return len(stale)

    def __repr__(self) -> str:
        return f"InMemoryCache(entries={len(self._entries)}, max_entries={self.max_entries})"
