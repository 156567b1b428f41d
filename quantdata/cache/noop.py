"""No-op cache policy: every lookup misses and every write is discarded."""

from datetime import timedelta

import structlog

from quantdata.cache.base import CacheEntry, DataCache
from quantdata.core.models import CacheKey

logger = structlog.get_logger(__name__)


class NoopCache(DataCache):
    """Cache that stores nothing.

    Used automatically when a registry is built without a cache, so the
    fallback logic runs the same code path whether caching is on or off.
    """

    name = "noop"

    async def get(self, key: CacheKey) -> CacheEntry | None:
        await self.metrics.record_miss()
        logger.debug("noop_cache_get", key=key.value)
        return None

    async def put(self, key: CacheKey, entry: CacheEntry) -> bool:
        return True

    async def invalidate(self, key: CacheKey) -> bool:
        return False

    async def clear(self) -> None:
        return None

    async def invalidate_stale(self, max_age: timedelta) -> int:
        return 0
