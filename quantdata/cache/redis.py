"""Redis-backed persistent cache policy.

Entries are stored as JSON strings. When an entry has an expiry, Redis is
given a matching TTL via SETEX so storage is reclaimed server-side; the
expiry is still re-checked on read.
"""

import math
import time
from datetime import timedelta
from typing import Any

import structlog
from redis.exceptions import RedisError

from quantdata.cache.base import CacheEntry, DataCache, utcnow
from quantdata.core.errors import CacheBackendError
from quantdata.core.models import CacheKey

logger = structlog.get_logger(__name__)


class RedisCache(DataCache):
    """Cache stored in Redis.

    Example:
        from redis.asyncio import Redis

        cache = RedisCache(Redis.from_url("redis://localhost:6379"))
        registry = RegistryBuilder().with_cache(cache).build()
    """

    name = "redis"

    def __init__(self, redis: Any) -> None:  # redis.asyncio.Redis
        """Initialize the Redis cache.

        Args:
            redis: Redis client instance.
        """
        super().__init__()
        self.redis = redis
        self._logger = logger.bind(component="redis_cache")

    @classmethod
    def from_url(cls, url: str) -> "RedisCache":
        """Create a cache connected to a Redis URL."""
        from redis.asyncio import Redis

        return cls(Redis.from_url(url))

    async def _fail(
        self, operation: str, error: Exception, key: str | None = None
    ) -> CacheBackendError:
        """Record a storage error and build the exception to raise."""
        await self.metrics.record_error()
        self._logger.error(f"cache_{operation}_error", key=key, error=str(error))
        return CacheBackendError(
            f"Redis cache {operation} failed: {error}",
            operation=operation,
            key=key,
        )

    async def get(self, key: CacheKey) -> CacheEntry | None:
        start = time.monotonic()
        try:
            data = await self.redis.get(key.value)
        except (RedisError, OSError) as e:
            raise await self._fail("get", e, key.value) from e
        latency_ms = (time.monotonic() - start) * 1000

        entry = None
        expired = False
        if data is not None:
            try:
                entry = CacheEntry.from_json(data)
            except ValueError as e:
                self._logger.warning("cache_entry_corrupt", key=key.value, error=str(e))
                await self.invalidate(key)
            else:
                if entry.is_expired():
                    self._logger.debug("cache_expired", key=key.value)
                    entry = None
                    expired = True

        if entry is None:
            await self.metrics.record_miss(expired)
            self._logger.debug("cache_miss", key=key.value)
            return None

        await self.metrics.record_hit()
        self._logger.debug("cache_hit", key=key.value, latency_ms=round(latency_ms, 2))
        return entry

    async def put(self, key: CacheKey, entry: CacheEntry) -> bool:
        try:
            serialized = entry.to_json()
        except (TypeError, ValueError) as e:
            raise await self._fail("put", e, key.value) from e

        ttl = None
        if entry.expires_at is not None:
            remaining = (entry.expires_at - utcnow()).total_seconds()
            if remaining <= 0:
                self._logger.debug("cache_set_skipped_expired", key=key.value)
                return False
            ttl = max(1, math.ceil(remaining))

        try:
            if ttl is None:
                await self.redis.set(key.value, serialized)
            else:
                await self.redis.setex(key.value, ttl, serialized)
        except (RedisError, OSError) as e:
            raise await self._fail("put", e, key.value) from e

        self._logger.debug("cache_set", key=key.value, ttl=ttl)
        return True

    async def invalidate(self, key: CacheKey) -> bool:
        try:
            result: int = await self.redis.delete(key.value)
        except (RedisError, OSError) as e:
            raise await self._fail("invalidate", e, key.value) from e

        self._logger.debug("cache_delete", key=key.value, deleted=result > 0)
        return bool(result > 0)

    async def _scan_keys(self) -> list[Any]:
        keys = []
        async for raw_key in self.redis.scan_iter(match=CacheKey.pattern()):
            keys.append(raw_key)
        return keys

    async def clear(self) -> None:
        """Delete every quantdata key; other keys in the database are untouched."""
        try:
            keys = await self._scan_keys()
            deleted = int(await self.redis.delete(*keys)) if keys else 0
        except (RedisError, OSError) as e:
            raise await self._fail("clear", e) from e

        self._logger.info("cache_cleared", deleted_count=deleted)

    async def invalidate_stale(self, max_age: timedelta) -> int:
        now = utcnow()
        stale = []
        try:
            for raw_key in await self._scan_keys():
                data = await self.redis.get(raw_key)
                if data is None:
                    continue
                try:
                    entry = CacheEntry.from_json(data)
                except ValueError:
                    stale.append(raw_key)
                    continue
                if entry.is_expired(now) or entry.age(now) > max_age:
                    stale.append(raw_key)

            deleted = int(await self.redis.delete(*stale)) if stale else 0
        except (RedisError, OSError) as e:
            raise await self._fail("invalidate_stale", e) from e

        if deleted:
            await self.metrics.record_evictions(deleted)
        self._logger.info("cache_stale_invalidated", deleted_count=deleted)
        return deleted

    async def close(self) -> None:
        """Close the Redis connection."""
        await self.redis.aclose()
