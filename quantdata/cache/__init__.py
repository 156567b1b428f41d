"""Cache policies for fetched market data.

This module contains:
- DataCache contract with CacheEntry, CacheConfig and CacheMetrics
- SqliteCache and RedisCache persistent policies
- InMemoryCache process-lifetime policy
- NoopCache for running with caching disabled
"""

from quantdata.cache.base import (
    DEFAULT_CACHE_CONFIG,
    CacheConfig,
    CacheEntry,
    CacheMetrics,
    DataCache,
)
from quantdata.cache.memory import InMemoryCache
from quantdata.cache.noop import NoopCache
from quantdata.cache.redis import RedisCache
from quantdata.cache.sqlite import SqliteCache

__all__ = [
    # Contract
    "CacheEntry",
    "CacheMetrics",
    "DataCache",
    # Configuration
    "CacheConfig",
    "DEFAULT_CACHE_CONFIG",
    # Policies
    "InMemoryCache",
    "NoopCache",
    "RedisCache",
    "SqliteCache",
]
