"""Cache contract shared by every cache policy.

This module provides:
- CacheEntry: a cached payload plus fetch metadata and optional expiry
- CacheConfig: per-request-kind TTLs
- CacheMetrics: hit/miss/error counters
- DataCache: the get/put/invalidate/clear contract

Freshness is decided here, not by callers: ``get`` reports an expired entry
as a miss.
"""

import asyncio
import copy
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog

from quantdata.core.models import CacheKey, RequestKind

logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


@dataclass(frozen=True)
class CacheEntry:
    """A cached payload and its metadata.

    Attributes:
        payload: JSON-compatible payload (dicts, lists, scalars).
        provider: Name of the provider that produced the payload.
        fetched_at: When the payload was fetched upstream.
        expires_at: When the entry stops being fresh; None never expires.
    """

    payload: Any
    provider: str
    fetched_at: datetime = field(default_factory=utcnow)
    expires_at: datetime | None = None

    @classmethod
    def create(
        cls,
        payload: Any,
        provider: str,
        ttl_seconds: int | None = None,
        now: datetime | None = None,
    ) -> "CacheEntry":
        """Build an entry fetched now that expires after ``ttl_seconds``."""
        fetched_at = now or utcnow()
        expires_at = None
        if ttl_seconds is not None:
            expires_at = fetched_at + timedelta(seconds=ttl_seconds)
        return cls(
            payload=payload,
            provider=provider,
            fetched_at=fetched_at,
            expires_at=expires_at,
        )

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check if the entry is past its expiry."""
        if self.expires_at is None:
            return False
        return (now or utcnow()) >= self.expires_at

    def age(self, now: datetime | None = None) -> timedelta:
        """Time elapsed since the payload was fetched."""
        return (now or utcnow()) - self.fetched_at

    def copy(self) -> "CacheEntry":
        """Deep copy, so callers never share the stored payload."""
        return CacheEntry(
            payload=copy.deepcopy(self.payload),
            provider=self.provider,
            fetched_at=self.fetched_at,
            expires_at=self.expires_at,
        )

    def to_json(self) -> str:
        """Serialize the entry for storage."""
        return json.dumps(
            {
                "payload": self.payload,
                "provider": self.provider,
                "fetched_at": self.fetched_at.isoformat(),
                "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            },
            default=str,
        )

    @classmethod
    def from_json(cls, data: str | bytes) -> "CacheEntry":
        """Deserialize an entry produced by ``to_json``.

        Raises:
            ValueError: If the data is not a valid serialized entry.
        """
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        raw = json.loads(data)
        try:
            expires_at = raw.get("expires_at")
            return cls(
                payload=raw["payload"],
                provider=raw["provider"],
                fetched_at=datetime.fromisoformat(raw["fetched_at"]),
                expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise ValueError(f"Malformed cache entry: {e}") from e


@dataclass
class CacheConfig:
    """TTLs for cached data, per request kind.

    A TTL of None stores entries without expiry.

    Attributes:
        ohlcv_ttl: TTL for price bars in seconds (default: 1 hour).
        financials_ttl: TTL for financial statements (default: 24 hours).
        metrics_ttl: TTL for key metrics (default: 1 hour).
        ticks_ttl: TTL for historical ticks (default: 1 hour).
        company_info_ttl: TTL for company reference data (default: 24 hours).
        universe_ttl: TTL for universe membership (default: 24 hours).
        default_ttl: TTL for anything else (default: 5 min).
    """

    ohlcv_ttl: int | None = 3600  # 1 hour
    financials_ttl: int | None = 86400  # 24 hours
    metrics_ttl: int | None = 3600  # 1 hour
    ticks_ttl: int | None = 3600  # 1 hour
    company_info_ttl: int | None = 86400  # 24 hours
    universe_ttl: int | None = 86400  # 24 hours
    default_ttl: int | None = 300  # 5 minutes

    def get_ttl(self, kind: RequestKind) -> int | None:
        """Get TTL for a request kind."""
        ttl_map = {
            RequestKind.OHLCV: self.ohlcv_ttl,
            RequestKind.FINANCIALS: self.financials_ttl,
            RequestKind.METRICS: self.metrics_ttl,
            RequestKind.TICKS: self.ticks_ttl,
            RequestKind.COMPANY_INFO: self.company_info_ttl,
            RequestKind.UNIVERSE: self.universe_ttl,
        }
        return ttl_map.get(kind, self.default_ttl)


# Default cache configuration
DEFAULT_CACHE_CONFIG = CacheConfig()


@dataclass
class CacheMetrics:
    """Lookup and storage counters for one cache policy.

    Attributes:
        hits: Lookups answered with a fresh entry.
        misses: Lookups that found nothing usable, expired entries included.
        expired: Misses caused by an entry past its expiry.
        errors: Storage errors.
        evictions: Entries removed by capacity or staleness.
    """

    hits: int = 0
    misses: int = 0
    expired: int = 0
    errors: int = 0
    evictions: int = 0
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)

    @property
    def lookups(self) -> int:
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        """Share of lookups served from the cache, as a percentage."""
        if self.lookups == 0:
            return 0.0
        return (self.hits / self.lookups) * 100

    async def record_hit(self) -> None:
        async with self._lock:
            self.hits += 1

    async def record_miss(self, expired: bool = False) -> None:
        async with self._lock:
            self.misses += 1
            if expired:
                self.expired += 1

    async def record_error(self) -> None:
        async with self._lock:
            self.errors += 1

    async def record_evictions(self, count: int) -> None:
        async with self._lock:
            self.evictions += count

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "expired": self.expired,
            "errors": self.errors,
            "evictions": self.evictions,
            "hit_rate": round(self.hit_rate, 2),
        }

    def reset(self) -> None:
        self.hits = self.misses = self.expired = self.errors = self.evictions = 0


class DataCache(ABC):
    """Key/value cache contract.

    Implementations own their stored entries: ``get`` returns a copy, and
    ``put`` stores a copy. Implementations synchronize internally and may be
    shared by several registries.

    Storage failures raise CacheBackendError. Backends with no storage I/O
    (in-memory, no-op) never raise it.
    """

    #: Short policy name used in logs
    name: str = "cache"

    def __init__(self) -> None:
        self.metrics = CacheMetrics()

    @abstractmethod
    async def get(self, key: CacheKey) -> CacheEntry | None:
        """Return a fresh entry for ``key``, or None on miss or expiry."""

    @abstractmethod
    async def put(self, key: CacheKey, entry: CacheEntry) -> bool:
        """Store ``entry`` under ``key``, replacing any previous entry.

        Returns:
            True if the entry was stored.
        """

    @abstractmethod
    async def invalidate(self, key: CacheKey) -> bool:
        """Remove the entry for ``key``.

        Returns:
            True if an entry was removed.
        """

    @abstractmethod
    async def clear(self) -> None:
        """Remove every entry."""

    @abstractmethod
    async def invalidate_stale(self, max_age: timedelta) -> int:
        """Remove entries fetched more than ``max_age`` ago or already expired.

        Returns:
            Number of entries removed.
        """

    def get_metrics(self) -> dict[str, Any]:
        """Get cache metrics."""
        return self.metrics.to_dict()

    def reset_metrics(self) -> None:
        """Reset cache metrics."""
        self.metrics.reset()

    async def close(self) -> None:
        """Release backend resources."""
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"
