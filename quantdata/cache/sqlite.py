"""SQLite-backed persistent cache policy.

Entries survive process restarts. Each operation opens its own connection,
so one cache instance can be shared across tasks; writes are serialized by a
lock to avoid "database is locked" contention.
"""

import asyncio
import json
import sqlite3
import time
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from quantdata.cache.base import CacheEntry, DataCache, utcnow
from quantdata.core.errors import CacheBackendError
from quantdata.core.models import CacheKey

logger = structlog.get_logger(__name__)

DEFAULT_DB_PATH = Path("data/quantdata_cache.db")

# Fixed-width timestamps so stored values compare correctly as text
_TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def _to_db(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(UTC).strftime(_TS_FORMAT)


def _from_db(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.strptime(value, _TS_FORMAT).replace(tzinfo=UTC)


class SqliteCache(DataCache):
    """Persistent cache stored in a SQLite database file.

    Corrupted rows (unreadable payload or timestamps) are reported as misses
    and removed.

    Example:
        cache = SqliteCache("~/.cache/quantdata.db")
        registry = RegistryBuilder().with_cache(cache).build()
    """

    name = "sqlite"

    def __init__(self, db_path: Path | str | None = None) -> None:
        """Initialize the SQLite cache.

        Args:
            db_path: Path to SQLite database. Uses default if not provided.
        """
        super().__init__()
        self.db_path = Path(db_path).expanduser() if db_path else DEFAULT_DB_PATH
        self._logger = logger.bind(component="sqlite_cache")
        self._initialized = False
        self._init_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()

    async def _ensure_initialized(self) -> None:
        """Ensure the cache table exists."""
        if self._initialized:
            return

        async with self._init_lock:
            if self._initialized:
                return

            self.db_path.parent.mkdir(parents=True, exist_ok=True)

            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS cache_entries (
                        key TEXT PRIMARY KEY,
                        provider TEXT NOT NULL,
                        payload_json TEXT NOT NULL,
                        fetched_at TEXT NOT NULL,
                        expires_at TEXT
                    )
                """)

                await db.execute("""
                    CREATE INDEX IF NOT EXISTS idx_cache_entries_fetched_at
                    ON cache_entries(fetched_at)
                """)

                await db.commit()

            self._initialized = True
            self._logger.info("cache_initialized", db_path=str(self.db_path))

    async def _fail(
        self, operation: str, error: Exception, key: str | None = None
    ) -> CacheBackendError:
        """Record a storage error and build the exception to raise."""
        await self.metrics.record_error()
        self._logger.error(
            f"cache_{operation}_error",
            key=key,
            error=str(error),
            error_type=type(error).__name__,
        )
        return CacheBackendError(
            f"SQLite cache {operation} failed: {error}",
            operation=operation,
            key=key,
        )

    async def get(self, key: CacheKey) -> CacheEntry | None:
        start = time.monotonic()
        try:
            await self._ensure_initialized()
            async with aiosqlite.connect(self.db_path) as db:
                cursor = await db.execute(
                    """
                    SELECT provider, payload_json, fetched_at, expires_at
                    FROM cache_entries WHERE key = ?
                    """,
                    (key.value,),
                )
                row = await cursor.fetchone()
        except (sqlite3.Error, OSError) as e:
            raise await self._fail("get", e, key.value) from e

        latency_ms = (time.monotonic() - start) * 1000
        entry = self._row_to_entry(key, row) if row is not None else None
        expired = False

        if entry is None and row is not None:
            await self.invalidate(key)
        elif entry is not None and entry.is_expired():
            self._logger.debug("cache_expired", key=key.value)
            await self.invalidate(key)
            entry = None
            expired = True

        if entry is None:
            await self.metrics.record_miss(expired)
            self._logger.debug("cache_miss", key=key.value)
            return None

        await self.metrics.record_hit()
        self._logger.debug("cache_hit", key=key.value, latency_ms=round(latency_ms, 2))
        return entry

    def _row_to_entry(self, key: CacheKey, row: Any) -> CacheEntry | None:
        provider, payload_json, fetched_at, expires_at = row
        try:
            fetched = _from_db(fetched_at)
            if fetched is None:
                raise ValueError("missing fetched_at")
            return CacheEntry(
                payload=json.loads(payload_json),
                provider=provider,
                fetched_at=fetched,
                expires_at=_from_db(expires_at),
            )
        except (ValueError, TypeError) as e:
            self._logger.warning("cache_entry_corrupt", key=key.value, error=str(e))
            return None

    async def put(self, key: CacheKey, entry: CacheEntry) -> bool:
        try:
            payload_json = json.dumps(entry.payload)
        except (TypeError, ValueError) as e:
            raise await self._fail("put", e, key.value) from e

        try:
            await self._ensure_initialized()
            async with self._write_lock, aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    """
                    INSERT OR REPLACE INTO cache_entries (
                        key, provider, payload_json, fetched_at, expires_at
                    ) VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        key.value,
                        entry.provider,
                        payload_json,
                        _to_db(entry.fetched_at),
                        _to_db(entry.expires_at),
                    ),
                )
                await db.commit()
        except (sqlite3.Error, OSError) as e:
            raise await self._fail("put", e, key.value) from e

        self._logger.debug("cache_set", key=key.value, provider=entry.provider)
        return True

    async def invalidate(self, key: CacheKey) -> bool:
        try:
            await self._ensure_initialized()
            async with self._write_lock, aiosqlite.connect(self.db_path) as db:
                cursor = await db.execute(
                    "DELETE FROM cache_entries WHERE key = ?", (key.value,)
                )
                await db.commit()
                deleted = cursor.rowcount
        except (sqlite3.Error, OSError) as e:
            raise await self._fail("invalidate", e, key.value) from e

        self._logger.debug("cache_delete", key=key.value, deleted=deleted > 0)
        return deleted > 0

    async def clear(self) -> None:
        try:
            await self._ensure_initialized()
            async with self._write_lock, aiosqlite.connect(self.db_path) as db:
                cursor = await db.execute("DELETE FROM cache_entries")
                await db.commit()
                deleted = cursor.rowcount
        except (sqlite3.Error, OSError) as e:
            raise await self._fail("clear", e) from e

        self._logger.info("cache_cleared", deleted_count=deleted)

    async def invalidate_stale(self, max_age: timedelta) -> int:
        now = utcnow()
        try:
            await self._ensure_initialized()
            async with self._write_lock, aiosqlite.connect(self.db_path) as db:
                cursor = await db.execute(
                    """
                    DELETE FROM cache_entries
                    WHERE fetched_at < ?
                       OR (expires_at IS NOT NULL AND expires_at <= ?)
                    """,
                    (_to_db(now - max_age), _to_db(now)),
                )
                await db.commit()
                deleted = cursor.rowcount
        except (sqlite3.Error, OSError) as e:
            raise await self._fail("invalidate_stale", e) from e

        if deleted:
            await self.metrics.record_evictions(deleted)
        self._logger.info("cache_stale_invalidated", deleted_count=deleted)
        return deleted

    async def count(self) -> int:
        """Number of stored entries, expired ones included."""
        try:
            await self._ensure_initialized()
            async with aiosqlite.connect(self.db_path) as db:
                cursor = await db.execute("SELECT COUNT(*) FROM cache_entries")
                row = await cursor.fetchone()
        except (sqlite3.Error, OSError) as e:
            raise await self._fail("count", e) from e
        return int(row[0]) if row else 0

    def __repr__(self) -> str:
        return f"SqliteCache(db_path={str(self.db_path)!r})"
