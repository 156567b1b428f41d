"""Configuration settings, logging setup and cache selection.

Settings are read from environment variables with sensible defaults. Nothing
here is global: callers load Settings and pass them where needed.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

import structlog

from quantdata.cache.base import DataCache
from quantdata.cache.memory import InMemoryCache
from quantdata.cache.noop import NoopCache
from quantdata.cache.redis import RedisCache
from quantdata.cache.sqlite import DEFAULT_DB_PATH, SqliteCache

CACHE_BACKENDS = ("sqlite", "memory", "redis", "none")


def _get_bool_env(name: str, default: bool = False) -> bool:
    """Get a boolean value from environment variable.

    Args:
        name: Environment variable name.
        default: Default value if not set.

    Returns:
        Boolean value from environment.
    """
    value = os.getenv(name, "").lower()
    if value in ("true", "1", "yes", "on"):
        return True
    if value in ("false", "0", "no", "off"):
        return False
    return default


def _get_int_env(name: str) -> int | None:
    value = os.getenv(name, "").strip()
    if not value:
        return None
    try:
        return int(value)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {value!r}") from e


@dataclass
class Settings:
    """Settings loaded from environment variables.

    Attributes:
        CACHE_BACKEND: Cache policy: sqlite, memory, redis or none.
        CACHE_PATH: SQLite database path for the sqlite backend.
        CACHE_MAX_ENTRIES: Capacity of the memory backend (None is unbounded).
        REDIS_URL: Redis connection URL for the redis backend.
        SINGLE_FLIGHT: Share one dispatch among concurrent identical requests.
        LOG_LEVEL: Logging level.
        LOG_JSON: Render logs as JSON instead of console output.
    """

    # Cache
    CACHE_BACKEND: str = "sqlite"
    CACHE_PATH: str = str(DEFAULT_DB_PATH)
    CACHE_MAX_ENTRIES: int | None = None
    REDIS_URL: str = "redis://localhost:6379"

    # Registry
    SINGLE_FLIGHT: bool = True

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    def __post_init__(self) -> None:
        self.CACHE_BACKEND = self.CACHE_BACKEND.lower()
        if self.CACHE_BACKEND not in CACHE_BACKENDS:
            raise ValueError(
                f"Unknown cache backend {self.CACHE_BACKEND!r}, "
                f"expected one of {', '.join(CACHE_BACKENDS)}"
            )

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings from environment variables.

        Returns:
            Settings instance populated from environment.
        """
        return cls(
            CACHE_BACKEND=os.getenv("QUANTDATA_CACHE_BACKEND", "sqlite"),
            CACHE_PATH=os.getenv("QUANTDATA_CACHE_PATH", str(DEFAULT_DB_PATH)),
            CACHE_MAX_ENTRIES=_get_int_env("QUANTDATA_CACHE_MAX_ENTRIES"),
            REDIS_URL=os.getenv("REDIS_URL", "redis://localhost:6379"),
            SINGLE_FLIGHT=_get_bool_env("QUANTDATA_SINGLE_FLIGHT", default=True),
            LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
            LOG_JSON=_get_bool_env("LOG_JSON", default=False),
        )


def create_cache(settings: Settings) -> DataCache:
    """Create the cache policy selected by ``settings``."""
    if settings.CACHE_BACKEND == "sqlite":
        return SqliteCache(Path(settings.CACHE_PATH))
    if settings.CACHE_BACKEND == "memory":
        return InMemoryCache(max_entries=settings.CACHE_MAX_ENTRIES)
    if settings.CACHE_BACKEND == "redis":
        return RedisCache.from_url(settings.REDIS_URL)
    return NoopCache()


def configure_logging(level: str = "INFO", json: bool = False) -> None:
    """Configure structlog output.

    Args:
        level: Minimum level name (DEBUG, INFO, WARNING, ERROR).
        json: Render one JSON object per line instead of console output.
    """
    renderer = (
        structlog.processors.JSONRenderer()
        if json
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        logger_factory=structlog.PrintLoggerFactory(),
    )
