"""Market data access with ordered provider fallback and caching.

This package contains:
- Request and payload models with their error types (quantdata.core)
- Provider capability interfaces (quantdata.providers)
- Cache policies (quantdata.cache)
- DataProviderRegistry, which ties providers and cache together
"""

from quantdata.cache import (
    CacheConfig,
    CacheEntry,
    DataCache,
    InMemoryCache,
    NoopCache,
    RedisCache,
    SqliteCache,
)
from quantdata.config import Settings, configure_logging, create_cache
from quantdata.core import (
    AllProvidersFailed,
    CacheBackendError,
    CacheKey,
    Capability,
    CompanyInfo,
    DataFrequency,
    DataRequest,
    DateRange,
    FetchAttempt,
    FetchErrorKind,
    FinancialStatement,
    KeyMetrics,
    NoProviderConfigured,
    OhlcvBar,
    PeriodType,
    ProviderFetchError,
    QuantDataError,
    RequestKind,
    Symbol,
    Tick,
    TimeRange,
    ValidationError,
)
from quantdata.providers import (
    DataProvider,
    FundamentalDataProvider,
    MockProvider,
    PriceDataProvider,
    ReferenceDataProvider,
    TickDataProvider,
    UnimplementedProvider,
)
from quantdata.registry import (
    DataProviderRegistry,
    FetchResult,
    ProviderRecord,
    RegistryBuilder,
)

__version__ = "0.1.0"

__all__ = [
    # Registry
    "DataProviderRegistry",
    "FetchResult",
    "ProviderRecord",
    "RegistryBuilder",
    # Requests
    "CacheKey",
    "Capability",
    "DataFrequency",
    "DataRequest",
    "DateRange",
    "PeriodType",
    "RequestKind",
    "Symbol",
    "TimeRange",
    # Payloads
    "CompanyInfo",
    "FinancialStatement",
    "KeyMetrics",
    "OhlcvBar",
    "Tick",
    # Providers
    "DataProvider",
    "FundamentalDataProvider",
    "MockProvider",
    "PriceDataProvider",
    "ReferenceDataProvider",
    "TickDataProvider",
    "UnimplementedProvider",
    # Cache
    "CacheConfig",
    "CacheEntry",
    "DataCache",
    "InMemoryCache",
    "NoopCache",
    "RedisCache",
    "SqliteCache",
    # Errors
    "AllProvidersFailed",
    "CacheBackendError",
    "FetchAttempt",
    "FetchErrorKind",
    "NoProviderConfigured",
    "ProviderFetchError",
    "QuantDataError",
    "ValidationError",
    # Configuration
    "Settings",
    "configure_logging",
    "create_cache",
]
