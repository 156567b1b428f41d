"""Core value types, payload models and errors.

This module contains:
- Identity and parameter model (Symbol, DateRange, TimeRange, DataFrequency,
  DataRequest)
- Cache key derivation (CacheKey)
- Payload records (OhlcvBar, Tick, FinancialStatement, KeyMetrics, CompanyInfo)
- Error hierarchy and failure aggregation
"""

from quantdata.core.errors import (
    AllProvidersFailed,
    CacheBackendError,
    FetchAttempt,
    FetchErrorKind,
    FetchOutcome,
    NoProviderConfigured,
    ProviderFetchError,
    QuantDataError,
    ValidationError,
)
from quantdata.core.models import (
    CacheKey,
    Capability,
    CompanyInfo,
    DataFrequency,
    DataRequest,
    DateRange,
    FinancialStatement,
    KeyMetrics,
    OhlcvBar,
    PeriodType,
    RequestKind,
    Symbol,
    SymbolText,
    Tick,
    TimeRange,
)

__all__ = [
    # Identity and parameters
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
    "SymbolText",
    "Tick",
    # Errors
    "AllProvidersFailed",
    "CacheBackendError",
    "FetchAttempt",
    "FetchErrorKind",
    "FetchOutcome",
    "NoProviderConfigured",
    "ProviderFetchError",
    "QuantDataError",
    "ValidationError",
]
