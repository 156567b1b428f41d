"""Provider capability interfaces and built-in providers.

This module provides:
- DataProvider and its capability sub-interfaces
- UnimplementedProvider: placeholder that always fails as unimplemented
- MockProvider: deterministic synthetic data for every capability
"""

from quantdata.providers.base import (
    DataProvider,
    FundamentalDataProvider,
    PriceDataProvider,
    ReferenceDataProvider,
    TickDataProvider,
    UnimplementedProvider,
)
from quantdata.providers.mock import MockProvider

__all__ = [
    "DataProvider",
    "FundamentalDataProvider",
    "MockProvider",
    "PriceDataProvider",
    "ReferenceDataProvider",
    "TickDataProvider",
    "UnimplementedProvider",
]
