"""Provider capability interfaces.

This module provides the abstract base classes every upstream data source
implements to take part in the registry's fallback chain:

- DataProvider: identity and capability checks
- PriceDataProvider: OHLCV bars
- FundamentalDataProvider: financial statements and key metrics
- TickDataProvider: historical ticks and live tick streams
- ReferenceDataProvider: company metadata and universe membership

Contract for implementers:
- One fetch call is one logical attempt. Do not retry internally in a way
  that hides partial failure from the registry.
- Raise ProviderFetchError (see its constructors) when the request cannot be
  served. Never return an empty result to signal "nothing here".
- Adapters know nothing about caching.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from datetime import date, datetime

import structlog

from quantdata.core.errors import FetchErrorKind, ProviderFetchError
from quantdata.core.models import (
    Capability,
    CompanyInfo,
    DataFrequency,
    DateRange,
    FinancialStatement,
    KeyMetrics,
    OhlcvBar,
    PeriodType,
    Symbol,
    Tick,
)

logger = structlog.get_logger(__name__)


class DataProvider(ABC):
    """Base class for all data providers.

    Subclasses set ``name`` to a stable identifier; it appears in aggregated
    errors and in cache entry metadata.

    Example:
        class MyPriceSource(PriceDataProvider):
            name = "my_source"
            supported_frequencies = (DataFrequency.DAILY,)

            async def fetch_ohlcv(self, symbol, date_range, frequency):
                ...
    """

    #: Stable provider name
    name: str
    #: Human-readable description
    description: str = ""
    #: Price bar frequencies this provider can serve
    supported_frequencies: tuple[DataFrequency, ...] = tuple(DataFrequency)

    @property
    def capabilities(self) -> frozenset[Capability]:
        """Capabilities declared by the interfaces this provider implements."""
        declared = set()
        if isinstance(self, PriceDataProvider):
            declared.add(Capability.PRICE)
        if isinstance(self, FundamentalDataProvider):
            declared.add(Capability.FUNDAMENTAL)
        if isinstance(self, TickDataProvider):
            declared.add(Capability.TICK)
        if isinstance(self, ReferenceDataProvider):
            declared.add(Capability.REFERENCE)
        return frozenset(declared)

    def supports(self, capability: Capability) -> bool:
        """Check whether the provider serves a capability."""
        return capability in self.capabilities

    def supports_frequency(self, frequency: DataFrequency) -> bool:
        """Check whether the provider serves price bars at a frequency."""
        return frequency in self.supported_frequencies

    async def close(self) -> None:
        """Release any resources held by the provider."""
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class PriceDataProvider(DataProvider):
    """Provider for OHLCV price data."""

    @abstractmethod
    async def fetch_ohlcv(
        self,
        symbol: Symbol,
        date_range: DateRange,
        frequency: DataFrequency,
    ) -> list[OhlcvBar]:
        """Fetch OHLCV bars for a symbol, oldest first.

        Raises:
            ProviderFetchError: If the bars cannot be served.
        """

    async def fetch_ohlcv_batch(
        self,
        symbols: list[Symbol],
        date_range: DateRange,
        frequency: DataFrequency,
    ) -> dict[Symbol, list[OhlcvBar]]:
        """Fetch OHLCV bars for several symbols.

        The default implementation calls ``fetch_ohlcv`` sequentially and
        skips symbols the provider does not know. Providers with a native
        batch endpoint should override it.

        Raises:
            ProviderFetchError: On any failure other than an unknown symbol.
        """
        results: dict[Symbol, list[OhlcvBar]] = {}
        for symbol in symbols:
            try:
                results[symbol] = await self.fetch_ohlcv(symbol, date_range, frequency)
            except ProviderFetchError as e:
                if e.kind is not FetchErrorKind.NOT_FOUND:
                    raise
                logger.debug("batch_symbol_skipped", provider=self.name, symbol=str(symbol))
        return results


class FundamentalDataProvider(DataProvider):
    """Provider for financial statements and key metrics."""

    @abstractmethod
    async def fetch_financials(
        self,
        symbol: Symbol,
        period_type: PeriodType,
        limit: int | None = None,
    ) -> list[FinancialStatement]:
        """Fetch financial statements, most recent period first.

        Args:
            symbol: Instrument to fetch.
            period_type: Annual or quarterly statements.
            limit: Maximum number of periods to return.

        Raises:
            ProviderFetchError: If the statements cannot be served.
        """

    @abstractmethod
    async def fetch_metrics(self, symbol: Symbol, on: date) -> KeyMetrics:
        """Fetch key financial metrics as of a date.

        Raises:
            ProviderFetchError: If the metrics cannot be served.
        """


class TickDataProvider(DataProvider):
    """Provider for tick-level trades and quotes."""

    @abstractmethod
    async def fetch_ticks(
        self,
        symbol: Symbol,
        start: datetime,
        end: datetime,
    ) -> list[Tick]:
        """Fetch historical ticks between two UTC instants, oldest first.

        Raises:
            ProviderFetchError: If the ticks cannot be served.
        """

    async def subscribe(self, symbols: list[Symbol]) -> AsyncIterator[Tick]:
        """Open a live tick stream for several symbols.

        Returns an async iterator of ticks as they arrive. Providers without
        a live feed keep this default, which fails as unsupported.

        Raises:
            ProviderFetchError: If the stream cannot be opened.
        """
        raise ProviderFetchError.unsupported(self.name, "Live tick streams are not supported")


class ReferenceDataProvider(DataProvider):
    """Provider for company reference data."""

    @abstractmethod
    async def company_info(self, symbol: Symbol) -> CompanyInfo:
        """Fetch static company metadata.

        Raises:
            ProviderFetchError: If the metadata cannot be served.
        """

    async def universe(self, universe_id: str) -> list[Symbol]:
        """Fetch the member symbols of a named universe (e.g. "sp500").

        Raises:
            ProviderFetchError: If the universe cannot be served. The default
                implementation fails as unsupported.
        """
        raise ProviderFetchError.unsupported(self.name, "Universe lookups are not supported")

    async def supports_symbol(self, symbol: Symbol) -> bool:
        """Check whether the provider knows a symbol.

        The default looks the company up and treats a not-found failure as
        unknown. Other failures propagate.
        """
        try:
            await self.company_info(symbol)
        except ProviderFetchError as e:
            if e.kind is FetchErrorKind.NOT_FOUND:
                return False
            raise
        return True


class UnimplementedProvider(
    PriceDataProvider, FundamentalDataProvider, TickDataProvider, ReferenceDataProvider
):
    """Placeholder provider whose every fetch fails as unimplemented.

    Useful for registering an integration before its adapter exists. The
    registry treats these failures like any other and moves on.
    """

    def __init__(self, name: str, description: str = "Not yet implemented") -> None:
        self.name = name
        self.description = description

    async def fetch_ohlcv(
        self,
        symbol: Symbol,
        date_range: DateRange,
        frequency: DataFrequency,
    ) -> list[OhlcvBar]:
        raise ProviderFetchError.unimplemented(self.name, "fetch_ohlcv")

    async def fetch_financials(
        self,
        symbol: Symbol,
        period_type: PeriodType,
        limit: int | None = None,
    ) -> list[FinancialStatement]:
        raise ProviderFetchError.unimplemented(self.name, "fetch_financials")

    async def fetch_metrics(self, symbol: Symbol, on: date) -> KeyMetrics:
        raise ProviderFetchError.unimplemented(self.name, "fetch_metrics")

    async def fetch_ticks(self, symbol: Symbol, start: datetime, end: datetime) -> list[Tick]:
        raise ProviderFetchError.unimplemented(self.name, "fetch_ticks")

    async def subscribe(self, symbols: list[Symbol]) -> AsyncIterator[Tick]:
        raise ProviderFetchError.unimplemented(self.name, "subscribe")

    async def company_info(self, symbol: Symbol) -> CompanyInfo:
        raise ProviderFetchError.unimplemented(self.name, "company_info")

    async def universe(self, universe_id: str) -> list[Symbol]:
        raise ProviderFetchError.unimplemented(self.name, "universe")

    async def supports_symbol(self, symbol: Symbol) -> bool:
        raise ProviderFetchError.unimplemented(self.name, "supports_symbol")
