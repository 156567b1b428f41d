"""Shared test doubles for registry and provider tests."""

import asyncio
from collections.abc import AsyncIterator, Callable
from datetime import UTC, date, datetime
from typing import Any

import pytest

from quantdata.core.errors import ProviderFetchError
from quantdata.core.models import (
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
from quantdata.providers.base import (
    FundamentalDataProvider,
    PriceDataProvider,
    ReferenceDataProvider,
    TickDataProvider,
)


def _bars(close: float, count: int = 3) -> list[OhlcvBar]:
    return [
        OhlcvBar(
            timestamp=datetime(2024, 1, 2 + i, tzinfo=UTC),
            open=close - 1,
            high=close + 1,
            low=close - 2,
            close=close,
            volume=1000 + i,
        )
        for i in range(count)
    ]


class ScriptedProvider(
    PriceDataProvider, FundamentalDataProvider, TickDataProvider, ReferenceDataProvider
):
    """Provider that returns or raises a fixed result and counts calls.

    ``result`` may be a payload, an exception instance, or a callable taking
    the symbol (or universe id) and returning either. When ``gate`` is set,
    every call waits on it after signalling ``started``.
    """

    def __init__(
        self,
        name: str,
        result: Any = None,
        *,
        gate: asyncio.Event | None = None,
        frequencies: tuple[DataFrequency, ...] | None = None,
    ) -> None:
        self.name = name
        self.result = result
        self.gate = gate
        self.started = asyncio.Event()
        self.calls: list[tuple[str, Any]] = []
        self.cancelled = 0
        self.closed = False
        if frequencies is not None:
            self.supported_frequencies = frequencies

    async def _respond(self, operation: str, symbol: Any) -> Any:
        self.calls.append((operation, symbol))
        self.started.set()
        if self.gate is not None:
            try:
                await self.gate.wait()
            except asyncio.CancelledError:
                self.cancelled += 1
                raise
        result = self.result(symbol) if callable(self.result) else self.result
        if isinstance(result, BaseException):
            raise result
        return result

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def fetch_ohlcv(
        self, symbol: Symbol, date_range: DateRange, frequency: DataFrequency
    ) -> list[OhlcvBar]:
        return await self._respond("fetch_ohlcv", symbol)

    async def fetch_financials(
        self, symbol: Symbol, period_type: PeriodType, limit: int | None = None
    ) -> list[FinancialStatement]:
        return await self._respond("fetch_financials", symbol)

    async def fetch_metrics(self, symbol: Symbol, on: date) -> KeyMetrics:
        return await self._respond("fetch_metrics", symbol)

    async def fetch_ticks(self, symbol: Symbol, start: datetime, end: datetime) -> list[Tick]:
        return await self._respond("fetch_ticks", symbol)

    async def subscribe(self, symbols: list[Symbol]) -> AsyncIterator[Tick]:
        return await self._respond("subscribe", tuple(symbols))

    async def company_info(self, symbol: Symbol) -> CompanyInfo:
        return await self._respond("company_info", symbol)

    async def universe(self, universe_id: str) -> list[Symbol]:
        return await self._respond("universe", universe_id)

    async def supports_symbol(self, symbol: Symbol) -> bool:
        return await self._respond("supports_symbol", symbol)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def make_bars() -> Callable[..., list[OhlcvBar]]:
    """Factory for a short list of bars closing at a given price."""
    return _bars


@pytest.fixture
def scripted() -> type[ScriptedProvider]:
    """The ScriptedProvider class, for building providers inside tests."""
    return ScriptedProvider


@pytest.fixture
def date_range() -> DateRange:
    return DateRange(date(2024, 1, 2), date(2024, 1, 5))


@pytest.fixture
def network_error() -> Callable[[str], ProviderFetchError]:
    """Factory for a network failure attributed to a provider."""
    return lambda provider: ProviderFetchError.network(provider, "connection reset")
