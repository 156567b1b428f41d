"""Deterministic synthetic data provider.

Serves every capability from generated data so the registry can be exercised
without network access. Output depends only on the request parameters.
"""

import asyncio
from collections.abc import AsyncIterator
from datetime import UTC, date, datetime, time, timedelta

import structlog

from quantdata.core.errors import FetchErrorKind, ProviderFetchError
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

logger = structlog.get_logger(__name__)

MOCK_PRICES: dict[str, float] = {
    "AAPL": 185.50,
    "GOOGL": 140.25,
    "MSFT": 378.90,
    "AMZN": 178.25,
    "NVDA": 495.50,
    "TSLA": 248.50,
}

MOCK_UNIVERSES: dict[str, tuple[str, ...]] = {
    "sp500": ("AAPL", "AMZN", "GOOGL", "MSFT", "NVDA", "TSLA"),
    "nasdaq100": ("AAPL", "AMZN", "GOOGL", "MSFT", "NVDA"),
}

# Upper bound on ticks returned by one historical request
MAX_MOCK_TICKS = 1_000

# Calendar days between consecutive bars
_BAR_STEP_DAYS = {
    DataFrequency.DAILY: 1,
    DataFrequency.WEEKLY: 7,
    DataFrequency.MONTHLY: 30,
}


class MockProvider(
    PriceDataProvider, FundamentalDataProvider, TickDataProvider, ReferenceDataProvider
):
    """Synthetic provider for development and tests.

    Example:
        provider = MockProvider(unknown_symbols={"ZZZZ"})
        bars = await provider.fetch_ohlcv(Symbol("AAPL"), date_range, DataFrequency.DAILY)
    """

    supported_frequencies = (DataFrequency.DAILY, DataFrequency.WEEKLY, DataFrequency.MONTHLY)

    def __init__(
        self,
        name: str = "mock",
        unknown_symbols: set[str] | None = None,
        stream_rounds: int = 3,
    ) -> None:
        """Initialize the mock provider.

        Args:
            name: Provider name reported to the registry.
            unknown_symbols: Symbols to answer with a not-found failure.
            stream_rounds: Ticks per symbol a live stream yields before ending.
        """
        self.name = name
        self.description = "Deterministic synthetic market data"
        self._unknown = {Symbol.of(s) for s in unknown_symbols or set()}
        self._stream_rounds = stream_rounds
        self._logger = logger.bind(component="mock_provider", provider=name)

    def _check_known(self, symbol: Symbol) -> None:
        if symbol in self._unknown:
            raise ProviderFetchError.not_found(self.name, symbol)

    def _base_price(self, symbol: Symbol) -> float:
        return MOCK_PRICES.get(symbol.value, 100.0)

    async def fetch_ohlcv(
        self,
        symbol: Symbol,
        date_range: DateRange,
        frequency: DataFrequency,
    ) -> list[OhlcvBar]:
        self._check_known(symbol)
        if not self.supports_frequency(frequency):
            raise ProviderFetchError.unsupported(
                self.name, f"Frequency {frequency.value} not supported"
            )

        step = _BAR_STEP_DAYS[frequency]
        days = date_range.iter_days(step)
        if frequency is DataFrequency.DAILY:
            days = [d for d in days if d.weekday() < 5]
        if not days:
            raise ProviderFetchError.data_not_available(
                self.name, f"No trading days for {symbol} in {date_range}"
            )

        base_price = self._base_price(symbol)
        bars = []
        for i, day in enumerate(days):
            bars.append(
                OhlcvBar(
                    timestamp=datetime.combine(day, time(), tzinfo=UTC),
                    open=round(base_price * (1 + i * 0.001), 4),
                    high=round(base_price * (1 + i * 0.002), 4),
                    low=round(base_price * (1 - i * 0.001), 4),
                    close=round(base_price * (1 + i * 0.0015), 4),
                    volume=1_000_000 + i * 10_000,
                )
            )

        self._logger.debug("mock_bars_generated", symbol=str(symbol), count=len(bars))
        return bars

    async def fetch_financials(
        self,
        symbol: Symbol,
        period_type: PeriodType,
        limit: int | None = None,
    ) -> list[FinancialStatement]:
        self._check_known(symbol)
        count = limit or 4
        months = 3 if period_type is PeriodType.QUARTERLY else 12
        revenue = self._base_price(symbol) * 1_000_000_000

        statements = []
        period_end = date(2024, 12, 31)
        for i in range(count):
            statements.append(
                FinancialStatement(
                    symbol=symbol.value,
                    period_end=period_end,
                    period_type=period_type,
                    fiscal_year=period_end.year,
                    fiscal_quarter=(period_end.month - 1) // 3 + 1
                    if period_type is PeriodType.QUARTERLY
                    else None,
                    revenue=revenue * (1 - i * 0.05),
                    net_income=revenue * 0.2 * (1 - i * 0.05),
                    total_assets=revenue * 3,
                    stockholders_equity=revenue * 1.5,
                )
            )
            period_end = _months_before(period_end, months)
        return statements

    async def fetch_metrics(self, symbol: Symbol, on: date) -> KeyMetrics:
        self._check_known(symbol)
        price = self._base_price(symbol)
        return KeyMetrics(
            symbol=symbol.value,
            date=on,
            market_cap=price * 1_000_000_000,
            pe_ratio=25.0,
            pb_ratio=8.0,
            dividend_yield=0.005,
            beta=1.1,
            week_52_high=price * 1.2,
            week_52_low=price * 0.8,
        )

    async def fetch_ticks(self, symbol: Symbol, start: datetime, end: datetime) -> list[Tick]:
        self._check_known(symbol)
        price = self._base_price(symbol)
        ticks = []
        timestamp = start
        while timestamp <= end and len(ticks) < MAX_MOCK_TICKS:
            ticks.append(self._tick(symbol, timestamp, len(ticks), price))
            timestamp += timedelta(minutes=1)
        return ticks

    async def subscribe(self, symbols: list[Symbol]) -> AsyncIterator[Tick]:
        for symbol in symbols:
            self._check_known(symbol)
        self._logger.debug("mock_stream_opened", symbols=[str(s) for s in symbols])
        return self._stream(list(symbols))

    async def _stream(self, symbols: list[Symbol]) -> AsyncIterator[Tick]:
        for i in range(self._stream_rounds):
            for symbol in symbols:
                yield self._tick(symbol, datetime.now(UTC), i, self._base_price(symbol))
            await asyncio.sleep(0)

    def _tick(self, symbol: Symbol, timestamp: datetime, i: int, price: float) -> Tick:
        return Tick(
            symbol=symbol.value,
            timestamp=timestamp,
            price=round(price * (1 + (i % 10) * 0.0001), 4),
            size=100 + (i % 5) * 100,
            exchange="NASDAQ",
            conditions=["regular"],
        )

    async def company_info(self, symbol: Symbol) -> CompanyInfo:
        self._check_known(symbol)
        return CompanyInfo(
            symbol=symbol.value,
            name=f"{symbol} Inc.",
            description=f"Mock company data for {symbol}",
            exchange="NASDAQ",
            sector="Technology",
            industry="Software",
            country="US",
        )

    async def universe(self, universe_id: str) -> list[Symbol]:
        members = MOCK_UNIVERSES.get(universe_id.strip().lower())
        if members is None:
            raise ProviderFetchError(
                self.name, FetchErrorKind.NOT_FOUND, f"Unknown universe: {universe_id}"
            )
        return [Symbol(s) for s in members if Symbol(s) not in self._unknown]


def _months_before(day: date, months: int) -> date:
    """Last day of the month ``months`` before ``day``'s month."""
    year, month = day.year, day.month - months
    while month < 1:
        month += 12
        year -= 1
    first_of_next = date(year + (month == 12), month % 12 + 1, 1)
    return first_of_next - timedelta(days=1)
