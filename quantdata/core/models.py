"""Identity, parameter and payload models for market data requests.

This module defines:
- Value types used as request parameters and cache keys (Symbol, DateRange,
  TimeRange, DataFrequency, PeriodType, DataRequest, CacheKey)
- The Pydantic payload records returned by providers (OhlcvBar, Tick,
  FinancialStatement, KeyMetrics, CompanyInfo)

Value types validate at construction so malformed requests fail before any
cache or provider I/O happens.
"""

import re
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from enum import Enum
from typing import Annotated, Any
from urllib.parse import quote

from pydantic import BaseModel, BeforeValidator, Field, field_validator

from quantdata.core.errors import ValidationError

_WHITESPACE = re.compile(r"\s+")


class Capability(str, Enum):
    """Category of data a provider can serve."""

    PRICE = "price"
    FUNDAMENTAL = "fundamental"
    TICK = "tick"
    REFERENCE = "reference"


class DataFrequency(str, Enum):
    """Granularity of time series data."""

    TICK = "tick"
    SECOND = "second"
    MINUTE = "minute"
    FIVE_MINUTE = "five_minute"
    FIFTEEN_MINUTE = "fifteen_minute"
    THIRTY_MINUTE = "thirty_minute"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"

    @property
    def is_intraday(self) -> bool:
        """True for tick through hourly granularities."""
        return self in _INTRADAY

    @property
    def is_fundamental(self) -> bool:
        """True for reporting-period granularities (quarterly, annual)."""
        return self in (DataFrequency.QUARTERLY, DataFrequency.ANNUAL)


_INTRADAY = frozenset(
    {
        DataFrequency.TICK,
        DataFrequency.SECOND,
        DataFrequency.MINUTE,
        DataFrequency.FIVE_MINUTE,
        DataFrequency.FIFTEEN_MINUTE,
        DataFrequency.THIRTY_MINUTE,
        DataFrequency.HOURLY,
    }
)


class PeriodType(str, Enum):
    """Reporting period for fundamental data."""

    ANNUAL = "annual"
    QUARTERLY = "quarterly"

    @property
    def frequency(self) -> DataFrequency:
        """Matching data frequency."""
        if self is PeriodType.QUARTERLY:
            return DataFrequency.QUARTERLY
        return DataFrequency.ANNUAL


class RequestKind(str, Enum):
    """Kind of data request; each kind is served by exactly one capability."""

    OHLCV = "ohlcv"
    FINANCIALS = "financials"
    METRICS = "metrics"
    TICKS = "ticks"
    COMPANY_INFO = "company_info"
    UNIVERSE = "universe"

    @property
    def capability(self) -> Capability:
        """Capability that serves this kind of request."""
        if self is RequestKind.OHLCV:
            return Capability.PRICE
        if self is RequestKind.TICKS:
            return Capability.TICK
        if self in (RequestKind.COMPANY_INFO, RequestKind.UNIVERSE):
            return Capability.REFERENCE
        return Capability.FUNDAMENTAL


@dataclass(frozen=True)
class Symbol:
    """A normalized instrument identifier.

    Symbols are uppercased and whitespace-normalized on creation, so
    ``Symbol(" aapl ")`` and ``Symbol("AAPL")`` are equal and hash alike.

    Raises:
        ValidationError: If the symbol is empty or blank.
    """

    value: str

    def __post_init__(self) -> None:
        if not isinstance(self.value, str):
            raise ValidationError(
                f"Symbol must be a string, got {type(self.value).__name__}",
                field="symbol",
            )
        normalized = _WHITESPACE.sub(" ", self.value.strip()).upper()
        if not normalized:
            raise ValidationError("Symbol must not be empty", field="symbol")
        object.__setattr__(self, "value", normalized)

    @classmethod
    def of(cls, symbol: "Symbol | str") -> "Symbol":
        """Coerce a string or Symbol into a Symbol."""
        if isinstance(symbol, Symbol):
            return symbol
        return cls(symbol)

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class DateRange:
    """Inclusive range of calendar dates.

    Raises:
        ValidationError: If start is after end. The bounds are never swapped.
    """

    start: date
    end: date

    def __post_init__(self) -> None:
        for name in ("start", "end"):
            value = getattr(self, name)
            # datetime is a date subclass but would make keys time-dependent
            if not isinstance(value, date) or isinstance(value, datetime):
                raise ValidationError(
                    f"DateRange.{name} must be a date, got {type(value).__name__}",
                    field=name,
                )
        if self.start > self.end:
            raise ValidationError(
                f"Invalid date range: start {self.start} is after end {self.end}",
                field="date_range",
            )

    @classmethod
    def single(cls, day: date) -> "DateRange":
        """Range covering exactly one day."""
        return cls(day, day)

    @property
    def days(self) -> int:
        """Number of calendar days covered, inclusive."""
        return (self.end - self.start).days + 1

    def __contains__(self, day: object) -> bool:
        if isinstance(day, datetime):
            day = day.date()
        if not isinstance(day, date):
            return False
        return self.start <= day <= self.end

    def iter_days(self, step: int = 1) -> list[date]:
        """Dates from start to end, inclusive, every ``step`` days."""
        return [
            self.start + timedelta(days=offset)
            for offset in range(0, self.days, max(step, 1))
        ]

    def __str__(self) -> str:
        return f"{self.start.isoformat()}..{self.end.isoformat()}"


@dataclass(frozen=True)
class TimeRange:
    """Inclusive range of instants, stored in UTC.

    Raises:
        ValidationError: If a bound is naive or start is after end.
    """

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        for name in ("start", "end"):
            value = getattr(self, name)
            if not isinstance(value, datetime) or value.utcoffset() is None:
                raise ValidationError(
                    f"TimeRange.{name} must be a timezone-aware datetime",
                    field=name,
                )
            object.__setattr__(self, name, value.astimezone(UTC))
        if self.start > self.end:
            raise ValidationError(
                f"Invalid time range: start {self.start} is after end {self.end}",
                field="time_range",
            )

    def __contains__(self, instant: object) -> bool:
        if not isinstance(instant, datetime) or instant.utcoffset() is None:
            return False
        return self.start <= instant <= self.end

    def __str__(self) -> str:
        return f"{self.start.isoformat()}..{self.end.isoformat()}"


def _coerce_enum(request: "DataRequest", name: str, enum_type: type[Enum]) -> None:
    value = getattr(request, name)
    if value is None or isinstance(value, enum_type):
        return
    try:
        object.__setattr__(request, name, enum_type(value))
    except (ValueError, TypeError) as e:
        allowed = ", ".join(member.value for member in enum_type)
        raise ValidationError(
            f"Invalid {name} {value!r}; expected one of: {allowed}",
            field=name,
        ) from e


@dataclass(frozen=True)
class DataRequest:
    """A caller-facing description of one data request.

    Use the ``ohlcv``/``financials``/``metrics``/``ticks``/``company_info``/
    ``universe`` constructors rather than building instances by hand; they
    fill in the fields each kind requires. Validation runs in
    ``__post_init__`` either way, and plain strings are accepted for the enum
    fields.
    """

    kind: RequestKind
    symbol: Symbol | None
    date_range: DateRange | None = None
    frequency: DataFrequency | None = None
    period_type: PeriodType | None = None
    limit: int | None = None
    qualifier_extra: str | None = None
    time_range: TimeRange | None = None
    universe_id: str | None = None

    def __post_init__(self) -> None:
        if self.kind is None:
            raise ValidationError("Request kind is required", field="kind")
        _coerce_enum(self, "kind", RequestKind)
        _coerce_enum(self, "frequency", DataFrequency)
        _coerce_enum(self, "period_type", PeriodType)

        if self.kind is RequestKind.UNIVERSE:
            self._validate_universe()
        elif not isinstance(self.symbol, Symbol):
            if self.symbol is None:
                raise ValidationError(
                    f"{self.kind.value} requests require a symbol", field="symbol"
                )
            object.__setattr__(self, "symbol", Symbol.of(self.symbol))

        if self.kind is RequestKind.OHLCV:
            if self.date_range is None or self.frequency is None:
                raise ValidationError(
                    "OHLCV requests require a date range and a frequency",
                    field="date_range",
                )
            if self.frequency.is_fundamental:
                raise ValidationError(
                    f"Frequency {self.frequency.value} is not valid for price bars",
                    field="frequency",
                )
        elif self.kind is RequestKind.FINANCIALS:
            period_type = self.period_type or PeriodType.ANNUAL
            object.__setattr__(self, "period_type", period_type)
            if self.frequency is None:
                object.__setattr__(self, "frequency", period_type.frequency)
            elif self.frequency != period_type.frequency:
                raise ValidationError(
                    f"Frequency {self.frequency.value} does not match period "
                    f"type {period_type.value}",
                    field="frequency",
                )
            if self.limit is not None and (
                not isinstance(self.limit, int) or isinstance(self.limit, bool) or self.limit < 1
            ):
                raise ValidationError("limit must be a positive integer", field="limit")
        elif self.kind is RequestKind.METRICS:
            if self.date_range is None or self.date_range.days != 1:
                raise ValidationError(
                    "Metrics requests require a single-day date range",
                    field="date_range",
                )
        elif self.kind is RequestKind.TICKS:
            if self.time_range is None:
                raise ValidationError("Tick requests require a time range", field="time_range")
            if self.frequency is None:
                object.__setattr__(self, "frequency", DataFrequency.TICK)
            elif self.frequency is not DataFrequency.TICK:
                raise ValidationError(
                    f"Frequency {self.frequency.value} is not valid for ticks",
                    field="frequency",
                )

    def _validate_universe(self) -> None:
        if self.symbol is not None:
            raise ValidationError("Universe requests do not take a symbol", field="symbol")
        universe_id = self.universe_id.strip().lower() if isinstance(self.universe_id, str) else ""
        if not universe_id:
            raise ValidationError("Universe requests require a universe id", field="universe_id")
        object.__setattr__(self, "universe_id", universe_id)

    @classmethod
    def ohlcv(
        cls,
        symbol: Symbol | str,
        date_range: DateRange,
        frequency: DataFrequency = DataFrequency.DAILY,
    ) -> "DataRequest":
        """Request OHLCV bars."""
        return cls(
            kind=RequestKind.OHLCV,
            symbol=Symbol.of(symbol),
            date_range=date_range,
            frequency=frequency,
        )

    @classmethod
    def financials(
        cls,
        symbol: Symbol | str,
        period_type: PeriodType = PeriodType.ANNUAL,
        limit: int | None = None,
    ) -> "DataRequest":
        """Request financial statements, most recent first."""
        return cls(
            kind=RequestKind.FINANCIALS,
            symbol=Symbol.of(symbol),
            period_type=period_type,
            limit=limit,
        )

    @classmethod
    def metrics(cls, symbol: Symbol | str, on: date) -> "DataRequest":
        """Request key metrics as of a date."""
        return cls(
            kind=RequestKind.METRICS,
            symbol=Symbol.of(symbol),
            date_range=DateRange.single(on),
        )

    @classmethod
    def company_info(cls, symbol: Symbol | str) -> "DataRequest":
        """Request company reference data."""
        return cls(kind=RequestKind.COMPANY_INFO, symbol=Symbol.of(symbol))

    @classmethod
    def ticks(cls, symbol: Symbol | str, start: datetime, end: datetime) -> "DataRequest":
        """Request historical ticks between two instants."""
        return cls(
            kind=RequestKind.TICKS,
            symbol=Symbol.of(symbol),
            time_range=TimeRange(start, end),
        )

    @classmethod
    def universe(cls, universe_id: str) -> "DataRequest":
        """Request the member symbols of a named universe, e.g. ``sp500``."""
        return cls(kind=RequestKind.UNIVERSE, symbol=None, universe_id=universe_id)

    @property
    def capability(self) -> Capability:
        """Capability that serves this request."""
        return self.kind.capability

    @property
    def subject(self) -> str:
        """The symbol, or the universe id for universe requests."""
        if self.symbol is not None:
            return self.symbol.value
        assert self.universe_id is not None
        return self.universe_id

    @property
    def qualifier(self) -> str | None:
        """Provider-specific qualifier folded into the cache key."""
        parts: list[str] = []
        if self.period_type is not None:
            parts.append(self.period_type.value)
        if self.limit is not None:
            parts.append(f"limit={self.limit}")
        if self.qualifier_extra:
            parts.append(self.qualifier_extra)
        return ",".join(parts) or None

    def describe(self) -> str:
        """Short human-readable description, used in errors and logs."""
        parts = [self.kind.value, self.subject]
        if self.frequency is not None:
            parts.append(self.frequency.value)
        if self.date_range is not None:
            parts.append(str(self.date_range))
        if self.time_range is not None:
            parts.append(str(self.time_range))
        if self.qualifier:
            parts.append(f"[{self.qualifier}]")
        return " ".join(parts)

    def cache_key(self) -> "CacheKey":
        """Deterministic cache key for this request."""
        return CacheKey.for_request(self)


@dataclass(frozen=True)
class CacheKey:
    """Deterministic cache key derived from a request.

    Two logically identical requests always produce byte-identical keys.
    Components are percent-encoded so separators inside a symbol or qualifier
    cannot collide with the key structure.
    """

    PREFIX = "quantdata:v1"
    EMPTY = "-"

    value: str

    @classmethod
    def for_request(cls, request: DataRequest) -> "CacheKey":
        """Build the key for a request."""
        span = request.date_range or request.time_range
        parts = [
            request.kind.value,
            request.subject,
            request.frequency.value if request.frequency else None,
            span.start.isoformat() if span else None,
            span.end.isoformat() if span else None,
            request.qualifier,
        ]
        encoded = [cls.EMPTY if p is None else quote(p, safe="") for p in parts]
        return cls(f"{cls.PREFIX}:{':'.join(encoded)}")

    @classmethod
    def pattern(cls, kind: RequestKind | None = None) -> str:
        """Glob pattern matching every key (optionally of one kind)."""
        if kind is None:
            return f"{cls.PREFIX}:*"
        return f"{cls.PREFIX}:{kind.value}:*"

    def __str__(self) -> str:
        return self.value


# ============================================================================
# Payload records
# ============================================================================


def _symbol_text(value: Any) -> str:
    return Symbol.of(value).value


#: Symbol string normalized like Symbol; accepts a Symbol or a str
SymbolText = Annotated[str, BeforeValidator(_symbol_text)]


class _SymbolRecord(BaseModel):
    """Base for records keyed by a symbol; normalizes the symbol field."""

    symbol: str

    @field_validator("symbol")
    @classmethod
    def normalize_symbol(cls, value: str) -> str:
        return Symbol.of(value).value


class OhlcvBar(BaseModel):
    """OHLCV bar for one period.

    Attributes:
        timestamp: Start of the bar period.
        open: Opening price.
        high: Highest price during the period.
        low: Lowest price during the period.
        close: Closing price.
        volume: Traded volume.
        adjusted_close: Split/dividend adjusted close, if known.
    """

    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float
    adjusted_close: float | None = None


class Tick(_SymbolRecord):
    """A single trade or quote.

    Attributes:
        symbol: Normalized ticker symbol.
        timestamp: When the trade or quote happened.
        price: Trade or quote price.
        size: Trade or quote size.
        exchange: Exchange where it happened, if known.
        conditions: Trade condition codes, e.g. "regular" or "odd_lot".
    """

    symbol: str
    timestamp: datetime
    price: float
    size: float
    exchange: str | None = None
    conditions: list[str] = Field(default_factory=list)


class FinancialStatement(_SymbolRecord):
    """Financial statement data for one reporting period.

    Line items are optional because coverage varies between providers.
    """

    symbol: str
    period_end: date
    period_type: PeriodType = PeriodType.ANNUAL
    fiscal_year: int | None = None
    fiscal_quarter: int | None = None

    # Balance sheet
    total_assets: float | None = None
    current_assets: float | None = None
    cash_and_equivalents: float | None = None
    total_liabilities: float | None = None
    current_liabilities: float | None = None
    long_term_debt: float | None = None
    total_debt: float | None = None
    stockholders_equity: float | None = None

    # Income statement
    revenue: float | None = None
    cost_of_revenue: float | None = None
    gross_profit: float | None = None
    operating_income: float | None = None
    net_income: float | None = None
    ebitda: float | None = None
    eps_basic: float | None = None
    eps_diluted: float | None = None

    # Cash flow statement
    operating_cash_flow: float | None = None
    capital_expenditures: float | None = None
    free_cash_flow: float | None = None
    dividends_paid: float | None = None

    shares_outstanding: float | None = None


class KeyMetrics(_SymbolRecord):
    """Key financial ratios for a symbol as of a date."""

    symbol: str
    date: date

    market_cap: float | None = None
    enterprise_value: float | None = None
    pe_ratio: float | None = None
    forward_pe: float | None = None
    pb_ratio: float | None = None
    ps_ratio: float | None = None
    ev_to_ebitda: float | None = None
    roe: float | None = None
    roa: float | None = None
    gross_margin: float | None = None
    operating_margin: float | None = None
    net_margin: float | None = None
    debt_to_equity: float | None = None
    current_ratio: float | None = None
    dividend_yield: float | None = None
    beta: float | None = None
    week_52_high: float | None = None
    week_52_low: float | None = None


class CompanyInfo(_SymbolRecord):
    """Company reference data.

    Attributes:
        symbol: Normalized ticker symbol.
        name: Company name.
        exchange: Primary listing exchange.
        sector: Business sector.
        industry: Industry within the sector.
        country: Country of incorporation.
        currency: Trading currency.
        cik: SEC CIK number, if known.
        description: Business description.
    """

    symbol: str
    name: str
    exchange: str | None = None
    sector: str | None = None
    industry: str | None = None
    country: str | None = None
    currency: str = "USD"
    cik: str | None = None
    description: str | None = None
