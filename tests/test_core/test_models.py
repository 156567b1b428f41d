"""Tests for request value types, cache keys and payload records."""

from datetime import UTC, date, datetime, timedelta, timezone

import pytest
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from quantdata.core.errors import ValidationError
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

OPEN = datetime(2024, 1, 2, 14, 30, tzinfo=UTC)
CLOSE = datetime(2024, 1, 2, 21, 0, tzinfo=UTC)


class TestDataFrequency:
    """Tests for DataFrequency."""

    def test_intraday_frequencies(self) -> None:
        """Test tick through hourly are intraday."""
        assert DataFrequency.TICK.is_intraday
        assert DataFrequency.HOURLY.is_intraday
        assert not DataFrequency.DAILY.is_intraday

    def test_fundamental_frequencies(self) -> None:
        """Test quarterly and annual are reporting-period frequencies."""
        assert DataFrequency.QUARTERLY.is_fundamental
        assert DataFrequency.ANNUAL.is_fundamental
        assert not DataFrequency.MONTHLY.is_fundamental

    def test_period_type_frequency(self) -> None:
        """Test period types map to their frequency."""
        assert PeriodType.ANNUAL.frequency is DataFrequency.ANNUAL
        assert PeriodType.QUARTERLY.frequency is DataFrequency.QUARTERLY


class TestRequestKind:
    """Tests for RequestKind."""

    def test_capability_mapping(self) -> None:
        """Test every request kind maps to one capability."""
        assert RequestKind.OHLCV.capability is Capability.PRICE
        assert RequestKind.FINANCIALS.capability is Capability.FUNDAMENTAL
        assert RequestKind.METRICS.capability is Capability.FUNDAMENTAL
        assert RequestKind.COMPANY_INFO.capability is Capability.REFERENCE
        assert RequestKind.TICKS.capability is Capability.TICK
        assert RequestKind.UNIVERSE.capability is Capability.REFERENCE


class TestSymbol:
    """Tests for Symbol."""

    def test_normalizes_case_and_whitespace(self) -> None:
        """Test symbols are uppercased and trimmed."""
        assert Symbol("  aapl ").value == "AAPL"
        assert Symbol("brk  b").value == "BRK B"

    def test_equal_after_normalization(self) -> None:
        """Test differently written symbols compare and hash equal."""
        assert Symbol("msft") == Symbol("MSFT")
        assert len({Symbol("msft"), Symbol(" MSFT")}) == 1

    @pytest.mark.parametrize("raw", ["", "   ", "\t\n"])
    def test_rejects_empty(self, raw: str) -> None:
        """Test empty or blank symbols fail validation."""
        with pytest.raises(ValidationError) as exc_info:
            Symbol(raw)
        assert exc_info.value.field == "symbol"

    def test_rejects_non_string(self) -> None:
        """Test non-string symbols fail validation."""
        with pytest.raises(ValidationError):
            Symbol(123)  # type: ignore[arg-type]

    def test_validation_error_is_value_error(self) -> None:
        """Test ValidationError can be caught as ValueError."""
        with pytest.raises(ValueError):
            Symbol("")

    def test_of_passes_symbols_through(self) -> None:
        """Test Symbol.of returns existing symbols unchanged."""
        symbol = Symbol("AAPL")
        assert Symbol.of(symbol) is symbol
        assert Symbol.of("aapl") == symbol

    def test_str(self) -> None:
        """Test string form is the normalized value."""
        assert str(Symbol("nvda")) == "NVDA"


class TestDateRange:
    """Tests for DateRange."""

    def test_start_after_end_fails(self) -> None:
        """Test an inverted range fails validation."""
        with pytest.raises(ValidationError) as exc_info:
            DateRange(date(2024, 2, 1), date(2024, 1, 1))
        assert exc_info.value.field == "date_range"

    @pytest.mark.parametrize(
        "start,end",
        [
            (date(2024, 1, 2), date(2024, 1, 1)),
            (date(2025, 1, 1), date(2024, 12, 31)),
            (date(2024, 3, 1), date(2023, 3, 1)),
        ],
    )
    def test_any_inverted_range_fails(self, start: date, end: date) -> None:
        """Test start > end always fails, whatever the gap."""
        with pytest.raises(ValidationError):
            DateRange(start, end)

    def test_start_equal_end_succeeds(self) -> None:
        """Test a single-day range is valid."""
        day = date(2024, 1, 15)
        date_range = DateRange(day, day)
        assert date_range.days == 1
        assert DateRange.single(day) == date_range

    def test_rejects_datetime(self) -> None:
        """Test datetimes are rejected in favour of dates."""
        with pytest.raises(ValidationError) as exc_info:
            DateRange(datetime(2024, 1, 1), date(2024, 1, 2))  # type: ignore[arg-type]
        assert exc_info.value.field == "start"

    def test_rejects_strings(self) -> None:
        """Test non-date values are rejected."""
        with pytest.raises(ValidationError):
            DateRange("2024-01-01", date(2024, 1, 2))  # type: ignore[arg-type]

    def test_days_is_inclusive(self) -> None:
        """Test day count includes both bounds."""
        assert DateRange(date(2024, 1, 1), date(2024, 1, 31)).days == 31

    def test_contains(self) -> None:
        """Test membership for dates and datetimes."""
        date_range = DateRange(date(2024, 1, 1), date(2024, 1, 31))
        assert date(2024, 1, 1) in date_range
        assert date(2024, 1, 31) in date_range
        assert datetime(2024, 1, 15, 12, 0) in date_range
        assert date(2024, 2, 1) not in date_range
        assert "2024-01-15" not in date_range

    def test_iter_days_with_step(self) -> None:
        """Test stepping through the range."""
        date_range = DateRange(date(2024, 1, 1), date(2024, 1, 15))
        assert date_range.iter_days(7) == [
            date(2024, 1, 1),
            date(2024, 1, 8),
            date(2024, 1, 15),
        ]

    def test_str(self) -> None:
        """Test string form."""
        assert str(DateRange(date(2024, 1, 1), date(2024, 1, 2))) == "2024-01-01..2024-01-02"


class TestTimeRange:
    """Tests for TimeRange."""

    def test_normalizes_to_utc(self) -> None:
        """Test bounds in other zones are converted to UTC."""
        eastern = timezone(timedelta(hours=-5))
        time_range = TimeRange(datetime(2024, 1, 2, 9, 30, tzinfo=eastern), CLOSE)
        assert time_range.start == OPEN
        assert time_range.start.tzinfo is UTC

    def test_rejects_naive_datetimes(self) -> None:
        """Test naive datetimes are ambiguous and rejected."""
        with pytest.raises(ValidationError) as exc_info:
            TimeRange(datetime(2024, 1, 2, 14, 30), CLOSE)
        assert exc_info.value.field == "start"

    def test_rejects_dates(self) -> None:
        """Test plain dates are not instants."""
        with pytest.raises(ValidationError):
            TimeRange(OPEN, date(2024, 1, 3))  # type: ignore[arg-type]

    def test_start_after_end_fails(self) -> None:
        """Test an inverted range fails."""
        with pytest.raises(ValidationError) as exc_info:
            TimeRange(CLOSE, OPEN)
        assert exc_info.value.field == "time_range"

    def test_contains(self) -> None:
        """Test membership is inclusive and needs aware datetimes."""
        time_range = TimeRange(OPEN, CLOSE)
        assert OPEN in time_range
        assert CLOSE in time_range
        assert CLOSE + timedelta(seconds=1) not in time_range
        assert datetime(2024, 1, 2, 15, 0) not in time_range


class TestDataRequest:
    """Tests for DataRequest."""

    def test_ohlcv_defaults_to_daily(self) -> None:
        """Test OHLCV requests default to daily bars."""
        request = DataRequest.ohlcv("aapl", DateRange.single(date(2024, 1, 2)))
        assert request.kind is RequestKind.OHLCV
        assert request.symbol == Symbol("AAPL")
        assert request.frequency is DataFrequency.DAILY
        assert request.capability is Capability.PRICE

    def test_ohlcv_requires_date_range(self) -> None:
        """Test OHLCV without a date range fails."""
        with pytest.raises(ValidationError):
            DataRequest(
                kind=RequestKind.OHLCV,
                symbol=Symbol("AAPL"),
                frequency=DataFrequency.DAILY,
            )

    def test_ohlcv_rejects_fundamental_frequency(self) -> None:
        """Test price bars cannot use reporting-period frequencies."""
        with pytest.raises(ValidationError) as exc_info:
            DataRequest.ohlcv(
                "AAPL", DateRange.single(date(2024, 1, 2)), DataFrequency.ANNUAL
            )
        assert exc_info.value.field == "frequency"

    def test_symbol_string_is_coerced(self) -> None:
        """Test a plain string symbol is normalized."""
        request = DataRequest(kind=RequestKind.COMPANY_INFO, symbol=" msft ")  # type: ignore[arg-type]
        assert request.symbol == Symbol("MSFT")

    def test_financials_defaults(self) -> None:
        """Test financials default to annual statements."""
        request = DataRequest(kind=RequestKind.FINANCIALS, symbol=Symbol("AAPL"))
        assert request.period_type is PeriodType.ANNUAL
        assert request.frequency is DataFrequency.ANNUAL
        assert request.capability is Capability.FUNDAMENTAL

    def test_financials_frequency_must_match_period(self) -> None:
        """Test a mismatched frequency fails."""
        with pytest.raises(ValidationError):
            DataRequest(
                kind=RequestKind.FINANCIALS,
                symbol=Symbol("AAPL"),
                period_type=PeriodType.QUARTERLY,
                frequency=DataFrequency.ANNUAL,
            )

    def test_financials_limit_must_be_positive(self) -> None:
        """Test zero or negative limits fail."""
        with pytest.raises(ValidationError) as exc_info:
            DataRequest.financials("AAPL", limit=0)
        assert exc_info.value.field == "limit"

    def test_metrics_requires_single_day(self) -> None:
        """Test metrics requests cover exactly one day."""
        request = DataRequest.metrics("AAPL", date(2024, 1, 2))
        assert request.date_range == DateRange.single(date(2024, 1, 2))

        with pytest.raises(ValidationError):
            DataRequest(
                kind=RequestKind.METRICS,
                symbol=Symbol("AAPL"),
                date_range=DateRange(date(2024, 1, 1), date(2024, 1, 2)),
            )

    def test_qualifier(self) -> None:
        """Test the qualifier combines period type, limit and extras."""
        assert DataRequest.company_info("AAPL").qualifier is None
        request = DataRequest.financials("AAPL", PeriodType.QUARTERLY, limit=8)
        assert request.qualifier == "quarterly,limit=8"

        extra = DataRequest(
            kind=RequestKind.COMPANY_INFO,
            symbol=Symbol("AAPL"),
            qualifier_extra="source=sec",
        )
        assert extra.qualifier == "source=sec"

    def test_describe(self) -> None:
        """Test the human-readable description."""
        request = DataRequest.ohlcv(
            "AAPL", DateRange(date(2024, 1, 1), date(2024, 1, 31)), DataFrequency.WEEKLY
        )
        assert request.describe() == "ohlcv AAPL weekly 2024-01-01..2024-01-31"

    def test_enum_fields_accept_strings(self) -> None:
        """Test plain strings are converted to the enum members."""
        request = DataRequest.ohlcv("AAPL", DateRange.single(date(2024, 1, 2)), "weekly")  # type: ignore[arg-type]
        assert request.frequency is DataFrequency.WEEKLY

        financials = DataRequest(kind="financials", symbol="AAPL", period_type="quarterly")  # type: ignore[arg-type]
        assert financials.kind is RequestKind.FINANCIALS
        assert financials.period_type is PeriodType.QUARTERLY
        assert financials.capability is Capability.FUNDAMENTAL

    @pytest.mark.parametrize(
        ("field", "overrides"),
        [
            ("frequency", {"kind": RequestKind.OHLCV, "frequency": "fortnightly"}),
            ("kind", {"kind": "quotes"}),
            ("period_type", {"kind": RequestKind.FINANCIALS, "period_type": "monthly"}),
        ],
    )
    def test_invalid_enum_strings_fail(self, field: str, overrides: dict) -> None:
        """Test unknown enum values raise ValidationError naming the field."""
        with pytest.raises(ValidationError) as exc_info:
            DataRequest(
                symbol=Symbol("AAPL"),
                date_range=DateRange.single(date(2024, 1, 2)),
                **overrides,
            )
        assert exc_info.value.field == field

    def test_missing_kind_fails(self) -> None:
        """Test a request without a kind fails."""
        with pytest.raises(ValidationError) as exc_info:
            DataRequest(kind=None, symbol=Symbol("AAPL"))  # type: ignore[arg-type]
        assert exc_info.value.field == "kind"

    def test_limit_must_be_an_integer(self) -> None:
        """Test a non-integer limit fails."""
        with pytest.raises(ValidationError):
            DataRequest.financials("AAPL", limit="4")  # type: ignore[arg-type]

    def test_symbol_required_outside_universe(self) -> None:
        """Test symbol-keyed requests reject a missing symbol."""
        with pytest.raises(ValidationError) as exc_info:
            DataRequest(kind=RequestKind.COMPANY_INFO, symbol=None)
        assert exc_info.value.field == "symbol"

    def test_ticks(self) -> None:
        """Test tick requests carry a time range and tick frequency."""
        request = DataRequest.ticks("aapl", OPEN, CLOSE)
        assert request.kind is RequestKind.TICKS
        assert request.capability is Capability.TICK
        assert request.frequency is DataFrequency.TICK
        assert request.time_range == TimeRange(OPEN, CLOSE)

    def test_ticks_require_time_range(self) -> None:
        """Test tick requests without a window fail."""
        with pytest.raises(ValidationError) as exc_info:
            DataRequest(kind=RequestKind.TICKS, symbol=Symbol("AAPL"))
        assert exc_info.value.field == "time_range"

    def test_ticks_reject_bar_frequency(self) -> None:
        """Test tick requests cannot use a bar frequency."""
        with pytest.raises(ValidationError):
            DataRequest(
                kind=RequestKind.TICKS,
                symbol=Symbol("AAPL"),
                time_range=TimeRange(OPEN, CLOSE),
                frequency=DataFrequency.MINUTE,
            )

    def test_universe(self) -> None:
        """Test universe ids are trimmed and lowercased."""
        request = DataRequest.universe(" SP500 ")
        assert request.universe_id == "sp500"
        assert request.symbol is None
        assert request.subject == "sp500"
        assert request.capability is Capability.REFERENCE
        assert request.describe() == "universe sp500"

    @pytest.mark.parametrize("universe_id", ["", "   ", None])
    def test_universe_requires_id(self, universe_id: str | None) -> None:
        """Test blank universe ids fail."""
        with pytest.raises(ValidationError) as exc_info:
            DataRequest(kind=RequestKind.UNIVERSE, symbol=None, universe_id=universe_id)
        assert exc_info.value.field == "universe_id"

    def test_universe_rejects_symbol(self) -> None:
        """Test universe requests are not keyed by a symbol."""
        with pytest.raises(ValidationError):
            DataRequest(kind=RequestKind.UNIVERSE, symbol=Symbol("AAPL"), universe_id="sp500")

    def test_requests_are_hashable_values(self) -> None:
        """Test identical requests are equal."""
        date_range = DateRange.single(date(2024, 1, 2))
        assert DataRequest.ohlcv("aapl", date_range) == DataRequest.ohlcv("AAPL", date_range)


class TestCacheKey:
    """Tests for CacheKey derivation."""

    @pytest.mark.parametrize("frequency", list(DataFrequency)[:10])
    def test_key_is_deterministic(self, frequency: DataFrequency) -> None:
        """Test computing a key twice yields the same key."""
        date_range = DateRange(date(2024, 1, 1), date(2024, 3, 31))
        first = DataRequest.ohlcv("AAPL", date_range, frequency).cache_key()
        second = DataRequest.ohlcv("AAPL", date_range, frequency).cache_key()
        assert first == second
        assert first.value == second.value

    def test_key_ignores_symbol_spelling(self) -> None:
        """Test normalized symbols give identical keys."""
        date_range = DateRange.single(date(2024, 1, 2))
        assert (
            DataRequest.ohlcv(" aapl", date_range).cache_key()
            == DataRequest.ohlcv("AAPL", date_range).cache_key()
        )

    def test_key_format(self) -> None:
        """Test the key layout."""
        request = DataRequest.ohlcv(
            "AAPL", DateRange(date(2024, 1, 1), date(2024, 1, 31))
        )
        assert request.cache_key().value == (
            "quantdata:v1:ohlcv:AAPL:daily:2024-01-01:2024-01-31:-"
        )

    def test_company_info_key_uses_placeholders(self) -> None:
        """Test missing components are rendered as placeholders."""
        key = DataRequest.company_info("MSFT").cache_key()
        assert key.value == "quantdata:v1:company_info:MSFT:-:-:-:-"

    def test_distinct_parameters_give_distinct_keys(self) -> None:
        """Test every parameter contributes to the key."""
        date_range = DateRange(date(2024, 1, 1), date(2024, 1, 31))
        keys = {
            DataRequest.ohlcv("AAPL", date_range).cache_key(),
            DataRequest.ohlcv("MSFT", date_range).cache_key(),
            DataRequest.ohlcv("AAPL", date_range, DataFrequency.WEEKLY).cache_key(),
            DataRequest.ohlcv("AAPL", DateRange.single(date(2024, 1, 1))).cache_key(),
            DataRequest.financials("AAPL").cache_key(),
            DataRequest.financials("AAPL", limit=4).cache_key(),
        }
        assert len(keys) == 6

    def test_separators_are_escaped(self) -> None:
        """Test a colon inside a symbol cannot collide with the key structure."""
        key = DataRequest.company_info("A:B").cache_key()
        assert "A%3AB" in key.value
        assert key.value.count(":") == DataRequest.company_info("AB").cache_key().value.count(":")

    def test_ticks_key_escapes_timestamps(self) -> None:
        """Test tick keys embed both instants with separators escaped."""
        key = DataRequest.ticks("AAPL", OPEN, CLOSE).cache_key()
        assert key.value == (
            "quantdata:v1:ticks:AAPL:tick:"
            "2024-01-02T14%3A30%3A00%2B00%3A00:2024-01-02T21%3A00%3A00%2B00%3A00:-"
        )

    def test_ticks_key_ignores_time_zone_spelling(self) -> None:
        """Test the same instants in another zone give the same key."""
        eastern = timezone(timedelta(hours=-5))
        shifted = DataRequest.ticks("AAPL", OPEN.astimezone(eastern), CLOSE.astimezone(eastern))
        assert shifted.cache_key() == DataRequest.ticks("AAPL", OPEN, CLOSE).cache_key()

    def test_universe_key(self) -> None:
        """Test universe keys use the universe id in the subject position."""
        key = DataRequest.universe("SP500").cache_key()
        assert key.value == "quantdata:v1:universe:sp500:-:-:-:-"

    def test_pattern(self) -> None:
        """Test glob patterns for scanning keys."""
        assert CacheKey.pattern() == "quantdata:v1:*"
        assert CacheKey.pattern(RequestKind.OHLCV) == "quantdata:v1:ohlcv:*"

    def test_str(self) -> None:
        """Test string form is the raw key."""
        key = DataRequest.company_info("MSFT").cache_key()
        assert str(key) == key.value


class TestPayloadRecords:
    """Tests for the Pydantic payload records."""

    def test_ohlcv_bar(self) -> None:
        """Test creating a bar."""
        bar = OhlcvBar(
            timestamp=datetime(2024, 1, 2, tzinfo=UTC),
            open=100.0,
            high=101.0,
            low=99.0,
            close=100.5,
            volume=1_000_000,
        )
        assert bar.adjusted_close is None
        assert bar.model_dump(mode="json")["timestamp"] == "2024-01-02T00:00:00Z"

    def test_records_normalize_symbol(self) -> None:
        """Test symbol fields are normalized like Symbol."""
        info = CompanyInfo(symbol=" aapl ", name="Apple Inc.")
        assert info.symbol == "AAPL"
        assert info.currency == "USD"

    def test_records_reject_empty_symbol(self) -> None:
        """Test an empty symbol fails model validation."""
        with pytest.raises(PydanticValidationError):
            KeyMetrics(symbol="", date=date(2024, 1, 2))

    def test_financial_statement_optional_line_items(self) -> None:
        """Test line items default to None."""
        statement = FinancialStatement(symbol="AAPL", period_end=date(2024, 9, 30))
        assert statement.period_type is PeriodType.ANNUAL
        assert statement.revenue is None
        assert statement.free_cash_flow is None

    def test_tick(self) -> None:
        """Test tick records normalize the symbol and default conditions."""
        tick = Tick(symbol="msft", timestamp=OPEN, price=370.5, size=100)
        assert tick.symbol == "MSFT"
        assert tick.exchange is None
        assert tick.conditions == []
        assert tick.model_dump(mode="json")["timestamp"] == "2024-01-02T14:30:00Z"

    def test_symbol_text(self) -> None:
        """Test symbol lists validate Symbols and strings alike."""
        adapter = TypeAdapter(list[SymbolText])
        assert adapter.validate_python([Symbol("AAPL"), " msft "]) == ["AAPL", "MSFT"]
        with pytest.raises(PydanticValidationError):
            adapter.validate_python([""])
