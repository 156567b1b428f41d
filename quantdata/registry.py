"""Provider registry with cache lookup and ordered fallback.

This module provides:
- ProviderRecord: a provider registered for one capability at a priority
- RegistryBuilder: step-by-step registry construction
- FetchResult: a payload plus where it came from
- DataProviderRegistry: cache lookup, fallback dispatch and write-through

Request flow:
    1. Compute the cache key and look it up (skipped on force refresh).
    2. Try each provider for the capability in priority order. The first
       success is written to the cache and returned.
    3. No providers raises NoProviderConfigured; every provider failing
       raises AllProvidersFailed with one attempt per provider.
"""

import asyncio
import copy
from collections.abc import AsyncIterator, Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Any, Generic, TypeVar

import structlog
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from quantdata.cache.base import DEFAULT_CACHE_CONFIG, CacheConfig, CacheEntry, DataCache
from quantdata.cache.noop import NoopCache
from quantdata.core.errors import (
    AllProvidersFailed,
    CacheBackendError,
    FetchAttempt,
    FetchErrorKind,
    FetchOutcome,
    NoProviderConfigured,
    ProviderFetchError,
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
)
from quantdata.providers.base import (
    DataProvider,
    FundamentalDataProvider,
    PriceDataProvider,
    ReferenceDataProvider,
    TickDataProvider,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Validates provider output and converts it to and from the cached JSON form
_PAYLOAD_ADAPTERS: dict[RequestKind, TypeAdapter[Any]] = {
    RequestKind.OHLCV: TypeAdapter(list[OhlcvBar]),
    RequestKind.FINANCIALS: TypeAdapter(list[FinancialStatement]),
    RequestKind.METRICS: TypeAdapter(KeyMetrics),
    RequestKind.TICKS: TypeAdapter(list[Tick]),
    RequestKind.COMPANY_INFO: TypeAdapter(CompanyInfo),
    RequestKind.UNIVERSE: TypeAdapter(list[SymbolText]),
}


@dataclass(frozen=True)
class ProviderRecord:
    """A provider registered for a capability.

    Attributes:
        provider: The provider instance.
        capability: Capability the provider serves in this record.
        priority: Lower values are tried first; ties keep registration order.
    """

    provider: DataProvider
    capability: Capability
    priority: int = 0

    @property
    def name(self) -> str:
        return self.provider.name


@dataclass(frozen=True)
class FetchResult(Generic[T]):
    """Outcome of a successful registry fetch.

    Attributes:
        payload: The fetched data.
        provider: Name of the provider that produced the payload.
        cached: True when served from the cache.
        fetched_at: When the payload was fetched upstream.
    """

    payload: T
    provider: str
    cached: bool = False
    fetched_at: datetime | None = None


@dataclass
class _Flight:
    """A dispatch shared by every concurrent caller for one key."""

    task: "asyncio.Task[FetchResult[Any]]"
    waiters: int = field(default=0)


def _no_data(record: ProviderRecord) -> FetchAttempt:
    return FetchAttempt(
        provider=record.name,
        kind=FetchErrorKind.DATA_NOT_AVAILABLE,
        message="Provider returned no data",
    )


class RegistryBuilder:
    """Builds a DataProviderRegistry.

    Example:
        registry = (
            RegistryBuilder()
            .with_cache(SqliteCache("data/cache.db"))
            .register(PrimarySource())
            .register(BackupSource(), Capability.PRICE)
            .build()
        )
    """

    def __init__(self) -> None:
        self._records: list[ProviderRecord] = []
        self._cache: DataCache | None = None
        self._cache_config = DEFAULT_CACHE_CONFIG
        self._single_flight = True

    def with_cache(self, cache: DataCache | None) -> "RegistryBuilder":
        """Use ``cache``; None falls back to the no-op policy."""
        self._cache = cache
        return self

    def with_cache_config(self, config: CacheConfig) -> "RegistryBuilder":
        """Set per-kind TTLs for cached entries."""
        self._cache_config = config
        return self

    def with_single_flight(self, enabled: bool = True) -> "RegistryBuilder":
        """Enable or disable sharing one dispatch among concurrent identical requests."""
        self._single_flight = enabled
        return self

    def register(
        self,
        provider: DataProvider,
        *capabilities: Capability,
        priority: int | None = None,
    ) -> "RegistryBuilder":
        """Register a provider for some or all of its capabilities.

        Args:
            provider: Provider to register.
            *capabilities: Capabilities to register it for. Defaults to every
                capability the provider implements.
            priority: Position in the fallback order; lower is tried first.
                Defaults to after every provider already registered.

        Raises:
            TypeError: If the provider does not implement a capability.
            ValueError: If a provider with the same name is already
                registered for a capability.
        """
        selected = capabilities or tuple(
            cap for cap in Capability if provider.supports(cap)
        )
        if not selected:
            raise TypeError(f"{provider!r} implements no data capability")

        for capability in selected:
            if not provider.supports(capability):
                raise TypeError(
                    f"{provider!r} does not implement the {capability.value} capability"
                )
            existing = [r for r in self._records if r.capability is capability]
            if any(r.name == provider.name for r in existing):
                raise ValueError(
                    f"Provider {provider.name!r} is already registered for {capability.value}"
                )
            rank = self._next_priority(existing) if priority is None else priority
            self._records.append(
                ProviderRecord(provider=provider, capability=capability, priority=rank)
            )
        return self

    @staticmethod
    def _next_priority(existing: list[ProviderRecord]) -> int:
        return max((r.priority for r in existing), default=-1) + 1

    def register_price(
        self, provider: PriceDataProvider, priority: int | None = None
    ) -> "RegistryBuilder":
        return self.register(provider, Capability.PRICE, priority=priority)

    def register_fundamental(
        self, provider: FundamentalDataProvider, priority: int | None = None
    ) -> "RegistryBuilder":
        return self.register(provider, Capability.FUNDAMENTAL, priority=priority)

    def register_tick(
        self, provider: TickDataProvider, priority: int | None = None
    ) -> "RegistryBuilder":
        return self.register(provider, Capability.TICK, priority=priority)

    def register_reference(
        self, provider: ReferenceDataProvider, priority: int | None = None
    ) -> "RegistryBuilder":
        return self.register(provider, Capability.REFERENCE, priority=priority)

    def build(self) -> "DataProviderRegistry":
        """Create the registry. The builder can keep being used afterwards."""
        providers: dict[Capability, list[ProviderRecord]] = {cap: [] for cap in Capability}
        # sorted() is stable, so equal priorities keep registration order
        for record in sorted(self._records, key=lambda r: r.priority):
            providers[record.capability].append(record)
        return DataProviderRegistry(
            providers=providers,
            cache=self._cache,
            cache_config=self._cache_config,
            single_flight=self._single_flight,
        )


class DataProviderRegistry:
    """Routes data requests through the cache and the provider fallback chain.

    Provider order is fixed at construction. Several registries with
    different orders may share one cache.

    Example:
        registry = RegistryBuilder().register(MockProvider()).build()
        bars = await registry.fetch_ohlcv("AAPL", DateRange(start, end))

        result = await registry.fetch(DataRequest.company_info("MSFT"))
        print(f"{result.payload.name} (source: {result.provider}, cached: {result.cached})")
    """

    def __init__(
        self,
        providers: Mapping[Capability, Sequence[ProviderRecord]] | None = None,
        cache: DataCache | None = None,
        cache_config: CacheConfig | None = None,
        single_flight: bool = True,
    ) -> None:
        """Initialize the registry.

        Args:
            providers: Provider records per capability, in fallback order.
            cache: Cache policy. Uses NoopCache if not provided.
            cache_config: Per-kind TTLs for written entries.
            single_flight: Share one dispatch among concurrent requests for
                the same key.
        """
        providers = providers or {}
        self._providers: dict[Capability, tuple[ProviderRecord, ...]] = {
            cap: tuple(providers.get(cap, ())) for cap in Capability
        }
        self._cache = cache if cache is not None else NoopCache()
        self._cache_config = cache_config or DEFAULT_CACHE_CONFIG
        self._single_flight = single_flight
        self._in_flight: dict[str, _Flight] = {}
        self._logger = logger.bind(component="data_provider_registry")

        # Track fallback stats
        self._stats = {
            "requests": 0,
            "cache_hits": 0,
            "cache_misses": 0,
            "cache_errors": 0,
            "provider_success": 0,
            "provider_failures": 0,
            "fallback_success": 0,
            "all_failed": 0,
            "no_provider": 0,
            "joined_in_flight": 0,
        }

    @classmethod
    def builder(cls) -> RegistryBuilder:
        return RegistryBuilder()

    @property
    def cache(self) -> DataCache:
        return self._cache

    @property
    def single_flight(self) -> bool:
        return self._single_flight

    @property
    def stats(self) -> dict[str, int]:
        """Get fallback statistics."""
        return self._stats.copy()

    def reset_stats(self) -> None:
        """Reset fallback statistics."""
        for key in self._stats:
            self._stats[key] = 0

    def providers(self, capability: Capability) -> list[DataProvider]:
        """Providers registered for a capability, in fallback order."""
        return [record.provider for record in self._providers[capability]]

    async def fetch(
        self, request: DataRequest, *, force_refresh: bool = False
    ) -> FetchResult[Any]:
        """Fetch data for a request.

        Args:
            request: What to fetch.
            force_refresh: Skip the cache lookup. The fetched result is still
                written to the cache.

        Returns:
            FetchResult with the payload and its source.

        Raises:
            NoProviderConfigured: If no provider serves the request's capability.
            AllProvidersFailed: If every provider failed.
        """
        self._stats["requests"] += 1
        key = request.cache_key()

        if not force_refresh:
            cached = await self._lookup(key, request)
            if cached is not None:
                return cached

        records = self._providers[request.capability]
        if not records:
            self._stats["no_provider"] += 1
            self._logger.warning(
                "no_provider_configured",
                capability=request.capability.value,
                request=request.describe(),
            )
            raise NoProviderConfigured(request.capability.value, request.describe())

        if self._single_flight:
            return await self._join(key, request)
        return await self._dispatch(key, request)

    async def _lookup(self, key: CacheKey, request: DataRequest) -> FetchResult[Any] | None:
        try:
            entry = await self._cache.get(key)
        except CacheBackendError as e:
            self._stats["cache_errors"] += 1
            self._logger.warning("cache_read_failed", key=key.value, error=str(e))
            return None

        if entry is None:
            self._stats["cache_misses"] += 1
            return None

        try:
            payload = _PAYLOAD_ADAPTERS[request.kind].validate_python(entry.payload)
        except PydanticValidationError as e:
            self._stats["cache_misses"] += 1
            self._logger.warning("cache_payload_invalid", key=key.value, error=str(e))
            return None

        self._stats["cache_hits"] += 1
        self._logger.debug("cache_hit", request=request.describe(), provider=entry.provider)
        return FetchResult(
            payload=payload,
            provider=entry.provider,
            cached=True,
            fetched_at=entry.fetched_at,
        )

    async def _join(self, key: CacheKey, request: DataRequest) -> FetchResult[Any]:
        """Await the dispatch for ``key``, starting one if none is running.

        Each caller waits on the shared task through ``asyncio.shield`` so one
        caller's cancellation does not affect the others. When the last
        waiter goes away the task is cancelled and forgotten at once, so a
        caller arriving while it unwinds starts a fresh dispatch. Every
        waiter receives its own copy of the payload.
        """
        flight = self._in_flight.get(key.value)
        if flight is None:
            task = asyncio.create_task(self._dispatch(key, request))
            flight = _Flight(task=task)
            self._in_flight[key.value] = flight
            task.add_done_callback(lambda _: self._forget(key.value, flight))
        else:
            self._stats["joined_in_flight"] += 1
            self._logger.debug("dispatch_joined", request=request.describe())

        flight.waiters += 1
        try:
            result = await asyncio.shield(flight.task)
        finally:
            flight.waiters -= 1
            if flight.waiters == 0 and not flight.task.done():
                self._logger.debug("dispatch_abandoned", request=request.describe())
                self._forget(key.value, flight)
                flight.task.cancel()
        return replace(result, payload=copy.deepcopy(result.payload))

    def _forget(self, key: str, flight: _Flight) -> None:
        if self._in_flight.get(key) is flight:
            del self._in_flight[key]

    async def _dispatch(self, key: CacheKey, request: DataRequest) -> FetchResult[Any]:
        attempts: list[FetchAttempt] = []

        for index, record in enumerate(self._providers[request.capability]):
            outcome = await self._attempt(record, request)
            if not outcome.ok:
                assert outcome.failure is not None
                attempts.append(outcome.failure)
                self._stats["provider_failures"] += 1
                self._logger.warning(
                    "provider_failed",
                    provider=record.name,
                    kind=outcome.failure.kind.value,
                    error=outcome.failure.message,
                    request=request.describe(),
                )
                continue

            self._stats["provider_success"] += 1
            if index > 0:
                self._stats["fallback_success"] += 1
            self._logger.info(
                "provider_succeeded",
                provider=record.name,
                request=request.describe(),
                fallback=index > 0,
            )
            entry = await self._write_through(key, request, record.name, outcome.payload)
            return FetchResult(
                payload=outcome.payload,
                provider=record.name,
                cached=False,
                fetched_at=entry.fetched_at,
            )

        self._stats["all_failed"] += 1
        error = AllProvidersFailed(
            request.describe(),
            attempts,
            capability=request.capability.value,
        )
        self._logger.error(
            "all_providers_failed",
            request=request.describe(),
            attempts=[a.to_dict() for a in attempts],
        )
        raise error

    async def _attempt(self, record: ProviderRecord, request: DataRequest) -> FetchOutcome[Any]:
        """Make one provider attempt and classify its result."""
        provider = record.provider
        if request.kind is RequestKind.OHLCV and not provider.supports_frequency(
            request.frequency
        ):
            return FetchOutcome.failed(
                FetchAttempt(
                    provider=record.name,
                    kind=FetchErrorKind.UNSUPPORTED,
                    message=f"Frequency {request.frequency.value} is not supported",
                )
            )

        try:
            raw = await self._call(provider, request)
        except Exception as e:
            return FetchOutcome.failed(self._failed_attempt(record, e))

        if raw is None:
            return FetchOutcome.failed(_no_data(record))
        try:
            payload = _PAYLOAD_ADAPTERS[request.kind].validate_python(raw)
        except PydanticValidationError as e:
            return FetchOutcome.failed(
                FetchAttempt(
                    provider=record.name,
                    kind=FetchErrorKind.PARSE,
                    message=f"Invalid payload: {e.error_count()} validation error(s)",
                )
            )
        # Empty tuples and other empty sequences validate to []
        if isinstance(payload, list) and not payload:
            return FetchOutcome.failed(_no_data(record))
        return FetchOutcome.success(record.name, payload)

    def _failed_attempt(self, record: ProviderRecord, error: Exception) -> FetchAttempt:
        """Classify an exception raised by a provider call."""
        if isinstance(error, ProviderFetchError):
            return FetchAttempt(provider=record.name, kind=error.kind, message=error.reason)
        self._logger.error(
            "provider_unexpected_error",
            provider=record.name,
            error=str(error),
            error_type=type(error).__name__,
        )
        return FetchAttempt(
            provider=record.name,
            kind=FetchErrorKind.OTHER,
            message=f"{type(error).__name__}: {error}",
        )

    async def _call(self, provider: Any, request: DataRequest) -> Any:
        if request.kind is RequestKind.OHLCV:
            return await provider.fetch_ohlcv(
                request.symbol, request.date_range, request.frequency
            )
        if request.kind is RequestKind.FINANCIALS:
            return await provider.fetch_financials(
                request.symbol, request.period_type, request.limit
            )
        if request.kind is RequestKind.METRICS:
            assert request.date_range is not None
            return await provider.fetch_metrics(request.symbol, request.date_range.start)
        if request.kind is RequestKind.TICKS:
            assert request.time_range is not None
            return await provider.fetch_ticks(
                request.symbol, request.time_range.start, request.time_range.end
            )
        if request.kind is RequestKind.UNIVERSE:
            return await provider.universe(request.universe_id)
        return await provider.company_info(request.symbol)

    async def _write_through(
        self, key: CacheKey, request: DataRequest, provider: str, payload: Any
    ) -> CacheEntry:
        """Store a fetched payload; storage failures are logged and ignored."""
        entry = CacheEntry.create(
            _PAYLOAD_ADAPTERS[request.kind].dump_python(payload, mode="json"),
            provider=provider,
            ttl_seconds=self._cache_config.get_ttl(request.kind),
        )
        try:
            await self._cache.put(key, entry)
        except CacheBackendError as e:
            self._stats["cache_errors"] += 1
            self._logger.warning("write_through_failed", key=key.value, error=str(e))
        return entry

    # ------------------------------------------------------------------
    # Convenience methods
    # ------------------------------------------------------------------

    async def fetch_ohlcv(
        self,
        symbol: Symbol | str,
        date_range: DateRange,
        frequency: DataFrequency = DataFrequency.DAILY,
        *,
        force_refresh: bool = False,
    ) -> list[OhlcvBar]:
        """Get OHLCV bars with the full fallback chain."""
        request = DataRequest.ohlcv(symbol, date_range, frequency)
        result = await self.fetch(request, force_refresh=force_refresh)
        return result.payload

    async def fetch_ohlcv_batch(
        self,
        symbols: Iterable[Symbol | str],
        date_range: DateRange,
        frequency: DataFrequency = DataFrequency.DAILY,
        *,
        force_refresh: bool = False,
    ) -> dict[Symbol, list[OhlcvBar]]:
        """Get OHLCV bars for several symbols concurrently.

        Each symbol goes through its own fallback chain. Symbols that every
        provider reports as not found are left out of the result; any other
        failure is raised.
        """
        unique = list(dict.fromkeys(Symbol.of(s) for s in symbols))

        async def fetch_one(symbol: Symbol) -> list[OhlcvBar] | None:
            try:
                return await self.fetch_ohlcv(
                    symbol, date_range, frequency, force_refresh=force_refresh
                )
            except AllProvidersFailed as e:
                if e.all_failed_with(FetchErrorKind.NOT_FOUND):
                    self._logger.info("batch_symbol_not_found", symbol=symbol.value)
                    return None
                raise

        results = await asyncio.gather(*(fetch_one(s) for s in unique))
        return {s: bars for s, bars in zip(unique, results, strict=True) if bars is not None}

    async def fetch_financials(
        self,
        symbol: Symbol | str,
        period_type: PeriodType = PeriodType.ANNUAL,
        limit: int | None = None,
        *,
        force_refresh: bool = False,
    ) -> list[FinancialStatement]:
        """Get financial statements with the full fallback chain."""
        request = DataRequest.financials(symbol, period_type, limit)
        result = await self.fetch(request, force_refresh=force_refresh)
        return result.payload

    async def fetch_metrics(
        self, symbol: Symbol | str, on: date, *, force_refresh: bool = False
    ) -> KeyMetrics:
        """Get key metrics with the full fallback chain."""
        result = await self.fetch(DataRequest.metrics(symbol, on), force_refresh=force_refresh)
        return result.payload

    async def company_info(
        self, symbol: Symbol | str, *, force_refresh: bool = False
    ) -> CompanyInfo:
        """Get company info with the full fallback chain."""
        result = await self.fetch(DataRequest.company_info(symbol), force_refresh=force_refresh)
        return result.payload

    async def fetch_ticks(
        self,
        symbol: Symbol | str,
        start: datetime,
        end: datetime,
        *,
        force_refresh: bool = False,
    ) -> list[Tick]:
        """Get historical ticks with the full fallback chain."""
        request = DataRequest.ticks(symbol, start, end)
        result = await self.fetch(request, force_refresh=force_refresh)
        return result.payload

    async def universe(self, universe_id: str, *, force_refresh: bool = False) -> list[Symbol]:
        """Get the member symbols of a named universe with the full fallback chain."""
        result = await self.fetch(DataRequest.universe(universe_id), force_refresh=force_refresh)
        return [Symbol(s) for s in result.payload]

    async def supports_symbol(self, symbol: Symbol | str) -> bool:
        """Check whether any reference provider knows a symbol.

        Providers are asked in fallback order; a provider that fails to
        answer is skipped. Nothing is cached.

        Raises:
            NoProviderConfigured: If no reference provider is registered.
        """
        symbol = Symbol.of(symbol)
        records = self._providers[Capability.REFERENCE]
        if not records:
            raise NoProviderConfigured(Capability.REFERENCE.value, f"supports_symbol {symbol}")

        for record in records:
            try:
                if await record.provider.supports_symbol(symbol):
                    return True
            except Exception as e:
                attempt = self._failed_attempt(record, e)
                self._logger.warning(
                    "provider_failed",
                    provider=record.name,
                    kind=attempt.kind.value,
                    error=attempt.message,
                    request=f"supports_symbol {symbol}",
                )
        return False

    async def subscribe(self, symbols: Iterable[Symbol | str]) -> AsyncIterator[Tick]:
        """Open a live tick stream from the first tick provider that accepts it.

        Providers are tried in fallback order until one opens a stream.
        Failures after the stream is open belong to the caller; streams are
        never cached or de-duplicated.

        Raises:
            ValidationError: If no symbols are given.
            NoProviderConfigured: If no tick provider is registered.
            AllProvidersFailed: If every provider refused the subscription.
        """
        unique = list(dict.fromkeys(Symbol.of(s) for s in symbols))
        if not unique:
            raise ValidationError("subscribe requires at least one symbol", field="symbols")
        description = f"subscribe {','.join(s.value for s in unique)}"

        records = self._providers[Capability.TICK]
        if not records:
            self._stats["no_provider"] += 1
            raise NoProviderConfigured(Capability.TICK.value, description)

        attempts: list[FetchAttempt] = []
        for record in records:
            try:
                stream = await record.provider.subscribe(unique)
            except Exception as e:
                attempt = self._failed_attempt(record, e)
                attempts.append(attempt)
                self._stats["provider_failures"] += 1
                self._logger.warning(
                    "provider_failed",
                    provider=record.name,
                    kind=attempt.kind.value,
                    error=attempt.message,
                    request=description,
                )
                continue
            self._logger.info("stream_opened", provider=record.name, request=description)
            return stream

        self._stats["all_failed"] += 1
        raise AllProvidersFailed(description, attempts, capability=Capability.TICK.value)

    # ------------------------------------------------------------------
    # Cache management
    # ------------------------------------------------------------------

    async def invalidate(self, request: DataRequest) -> bool:
        """Drop the cached entry for a request."""
        return await self._cache.invalidate(request.cache_key())

    async def clear_cache(self) -> None:
        """Drop every cached entry."""
        await self._cache.clear()

    async def close(self) -> None:
        """Close every registered provider and the cache."""
        seen: set[int] = set()
        for records in self._providers.values():
            for record in records:
                if id(record.provider) in seen:
                    continue
                seen.add(id(record.provider))
                await record.provider.close()
        await self._cache.close()

    def __repr__(self) -> str:
        counts = ", ".join(
            f"{cap.value}={len(records)}" for cap, records in self._providers.items()
        )
        return f"DataProviderRegistry({counts}, cache={self._cache.name})"
