"""Error types for market data requests.

Exception Hierarchy:
    QuantDataError (base)
    ├── ValidationError - Malformed request parameters, raised before any I/O
    ├── ProviderFetchError - One provider attempt failed
    ├── NoProviderConfigured - No provider registered for a capability
    ├── AllProvidersFailed - Every provider failed; carries every attempt
    └── CacheBackendError - Cache storage I/O failed

Per-provider failures are absorbed by the registry's fallback loop and only
surface to callers folded into an AllProvidersFailed aggregate.
"""

from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class QuantDataError(Exception):
    """Base exception for all quantdata errors.

    Attributes:
        message: Human-readable error message.
        details: Additional error details.
    """

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/API responses."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(QuantDataError, ValueError):
    """Request parameters are malformed.

    Raised at construction of value types (empty symbol, inverted date range,
    frequency not valid for the request kind). Never retried.

    Attributes:
        field: Name of the offending parameter, if known.
    """

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.field = field

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        base = super().to_dict()
        base["field"] = self.field
        return base


class FetchErrorKind(str, Enum):
    """Why a single provider attempt failed."""

    NETWORK = "network"
    NOT_FOUND = "not_found"
    DATA_NOT_AVAILABLE = "data_not_available"
    UNSUPPORTED = "unsupported"
    RATE_LIMITED = "rate_limited"
    AUTHENTICATION = "authentication"
    PARSE = "parse"
    UNIMPLEMENTED = "unimplemented"
    OTHER = "other"


class ProviderFetchError(QuantDataError):
    """A single provider attempt failed.

    Provider adapters raise this (or one of the constructors below) instead
    of returning an empty result.

    Attributes:
        provider: Name of the provider that failed.
        kind: Failure category.
        retry_after: Suggested wait in seconds (rate limiting only).
    """

    def __init__(
        self,
        provider: str,
        kind: FetchErrorKind,
        message: str,
        *,
        retry_after: float | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(f"{provider}: {message}", details=details)
        self.provider = provider
        self.kind = kind
        self.reason = message
        self.retry_after = retry_after

    @classmethod
    def network(cls, provider: str, message: str) -> "ProviderFetchError":
        return cls(provider, FetchErrorKind.NETWORK, message)

    @classmethod
    def not_found(cls, provider: str, symbol: object) -> "ProviderFetchError":
        return cls(provider, FetchErrorKind.NOT_FOUND, f"Symbol not found: {symbol}")

    @classmethod
    def data_not_available(cls, provider: str, message: str) -> "ProviderFetchError":
        return cls(provider, FetchErrorKind.DATA_NOT_AVAILABLE, message)

    @classmethod
    def unsupported(cls, provider: str, message: str) -> "ProviderFetchError":
        return cls(provider, FetchErrorKind.UNSUPPORTED, message)

    @classmethod
    def rate_limited(
        cls, provider: str, retry_after: float | None = None
    ) -> "ProviderFetchError":
        return cls(
            provider,
            FetchErrorKind.RATE_LIMITED,
            f"Rate limited, retry after {retry_after}s",
            retry_after=retry_after,
        )

    @classmethod
    def unimplemented(cls, provider: str, operation: str) -> "ProviderFetchError":
        return cls(
            provider,
            FetchErrorKind.UNIMPLEMENTED,
            f"{operation} is not implemented",
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        base = super().to_dict()
        base.update(
            {
                "provider": self.provider,
                "kind": self.kind.value,
                "retry_after": self.retry_after,
            }
        )
        return base


@dataclass(frozen=True)
class FetchAttempt:
    """Record of one failed provider attempt.

    Attributes:
        provider: Provider name.
        kind: Failure category.
        message: Failure reason as reported by the provider.
    """

    provider: str
    kind: FetchErrorKind
    message: str

    @classmethod
    def from_error(cls, error: ProviderFetchError) -> "FetchAttempt":
        return cls(provider=error.provider, kind=error.kind, message=error.reason)

    def to_dict(self) -> dict[str, str]:
        return {"provider": self.provider, "kind": self.kind.value, "message": self.message}


@dataclass(frozen=True)
class FetchOutcome(Generic[T]):
    """Result of one provider attempt: a payload or a recorded failure."""

    provider: str
    payload: T | None = None
    failure: FetchAttempt | None = None

    @classmethod
    def success(cls, provider: str, payload: T) -> "FetchOutcome[T]":
        return cls(provider=provider, payload=payload)

    @classmethod
    def failed(cls, attempt: FetchAttempt) -> "FetchOutcome[T]":
        return cls(provider=attempt.provider, failure=attempt)

    @property
    def ok(self) -> bool:
        """True when the attempt produced a payload."""
        return self.failure is None


class NoProviderConfigured(QuantDataError):
    """No provider is registered for the requested capability.

    Attributes:
        capability: The capability that has no providers.
        request: Description of the request that could not be dispatched.
    """

    def __init__(self, capability: str, request: str | None = None) -> None:
        message = f"No {capability} providers registered"
        if request:
            message = f"{message} (request: {request})"
        super().__init__(message)
        self.capability = capability
        self.request = request

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        base = super().to_dict()
        base.update({"capability": self.capability, "request": self.request})
        return base


class AllProvidersFailed(QuantDataError):
    """Every provider configured for a capability failed.

    Attempts are kept in the order the providers were tried so callers can
    inspect exactly which provider failed and why.

    Example:
        try:
            bars = await registry.fetch_ohlcv("AAPL", date_range)
        except AllProvidersFailed as e:
            if e.all_failed_with(FetchErrorKind.NOT_FOUND):
                ...  # unknown symbol everywhere
            print(e.summary())

    Attributes:
        request: Description of the request.
        capability: Capability that was dispatched.
        attempts: Failed attempts, in provider order.
    """

    def __init__(
        self,
        request: str,
        attempts: list[FetchAttempt] | tuple[FetchAttempt, ...],
        *,
        capability: str | None = None,
    ) -> None:
        self.request = request
        self.capability = capability
        self.attempts: tuple[FetchAttempt, ...] = tuple(attempts)
        super().__init__(
            f"All {len(self.attempts)} provider(s) failed for {request}",
            details={"attempts": [a.to_dict() for a in self.attempts]},
        )

    @property
    def providers(self) -> list[str]:
        """Provider names in the order they were tried."""
        return [attempt.provider for attempt in self.attempts]

    @property
    def kinds(self) -> list[FetchErrorKind]:
        """Failure kinds in the order they occurred."""
        return [attempt.kind for attempt in self.attempts]

    def kind_counts(self) -> Counter[FetchErrorKind]:
        """Number of attempts per failure kind."""
        return Counter(self.kinds)

    def all_failed_with(self, kind: FetchErrorKind) -> bool:
        """True when there was at least one attempt and every one failed with ``kind``."""
        return bool(self.attempts) and all(a.kind is kind for a in self.attempts)

    def attempts_for(self, provider: str) -> list[FetchAttempt]:
        """Attempts made against one provider."""
        return [a for a in self.attempts if a.provider == provider]

    def summary(self) -> str:
        """Multi-line human-readable report of every attempt."""
        lines = [self.message]
        for index, attempt in enumerate(self.attempts, start=1):
            lines.append(
                f"  {index}. {attempt.provider} [{attempt.kind.value}]: {attempt.message}"
            )
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        base = super().to_dict()
        base.update({"request": self.request, "capability": self.capability})
        return base


class CacheBackendError(QuantDataError):
    """A cache backend failed to read or write its storage.

    The registry treats this as a miss on reads and ignores it on writes.

    Attributes:
        operation: Cache operation that failed (get, put, invalidate, ...).
        key: Cache key involved, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        operation: str,
        key: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.operation = operation
        self.key = key

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        base = super().to_dict()
        base.update({"operation": self.operation, "key": self.key})
        return base
