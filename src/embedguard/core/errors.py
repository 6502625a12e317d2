"""
Failure taxonomy and structured error types for embedguard.

Embedded-report failures arrive in many shapes (SDK error events, transport
exceptions, HTTP statuses, bare strings). Downstream logic never looks at
those shapes directly. The classifier folds each one into a closed
:class:`FailureKind`, and every kind carries a fixed retry policy and
severity. The exception hierarchy here lets host code raise failures that
already know their kind.

Manifesto:
    - **Closed taxonomy:** Retry and messaging logic switch on FailureKind only
    - **Explicit retry semantics:** Each kind knows if it is retryable
    - **Rich context:** Errors carry resource ids and metadata for logging
    - **Error chaining:** Wrapped exceptions are preserved as ``cause``

Architecture:
    ::

        FailureKind ──► FAILURE_POLICY ──► (retryable, Severity)
             │
             ▼
        FailureRecord  (frozen, produced by execution.classifier.classify)

        EmbedGuardError
        ├── TokenExpiredError      (token_expired, retryable)
        ├── QueryError             (query_error, retryable)
        ├── RateLimitError         (rate_limited, retryable, retry_after)
        ├── NetworkError           (network_error, retryable)
        ├── EmbedTimeoutError      (timeout, retryable)
        ├── ResourceNotFoundError  (not_found)
        ├── UnauthorizedError      (unauthorized)
        ├── TokenRefreshError      (unauthorized, raised by RecoveryOrchestrator.execute)
        ├── RetryExhaustedError
        └── ConfigError            (also a ValueError, raised by constructors)

Examples:
    >>> error = RateLimitError("Too many embeds", retry_after=30)
    >>> error.kind
    <FailureKind.RATE_LIMITED: 'rate_limited'>
    >>> error.retryable
    True
    >>> FAILURE_POLICY[FailureKind.NOT_FOUND]
    (False, <Severity.CRITICAL: 'critical'>)

Guardrails:
    ❌ DON'T: Put access tokens into error context
    ✅ DO: Attach the resource id and let logging carry the rest

Tags:
    error-handling, failure-taxonomy, retry-logic, embedguard

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from embedguard.core.clock import utc_now


class FailureKind(str, Enum):
    """Closed set of failure kinds recognised by the resilience layer."""

    TOKEN_EXPIRED = "token_expired"
    QUERY_ERROR = "query_error"
    RATE_LIMITED = "rate_limited"
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    NETWORK_ERROR = "network_error"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"
    NULL = "null"


class Severity(str, Enum):
    """How loudly a failure should be surfaced."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


FAILURE_POLICY: dict[FailureKind, tuple[bool, Severity]] = {
    FailureKind.TOKEN_EXPIRED: (True, Severity.HIGH),
    FailureKind.QUERY_ERROR: (True, Severity.MEDIUM),
    FailureKind.RATE_LIMITED: (True, Severity.MEDIUM),
    FailureKind.NETWORK_ERROR: (True, Severity.MEDIUM),
    FailureKind.TIMEOUT: (True, Severity.MEDIUM),
    FailureKind.NOT_FOUND: (False, Severity.CRITICAL),
    FailureKind.UNAUTHORIZED: (False, Severity.CRITICAL),
    FailureKind.UNKNOWN: (False, Severity.MEDIUM),
    FailureKind.NULL: (False, Severity.LOW),
}


@dataclass(frozen=True)
class FailureRecord:
    """A classified failure.

    Attributes:
        kind: Closed failure kind; the only field retry logic switches on
        message: Human-oriented description taken from the raw failure
        retryable: Fixed by ``kind`` (see :data:`FAILURE_POLICY`)
        severity: Fixed by ``kind``
        code: Raw error code as reported by the SDK/transport, if any
        resource_id: Report/resource the failure belongs to
        timestamp: When the failure was classified (UTC)
        retry_after: Upstream-suggested wait in seconds, if the raw failure had one
    """

    kind: FailureKind
    message: str
    retryable: bool
    severity: Severity
    code: str = ""
    resource_id: str | None = None
    timestamp: datetime = field(default_factory=utc_now)
    retry_after: float | None = None

    @classmethod
    def of(
        cls,
        kind: FailureKind,
        message: str,
        *,
        code: str = "",
        resource_id: str | None = None,
        retry_after: float | None = None,
    ) -> FailureRecord:
        """Build a record whose retryable/severity come from the kind policy."""
        retryable, severity = FAILURE_POLICY[kind]
        return cls(
            kind=kind,
            message=message,
            retryable=retryable,
            severity=severity,
            code=code,
            resource_id=resource_id,
            retry_after=retry_after,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "kind": self.kind.value,
            "message": self.message,
            "retryable": self.retryable,
            "severity": self.severity.value,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.code:
            result["code"] = self.code
        if self.resource_id is not None:
            result["resource_id"] = self.resource_id
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        return result


class EmbedGuardError(Exception):
    """
    Base exception for all embedguard errors.

    Subclasses set ``default_kind``; ``retryable`` defaults to the kind's
    policy unless passed explicitly.

    Examples:
        >>> error = EmbedGuardError("Embed failed").with_context(resource_id="r1")
        >>> error.context["resource_id"]
        'r1'
        >>> error.to_dict()["kind"]
        'unknown'
    """

    default_kind: FailureKind = FailureKind.UNKNOWN

    def __init__(
        self,
        message: str,
        *,
        kind: FailureKind | None = None,
        retryable: bool | None = None,
        retry_after: float | None = None,
        context: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind or self.default_kind
        self.retryable = retryable if retryable is not None else FAILURE_POLICY[self.kind][0]
        self.retry_after = retry_after
        self.context: dict[str, Any] = dict(context or {})
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> EmbedGuardError:
        """Add context to this error (fluent API)."""
        self.context.update(kwargs)
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "kind": self.kind.value,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        if self.context:
            result["context"] = dict(self.context)
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, kind={self.kind.value})"


# =============================================================================
# EMBED FAILURES (raised by host embed actions)
# =============================================================================


class TokenExpiredError(EmbedGuardError):
    """The embed access token is no longer valid."""

    default_kind = FailureKind.TOKEN_EXPIRED


class QueryError(EmbedGuardError):
    """The report's underlying query failed (``QueryUserError``)."""

    default_kind = FailureKind.QUERY_ERROR


class RateLimitError(EmbedGuardError):
    """The embedding service is throttling requests."""

    default_kind = FailureKind.RATE_LIMITED

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        *,
        retry_after: float | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, retry_after=retry_after, **kwargs)


class NetworkError(EmbedGuardError):
    """Transport-level failure reaching the embedding service."""

    default_kind = FailureKind.NETWORK_ERROR


class EmbedTimeoutError(EmbedGuardError):
    """The embed request did not complete in time."""

    default_kind = FailureKind.TIMEOUT


class ResourceNotFoundError(EmbedGuardError):
    """The report does not exist or is not visible to the caller."""

    default_kind = FailureKind.NOT_FOUND


class UnauthorizedError(EmbedGuardError):
    """The caller lacks permission to embed the report."""

    default_kind = FailureKind.UNAUTHORIZED


# =============================================================================
# LAYER ERRORS
# =============================================================================


class TokenRefreshError(EmbedGuardError):
    """The auth collaborator failed to refresh the access token.

    Classified as ``unauthorized`` (not retryable, critical); the host must
    re-authenticate before embedding again.
    """

    default_kind = FailureKind.UNAUTHORIZED

    def __init__(self, message: str = "Token refresh failed", **kwargs: Any):
        super().__init__(message, **kwargs)


class RetryExhaustedError(EmbedGuardError):
    """No further retries are permitted for a (resource, kind) pair."""

    def __init__(self, message: str, *, attempts: int = 0, **kwargs: Any):
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)
        self.attempts = attempts


class ConfigError(EmbedGuardError, ValueError):
    """Invalid component configuration (capacity, delays, intervals).

    Also a :class:`ValueError`, so callers validating arguments generically
    still catch it.
    """

    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)


# =============================================================================
# HELPERS
# =============================================================================


def is_retryable(error: BaseException) -> bool:
    """Check if an exception is retryable.

    Non-embedguard exceptions are treated as not retryable; classify them
    with :func:`embedguard.execution.classifier.classify` for a real answer.
    """
    if isinstance(error, EmbedGuardError):
        return error.retryable
    return False


def get_retry_after(error: BaseException) -> float | None:
    """Get retry-after hint from an exception, if any."""
    if isinstance(error, EmbedGuardError):
        return error.retry_after
    return None


__all__ = [
    "FAILURE_POLICY",
    "ConfigError",
    "EmbedGuardError",
    "EmbedTimeoutError",
    "FailureKind",
    "FailureRecord",
    "NetworkError",
    "QueryError",
    "RateLimitError",
    "ResourceNotFoundError",
    "RetryExhaustedError",
    "Severity",
    "TokenExpiredError",
    "TokenRefreshError",
    "UnauthorizedError",
    "get_retry_after",
    "is_retryable",
]
