"""Failure classification and user-facing messages.

``classify`` is a tolerant parser: it accepts whatever the SDK or transport
produced (an error event dict, an exception, a status code, a string,
``None``) and folds it into a :class:`~embedguard.core.errors.FailureRecord`
with a closed :class:`~embedguard.core.errors.FailureKind`. Nothing
downstream inspects the raw shape again.

Both functions are total: they never raise, whatever they are given.

Example:
    >>> record = classify({"detail": {"errorCode": "TokenExpired", "message": "token expired"}}, "r1")
    >>> record.kind, record.retryable, record.severity.value
    (<FailureKind.TOKEN_EXPIRED: 'token_expired'>, True, 'high')
    >>> user_message(record)
    'Your session has expired. Please refresh the page to continue.'
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Mapping
from typing import Any

from embedguard.core.errors import EmbedGuardError, FailureKind, FailureRecord

NULL_MESSAGE = "No error information provided"
UNKNOWN_MESSAGE = "Unknown embedding error"

# Precedence order matters: the first matching kind wins.
_CODE_PATTERNS: tuple[tuple[FailureKind, re.Pattern[str]], ...] = (
    (FailureKind.TOKEN_EXPIRED, re.compile(r"token_?expired", re.IGNORECASE)),
    (FailureKind.QUERY_ERROR, re.compile(r"query_?user_?error|query_?error", re.IGNORECASE)),
    (FailureKind.RATE_LIMITED, re.compile(r"rate_?limit", re.IGNORECASE)),
    (FailureKind.NOT_FOUND, re.compile(r"not_?found", re.IGNORECASE)),
    (FailureKind.UNAUTHORIZED, re.compile(r"unauthori[sz]ed|forbidden", re.IGNORECASE)),
    (FailureKind.NETWORK_ERROR, re.compile(r"network_?error", re.IGNORECASE)),
    (FailureKind.TIMEOUT, re.compile(r"time_?out", re.IGNORECASE)),
)

_MESSAGE_PATTERNS: tuple[tuple[FailureKind, re.Pattern[str]], ...] = (
    (FailureKind.TOKEN_EXPIRED, re.compile(r"\btoken\b", re.IGNORECASE)),
    (FailureKind.RATE_LIMITED, re.compile(r"\brate[- ]?limit|too many requests", re.IGNORECASE)),
)

_STATUS_KINDS: dict[int, FailureKind] = {
    401: FailureKind.UNAUTHORIZED,
    403: FailureKind.UNAUTHORIZED,
    404: FailureKind.NOT_FOUND,
    408: FailureKind.TIMEOUT,
    429: FailureKind.RATE_LIMITED,
    504: FailureKind.TIMEOUT,
}

USER_MESSAGES: dict[FailureKind, str] = {
    FailureKind.TOKEN_EXPIRED: "Your session has expired. Please refresh the page to continue.",
    FailureKind.QUERY_ERROR: (
        "The report query failed. This may be caused by an expired token, rate limiting "
        "or a permissions issue. Try refreshing the page or reducing the number of open reports."
    ),
    FailureKind.RATE_LIMITED: "Too many requests. Please wait a moment before trying again.",
    FailureKind.NOT_FOUND: "Report not found or you don't have permission to access it.",
    FailureKind.UNAUTHORIZED: "You don't have permission to access this report.",
    FailureKind.NETWORK_ERROR: "Network connection error. Please check your internet connection.",
    FailureKind.TIMEOUT: "Request timed out. Please try again.",
    FailureKind.NULL: "A system error occurred. Please refresh the page.",
}

FALLBACK_MESSAGE = "An error occurred while loading the report."


def _lookup(source: Any, *path: str) -> Any:
    """Follow ``path`` through mappings/attributes, returning None on any miss."""
    current = source
    for key in path:
        if current is None:
            return None
        if isinstance(current, Mapping):
            current = current.get(key)
        else:
            current = getattr(current, key, None)
    return current


def _first(source: Any, *paths: tuple[str, ...]) -> Any:
    for path in paths:
        value = _lookup(source, *path)
        if value not in (None, ""):
            return value
    return None


def _as_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _as_seconds(value: Any) -> float | None:
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    return seconds if seconds > 0 else None


def _kind_from_exception_type(raw: BaseException) -> FailureKind | None:
    if isinstance(raw, (TimeoutError, asyncio.TimeoutError)):
        return FailureKind.TIMEOUT
    if isinstance(raw, (ConnectionError, OSError)):
        return FailureKind.NETWORK_ERROR
    return None


def _match(patterns: tuple[tuple[FailureKind, re.Pattern[str]], ...], text: str) -> FailureKind | None:
    for kind, pattern in patterns:
        if pattern.search(text):
            return kind
    return None


def classify(raw: Any, resource_id: str | None = None) -> FailureRecord:
    """Map an arbitrary raw failure onto a :class:`FailureRecord`.

    Args:
        raw: SDK error event, exception, status payload, string or ``None``
        resource_id: Resource the failure belongs to

    Returns:
        A record whose retryable/severity are fixed by its kind
    """
    if raw is None:
        return FailureRecord.of(FailureKind.NULL, NULL_MESSAGE, code="NULL_ERROR", resource_id=resource_id)

    try:
        return _classify(raw, resource_id)
    except Exception:
        # Hostile objects (raising __str__/__getattr__) still get a record
        return FailureRecord.of(FailureKind.UNKNOWN, UNKNOWN_MESSAGE, code="UNKNOWN", resource_id=resource_id)


def _classify(raw: Any, resource_id: str | None) -> FailureRecord:
    if isinstance(raw, str):
        code, message, status, retry_after = "", raw, None, None
    else:
        code = str(
            _first(raw, ("detail", "errorCode"), ("errorCode",), ("error_code",), ("code",)) or ""
        )
        message = _first(raw, ("detail", "message"), ("message",))
        if message is None:
            message = str(raw) if not isinstance(raw, Mapping) else ""
        message = str(message)
        status = _as_int(
            _first(raw, ("detail", "statusCode"), ("statusCode",), ("status_code",), ("status",))
        )
        retry_after = _as_seconds(
            _first(raw, ("detail", "retryAfter"), ("retryAfter",), ("retry_after",))
        )
        if status is None and code.isdigit():
            status = int(code)

    kind: FailureKind | None = None
    if isinstance(raw, EmbedGuardError):
        kind = raw.kind
        code = code or raw.__class__.__name__
    if kind is None and code:
        kind = _match(_CODE_PATTERNS, code)
    if kind is None and status is not None:
        kind = _STATUS_KINDS.get(status)
    if kind is None and isinstance(raw, BaseException):
        kind = _kind_from_exception_type(raw)
        code = code or raw.__class__.__name__
    if kind is None and message:
        kind = _match(_MESSAGE_PATTERNS, message)
    if kind is None:
        kind = FailureKind.UNKNOWN

    return FailureRecord.of(
        kind,
        message or UNKNOWN_MESSAGE,
        code=code or ("UNKNOWN" if kind is FailureKind.UNKNOWN else kind.value),
        resource_id=resource_id,
        retry_after=retry_after,
    )


def user_message(record: FailureRecord | None) -> str:
    """One canonical sentence per failure kind.

    ``unknown`` failures fall back to the raw message text.
    """
    if record is None:
        return "An unknown error occurred. Please try again."
    if record.kind is FailureKind.UNKNOWN:
        return record.message or FALLBACK_MESSAGE
    return USER_MESSAGES.get(record.kind, FALLBACK_MESSAGE)


__all__ = ["USER_MESSAGES", "classify", "user_message"]
