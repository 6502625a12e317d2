"""Tests for embedguard.core.errors: failure taxonomy and exception hierarchy."""

import pytest

from embedguard.core.errors import (
    FAILURE_POLICY,
    ConfigError,
    EmbedGuardError,
    FailureKind,
    FailureRecord,
    NetworkError,
    QueryError,
    RateLimitError,
    ResourceNotFoundError,
    RetryExhaustedError,
    Severity,
    TokenExpiredError,
    TokenRefreshError,
    UnauthorizedError,
    get_retry_after,
    is_retryable,
)
from embedguard.execution.classifier import classify


class TestFailurePolicy:
    """Every kind carries a fixed (retryable, severity) pair."""

    def test_every_kind_has_a_policy(self):
        assert set(FAILURE_POLICY) == set(FailureKind)

    @pytest.mark.parametrize(
        "kind,retryable,severity",
        [
            (FailureKind.TOKEN_EXPIRED, True, Severity.HIGH),
            (FailureKind.QUERY_ERROR, True, Severity.MEDIUM),
            (FailureKind.RATE_LIMITED, True, Severity.MEDIUM),
            (FailureKind.NETWORK_ERROR, True, Severity.MEDIUM),
            (FailureKind.TIMEOUT, True, Severity.MEDIUM),
            (FailureKind.NOT_FOUND, False, Severity.CRITICAL),
            (FailureKind.UNAUTHORIZED, False, Severity.CRITICAL),
            (FailureKind.NULL, False, Severity.LOW),
        ],
    )
    def test_policy_values(self, kind, retryable, severity):
        record = FailureRecord.of(kind, "boom")
        assert record.retryable is retryable
        assert record.severity is severity


class TestFailureRecord:
    def test_to_dict(self):
        record = FailureRecord.of(
            FailureKind.RATE_LIMITED, "slow down", code="429", resource_id="r1", retry_after=5.0
        )
        data = record.to_dict()

        assert data["kind"] == "rate_limited"
        assert data["severity"] == "medium"
        assert data["retryable"] is True
        assert data["code"] == "429"
        assert data["resource_id"] == "r1"
        assert data["retry_after"] == 5.0
        assert "timestamp" in data

    def test_is_frozen(self):
        record = FailureRecord.of(FailureKind.TIMEOUT, "late")
        with pytest.raises(AttributeError):
            record.kind = FailureKind.UNKNOWN


class TestErrorHierarchy:
    """Exception classes map onto failure kinds."""

    @pytest.mark.parametrize(
        "error_cls,kind",
        [
            (TokenExpiredError, FailureKind.TOKEN_EXPIRED),
            (QueryError, FailureKind.QUERY_ERROR),
            (NetworkError, FailureKind.NETWORK_ERROR),
            (ResourceNotFoundError, FailureKind.NOT_FOUND),
            (UnauthorizedError, FailureKind.UNAUTHORIZED),
        ],
    )
    def test_default_kind(self, error_cls, kind):
        error = error_cls("boom")
        assert error.kind is kind
        assert error.retryable is FAILURE_POLICY[kind][0]

    def test_with_context_is_fluent(self):
        error = EmbedGuardError("boom").with_context(resource_id="r1")
        assert error.context == {"resource_id": "r1"}
        assert error.to_dict()["context"] == {"resource_id": "r1"}

    def test_cause_is_chained(self):
        cause = ConnectionResetError("reset")
        error = NetworkError("network down", cause=cause)
        assert error.__cause__ is cause
        assert error.to_dict()["cause"] == "reset"

    def test_rate_limit_retry_after(self):
        error = RateLimitError(retry_after=12.0)
        assert get_retry_after(error) == 12.0
        assert is_retryable(error) is True

    def test_layer_errors_not_retryable(self):
        assert is_retryable(TokenRefreshError()) is False
        exhausted = RetryExhaustedError("done", attempts=3)
        assert exhausted.attempts == 3
        assert is_retryable(exhausted) is False

    def test_foreign_exceptions(self):
        assert is_retryable(ValueError("x")) is False
        assert get_retry_after(ValueError("x")) is None


class TestLayerErrors:
    def test_token_refresh_failure_is_unauthorized(self):
        error = TokenRefreshError(cause=RuntimeError("auth service down"))
        assert error.kind is FailureKind.UNAUTHORIZED
        assert error.retryable is False
        assert error.to_dict()["kind"] == "unauthorized"

    def test_token_refresh_failure_classifies_as_terminal(self):
        record = classify(TokenRefreshError(), "r1")
        assert record.kind is FailureKind.UNAUTHORIZED
        assert record.retryable is False
        assert record.severity is Severity.CRITICAL
        assert record.code == "TokenRefreshError"

    def test_config_error_is_a_value_error(self):
        error = ConfigError("capacity must be >= 0", context={"capacity": -1})
        assert isinstance(error, ValueError)
        assert isinstance(error, EmbedGuardError)
        assert error.retryable is False
        assert error.to_dict()["context"] == {"capacity": -1}
