"""Retry/recovery orchestration for embed failures.

The orchestrator turns a classified failure into a decision (retry or not),
a delay (exponential backoff with jitter and per-kind floors) and, when
asked, an actual retry of a caller-supplied embed action.

State machine per (resource id, failure kind)::

    Idle ──failure──► Attempting(1) ──fail──► Attempting(2) ── … ──► Exhausted
      ▲                    │                                           │
      └──────success───────┘                                   counter cleared,
                                                          retries refused
                                                          until clear_history

It owns three pieces of state and nothing else:

- retry counters keyed by ``(resource_id, FailureKind)``
- the set of exhausted ``(resource_id, FailureKind)`` keys
- the process-wide :class:`~embedguard.execution.rate_limit.RateLimitWindow`

Example:
    >>> orchestrator = RecoveryOrchestrator(token_refresher=auth.refresh)
    >>> record = orchestrator.classify(sdk_error_event, "r1")
    >>> if orchestrator.should_retry(record, "r1"):
    ...     report = await orchestrator.execute(record, "r1", embed_report)
"""

from __future__ import annotations

import asyncio
import inspect
import random
import threading
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, TypeVar

from embedguard.core.clock import Clock, SystemClock
from embedguard.core.errors import (
    FailureKind,
    FailureRecord,
    RetryExhaustedError,
    TokenRefreshError,
)
from embedguard.core.logging import get_logger
from embedguard.core.settings import ResilienceSettings
from embedguard.execution.classifier import classify, user_message
from embedguard.execution.rate_limit import RateLimitWindow
from embedguard.execution.retry import BackoffPolicy
from embedguard.observability.metrics import ResilienceMetrics, resilience_metrics

T = TypeVar("T")

TokenRefresher = Callable[[], Awaitable[Any]]
RetryKey = tuple[str, FailureKind]

# Wall-clock poll interval while another caller holds a key's gate
_GATE_POLL_SECONDS = 0.005

logger = get_logger(__name__)


class RecoveryOrchestrator:
    """Classify failures, gate retries and drive the retry action.

    Attributes:
        policy: Retry ceiling and backoff schedule
        rate_limit: Process-wide rate-limit cooldown window
    """

    def __init__(
        self,
        policy: BackoffPolicy | None = None,
        *,
        token_refresher: TokenRefresher | None = None,
        clock: Clock | None = None,
        rate_limit_cooldown: float = 60.0,
        rng: random.Random | None = None,
        metrics: ResilienceMetrics | None = None,
    ):
        self.policy = policy or BackoffPolicy()
        self._token_refresher = token_refresher
        self._clock = clock or SystemClock()
        self.rate_limit = RateLimitWindow(rate_limit_cooldown, clock=self._clock)
        self._rng = rng or random.Random()
        self._metrics = metrics or resilience_metrics
        self._attempts: dict[RetryKey, int] = {}
        self._exhausted: set[RetryKey] = set()
        self._key_locks: dict[RetryKey, threading.Lock] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: ResilienceSettings,
        *,
        token_refresher: TokenRefresher | None = None,
        clock: Clock | None = None,
        rng: random.Random | None = None,
        metrics: ResilienceMetrics | None = None,
    ) -> RecoveryOrchestrator:
        policy = BackoffPolicy(
            max_retries=settings.max_retries,
            base_delay=settings.base_delay_seconds,
            max_delay=settings.max_delay_seconds,
            multiplier=settings.backoff_multiplier,
            jitter=settings.jitter_seconds,
            kind_floors={
                FailureKind.QUERY_ERROR: settings.query_error_min_delay_seconds,
                FailureKind.RATE_LIMITED: settings.rate_limit_min_delay_seconds,
            },
        )
        return cls(
            policy,
            token_refresher=token_refresher,
            clock=clock,
            rate_limit_cooldown=settings.rate_limit_cooldown_seconds,
            rng=rng,
            metrics=metrics,
        )

    # ------------------------------------------------------------------ #
    # Classification
    # ------------------------------------------------------------------ #

    def classify(self, raw: Any, resource_id: str | None = None) -> FailureRecord:
        return classify(raw, resource_id)

    def user_message(self, record: FailureRecord | None) -> str:
        return user_message(record)

    # ------------------------------------------------------------------ #
    # Decisions
    # ------------------------------------------------------------------ #

    def attempts(self, resource_id: str, kind: FailureKind) -> int:
        """Retries made so far for ``(resource_id, kind)``."""
        with self._lock:
            return self._attempts.get((resource_id, kind), 0)

    def is_exhausted(self, resource_id: str, kind: FailureKind) -> bool:
        """True once the final permitted attempt for ``(resource_id, kind)`` failed."""
        with self._lock:
            return (resource_id, kind) in self._exhausted

    def should_retry(self, record: FailureRecord, resource_id: str) -> bool:
        """Whether another retry is permitted for this failure."""
        if not record.retryable:
            return False
        if self.is_exhausted(resource_id, record.kind):
            return False
        if self.policy.is_exhausted(self.attempts(resource_id, record.kind)):
            return False
        if record.kind is FailureKind.RATE_LIMITED and self.rate_limit.is_active():
            return False
        return True

    def next_delay(self, record: FailureRecord, resource_id: str) -> float:
        """Backoff delay in seconds for the current attempt count."""
        jitter = self._rng.uniform(0, self.policy.jitter) if self.policy.jitter else 0.0
        return self.policy.compute(self.attempts(resource_id, record.kind), record.kind, jitter)

    # ------------------------------------------------------------------ #
    # Execution
    # ------------------------------------------------------------------ #

    def _key_lock(self, key: RetryKey) -> threading.Lock:
        with self._lock:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = self._key_locks[key] = threading.Lock()
            return lock

    @asynccontextmanager
    async def _key_gate(self, key: RetryKey) -> AsyncIterator[None]:
        """Hold the per-key lock without blocking the running event loop.

        The lock is a plain thread lock polled with non-blocking acquires, so
        callers on different threads or event loops exclude each other.
        """
        lock = self._key_lock(key)
        while not lock.acquire(blocking=False):
            await asyncio.sleep(_GATE_POLL_SECONDS)
        try:
            yield
        finally:
            lock.release()

    async def execute(
        self,
        record: FailureRecord,
        resource_id: str,
        action: Callable[[], Awaitable[T] | T],
        *,
        token_refresher: TokenRefresher | None = None,
    ) -> T | None:
        """Retry ``action`` once for ``record`` if policy allows.

        Attempts for the same ``(resource_id, kind)`` are serialised, across
        threads and event loops too: a second call waits until the first
        one's action has settled, then re-checks.

        Args:
            record: Classified failure that triggered the retry
            resource_id: Resource being re-embedded
            action: Sync or async callable performing the embed
            token_refresher: Overrides the orchestrator's refresher for this call

        Returns:
            The action's result, or ``None`` if no retry is permitted

        Raises:
            TokenRefreshError: The token refresh required by a token-expired
                failure failed (or no refresher is configured)
            Exception: Whatever ``action`` raised; failures are never swallowed
        """
        if not self.should_retry(record, resource_id):
            self._log_refused(record, resource_id)
            return None

        key: RetryKey = (resource_id, record.kind)
        log = logger.bind(resource_id=resource_id, kind=record.kind.value)

        async with self._key_gate(key):
            if not self.should_retry(record, resource_id):
                self._log_refused(record, resource_id)
                return None

            with self._lock:
                attempt = self._attempts.get(key, 0) + 1
                self._attempts[key] = attempt
            final_attempt = self.policy.is_exhausted(attempt)
            self._metrics.retry_attempts.labels(kind=record.kind.value).inc()

            if record.kind is FailureKind.TOKEN_EXPIRED:
                await self._refresh_token(token_refresher or self._token_refresher, key, final_attempt, log)

            delay = self.next_delay(record, resource_id)
            self._metrics.retry_delay.observe(delay)
            log.info(
                "retry_scheduled",
                attempt=attempt,
                max_retries=self.policy.max_retries,
                delay_seconds=round(delay, 3),
            )
            await self._clock.sleep(delay)

            try:
                result = action()
                if inspect.isawaitable(result):
                    result = await result
            except Exception as exc:
                self._metrics.retry_failure.labels(kind=record.kind.value).inc()
                if final_attempt:
                    self._forget(key, exhausted=True)
                log.warning("retry_failed", attempt=attempt, final=final_attempt, error=str(exc))
                raise

            self._forget(key)
            self._metrics.retry_success.labels(kind=record.kind.value).inc()
            log.info("retry_succeeded", attempt=attempt)
            return result

    async def _refresh_token(
        self,
        refresher: TokenRefresher | None,
        key: RetryKey,
        final_attempt: bool,
        log: Any,
    ) -> None:
        if refresher is None:
            if final_attempt:
                self._forget(key, exhausted=True)
            raise TokenRefreshError("No token refresher configured", context={"resource_id": key[0]})
        try:
            await refresher()
        except Exception as exc:
            if final_attempt:
                self._forget(key, exhausted=True)
            log.error("token_refresh_failed", error=str(exc))
            raise TokenRefreshError(context={"resource_id": key[0]}, cause=exc) from exc
        log.info("token_refreshed")

    async def handle_failure(
        self,
        raw: Any,
        resource_id: str,
        action: Callable[[], Awaitable[T] | T],
    ) -> tuple[FailureRecord, T | None]:
        """Classify ``raw``, open the rate-limit window if needed, then execute.

        A rate-limited failure opens (or extends) the window using the
        upstream ``retry_after`` hint, so its retry is refused until the window
        elapses; the host should re-embed after :meth:`rate_limit_remaining`.
        """
        record = self.classify(raw, resource_id)
        if record.kind is FailureKind.RATE_LIMITED:
            self.register_rate_limit(record.retry_after)
        return record, await self.execute(record, resource_id, action)

    def _forget(self, key: RetryKey, *, exhausted: bool = False) -> None:
        with self._lock:
            self._attempts.pop(key, None)
            if exhausted:
                self._exhausted.add(key)

    def _log_refused(self, record: FailureRecord, resource_id: str) -> None:
        logger.info(
            "retry_refused",
            resource_id=resource_id,
            kind=record.kind.value,
            retryable=record.retryable,
            attempts=self.attempts(resource_id, record.kind),
            rate_limited=self.rate_limit.is_active(),
        )

    def exhausted_error(self, record: FailureRecord, resource_id: str) -> RetryExhaustedError:
        """Typed exhaustion signal for hosts that prefer raising over ``None``."""
        return RetryExhaustedError(
            f"No retries left for {record.kind.value} on {resource_id}",
            kind=record.kind,
            attempts=(
                self.policy.max_retries
                if self.is_exhausted(resource_id, record.kind)
                else self.attempts(resource_id, record.kind)
            ),
            context={"resource_id": resource_id},
        )

    # ------------------------------------------------------------------ #
    # Rate limiting & history
    # ------------------------------------------------------------------ #

    def register_rate_limit(self, reset_seconds: float | None = None) -> None:
        """Refuse rate-limited retries for ``reset_seconds`` (default cooldown if None)."""
        self.rate_limit.register(reset_seconds)

    def is_rate_limited(self) -> bool:
        return self.rate_limit.is_active()

    def rate_limit_remaining(self) -> float:
        return self.rate_limit.remaining()

    def clear_history(self, resource_id: str) -> None:
        """Drop every retry counter and exhaustion mark for ``resource_id``."""
        with self._lock:
            for key in [key for key in self._attempts if key[0] == resource_id]:
                del self._attempts[key]
            self._exhausted = {key for key in self._exhausted if key[0] != resource_id}
            for key in [key for key, lock in self._key_locks.items() if key[0] == resource_id and not lock.locked()]:
                del self._key_locks[key]
        logger.debug("retry_history_cleared", resource_id=resource_id)

    def retry_status(self, resource_id: str) -> dict[str, int]:
        """Current attempt counts for ``resource_id``, keyed by failure kind.

        Exhausted kinds report ``max_retries``.
        """
        with self._lock:
            status = {kind.value: self.policy.max_retries for rid, kind in self._exhausted if rid == resource_id}
            status.update(
                (kind.value, attempts) for (rid, kind), attempts in self._attempts.items() if rid == resource_id
            )
            return status


__all__ = ["RecoveryOrchestrator", "TokenRefresher"]
