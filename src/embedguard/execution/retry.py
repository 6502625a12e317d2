"""Exponential backoff with jitter and per-kind delay floors.

Delay = min(base_delay * multiplier ** attempts + jitter, max_delay), then
raised to the floor configured for the failure kind (query errors wait at
least 3s, rate limits at least 10s by default). Floors apply even when they
exceed ``max_delay``.

Example:
    >>> from embedguard.core.errors import FailureKind
    >>> policy = BackoffPolicy(jitter=0.0)
    >>> [policy.compute(n, FailureKind.NETWORK_ERROR) for n in range(4)]
    [1.0, 2.0, 4.0, 8.0]
    >>> policy.compute(0, FailureKind.RATE_LIMITED)
    10.0
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field

from embedguard.core.errors import ConfigError, FailureKind


def _default_floors() -> dict[FailureKind, float]:
    return {
        FailureKind.QUERY_ERROR: 3.0,
        FailureKind.RATE_LIMITED: 10.0,
    }


@dataclass
class BackoffPolicy:
    """Retry ceiling and delay schedule for the recovery orchestrator.

    Attributes:
        max_retries: Attempts permitted per (resource, kind) before exhaustion
        base_delay: Delay in seconds before the first retry (ignoring jitter)
        max_delay: Cap on the exponential delay in seconds
        multiplier: Exponential growth factor
        jitter: Upper bound of the uniform random offset added in seconds
        kind_floors: Minimum delay per failure kind
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter: float = 1.0
    kind_floors: dict[FailureKind, float] = field(default_factory=_default_floors)

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ConfigError("max_retries must be >= 0")
        if self.base_delay < 0 or self.max_delay < 0 or self.jitter < 0:
            raise ConfigError("delays must be non-negative")
        if self.multiplier < 1:
            raise ConfigError("multiplier must be >= 1")

    def compute(
        self,
        attempts: int,
        kind: FailureKind,
        jitter_value: float | None = None,
    ) -> float:
        """Calculate the delay before the next retry.

        Args:
            attempts: Retries already made for this (resource, kind)
            kind: Failure kind, used to apply delay floors
            jitter_value: Jitter to add; drawn from ``uniform(0, jitter)`` when None

        Returns:
            Delay in seconds
        """
        if jitter_value is None:
            jitter_value = random.uniform(0, self.jitter) if self.jitter else 0.0

        delay = self.base_delay * (self.multiplier ** max(0, attempts)) + jitter_value
        delay = min(delay, self.max_delay)
        return max(delay, self.kind_floors.get(kind, 0.0))

    def is_exhausted(self, attempts: int) -> bool:
        return attempts >= self.max_retries


__all__ = ["BackoffPolicy"]
