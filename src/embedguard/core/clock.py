"""Time sources for the resilience layer.

Every component reads time through a :class:`Clock` so that backoff waits,
rate-limit windows, cache ages and lifecycle timestamps can be driven by a
simulated clock in tests and in ``embedguard simulate``.

Example:
    >>> from embedguard.core.clock import ManualClock
    >>> clock = ManualClock(start=100.0)
    >>> clock.advance(5)
    >>> clock.monotonic()
    105.0
"""

from __future__ import annotations

import asyncio
import time
from datetime import UTC, datetime
from typing import Protocol


def utc_now() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


class Clock(Protocol):
    """Protocol for injectable time sources."""

    def monotonic(self) -> float:
        """Seconds on a monotonic timeline (intervals, lifecycle timing)."""
        ...

    def time(self) -> float:
        """Wall-clock seconds since the epoch (cache ages, windows)."""
        ...

    async def sleep(self, seconds: float) -> None:
        """Suspend the calling coroutine for ``seconds``."""
        ...


class SystemClock:
    """Clock backed by the real process time."""

    def monotonic(self) -> float:
        return time.monotonic()

    def time(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class ManualClock:
    """Deterministic clock advanced explicitly by the caller.

    ``sleep`` returns immediately after advancing the clock by the requested
    amount; every requested delay is kept in :attr:`sleeps` so tests can
    assert on backoff behaviour without waiting.
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self._now

    def time(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        if seconds < 0:
            raise ValueError("ManualClock cannot move backwards")
        self._now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(max(0.0, seconds))
        # Still yield to the loop so concurrent tasks interleave realistically
        await asyncio.sleep(0)


__all__ = ["Clock", "ManualClock", "SystemClock", "utc_now"]
