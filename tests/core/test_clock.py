"""Tests for embedguard.core.clock."""

import asyncio
from datetime import UTC

import pytest

from embedguard.core.clock import ManualClock, SystemClock, utc_now


class TestManualClock:
    """ManualClock drives time explicitly."""

    def test_starts_at_given_value(self):
        clock = ManualClock(start=42.0)
        assert clock.monotonic() == 42.0
        assert clock.time() == 42.0

    def test_advance(self):
        clock = ManualClock()
        clock.advance(1.5)
        clock.advance(0.5)
        assert clock.monotonic() == 2.0

    def test_cannot_move_backwards(self):
        clock = ManualClock()
        with pytest.raises(ValueError):
            clock.advance(-1)

    async def test_sleep_advances_and_records(self):
        """sleep returns immediately, moves time and keeps the requested delay."""
        clock = ManualClock()
        await clock.sleep(3.0)
        await clock.sleep(0.25)

        assert clock.sleeps == [3.0, 0.25]
        assert clock.time() == 3.25


class TestSystemClock:
    """SystemClock reads real process time."""

    def test_monotonic_does_not_go_backwards(self):
        clock = SystemClock()
        first = clock.monotonic()
        assert clock.monotonic() >= first

    async def test_sleep_zero(self):
        await asyncio.wait_for(SystemClock().sleep(0), timeout=1.0)


def test_utc_now_is_aware():
    assert utc_now().tzinfo is UTC
