"""
Shared pytest fixtures for embedguard tests.

This module provides:
- A deterministic ManualClock
- An isolated metrics registry per test
- Settings cache / environment isolation
"""

import os

import pytest

from embedguard.core.clock import ManualClock
from embedguard.core.settings import clear_settings_cache
from embedguard.observability.metrics import MetricsRegistry, ResilienceMetrics


@pytest.fixture(autouse=True)
def _isolate_settings(monkeypatch):
    """Every test starts with default settings and no EMBEDGUARD_* overrides."""
    for key in list(os.environ):
        if key.startswith("EMBEDGUARD_"):
            monkeypatch.delenv(key, raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def clock() -> ManualClock:
    """Manual clock starting at a realistic epoch value."""
    return ManualClock(start=1_700_000_000.0)


@pytest.fixture
def metrics() -> ResilienceMetrics:
    """Metrics bound to a private registry so tests never share counters."""
    return ResilienceMetrics(MetricsRegistry())
