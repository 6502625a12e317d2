"""embedguard core -- primitives shared by every component.

Architecture::

    settings.py     ResilienceSettings (pydantic-settings, EMBEDGUARD_* env)
    clock.py        Clock protocol, SystemClock, ManualClock
    errors.py       FailureKind / Severity / FailureRecord + exception hierarchy
    logging.py      structlog configuration and context helpers
    scheduling.py   PeriodicTask daemon thread
    cache.py        ResourceCache (LRU + TTL sweep)
"""

from embedguard.core.cache import CacheEntry, CacheMetrics, ResourceCache, bundle_by_host
from embedguard.core.clock import Clock, ManualClock, SystemClock, utc_now
from embedguard.core.errors import (
    FAILURE_POLICY,
    ConfigError,
    EmbedGuardError,
    FailureKind,
    FailureRecord,
    RetryExhaustedError,
    Severity,
    TokenRefreshError,
)
from embedguard.core.settings import ResilienceSettings, clear_settings_cache, get_settings

__all__ = [
    "FAILURE_POLICY",
    "CacheEntry",
    "CacheMetrics",
    "Clock",
    "ConfigError",
    "EmbedGuardError",
    "FailureKind",
    "FailureRecord",
    "ManualClock",
    "ResilienceSettings",
    "ResourceCache",
    "RetryExhaustedError",
    "Severity",
    "SystemClock",
    "TokenRefreshError",
    "bundle_by_host",
    "clear_settings_cache",
    "get_settings",
    "utc_now",
]
