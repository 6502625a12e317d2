"""
embedguard - resilience layer for embedded reports.

Keeps embedded report widgets responsive under token expiry, rate limiting,
transient network failures and many concurrently visible widgets:

- embedguard.core: settings, clock, failure taxonomy, logging, resource cache
- embedguard.execution: classifier, backoff, rate-limit window, orchestrator, load queue
- embedguard.observability: SDK event normalisation, lifecycle tracker, metrics
- embedguard.container: one of each component, built from settings
"""

__version__ = "0.1.0"

from embedguard.container import ResilienceContainer
from embedguard.core.cache import ResourceCache
from embedguard.core.errors import FailureKind, FailureRecord, Severity
from embedguard.core.settings import ResilienceSettings, get_settings
from embedguard.execution.orchestrator import RecoveryOrchestrator
from embedguard.observability.tracker import LifecycleTracker

__all__ = [
    "FailureKind",
    "FailureRecord",
    "LifecycleTracker",
    "RecoveryOrchestrator",
    "ResilienceContainer",
    "ResilienceSettings",
    "ResourceCache",
    "Severity",
    "__version__",
    "get_settings",
]
