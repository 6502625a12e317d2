"""embedguard observability -- lifecycle events, tracker and metrics."""

from embedguard.observability.events import EventKind, TrackedEvent, normalize_sdk_event
from embedguard.observability.metrics import MetricsRegistry, ResilienceMetrics, get_metrics_registry
from embedguard.observability.tracker import GlobalStats, InstanceStatus, LifecycleTracker, PerformanceRecord

__all__ = [
    "EventKind",
    "GlobalStats",
    "InstanceStatus",
    "LifecycleTracker",
    "MetricsRegistry",
    "PerformanceRecord",
    "ResilienceMetrics",
    "TrackedEvent",
    "get_metrics_registry",
    "normalize_sdk_event",
]
