"""In-process metrics for the resilience layer.

The cache, orchestrator and tracker update counters, gauges and histograms
as they work; the host decides how to expose them (``collect()`` for dicts,
``export_prometheus()`` for a ``/metrics`` endpoint it already serves).

Every metric is a family keyed by label set. ``metric.labels(kind="timeout")``
returns a bound view onto one series; calling ``inc``/``set``/``observe`` on
the metric itself targets the unlabelled series.

Example:
    >>> from embedguard.observability.metrics import MetricsRegistry, ResilienceMetrics
    >>> metrics = ResilienceMetrics(MetricsRegistry())
    >>> metrics.cache_hits.inc()
    >>> metrics.retry_attempts.labels(kind="timeout").inc()
    >>> metrics.retry_attempts.labels(kind="timeout").value
    1.0
"""

from __future__ import annotations

import threading
from typing import Any

LabelKey = tuple[tuple[str, str], ...]

# Delays and paint times are seconds; embeds rarely take longer than a minute
DEFAULT_BUCKETS = (0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, float("inf"))


def _label_key(labels: dict[str, str]) -> LabelKey:
    return tuple(sorted((name, str(value)) for name, value in labels.items()))


def _format_labels(key: LabelKey, extra: tuple[str, str] | None = None) -> str:
    pairs = list(key) + ([extra] if extra else [])
    if not pairs:
        return ""
    return "{" + ",".join(f'{name}="{value}"' for name, value in pairs) + "}"


class _Family:
    """One named metric holding a series per label set."""

    kind = "untyped"

    def __init__(self, name: str, description: str = ""):
        self.name = name
        self.description = description
        self._series: dict[LabelKey, Any] = {}
        self._lock = threading.Lock()

    def _initial(self) -> Any:
        return 0.0

    def _read(self, key: LabelKey) -> Any:
        with self._lock:
            return self._series.get(key, self._initial())

    def labels(self, **labels: str) -> _Series:
        return _Series(self, _label_key(labels))

    def collect(self) -> list[dict[str, Any]]:
        with self._lock:
            return [
                {"name": self.name, "type": self.kind, "labels": dict(key), "value": value}
                for key, value in self._series.items()
            ]

    def exposition(self) -> list[str]:
        return [f"{self.name}{_format_labels(key)} {value}" for key, value in self._snapshot()]

    def _snapshot(self) -> list[tuple[LabelKey, Any]]:
        with self._lock:
            return list(self._series.items())


class _Series:
    """A family narrowed to one label set."""

    def __init__(self, family: _Family, key: LabelKey):
        self._family = family
        self._key = key

    def inc(self, amount: float = 1.0) -> None:
        self._family._inc(self._key, amount)

    def dec(self, amount: float = 1.0) -> None:
        self._family._inc(self._key, -amount)

    def set(self, value: float) -> None:
        self._family._set(self._key, value)

    def observe(self, value: float) -> None:
        self._family._observe(self._key, value)

    @property
    def value(self) -> float:
        return self._family._read(self._key)

    @property
    def data(self) -> dict[str, Any]:
        return self._family._read(self._key)


class Counter(_Family):
    """Only ever goes up: hits, evictions, retries."""

    kind = "counter"

    def _inc(self, key: LabelKey, amount: float) -> None:
        if amount < 0:
            raise ValueError(f"counter {self.name} cannot decrease")
        with self._lock:
            self._series[key] = self._series.get(key, 0.0) + amount

    def inc(self, amount: float = 1.0) -> None:
        self._inc((), amount)

    @property
    def value(self) -> float:
        return self._read(())


class Gauge(_Family):
    """Current level: cache size, tracked instances."""

    kind = "gauge"

    def _inc(self, key: LabelKey, amount: float) -> None:
        with self._lock:
            self._series[key] = self._series.get(key, 0.0) + amount

    def _set(self, key: LabelKey, value: float) -> None:
        with self._lock:
            self._series[key] = float(value)

    def set(self, value: float) -> None:
        self._set((), value)

    def inc(self, amount: float = 1.0) -> None:
        self._inc((), amount)

    def dec(self, amount: float = 1.0) -> None:
        self._inc((), -amount)

    @property
    def value(self) -> float:
        return self._read(())


class Histogram(_Family):
    """Cumulative buckets plus sum and count per label set."""

    kind = "histogram"

    def __init__(self, name: str, description: str = "", buckets: tuple[float, ...] | None = None):
        super().__init__(name, description)
        self.buckets = tuple(sorted(buckets or DEFAULT_BUCKETS))

    def _initial(self) -> dict[str, Any]:
        return {"buckets": dict.fromkeys(self.buckets, 0), "sum": 0.0, "count": 0}

    def _observe(self, key: LabelKey, value: float) -> None:
        with self._lock:
            series = self._series.get(key)
            if series is None:
                series = self._series[key] = self._initial()
            series["sum"] += value
            series["count"] += 1
            for bound in self.buckets:
                if value <= bound:
                    series["buckets"][bound] += 1

    def _read(self, key: LabelKey) -> dict[str, Any]:
        with self._lock:
            series = self._series.get(key) or self._initial()
            return {**series, "buckets": dict(series["buckets"])}

    def observe(self, value: float) -> None:
        self._observe((), value)

    def collect(self) -> list[dict[str, Any]]:
        return [
            {"name": self.name, "type": self.kind, "labels": dict(key), **self._read(key)}
            for key, _ in self._snapshot()
        ]

    def exposition(self) -> list[str]:
        lines = []
        for key, _ in self._snapshot():
            series = self._read(key)
            for bound, count in series["buckets"].items():
                le = "+Inf" if bound == float("inf") else str(bound)
                lines.append(f"{self.name}_bucket{_format_labels(key, ('le', le))} {count}")
            lines.append(f"{self.name}_sum{_format_labels(key)} {series['sum']}")
            lines.append(f"{self.name}_count{_format_labels(key)} {series['count']}")
        return lines


class MetricsRegistry:
    """Named metric families, created on first use."""

    def __init__(self) -> None:
        self._families: dict[str, _Family] = {}
        self._lock = threading.Lock()

    def _family(self, cls: type[_Family], name: str, **kwargs: Any) -> Any:
        with self._lock:
            family = self._families.get(name)
            if family is None:
                family = self._families[name] = cls(name, **kwargs)
            elif not isinstance(family, cls):
                raise ValueError(f"metric {name} already registered as a {family.kind}")
            return family

    def counter(self, name: str, description: str = "") -> Counter:
        return self._family(Counter, name, description=description)

    def gauge(self, name: str, description: str = "") -> Gauge:
        return self._family(Gauge, name, description=description)

    def histogram(self, name: str, description: str = "", buckets: tuple[float, ...] | None = None) -> Histogram:
        return self._family(Histogram, name, description=description, buckets=buckets)

    def _all(self) -> list[_Family]:
        with self._lock:
            return list(self._families.values())

    def collect(self) -> list[dict[str, Any]]:
        return [item for family in self._all() for item in family.collect()]

    def export_prometheus(self) -> str:
        """Render every family in the Prometheus text exposition format."""
        lines: list[str] = []
        for family in self._all():
            if family.description:
                lines.append(f"# HELP {family.name} {family.description}")
            lines.append(f"# TYPE {family.name} {family.kind}")
            lines.extend(family.exposition())
        return "\n".join(lines)


_default_registry = MetricsRegistry()


def get_metrics_registry() -> MetricsRegistry:
    return _default_registry


def counter(name: str, description: str = "") -> Counter:
    """Counter from the process-wide registry."""
    return _default_registry.counter(name, description)


def gauge(name: str, description: str = "") -> Gauge:
    """Gauge from the process-wide registry."""
    return _default_registry.gauge(name, description)


class ResilienceMetrics:
    """The metric families the cache, orchestrator and tracker update."""

    def __init__(self, registry: MetricsRegistry | None = None):
        reg = registry or _default_registry
        self.registry = reg

        self.cache_hits = reg.counter("embedguard_cache_hits_total", "Cache lookups that found an entry")
        self.cache_misses = reg.counter("embedguard_cache_misses_total", "Cache lookups that found nothing")
        self.cache_evictions = reg.counter("embedguard_cache_evictions_total", "Entries evicted for capacity")
        self.cache_expirations = reg.counter("embedguard_cache_expirations_total", "Entries removed by TTL sweep")
        self.cache_size = reg.gauge("embedguard_cache_size", "Current number of cached resources")

        self.retry_attempts = reg.counter("embedguard_retry_attempts_total", "Retries started, by failure kind")
        self.retry_success = reg.counter("embedguard_retry_success_total", "Retries whose action succeeded")
        self.retry_failure = reg.counter("embedguard_retry_failure_total", "Retries whose action failed")
        self.retry_delay = reg.histogram("embedguard_retry_delay_seconds", "Backoff delay before each retry")

        self.instances_active = reg.gauge("embedguard_tracked_instances", "Instances currently tracked")
        self.ttfmp = reg.histogram("embedguard_ttfmp_seconds", "Time to first meaningful paint")
        self.tti = reg.histogram("embedguard_tti_seconds", "Time to interactive")
        self.instance_errors = reg.counter("embedguard_instance_errors_total", "Error events recorded")


resilience_metrics = ResilienceMetrics()


__all__ = [
    "DEFAULT_BUCKETS",
    "Counter",
    "Gauge",
    "Histogram",
    "MetricsRegistry",
    "ResilienceMetrics",
    "counter",
    "gauge",
    "get_metrics_registry",
    "resilience_metrics",
]
