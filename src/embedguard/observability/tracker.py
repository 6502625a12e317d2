"""
Per-instance lifecycle tracking for embedded reports.

Turns the stream of load/render/interaction/error events the host forwards
for each embedded instance into timestamped performance records, and rolls
them up into headline numbers: time to first meaningful paint (TTFMP), time
to interactive (TTI) and success rate.

Manifesto:
    Users judge a dashboard page by how long the widgets take to show
    something and to respond. Those are the two numbers worth tracking,
    measured per instance from the moment embedding begins, with failures
    counted separately so they do not drag the averages.

    - **Monotonic:** Status only moves forward, ``error`` is terminal
    - **Write-once milestones:** TTFMP and TTI are never overwritten
    - **Isolated listeners:** A failing observer is logged and skipped
    - **Caller-owned lifetime:** Records live until ``stop()``, never by timer

Architecture:
    ::

        host SDK callbacks ──► record_sdk_event ──► normalize_sdk_event
                                        │
                                        ▼
        start(resource, instance) ──► record(instance, kind, details)
                                        │  mutate PerformanceRecord (locked)
                                        ▼
                                 listeners (outside lock, in order)

        rendered (first) ──► threading.Timer(delay) ──► synthetic firstInteraction

Examples:
    >>> from embedguard.core.clock import ManualClock
    >>> clock = ManualClock()
    >>> tracker = LifecycleTracker(clock=clock, synthetic_interaction_delay=None)
    >>> _ = tracker.start("r1", "container-1")
    >>> clock.advance(0.12)
    >>> tracker.record("container-1", EventKind.RENDERED)
    >>> round(tracker.get("container-1").ttfmp)
    120

Tags:
    tracker, ttfmp, tti, lifecycle, observability, embedguard

Doc-Types:
    - API Reference
    - Technical Design
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any

from embedguard.core.clock import Clock, SystemClock
from embedguard.core.errors import ConfigError
from embedguard.core.logging import get_logger
from embedguard.observability.events import EventKind, TrackedEvent, normalize_sdk_event
from embedguard.observability.metrics import ResilienceMetrics, resilience_metrics

logger = get_logger(__name__)

Listener = Callable[[TrackedEvent], Any]


class InstanceStatus(str, Enum):
    LOADING = "loading"
    LOADED = "loaded"
    RENDERED = "rendered"
    INTERACTIVE = "interactive"
    ERROR = "error"


_PROGRESS = {
    InstanceStatus.LOADING: 0,
    InstanceStatus.LOADED: 1,
    InstanceStatus.RENDERED: 2,
    InstanceStatus.INTERACTIVE: 3,
}


@dataclass(frozen=True)
class TimedEntry:
    """One entry of an append-only event sequence (ms since instance start)."""

    timestamp: float
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class PerformanceRecord:
    """Timestamps and derived metrics for one embedded instance.

    All relative timestamps are milliseconds since ``start_time``.
    """

    resource_id: str
    instance_id: str
    start_time: float
    status: InstanceStatus = InstanceStatus.LOADING
    load_started: float | None = None
    load_completed: float | None = None
    render_started: float | None = None
    render_completed: float | None = None
    first_interaction: float | None = None
    ttfmp: float | None = None
    tti: float | None = None
    load_time: float | None = None
    page_changes: list[TimedEntry] = field(default_factory=list)
    interactions: list[TimedEntry] = field(default_factory=list)
    errors: list[TimedEntry] = field(default_factory=list)

    def advance(self, status: InstanceStatus) -> None:
        """Move status forward; ``error`` wins and then never changes."""
        if self.status is InstanceStatus.ERROR:
            return
        if status is InstanceStatus.ERROR or _PROGRESS[status] > _PROGRESS[self.status]:
            self.status = status

    def snapshot(self) -> PerformanceRecord:
        return replace(
            self,
            page_changes=list(self.page_changes),
            interactions=list(self.interactions),
            errors=list(self.errors),
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass(frozen=True)
class GlobalStats:
    total_reports: int = 0
    successful_reports: int = 0
    average_ttfmp: float = 0.0
    average_tti: float = 0.0
    average_load_time: float = 0.0
    success_rate: float = 100.0
    error_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


class LifecycleTracker:
    """Event-sequenced performance tracker keyed by instance id.

    Args:
        clock: Monotonic time source
        synthetic_interaction_delay: Seconds after the first ``rendered``
            event before a ``firstInteraction`` is synthesised if the host has
            not reported one; ``None`` disables the synthetic event
        metrics: Histogram/counter sink
        enabled: Emit informational log events
    """

    def __init__(
        self,
        *,
        clock: Clock | None = None,
        synthetic_interaction_delay: float | None = 0.1,
        metrics: ResilienceMetrics | None = None,
        enabled: bool = True,
    ):
        if synthetic_interaction_delay is not None and synthetic_interaction_delay < 0:
            raise ConfigError("synthetic_interaction_delay must be >= 0")
        self._clock = clock or SystemClock()
        self.synthetic_interaction_delay = synthetic_interaction_delay
        self._metrics = metrics or resilience_metrics
        self.enabled = enabled
        self._records: dict[str, PerformanceRecord] = {}
        self._listeners: dict[str, list[Listener]] = {}
        self._timers: dict[str, threading.Timer] = {}
        self._lock = threading.Lock()

    def set_logging(self, enabled: bool) -> None:
        self.enabled = enabled
        logger.info("tracker_logging_toggled", enabled=enabled)

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def start(self, resource_id: str, instance_id: str) -> PerformanceRecord:
        """Begin tracking ``instance_id``, replacing any prior record for it."""
        record = PerformanceRecord(resource_id, instance_id, start_time=self._clock.monotonic())
        with self._lock:
            self._cancel_timer(instance_id)
            self._records[instance_id] = record
            self._metrics.instances_active.set(len(self._records))
            snapshot = record.snapshot()
        if self.enabled:
            logger.info("tracking_started", resource_id=resource_id, instance_id=instance_id)
        return snapshot

    def stop(self, instance_id: str) -> PerformanceRecord | None:
        """Remove and return the record, detaching its listeners."""
        with self._lock:
            self._cancel_timer(instance_id)
            record = self._records.pop(instance_id, None)
            self._listeners.pop(instance_id, None)
            self._metrics.instances_active.set(len(self._records))
        if record is not None and self.enabled:
            logger.info(
                "tracking_stopped",
                resource_id=record.resource_id,
                instance_id=instance_id,
                load_time_ms=record.load_time,
                ttfmp_ms=record.ttfmp,
                tti_ms=record.tti,
                interactions=len(record.interactions),
                page_changes=len(record.page_changes),
                errors=len(record.errors),
            )
        return record

    def cleanup(self) -> None:
        """Drop every record, listener and pending synthetic interaction."""
        with self._lock:
            for instance_id in list(self._timers):
                self._cancel_timer(instance_id)
            self._records.clear()
            self._listeners.clear()
            self._metrics.instances_active.set(0)
        if self.enabled:
            logger.info("tracker_cleaned_up")

    # ------------------------------------------------------------------ #
    # Events
    # ------------------------------------------------------------------ #

    def record(
        self,
        instance_id: str,
        kind: EventKind | str,
        details: Mapping[str, Any] | None = None,
    ) -> None:
        """Apply an event to the instance's record, then notify its listeners.

        Unknown instance ids and unrecognised event kinds are ignored.
        """
        try:
            kind = EventKind(kind)
        except ValueError:
            logger.debug("lifecycle_event_ignored", instance_id=instance_id, kind=str(kind))
            return
        details = dict(details) if details else {}

        with self._lock:
            record = self._records.get(instance_id)
            if record is None:
                return
            event, listeners = self._apply_event(record, kind, details)
        self._notify(event, listeners)

    def _apply_event(
        self,
        record: PerformanceRecord,
        kind: EventKind,
        details: dict[str, Any],
    ) -> tuple[TrackedEvent, list[Listener]]:
        """Apply one event to ``record``. Caller holds ``self._lock``."""
        elapsed = (self._clock.monotonic() - record.start_time) * 1000.0
        if self._apply(record, kind, elapsed, details):
            self._arm_synthetic_interaction(record.instance_id, record)
        event = TrackedEvent(record.resource_id, record.instance_id, kind, elapsed, details)
        return event, list(self._listeners.get(record.instance_id, ()))

    def _notify(self, event: TrackedEvent, listeners: list[Listener]) -> None:
        if self.enabled:
            logger.debug(
                "lifecycle_event",
                resource_id=event.resource_id,
                instance_id=event.instance_id,
                kind=event.kind.value,
                elapsed_ms=round(event.timestamp, 2),
            )

        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("listener_failed", instance_id=event.instance_id, kind=event.kind.value)

    def record_sdk_event(self, instance_id: str, name: str, detail: Any = None) -> bool:
        """Record a raw SDK event by name.

        Returns:
            False if the event name is not one the tracker tracks
        """
        normalized = normalize_sdk_event(name, detail)
        if normalized is None:
            return False
        kind, details = normalized
        self.record(instance_id, kind, details)
        return True

    def _apply(
        self,
        record: PerformanceRecord,
        kind: EventKind,
        elapsed: float,
        details: dict[str, Any],
    ) -> bool:
        """Mutate ``record`` for one event. Returns True if TTFMP was just set."""
        if kind is EventKind.LOAD_STARTED:
            record.load_started = elapsed
        elif kind is EventKind.LOADED:
            record.load_completed = elapsed
            record.load_time = elapsed
            record.advance(InstanceStatus.LOADED)
        elif kind is EventKind.RENDER_STARTED:
            record.render_started = elapsed
        elif kind is EventKind.RENDERED:
            record.advance(InstanceStatus.RENDERED)
            if record.ttfmp is None:
                record.render_completed = elapsed
                record.ttfmp = elapsed
                self._metrics.ttfmp.observe(elapsed / 1000.0)
                return True
        elif kind is EventKind.FIRST_INTERACTION:
            if record.tti is None:
                record.first_interaction = elapsed
                record.tti = elapsed
                record.advance(InstanceStatus.INTERACTIVE)
                self._metrics.tti.observe(elapsed / 1000.0)
        elif kind is EventKind.PAGE_CHANGED:
            details.setdefault("page", "unknown")
            record.page_changes.append(TimedEntry(elapsed, details))
        elif kind is EventKind.INTERACTION:
            details.setdefault("type", "unknown")
            record.interactions.append(TimedEntry(elapsed, details))
        elif kind is EventKind.ERROR:
            record.errors.append(TimedEntry(elapsed, details))
            record.advance(InstanceStatus.ERROR)
            self._metrics.instance_errors.inc()
        return False

    def _arm_synthetic_interaction(self, instance_id: str, record: PerformanceRecord) -> None:
        if self.synthetic_interaction_delay is None:
            return

        def fire() -> None:
            with self._lock:
                if self._timers.get(instance_id) is timer:
                    del self._timers[instance_id]
                # Only the record that armed this timer, and only before a real TTI
                if self._records.get(instance_id) is not record or record.tti is not None:
                    return
                event, listeners = self._apply_event(record, EventKind.FIRST_INTERACTION, {"synthetic": True})
            self._notify(event, listeners)

        timer = threading.Timer(self.synthetic_interaction_delay, fire)
        timer.daemon = True
        self._timers[instance_id] = timer
        timer.start()

    def _cancel_timer(self, instance_id: str) -> None:
        timer = self._timers.pop(instance_id, None)
        if timer is not None:
            timer.cancel()

    # ------------------------------------------------------------------ #
    # Listeners
    # ------------------------------------------------------------------ #

    def add_listener(self, instance_id: str, listener: Listener) -> None:
        with self._lock:
            self._listeners.setdefault(instance_id, []).append(listener)

    def remove_listener(self, instance_id: str, listener: Listener) -> bool:
        with self._lock:
            listeners = self._listeners.get(instance_id)
            if not listeners or listener not in listeners:
                return False
            listeners.remove(listener)
            return True

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #

    def get(self, instance_id: str) -> PerformanceRecord | None:
        with self._lock:
            record = self._records.get(instance_id)
            return record.snapshot() if record is not None else None

    def get_all(self) -> list[PerformanceRecord]:
        with self._lock:
            return [record.snapshot() for record in self._records.values()]

    def aggregate(self) -> GlobalStats:
        """Roll every tracked instance up into :class:`GlobalStats`.

        Averages only include non-error instances that reached the milestone.
        """
        records = self.get_all()
        if not records:
            return GlobalStats()

        successful = [r for r in records if r.status is not InstanceStatus.ERROR]
        return GlobalStats(
            total_reports=len(records),
            successful_reports=len(successful),
            average_ttfmp=_mean([r.ttfmp for r in successful if r.ttfmp is not None]),
            average_tti=_mean([r.tti for r in successful if r.tti is not None]),
            average_load_time=_mean([r.load_time for r in successful if r.load_time is not None]),
            success_rate=len(successful) / len(records) * 100.0,
            error_count=len(records) - len(successful),
        )


__all__ = [
    "GlobalStats",
    "InstanceStatus",
    "LifecycleTracker",
    "Listener",
    "PerformanceRecord",
    "TimedEntry",
]
