"""Tests for embedguard.observability.tracker.LifecycleTracker."""

import threading
import time

import pytest

from embedguard.core.clock import ManualClock
from embedguard.core.errors import ConfigError
from embedguard.observability import tracker as tracker_module
from embedguard.observability.events import EventKind
from embedguard.observability.tracker import InstanceStatus, LifecycleTracker


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def tracker(clock, metrics):
    return LifecycleTracker(clock=clock, synthetic_interaction_delay=None, metrics=metrics)


@pytest.fixture
def captured_timers(monkeypatch):
    """Replace threading.Timer so tests fire synthetic interactions by hand."""
    timers = []

    class CapturedTimer:
        def __init__(self, interval, function):
            self.interval = interval
            self.function = function
            self.daemon = False
            self.cancelled = False
            timers.append(self)

        def start(self):
            pass

        def cancel(self):
            self.cancelled = True

    monkeypatch.setattr(tracker_module.threading, "Timer", CapturedTimer)
    return timers


def wait_until(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while not predicate() and time.monotonic() < deadline:
        time.sleep(0.005)
    return predicate()


class TestLifecycle:
    def test_start_creates_loading_record(self, tracker):
        record = tracker.start("r1", "c1")
        assert record.resource_id == "r1"
        assert record.instance_id == "c1"
        assert record.status is InstanceStatus.LOADING
        assert tracker.get("c1") is not None

    def test_start_twice_replaces(self, tracker, clock):
        tracker.start("r1", "c1")
        tracker.record("c1", EventKind.RENDERED)
        clock.advance(1)

        tracker.start("r2", "c1")

        record = tracker.get("c1")
        assert record.resource_id == "r2"
        assert record.ttfmp is None
        assert len(tracker.get_all()) == 1

    def test_timestamps_relative_to_start(self, tracker, clock):
        clock.advance(100)
        tracker.start("r1", "c1")
        clock.advance(0.05)
        tracker.record("c1", EventKind.LOAD_STARTED)
        clock.advance(0.25)
        tracker.record("c1", "loaded")
        clock.advance(0.1)
        tracker.record("c1", EventKind.RENDER_STARTED)
        clock.advance(0.1)
        tracker.record("c1", EventKind.RENDERED)

        record = tracker.get("c1")
        assert record.load_started == pytest.approx(50)
        assert record.load_completed == pytest.approx(300)
        assert record.load_time == pytest.approx(300)
        assert record.render_started == pytest.approx(400)
        assert record.render_completed == pytest.approx(500)
        assert record.ttfmp == pytest.approx(500)
        assert record.status is InstanceStatus.RENDERED

    def test_unknown_instance_is_noop(self, tracker):
        calls = []
        tracker.add_listener("ghost", calls.append)
        tracker.record("ghost", EventKind.RENDERED)
        assert calls == []
        assert tracker.get("ghost") is None

    def test_unrecognised_kind_is_ignored(self, tracker):
        calls = []
        tracker.start("r1", "c1")
        tracker.add_listener("c1", calls.append)

        tracker.record("c1", "bookmarkApplied")
        tracker.record("ghost", "bookmarkApplied")

        assert calls == []
        assert tracker.get("c1").status is InstanceStatus.LOADING
        assert tracker.get("ghost") is None

    def test_stop_returns_and_removes(self, tracker):
        tracker.start("r1", "c1")
        record = tracker.stop("c1")
        assert record.instance_id == "c1"
        assert tracker.get("c1") is None
        assert tracker.stop("c1") is None

    def test_records_survive_time(self, tracker, clock):
        """The tracker never expires records on its own."""
        tracker.start("r1", "c1")
        clock.advance(7 * 24 * 3600)
        assert tracker.get("c1") is not None

    def test_cleanup(self, tracker):
        tracker.start("r1", "c1")
        tracker.start("r2", "c2")
        tracker.cleanup()
        assert tracker.get_all() == []


class TestMilestones:
    def test_ttfmp_set_once(self, tracker, clock):
        tracker.start("r1", "c1")
        clock.advance(0.12)
        tracker.record("c1", EventKind.RENDERED)
        clock.advance(1)
        tracker.record("c1", EventKind.RENDERED)

        assert tracker.get("c1").ttfmp == pytest.approx(120)

    def test_tti_set_once(self, tracker, clock):
        tracker.start("r1", "c1")
        clock.advance(0.2)
        tracker.record("c1", EventKind.FIRST_INTERACTION)
        clock.advance(0.3)
        tracker.record("c1", EventKind.FIRST_INTERACTION)

        record = tracker.get("c1")
        assert record.tti == pytest.approx(200)
        assert record.first_interaction == pytest.approx(200)
        assert record.status is InstanceStatus.INTERACTIVE

    def test_status_never_moves_backwards(self, tracker):
        tracker.start("r1", "c1")
        tracker.record("c1", EventKind.RENDERED)
        tracker.record("c1", EventKind.LOADED)
        assert tracker.get("c1").status is InstanceStatus.RENDERED

    def test_error_is_terminal(self, tracker):
        tracker.start("r1", "c1")
        tracker.record("c1", EventKind.ERROR, {"error": "boom"})
        tracker.record("c1", EventKind.RENDERED)

        record = tracker.get("c1")
        assert record.status is InstanceStatus.ERROR
        assert record.ttfmp is not None
        assert len(record.errors) == 1

    def test_sequences_append(self, tracker, clock):
        tracker.start("r1", "c1")
        tracker.record("c1", EventKind.PAGE_CHANGED, {"page": "Overview"})
        clock.advance(0.5)
        tracker.record("c1", EventKind.PAGE_CHANGED)
        tracker.record("c1", EventKind.INTERACTION, {"type": "visualClicked"})
        tracker.record("c1", EventKind.INTERACTION)

        record = tracker.get("c1")
        assert [e.details["page"] for e in record.page_changes] == ["Overview", "unknown"]
        assert record.page_changes[1].timestamp == pytest.approx(500)
        assert [e.details["type"] for e in record.interactions] == ["visualClicked", "unknown"]

    def test_get_returns_snapshot(self, tracker):
        tracker.start("r1", "c1")
        snapshot = tracker.get("c1")
        snapshot.errors.append("tampered")
        snapshot.status = InstanceStatus.ERROR

        record = tracker.get("c1")
        assert record.errors == []
        assert record.status is InstanceStatus.LOADING

    def test_to_dict(self, tracker):
        tracker.start("r1", "c1")
        tracker.record("c1", EventKind.PAGE_CHANGED, {"page": "Overview"})
        data = tracker.get("c1").to_dict()
        assert data["status"] == "loading"
        assert data["page_changes"][0]["details"] == {"page": "Overview"}


class TestSdkEvents:
    def test_interaction_events(self, tracker):
        tracker.start("r1", "c1")
        assert tracker.record_sdk_event("c1", "visualClicked", {"visual": {"name": "chart"}})
        assert tracker.record_sdk_event("c1", "filtersApplied", {"filters": [1, 2, 3]})

        interactions = tracker.get("c1").interactions
        assert interactions[0].details == {"type": "visualClicked", "visual": "chart"}
        assert interactions[1].details == {"type": "filtersApplied", "filters": 3}

    def test_error_event(self, tracker):
        tracker.start("r1", "c1")
        tracker.record_sdk_event("c1", "error", {"errorCode": "QueryUserError"})
        record = tracker.get("c1")
        assert record.status is InstanceStatus.ERROR
        assert record.errors[0].details == {"error": {"errorCode": "QueryUserError"}}

    def test_unrecognised_event(self, tracker):
        tracker.start("r1", "c1")
        assert tracker.record_sdk_event("c1", "bookmarkApplied") is False


class TestListeners:
    def test_called_in_registration_order_after_mutation(self, tracker, clock):
        seen = []
        tracker.start("r1", "c1")
        tracker.add_listener("c1", lambda event: seen.append(("first", event.kind, tracker.get("c1").ttfmp)))
        tracker.add_listener("c1", lambda event: seen.append(("second", event.kind, event.timestamp)))

        clock.advance(0.1)
        tracker.record("c1", EventKind.RENDERED)

        assert [s[0] for s in seen] == ["first", "second"]
        assert seen[0][2] == pytest.approx(100)
        assert seen[1][1] is EventKind.RENDERED
        assert seen[1][2] == pytest.approx(100)

    def test_failing_listener_isolated(self, tracker):
        seen = []

        def broken(event):
            raise RuntimeError("listener bug")

        tracker.start("r1", "c1")
        tracker.add_listener("c1", broken)
        tracker.add_listener("c1", seen.append)

        tracker.record("c1", EventKind.LOADED)

        assert len(seen) == 1
        assert tracker.get("c1").status is InstanceStatus.LOADED

    def test_remove_listener(self, tracker):
        seen = []
        tracker.start("r1", "c1")
        tracker.add_listener("c1", seen.append)
        assert tracker.remove_listener("c1", seen.append) is True
        assert tracker.remove_listener("c1", seen.append) is False

        tracker.record("c1", EventKind.LOADED)
        assert seen == []

    def test_stop_detaches_listeners(self, tracker):
        seen = []
        tracker.start("r1", "c1")
        tracker.add_listener("c1", seen.append)
        tracker.stop("c1")

        tracker.start("r1", "c1")
        tracker.record("c1", EventKind.LOADED)
        assert seen == []

    def test_event_payload(self, tracker):
        events = []
        tracker.start("r1", "c1")
        tracker.add_listener("c1", events.append)
        tracker.record("c1", EventKind.INTERACTION, {"type": "dataSelected"})

        event = events[0]
        assert event.resource_id == "r1"
        assert event.instance_id == "c1"
        assert event.details == {"type": "dataSelected"}


class TestAggregate:
    def test_empty(self, tracker):
        stats = tracker.aggregate()
        assert stats.total_reports == 0
        assert stats.success_rate == 100.0
        assert stats.average_ttfmp == 0.0

    def test_mixed_instances(self, tracker, clock):
        """rendered (TTFMP=120) + error + untouched."""
        for instance in ("ok", "failed", "idle"):
            tracker.start("r1", instance)

        clock.advance(0.12)
        tracker.record("ok", EventKind.RENDERED)
        tracker.record("failed", EventKind.RENDERED)
        tracker.record("failed", EventKind.ERROR)

        stats = tracker.aggregate()
        assert stats.total_reports == 3
        assert stats.successful_reports == 2
        assert stats.error_count == 1
        assert stats.success_rate == pytest.approx(66.67, abs=0.01)
        assert stats.average_ttfmp == pytest.approx(120)
        assert stats.average_tti == 0.0

    def test_to_dict(self, tracker):
        assert tracker.aggregate().to_dict()["success_rate"] == 100.0


class TestSyntheticInteraction:
    @pytest.mark.slow
    def test_synthesised_after_rendered(self, clock, metrics):
        tracker = LifecycleTracker(clock=clock, synthetic_interaction_delay=0.01, metrics=metrics)
        seen = []
        tracker.start("r1", "c1")
        tracker.add_listener("c1", seen.append)

        tracker.record("c1", EventKind.RENDERED)

        assert wait_until(lambda: bool(seen) and seen[-1].kind is EventKind.FIRST_INTERACTION)
        assert tracker.get("c1").status is InstanceStatus.INTERACTIVE
        assert seen[-1].kind is EventKind.FIRST_INTERACTION
        assert seen[-1].details == {"synthetic": True}

    @pytest.mark.slow
    def test_real_interaction_wins(self, clock, metrics):
        tracker = LifecycleTracker(clock=clock, synthetic_interaction_delay=0.05, metrics=metrics)
        tracker.start("r1", "c1")
        tracker.record("c1", EventKind.RENDERED)
        clock.advance(0.01)
        tracker.record("c1", EventKind.FIRST_INTERACTION)

        time.sleep(0.15)
        assert tracker.get("c1").tti == pytest.approx(10)

    @pytest.mark.slow
    def test_stop_cancels_pending_interaction(self, clock, metrics):
        fired = threading.Event()
        tracker = LifecycleTracker(clock=clock, synthetic_interaction_delay=0.05, metrics=metrics)
        tracker.start("r1", "c1")
        tracker.add_listener("c1", lambda event: fired.set() if event.kind is EventKind.FIRST_INTERACTION else None)
        tracker.record("c1", EventKind.RENDERED)
        tracker.stop("c1")

        assert not fired.wait(0.15)

    def test_disabled(self, tracker):
        tracker.start("r1", "c1")
        tracker.record("c1", EventKind.RENDERED)
        assert tracker.get("c1").tti is None

    def test_negative_delay_rejected(self, clock):
        with pytest.raises(ConfigError):
            LifecycleTracker(clock=clock, synthetic_interaction_delay=-1)

    def test_stale_timer_leaves_replacing_record_alone(self, clock, metrics, captured_timers):
        """A timer that fires after start() replaced the record changes nothing."""
        tracker = LifecycleTracker(clock=clock, synthetic_interaction_delay=0.05, metrics=metrics)
        tracker.start("r1", "c1")
        tracker.record("c1", EventKind.RENDERED)
        stale = captured_timers[-1]

        tracker.start("r1", "c1")
        tracker.record("c1", EventKind.RENDERED)
        fresh = captured_timers[-1]
        stale.function()

        assert stale.cancelled
        assert tracker.get("c1").tti is None
        assert tracker.get("c1").status is InstanceStatus.RENDERED
        assert tracker._timers == {"c1": fresh}

        fresh.function()
        assert tracker.get("c1").status is InstanceStatus.INTERACTIVE
        assert tracker._timers == {}

    def test_timer_beaten_by_real_interaction_is_released(self, clock, metrics, captured_timers):
        tracker = LifecycleTracker(clock=clock, synthetic_interaction_delay=0.05, metrics=metrics)
        tracker.start("r1", "c1")
        tracker.record("c1", EventKind.RENDERED)
        clock.advance(0.01)
        tracker.record("c1", EventKind.FIRST_INTERACTION)

        captured_timers[-1].function()

        assert tracker.get("c1").tti == pytest.approx(10)
        assert tracker._timers == {}

    def test_synthetic_listener_may_query_tracker(self, clock, metrics, captured_timers):
        """Listeners for the synthetic event run outside the tracker lock."""
        tracker = LifecycleTracker(clock=clock, synthetic_interaction_delay=0.05, metrics=metrics)
        seen = []
        tracker.start("r1", "c1")
        tracker.add_listener("c1", lambda event: seen.append((event.details, tracker.get("c1").status)))
        tracker.record("c1", EventKind.RENDERED)

        captured_timers[-1].function()

        assert seen[-1] == ({"synthetic": True}, InstanceStatus.INTERACTIVE)


class TestConcurrentAccess:
    """Several host threads drive one tracker."""

    def test_concurrent_interactions_are_all_recorded(self, tracker):
        tracker.start("r1", "c1")
        barrier = threading.Barrier(8)

        def worker(n):
            barrier.wait()
            for i in range(50):
                tracker.record("c1", EventKind.INTERACTION, {"type": f"click-{n}-{i}"})

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        interactions = tracker.get("c1").interactions
        assert len(interactions) == 400
        assert len({entry.details["type"] for entry in interactions}) == 400

    @pytest.mark.slow
    def test_lifecycles_race_with_synthetic_interactions(self, clock, metrics):
        tracker = LifecycleTracker(clock=clock, synthetic_interaction_delay=0.0, metrics=metrics)
        barrier = threading.Barrier(6)
        errors = []

        def worker(n):
            barrier.wait()
            try:
                for _ in range(30):
                    tracker.start("r1", "shared")
                    tracker.start(f"r{n}", f"c{n}")
                    tracker.record("shared", EventKind.RENDERED)
                    tracker.record(f"c{n}", EventKind.RENDERED)
                    tracker.stop(f"c{n}")
            except Exception as exc:
                errors.append(exc)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(6)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        assert errors == []
        assert wait_until(lambda: tracker.get("shared").status is InstanceStatus.INTERACTIVE)
        assert [record.instance_id for record in tracker.get_all()] == ["shared"]
        assert metrics.instances_active.value == 1
        assert wait_until(lambda: tracker._timers == {})


class TestMetrics:
    def test_instances_gauge_and_histograms(self, tracker, metrics, clock):
        tracker.start("r1", "c1")
        tracker.start("r2", "c2")
        assert metrics.instances_active.value == 2

        clock.advance(0.5)
        tracker.record("c1", EventKind.RENDERED)
        tracker.record("c2", EventKind.ERROR)
        tracker.stop("c1")

        assert metrics.instances_active.value == 1
        assert metrics.ttfmp.labels().data["count"] == 1
        assert metrics.instance_errors.value == 1
