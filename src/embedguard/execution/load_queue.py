"""Priority queue that bounds how many reports embed at once.

A page full of report widgets would otherwise start every embed at the same
moment and trip the service's throttling. Requests wait in priority order
(``high`` before ``normal`` before ``low``, FIFO within a priority) until a
loading slot frees up.

Example::

    queue = LoadQueue(max_concurrent=3)
    queue.request("r1", LoadPriority.HIGH, lambda: embed("r1"))
    ...
    queue.loaded("r1")          # frees the slot, next queued load starts

    with LoadQueue(load_timeout=30.0) as queue:   # timeouts checked in background
        ...
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from embedguard.core.clock import Clock, SystemClock
from embedguard.core.errors import ConfigError
from embedguard.core.logging import get_logger, resource_context
from embedguard.core.scheduling import PeriodicTask

logger = get_logger(__name__)


class LoadPriority(str, Enum):
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _RANKS[self]


_RANKS = {LoadPriority.HIGH: 0, LoadPriority.NORMAL: 1, LoadPriority.LOW: 2}


@dataclass
class LoadRequest:
    resource_id: str
    priority: LoadPriority
    load_callback: Callable[[], Any]
    timeout_callback: Callable[[], Any] | None = None
    started_at: float | None = None


class LoadQueue:
    """Concurrency-bounded report load scheduler.

    Load callbacks run on the thread that freed the slot (or queued the
    request), outside the queue's lock, so a callback may call back into
    :meth:`loaded` or :meth:`failed` directly.

    After :meth:`start`, a background :class:`PeriodicTask` calls
    :meth:`expire_overdue` every ``check_interval_seconds``; timeout
    callbacks then run on that thread.
    """

    def __init__(
        self,
        max_concurrent: int = 3,
        *,
        load_timeout: float = 30.0,
        check_interval_seconds: float = 1.0,
        clock: Clock | None = None,
    ):
        if max_concurrent < 1:
            raise ConfigError("max_concurrent must be >= 1", context={"max_concurrent": max_concurrent})
        if load_timeout <= 0:
            raise ConfigError("load_timeout must be positive", context={"load_timeout": load_timeout})
        if check_interval_seconds <= 0:
            raise ConfigError(
                "check_interval_seconds must be positive",
                context={"check_interval_seconds": check_interval_seconds},
            )
        self._max_concurrent = max_concurrent
        self.load_timeout = load_timeout
        self.check_interval_seconds = check_interval_seconds
        self._clock = clock or SystemClock()
        self._queue: list[LoadRequest] = []
        self._loading: dict[str, LoadRequest] = {}
        self._lock = threading.Lock()
        self._watchdog: PeriodicTask | None = None

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    def set_max_concurrent(self, max_concurrent: int) -> None:
        if max_concurrent < 1:
            raise ConfigError("max_concurrent must be >= 1", context={"max_concurrent": max_concurrent})
        with self._lock:
            self._max_concurrent = max_concurrent
        self._process()

    def request(
        self,
        resource_id: str,
        priority: LoadPriority | str = LoadPriority.NORMAL,
        load_callback: Callable[[], Any] | None = None,
        timeout_callback: Callable[[], Any] | None = None,
    ) -> bool:
        """Queue a load for ``resource_id``.

        Returns:
            False if the resource is already loading or queued
        """
        if load_callback is None:
            raise ValueError("load_callback is required")
        request = LoadRequest(resource_id, LoadPriority(priority), load_callback, timeout_callback)

        with self._lock:
            if resource_id in self._loading or any(r.resource_id == resource_id for r in self._queue):
                logger.debug("load_request_duplicate", resource_id=resource_id)
                return False
            index = next(
                (i for i, queued in enumerate(self._queue) if request.priority.rank < queued.priority.rank),
                len(self._queue),
            )
            self._queue.insert(index, request)

        logger.debug("load_requested", resource_id=resource_id, priority=request.priority.value)
        self._process()
        return True

    def loaded(self, resource_id: str) -> None:
        with self._lock:
            self._loading.pop(resource_id, None)
        self._process()

    def failed(self, resource_id: str) -> None:
        with self._lock:
            self._loading.pop(resource_id, None)
        self._process()

    def cancel(self, resource_id: str) -> None:
        """Drop a queued or in-flight load without starting another."""
        with self._lock:
            self._queue = [r for r in self._queue if r.resource_id != resource_id]
            self._loading.pop(resource_id, None)

    def _process(self) -> None:
        while True:
            with self._lock:
                if len(self._loading) >= self._max_concurrent or not self._queue:
                    return
                request = self._queue.pop(0)
                request.started_at = self._clock.monotonic()
                self._loading[request.resource_id] = request

            logger.info("load_started", resource_id=request.resource_id, priority=request.priority.value)
            try:
                with resource_context(resource_id=request.resource_id):
                    request.load_callback()
            except Exception:
                logger.exception("load_callback_failed", resource_id=request.resource_id)
                with self._lock:
                    self._loading.pop(request.resource_id, None)

    def expire_overdue(self) -> list[str]:
        """Fail every load running longer than ``load_timeout``.

        Timeout callbacks fire after the load is released.

        Returns:
            Resource ids that timed out
        """
        now = self._clock.monotonic()
        with self._lock:
            overdue = [
                request
                for request in self._loading.values()
                if request.started_at is not None and now - request.started_at > self.load_timeout
            ]
            for request in overdue:
                del self._loading[request.resource_id]

        for request in overdue:
            logger.warning("load_timed_out", resource_id=request.resource_id, timeout_seconds=self.load_timeout)
            if request.timeout_callback is not None:
                try:
                    request.timeout_callback()
                except Exception:
                    logger.exception("timeout_callback_failed", resource_id=request.resource_id)
        if overdue:
            self._process()
        return [request.resource_id for request in overdue]

    def status(self) -> dict[str, Any]:
        with self._lock:
            return {
                "loading": list(self._loading),
                "queued": [r.resource_id for r in self._queue],
                "total_concurrent": len(self._loading),
                "max_concurrent": self._max_concurrent,
            }

    def reset(self) -> None:
        with self._lock:
            self._queue.clear()
            self._loading.clear()

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def start(self) -> None:
        """Start checking in-flight loads for timeouts in the background."""
        if self._watchdog is None:
            self._watchdog = PeriodicTask("load-timeouts", self.check_interval_seconds, self.expire_overdue)
        self._watchdog.start()

    def stop(self) -> None:
        if self._watchdog is not None:
            self._watchdog.stop()

    @property
    def watchdog(self) -> PeriodicTask | None:
        return self._watchdog

    def __enter__(self) -> LoadQueue:
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        self.stop()


__all__ = ["LoadPriority", "LoadQueue", "LoadRequest"]
