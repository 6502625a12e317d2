"""Self-scheduling background work on a daemon thread.

The cache expiry sweep is the only recurring job in the layer. It must run
without anyone ticking it, and it must never take the host process down,
so it lives on a daemon thread driven by an :class:`threading.Event`.

::

    start()
       │
       ▼
    ┌──────────────────────────────────────────────┐
    │  Daemon Thread                               │
    │                                              │
    │  while not stop_event.wait(interval):        │
    │      tick_count += 1                         │
    │      callback()      (exceptions logged)     │
    └──────────────────────────────────────────────┘
       │
    stop() → stop_event.set(); thread.join(timeout)

Example:
    >>> task = PeriodicTask("cache-sweep", 1800.0, lambda: cache.expire_older_than(2))
    >>> task.start()
    >>> # ... later ...
    >>> task.stop()
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime
from typing import Any

from embedguard.core.clock import utc_now
from embedguard.core.errors import ConfigError
from embedguard.core.logging import get_logger

logger = get_logger(__name__)


class PeriodicTask:
    """Run ``callback`` every ``interval_seconds`` until stopped."""

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        callback: Callable[[], Any],
    ) -> None:
        if interval_seconds <= 0:
            raise ConfigError("interval_seconds must be positive")
        self.name = name
        self.interval_seconds = interval_seconds
        self._callback = callback
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._tick_count = 0
        self._last_tick: datetime | None = None

    def start(self) -> None:
        """Start the loop in a daemon thread. No-op if already running."""
        if self.is_running:
            logger.warning("periodic_task_already_started", task=self.name)
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name=f"embedguard-{self.name}")
        self._thread.start()

    def _loop(self) -> None:
        logger.info("periodic_task_started", task=self.name, interval_seconds=self.interval_seconds)
        while not self._stop_event.wait(self.interval_seconds):
            with self._lock:
                self._tick_count += 1
                self._last_tick = utc_now()
            try:
                self._callback()
            except Exception:
                logger.exception("periodic_task_tick_failed", task=self.name)
        logger.info("periodic_task_stopped", task=self.name)

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the loop, waiting up to ``timeout`` seconds for the current tick."""
        if self._thread is None:
            return

        self._stop_event.set()
        self._thread.join(timeout=timeout)
        if self._thread.is_alive():
            logger.warning("periodic_task_stop_timeout", task=self.name)
        self._thread = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def tick_count(self) -> int:
        with self._lock:
            return self._tick_count

    @property
    def last_tick(self) -> datetime | None:
        with self._lock:
            return self._last_tick

    def health(self) -> dict[str, Any]:
        """Return task health status."""
        last_tick = self.last_tick
        return {
            "healthy": self.is_running,
            "task": self.name,
            "tick_count": self.tick_count,
            "last_tick": last_tick.isoformat() if last_tick else None,
            "interval_seconds": self.interval_seconds,
        }


__all__ = ["PeriodicTask"]
