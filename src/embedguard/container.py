"""
Lazy-initialised container for the resilience components.

:class:`ResilienceContainer` builds exactly one cache, orchestrator, tracker
and load queue from a :class:`~embedguard.core.settings.ResilienceSettings`
on first access. The host creates one container and threads it through; no
component is reachable through module-level state.

Usage::

    from embedguard.container import ResilienceContainer

    with ResilienceContainer(token_refresher=auth.refresh) as guard:
        guard.cache.put("r1", url, token)
        guard.tracker.start("r1", "container-1")
        ...
"""

from __future__ import annotations

import random

from embedguard.core.cache import ResourceCache
from embedguard.core.clock import Clock, SystemClock
from embedguard.core.logging import get_logger
from embedguard.core.settings import ResilienceSettings, get_settings
from embedguard.execution.load_queue import LoadQueue
from embedguard.execution.orchestrator import RecoveryOrchestrator, TokenRefresher
from embedguard.observability.metrics import ResilienceMetrics
from embedguard.observability.tracker import LifecycleTracker

logger = get_logger(__name__)


class ResilienceContainer:
    """Lazy-initialised dependency container.

    Components are created on first property access. :meth:`start` begins
    the cache sweep and the load timeout checks; :meth:`close` (or leaving
    the ``with`` block) stops both and drops all tracked instances.
    """

    def __init__(
        self,
        settings: ResilienceSettings | None = None,
        *,
        clock: Clock | None = None,
        token_refresher: TokenRefresher | None = None,
        rng: random.Random | None = None,
        metrics: ResilienceMetrics | None = None,
    ) -> None:
        self._settings = settings
        self._clock = clock or SystemClock()
        self._token_refresher = token_refresher
        self._rng = rng
        self._metrics = metrics
        self._cache: ResourceCache | None = None
        self._orchestrator: RecoveryOrchestrator | None = None
        self._tracker: LifecycleTracker | None = None
        self._load_queue: LoadQueue | None = None

    # ── Properties (lazy) ────────────────────────────────────────

    @property
    def settings(self) -> ResilienceSettings:
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def cache(self) -> ResourceCache:
        if self._cache is None:
            self._cache = ResourceCache(
                self.settings.cache_capacity,
                ttl_hours=self.settings.cache_ttl_hours,
                sweep_interval_seconds=self.settings.cache_sweep_interval_seconds,
                clock=self._clock,
                metrics=self._metrics,
            )
        return self._cache

    @property
    def orchestrator(self) -> RecoveryOrchestrator:
        if self._orchestrator is None:
            self._orchestrator = RecoveryOrchestrator.from_settings(
                self.settings,
                token_refresher=self._token_refresher,
                clock=self._clock,
                rng=self._rng,
                metrics=self._metrics,
            )
        return self._orchestrator

    @property
    def tracker(self) -> LifecycleTracker:
        if self._tracker is None:
            self._tracker = LifecycleTracker(
                clock=self._clock,
                synthetic_interaction_delay=self.settings.synthetic_interaction_delay_seconds,
                metrics=self._metrics,
            )
        return self._tracker

    @property
    def load_queue(self) -> LoadQueue:
        if self._load_queue is None:
            self._load_queue = LoadQueue(
                self.settings.max_concurrent_loads,
                load_timeout=self.settings.load_timeout_seconds,
                check_interval_seconds=self.settings.load_timeout_check_interval_seconds,
                clock=self._clock,
            )
        return self._load_queue

    # ── Lifecycle ────────────────────────────────────────────────

    def start(self) -> None:
        """Start the background cache sweep and load timeout checks."""
        self.cache.start()
        self.load_queue.start()
        logger.info("container_started", cache_capacity=self.settings.cache_capacity)

    def close(self) -> None:
        """Stop background work and drop tracked state."""
        if self._cache is not None:
            self._cache.stop()
        if self._tracker is not None:
            self._tracker.cleanup()
        if self._load_queue is not None:
            self._load_queue.stop()
            self._load_queue.reset()
        logger.info("container_closed")

    def __enter__(self) -> ResilienceContainer:
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


__all__ = ["ResilienceContainer"]
