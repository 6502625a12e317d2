"""Process-wide rate-limit cooldown window.

When the embedding service signals throttling, every rate-limited retry is
refused until the window's resume-after time passes, whatever the
per-resource attempt counts say. The window clears itself implicitly:
all checks compare against the clock, so nothing needs to tick it.

Example::

    window = RateLimitWindow(default_cooldown=60.0)
    window.register(5)          # upstream said "retry after 5s"
    window.is_active()          # True for the next 5 seconds
"""

from __future__ import annotations

import threading

from embedguard.core.clock import Clock, SystemClock
from embedguard.core.errors import ConfigError
from embedguard.core.logging import get_logger

logger = get_logger(__name__)


class RateLimitWindow:
    """Optional resume-after timestamp guarded by a lock.

    Attributes:
        default_cooldown: Window length in seconds when no reset delay is given
    """

    def __init__(self, default_cooldown: float = 60.0, *, clock: Clock | None = None):
        if default_cooldown <= 0:
            raise ConfigError("default_cooldown must be positive")
        self.default_cooldown = default_cooldown
        self._clock = clock or SystemClock()
        self._resume_at: float | None = None
        self._lock = threading.Lock()

    def register(self, reset_seconds: float | None = None) -> float:
        """Open (or move) the window to ``now + reset_seconds``.

        A missing or non-positive ``reset_seconds`` uses the default cooldown.

        Returns:
            The resume-after time on the clock's wall timeline
        """
        seconds = reset_seconds if reset_seconds and reset_seconds > 0 else self.default_cooldown
        with self._lock:
            self._resume_at = self._clock.time() + seconds
            resume_at = self._resume_at
        logger.warning("rate_limit_registered", cooldown_seconds=seconds)
        return resume_at

    @property
    def resume_at(self) -> float | None:
        with self._lock:
            return self._resume_at

    def is_active(self) -> bool:
        """True while now is before the resume-after time."""
        with self._lock:
            return self._resume_at is not None and self._clock.time() < self._resume_at

    def remaining(self) -> float:
        """Seconds left in the window (0 when inactive)."""
        with self._lock:
            if self._resume_at is None:
                return 0.0
            return max(0.0, self._resume_at - self._clock.time())

    def clear(self) -> None:
        with self._lock:
            self._resume_at = None


__all__ = ["RateLimitWindow"]
