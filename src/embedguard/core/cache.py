"""
Bounded resource cache with LRU eviction and a periodic TTL sweep.

Keeps embed configuration (URL, access token, metadata, optional preloaded
payload) warm for recently used reports so the embedding call path can
skip a round-trip. The store is bounded by ``capacity``; when a new
resource arrives at capacity, the least-recently-accessed entry goes. A
background sweep removes anything idle longer than ``ttl_hours``.

Manifesto:
    A page with dozens of report widgets re-embeds the same reports over and
    over (navigation, retries, tab switches). Caching their configuration
    keeps those re-embeds cheap, but an unbounded cache of access tokens is a
    liability. Bounded size, read-counts-as-use and time-based expiry keep
    the cache small and fresh.

    - **Bounded:** ``len(cache) <= capacity`` after every call
    - **LRU:** Reads refresh recency, eviction takes the oldest access
    - **Self-sweeping:** Expiry runs on its own thread, no caller ticking
    - **Copy-out:** Callers never hold references into the store

Architecture:
    ::

        ResourceCache
        ├── _store: OrderedDict[resource_id → CacheEntry]  (recency order)
        ├── _lock:  RLock (one mutual-exclusion boundary for the store)
        └── _sweeper: PeriodicTask → expire_older_than(ttl_hours)

        API: put(id, url, token, metadata=None)
             get(id) → CacheEntry | None        (refreshes recency)
             peek(id) → CacheEntry | None       (does not)
             decorate(id, base_config) → dict   (pure)
             expire_older_than(hours) → int
             metrics() → CacheMetrics

Examples:
    >>> from embedguard.core.cache import ResourceCache
    >>> cache = ResourceCache(capacity=2)
    >>> cache.put("r1", "https://app.example.com/embed?r=1", "tok-1")
    >>> cache.get("r1").embed_url
    'https://app.example.com/embed?r=1'
    >>> cache.metrics().size
    1

Performance:
    - put/get/peek: O(1)
    - expire_older_than: O(n)

Guardrails:
    ❌ DON'T: Log or repr access tokens
    ✅ DO: Identify entries by resource id only

Tags:
    cache, lru, ttl, embed-config, embedguard

Doc-Types:
    - API Reference
    - Technical Design
"""

from __future__ import annotations

import copy
import threading
from collections import OrderedDict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any
from urllib.parse import urlparse

from embedguard.core.clock import Clock, SystemClock
from embedguard.core.errors import ConfigError
from embedguard.core.logging import get_logger
from embedguard.core.scheduling import PeriodicTask
from embedguard.observability.metrics import ResilienceMetrics, resilience_metrics

logger = get_logger(__name__)

SECONDS_PER_HOUR = 3600.0

# Embed settings that keep the SDK from fetching panes the widgets never show
PERFORMANCE_SETTINGS: dict[str, Any] = {
    "layoutType": 1,
    "customLayout": {
        "displayOption": 1,
        "pageSize": {"type": 0},
    },
    "filterPaneEnabled": False,
    "navContentPaneEnabled": False,
}


@dataclass
class CacheEntry:
    """Cached embed configuration for one resource.

    Attributes:
        resource_id: Unique key of the entry
        embed_url: URL the SDK embeds
        access_token: Opaque secret, excluded from ``repr``
        last_accessed: Clock ``time()`` of the last write or read
        preloaded_payload: Optional data fetched ahead of embedding
        metadata: Optional blob merged into decorated configs
    """

    resource_id: str
    embed_url: str
    access_token: str = field(repr=False)
    last_accessed: float = 0.0
    preloaded_payload: Any = None
    metadata: dict[str, Any] | None = None

    def age_seconds(self, now: float) -> float:
        """Seconds since this entry was last written or read."""
        return now - self.last_accessed

    def copy(self) -> CacheEntry:
        return replace(self, metadata=dict(self.metadata) if self.metadata is not None else None)


@dataclass(frozen=True)
class CacheMetrics:
    """Read-only snapshot of cache occupancy."""

    size: int
    capacity: int
    keys: tuple[str, ...]


class ResourceCache:
    """Bounded LRU cache of embed configuration keyed by resource id.

    Attributes:
        capacity: Maximum entries retained (0 retains nothing)
        ttl_hours: Idle age after which the sweep removes an entry
        sweep_interval_seconds: How often the background sweep runs

    Example:
        with ResourceCache(capacity=10, ttl_hours=2) as cache:
            cache.put("r1", url, token)
            config = cache.decorate("r1", {"type": "report", "id": "r1"})
    """

    def __init__(
        self,
        capacity: int = 10,
        *,
        ttl_hours: float = 2.0,
        sweep_interval_seconds: float = 1800.0,
        clock: Clock | None = None,
        metrics: ResilienceMetrics | None = None,
    ):
        if capacity < 0:
            raise ConfigError("capacity must be >= 0", context={"capacity": capacity})
        self._capacity = capacity
        self.ttl_hours = ttl_hours
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock or SystemClock()
        self._metrics = metrics or resilience_metrics
        self._store: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.RLock()
        self._sweeper: PeriodicTask | None = None

    @property
    def capacity(self) -> int:
        return self._capacity

    # ------------------------------------------------------------------ #
    # Store operations
    # ------------------------------------------------------------------ #

    def put(
        self,
        resource_id: str,
        embed_url: str,
        access_token: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> None:
        """Insert or refresh an entry, evicting the LRU entry when full.

        An existing entry is updated in place (keeping any preloaded payload)
        and never triggers an eviction.
        """
        now = self._clock.time()
        meta = dict(metadata) if metadata is not None else None

        with self._lock:
            existing = self._store.get(resource_id)
            if existing is not None:
                existing.embed_url = embed_url
                existing.access_token = access_token
                existing.metadata = meta
                existing.last_accessed = now
                self._store.move_to_end(resource_id)
                logger.debug("cache_refreshed", resource_id=resource_id)
                return

            if self._store and len(self._store) >= self._capacity:
                self._evict_lru()

            self._store[resource_id] = CacheEntry(
                resource_id=resource_id,
                embed_url=embed_url,
                access_token=access_token,
                last_accessed=now,
                metadata=meta,
            )

            # capacity=0: the entry cannot be retained
            while len(self._store) > self._capacity:
                self._evict_lru()

            self._metrics.cache_size.set(len(self._store))
            logger.debug(
                "cache_stored",
                resource_id=resource_id,
                size=len(self._store),
                capacity=self._capacity,
            )

    def _evict_lru(self) -> None:
        resource_id, _ = self._store.popitem(last=False)
        self._metrics.cache_evictions.inc()
        logger.info("cache_evicted", resource_id=resource_id, capacity=self._capacity)

    def get(self, resource_id: str) -> CacheEntry | None:
        """Return a copy of the entry and mark it as used, or ``None``."""
        with self._lock:
            entry = self._store.get(resource_id)
            if entry is None:
                self._metrics.cache_misses.inc()
                return None
            entry.last_accessed = self._clock.time()
            self._store.move_to_end(resource_id)
            self._metrics.cache_hits.inc()
            return entry.copy()

    def peek(self, resource_id: str) -> CacheEntry | None:
        """Return a copy of the entry without touching its recency."""
        with self._lock:
            entry = self._store.get(resource_id)
            return entry.copy() if entry is not None else None

    def attach_payload(self, resource_id: str, payload: Any) -> bool:
        """Store a preloaded payload on an existing entry.

        Returns:
            True if the entry exists and now carries ``payload``
        """
        with self._lock:
            entry = self._store.get(resource_id)
            if entry is None:
                return False
            entry.preloaded_payload = payload
            return True

    def delete(self, resource_id: str) -> bool:
        with self._lock:
            removed = self._store.pop(resource_id, None) is not None
            self._metrics.cache_size.set(len(self._store))
            return removed

    def clear(self) -> None:
        with self._lock:
            self._store.clear()
            self._metrics.cache_size.set(0)

    def resize(self, capacity: int) -> int:
        """Change capacity at runtime, evicting LRU entries if it shrank.

        Returns:
            Number of entries evicted
        """
        if capacity < 0:
            raise ConfigError("capacity must be >= 0", context={"capacity": capacity})
        with self._lock:
            self._capacity = capacity
            evicted = 0
            while len(self._store) > capacity:
                self._evict_lru()
                evicted += 1
            self._metrics.cache_size.set(len(self._store))
        logger.info("cache_resized", capacity=capacity, evicted=evicted)
        return evicted

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def __contains__(self, resource_id: object) -> bool:
        with self._lock:
            return resource_id in self._store

    # ------------------------------------------------------------------ #
    # Config decoration
    # ------------------------------------------------------------------ #

    def decorate(self, resource_id: str, base_config: Mapping[str, Any]) -> dict[str, Any]:
        """Overlay performance-oriented embed settings onto ``base_config``.

        Cached metadata, when present, is injected under ``settings.metadata``.
        Neither the cache nor ``base_config`` is modified.
        """
        entry = self.peek(resource_id)

        settings: dict[str, Any] = dict(base_config.get("settings") or {})
        settings.update(copy.deepcopy(PERFORMANCE_SETTINGS))
        if entry is not None and entry.metadata:
            settings["metadata"] = entry.metadata

        config = dict(base_config)
        config["settings"] = settings
        return config

    # ------------------------------------------------------------------ #
    # Expiry
    # ------------------------------------------------------------------ #

    def expire_older_than(self, max_age_hours: float) -> int:
        """Remove every entry idle for longer than ``max_age_hours``.

        Returns:
            Number of entries removed
        """
        now = self._clock.time()
        max_age = max_age_hours * SECONDS_PER_HOUR

        with self._lock:
            expired = [
                resource_id
                for resource_id, entry in self._store.items()
                if entry.age_seconds(now) > max_age
            ]
            for resource_id in expired:
                del self._store[resource_id]
                logger.info("cache_expired", resource_id=resource_id, max_age_hours=max_age_hours)
            self._metrics.cache_size.set(len(self._store))

        if expired:
            self._metrics.cache_expirations.inc(len(expired))
        return len(expired)

    def sweep(self) -> int:
        """Expire entries older than the configured TTL."""
        return self.expire_older_than(self.ttl_hours)

    def start(self) -> None:
        """Start the periodic background sweep."""
        if self._sweeper is None:
            self._sweeper = PeriodicTask("cache-sweep", self.sweep_interval_seconds, self.sweep)
        self._sweeper.start()

    def stop(self) -> None:
        """Stop the periodic background sweep."""
        if self._sweeper is not None:
            self._sweeper.stop()

    @property
    def sweeper(self) -> PeriodicTask | None:
        return self._sweeper

    def __enter__(self) -> ResourceCache:
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        self.stop()

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    def metrics(self) -> CacheMetrics:
        with self._lock:
            return CacheMetrics(
                size=len(self._store),
                capacity=self._capacity,
                keys=tuple(self._store.keys()),
            )


def bundle_by_host(requests: Iterable[Mapping[str, Any]]) -> dict[str, list[Mapping[str, Any]]]:
    """Group embed requests by the host of their ``embedUrl``/``embed_url``.

    Requests whose URL has no host are grouped under ``""``.
    """
    grouped: dict[str, list[Mapping[str, Any]]] = {}
    for request in requests:
        url = request.get("embed_url") or request.get("embedUrl") or ""
        host = urlparse(str(url)).hostname or ""
        grouped.setdefault(host, []).append(request)
    return grouped


__all__ = [
    "PERFORMANCE_SETTINGS",
    "CacheEntry",
    "CacheMetrics",
    "ResourceCache",
    "bundle_by_host",
]
