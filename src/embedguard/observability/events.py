"""Lifecycle event kinds and SDK event normalisation.

The host owns the subscription to the embedded report object and forwards
raw SDK event names here; :func:`normalize_sdk_event` folds them into the
closed :class:`EventKind` set the tracker understands.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EventKind(str, Enum):
    LOAD_STARTED = "loadStarted"
    LOADED = "loaded"
    RENDER_STARTED = "renderStarted"
    RENDERED = "rendered"
    FIRST_INTERACTION = "firstInteraction"
    PAGE_CHANGED = "pageChanged"
    INTERACTION = "interaction"
    ERROR = "error"


# SDK events that all count as a user interaction
INTERACTION_EVENTS = frozenset({"dataSelected", "visualClicked", "filtersApplied"})


@dataclass(frozen=True)
class TrackedEvent:
    """Event delivered to tracker listeners after the record is updated.

    ``timestamp`` is milliseconds relative to the instance's start.
    """

    resource_id: str
    instance_id: str
    kind: EventKind
    timestamp: float
    details: dict[str, Any] = field(default_factory=dict)


def _get(source: Any, *path: str) -> Any:
    for key in path:
        if not isinstance(source, Mapping):
            return None
        source = source.get(key)
    return source


def normalize_sdk_event(name: str, detail: Any = None) -> tuple[EventKind, dict[str, Any]] | None:
    """Map a raw SDK event name and payload onto an :class:`EventKind`.

    Returns:
        ``(kind, details)``, or ``None`` for event names the tracker ignores
    """
    if name in INTERACTION_EVENTS:
        details: dict[str, Any] = {"type": name}
        if name == "dataSelected":
            details["data"] = detail
        elif name == "visualClicked":
            details["visual"] = _get(detail, "visual", "name")
        else:
            filters = _get(detail, "filters")
            details["filters"] = len(filters) if isinstance(filters, (list, tuple)) else 0
        return EventKind.INTERACTION, details

    if name == EventKind.PAGE_CHANGED.value:
        return EventKind.PAGE_CHANGED, {"page": _get(detail, "newPage", "name") or "unknown"}

    if name == EventKind.ERROR.value:
        return EventKind.ERROR, {"error": detail}

    try:
        kind = EventKind(name)
    except ValueError:
        return None
    return kind, dict(detail) if isinstance(detail, Mapping) else {}


__all__ = ["INTERACTION_EVENTS", "EventKind", "TrackedEvent", "normalize_sdk_event"]
