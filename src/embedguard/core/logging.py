"""
Structured logging for embedguard.

Every component logs event-style messages with keyword fields through
structlog, so cache evictions, retry decisions and lifecycle milestones can
be joined on ``resource_id`` / ``instance_id`` in whatever aggregator the
host ships logs to.

Architecture:
    ::

        configure_logging(level="INFO", json_format=None)
            │
            ▼
        structlog processor chain:
          1. TimeStamper (ISO, UTC)
          2. merge_contextvars      ◄── resource_context(resource_id=...)
          3. add_log_level / add_logger_name
          4. redact_secrets         (access tokens never reach a sink)
          5. JSONRenderer (non-tty) or ConsoleRenderer (tty)
            │
            ▼
        stdlib logging ──► stderr

Examples:
    >>> from embedguard.core.logging import configure_logging, get_logger
    >>> configure_logging(level="DEBUG", json_format=False)
    >>> logger = get_logger(__name__)
    >>> with resource_context(resource_id="r1", instance_id="container-1"):
    ...     logger.info("embed_started")

Guardrails:
    - Output goes to stderr; stdout belongs to CLI results
    - Values under token-like keys are masked

Tags:
    logging, structlog, observability, embedguard
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

SECRET_KEYS = frozenset({"access_token", "token", "embed_token", "authorization"})
REDACTED = "***"


def redact_secrets(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Mask values logged under token-like keys."""
    for key in SECRET_KEYS.intersection(event_dict):
        if event_dict[key] is not None:
            event_dict[key] = REDACTED
    return event_dict


def _service_field(service: str) -> Processor:
    def add_service(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", service)
        return event_dict

    return add_service


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "embedguard",
    add_timestamp: bool = True,
) -> None:
    """Configure structlog and the stdlib root handler.

    Args:
        level: DEBUG, INFO, WARNING or ERROR
        json_format: True for JSON lines, False for console, None to pick
            JSON when stderr is not a terminal
        service: Value of the ``service`` field on every event
        add_timestamp: Include an ISO timestamp
    """
    if json_format is None:
        json_format = not sys.stderr.isatty()
    numeric_level = getattr(logging, level.upper())

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        redact_secrets,
        _service_field(service),
    ]
    if add_timestamp:
        processors.insert(0, structlog.processors.TimeStamper(fmt="iso", utc=True))

    if json_format:
        processors.append(structlog.processors.format_exc_info)
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=processors + [renderer],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=numeric_level)


def get_logger(name: str | None = None) -> Any:
    return structlog.get_logger(name)


@contextmanager
def resource_context(**fields: Any) -> Iterator[None]:
    """Attach ``fields`` (resource_id, instance_id, ...) to every log event in scope.

    Fields bound by an enclosing scope are restored on exit.
    """
    tokens = structlog.contextvars.bind_contextvars(**fields)
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)


__all__ = [
    "REDACTED",
    "SECRET_KEYS",
    "configure_logging",
    "get_logger",
    "redact_secrets",
    "resource_context",
]
