"""
Shared Rich consoles and record rendering for the CLI.
"""

from __future__ import annotations

import json
from typing import Any

from rich.console import Console
from rich.table import Table

from embedguard.core.errors import FailureRecord

console = Console()
err_console = Console(stderr=True)


def print_json(payload: Any) -> None:
    console.print_json(json.dumps(payload, default=str))


def record_table(record: FailureRecord, message: str) -> Table:
    """Two-column table describing a classified failure."""
    table = Table(show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Kind", record.kind.value)
    table.add_row("Code", record.code or "-")
    table.add_row("Severity", record.severity.value)
    table.add_row("Retryable", "yes" if record.retryable else "no")
    if record.retry_after is not None:
        table.add_row("Retry after", f"{record.retry_after:g}s")
    table.add_row("Message", record.message)
    table.add_row("User message", message)
    return table


def stats_table(stats: dict[str, Any]) -> Table:
    table = Table(title="Lifecycle stats")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    for key, value in stats.items():
        table.add_row(key, f"{value:.1f}" if isinstance(value, float) else str(value))
    return table
