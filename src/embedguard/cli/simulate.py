"""
CLI: ``embedguard classify`` and ``embedguard simulate``.

``simulate`` replays a fixed set of typical embed failures through a
container driven by a :class:`~embedguard.core.clock.ManualClock`, so it
finishes instantly while still showing the real backoff delays.
"""

from __future__ import annotations

import asyncio
import random
from typing import Any

import typer
from rich.table import Table

from embedguard.cli.utils import console, print_json, record_table, stats_table
from embedguard.container import ResilienceContainer
from embedguard.core.clock import ManualClock
from embedguard.execution.classifier import classify, user_message
from embedguard.observability.events import EventKind
from embedguard.observability.metrics import MetricsRegistry, ResilienceMetrics

SCENARIOS: list[dict[str, Any]] = [
    {
        "resource_id": "report-query-error",
        "errorCode": "QueryUserError",
        "message": "Report failed to load: QueryUserError - the query could not be completed.",
    },
    {
        "resource_id": "report-12345",
        "errorCode": "TokenExpiredError",
        "message": "Access token has expired. Please refresh your authentication.",
    },
    {
        "resource_id": "report-67890",
        "errorCode": "NetworkError",
        "message": "Failed to connect to the report service. Please check your internet connection.",
    },
    {
        "resource_id": "report-config-error",
        "errorCode": "EmbedConfigError",
        "message": "Invalid embed configuration. Check your report settings.",
    },
]


def classify_command(
    code: str = typer.Argument(..., help="Error code reported by the SDK, e.g. TokenExpired"),
    message: str = typer.Option("", "--message", "-m", help="Error message text"),
    status: int | None = typer.Option(None, "--status", "-s", help="HTTP status code"),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Classify an embed failure and show its user-facing message."""
    raw: dict[str, Any] = {"errorCode": code, "message": message}
    if status is not None:
        raw["status"] = status

    record = classify(raw)
    text = user_message(record)
    if as_json:
        print_json({**record.to_dict(), "user_message": text})
        return
    console.print(record_table(record, text))


async def _run_scenarios(seed: int | None) -> tuple[list[dict[str, Any]], dict[str, Any]]:
    clock = ManualClock()

    async def refresh_token() -> None:
        clock.advance(0.05)

    container = ResilienceContainer(
        _simulation_settings(),
        clock=clock,
        token_refresher=refresh_token,
        rng=random.Random(seed),
        metrics=ResilienceMetrics(MetricsRegistry()),
    )
    cache, orchestrator, tracker = container.cache, container.orchestrator, container.tracker
    rows: list[dict[str, Any]] = []

    for scenario in SCENARIOS:
        resource_id = scenario["resource_id"]
        instance_id = f"{resource_id}-container"
        cache.put(resource_id, f"https://app.example.com/reportEmbed?reportId={resource_id}", "simulated-token")
        tracker.start(resource_id, instance_id)
        tracker.record(instance_id, EventKind.LOAD_STARTED)
        clock.advance(0.25)

        detail = {"errorCode": scenario["errorCode"], "message": scenario["message"]}
        record = orchestrator.classify({"detail": detail}, resource_id)
        retry = orchestrator.should_retry(record, resource_id)

        def embed(instance_id: str = instance_id) -> str:
            clock.advance(0.4)
            tracker.record(instance_id, EventKind.LOADED)
            clock.advance(0.2)
            tracker.record(instance_id, EventKind.RENDERED)
            return "embedded"

        delay: float | None = None
        outcome = "not retried"
        if retry:
            sleeps_before = len(clock.sleeps)
            result = await orchestrator.execute(record, resource_id, embed)
            if len(clock.sleeps) > sleeps_before:
                delay = clock.sleeps[-1]
            outcome = result or "refused"
        else:
            tracker.record_sdk_event(instance_id, "error", detail)

        rows.append(
            {
                "resource_id": resource_id,
                "kind": record.kind.value,
                "severity": record.severity.value,
                "retry": retry,
                "delay_seconds": delay,
                "outcome": outcome,
                "user_message": orchestrator.user_message(record),
            }
        )

    stats = tracker.aggregate().to_dict()
    container.close()
    return rows, stats


def _simulation_settings():
    from embedguard.core.settings import get_settings

    return get_settings().model_copy(update={"synthetic_interaction_delay_seconds": None})


def simulate_command(
    seed: int | None = typer.Option(None, "--seed", help="Seed for backoff jitter"),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Replay typical embed failures through the resilience layer."""
    rows, stats = asyncio.run(_run_scenarios(seed))

    if as_json:
        print_json({"scenarios": rows, "stats": stats})
        return

    table = Table(title="Simulated embed failures")
    table.add_column("Resource")
    table.add_column("Kind")
    table.add_column("Severity")
    table.add_column("Retry")
    table.add_column("Delay", justify="right")
    table.add_column("Outcome")
    for row in rows:
        delay = row["delay_seconds"]
        table.add_row(
            row["resource_id"],
            row["kind"],
            row["severity"],
            "yes" if row["retry"] else "no",
            f"{delay:.2f}s" if delay is not None else "-",
            row["outcome"],
        )
    console.print(table)

    for row in rows:
        console.print(f"[bold]{row['resource_id']}:[/bold] {row['user_message']}")
    console.print(stats_table(stats))
