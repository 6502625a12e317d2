"""
CLI: ``embedguard config``: configuration inspection.
"""

from __future__ import annotations

import typer
from pydantic import ValidationError
from rich.table import Table

from embedguard.cli.utils import console, err_console

app = typer.Typer(no_args_is_help=True)


def load_settings(force: bool = False):
    from embedguard.core.settings import get_settings

    try:
        return get_settings(_force_reload=force)
    except ValidationError as e:
        err_console.print(f"[red]Configuration Error:[/red] {e}")
        raise typer.Exit(1) from e


@app.command("show")
def show_config(
    format: str = typer.Option("table", "--format", "-f", help="Output format: table, json, env"),
) -> None:
    """Show current configuration."""
    settings = load_settings()

    if format == "json":
        console.print_json(settings.model_dump_json())
        return

    if format == "env":
        for key, value in sorted(settings.model_dump().items()):
            console.print(f"EMBEDGUARD_{key.upper()}={'' if value is None else value}")
        return

    if format != "table":
        err_console.print(f"[red]Unknown format:[/red] {format}")
        raise typer.Exit(2)

    table = Table(title="embedguard settings")
    table.add_column("Setting")
    table.add_column("Value")
    for key, value in settings.model_dump().items():
        table.add_row(key, str(value))
    console.print(table)


@app.command("validate")
def validate_config() -> None:
    """Validate configuration from the environment."""
    load_settings(force=True)
    console.print("[green]✓ Configuration is valid[/green]")
