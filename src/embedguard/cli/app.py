"""
Root Typer application for the embedguard CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

from embedguard.cli.config import app as config_app
from embedguard.cli.simulate import classify_command, simulate_command

app = Typer(
    name="embedguard",
    help="embedguard: resilience layer for embedded reports.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from embedguard import __version__

        typer.echo(f"embedguard {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Override EMBEDGUARD_LOG_LEVEL."),
) -> None:
    """Inspect configuration, classify failures and run simulations."""
    from embedguard.cli.config import load_settings
    from embedguard.core.logging import configure_logging

    settings = load_settings()
    configure_logging(
        level=log_level or settings.log_level,
        json_format=settings.log_format == "json",
    )


app.add_typer(config_app, name="config", help="Configuration management.")
app.command("classify")(classify_command)
app.command("simulate")(simulate_command)
