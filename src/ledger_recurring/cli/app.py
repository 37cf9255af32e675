"""
Root Typer application for the ledger-recurring CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

from ledger_recurring.core.logging import configure_logging

app = Typer(
    name="ledger-recurring",
    help="ledger-recurring: recurring accounting events, scheduled and dispatched once per occurrence.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from ledger_recurring import __version__

        typer.echo(f"ledger-recurring {__version__}")
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
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log operation events to stderr."),
) -> None:
    """ledger-recurring CLI -- manage templates and recurring schedules, run the scheduler."""
    configure_logging(level="INFO" if verbose else "WARNING", json_format=False)


# ── Sub-command registration ─────────────────────────────────────────────

from ledger_recurring.cli.db import app as db_app  # noqa: E402
from ledger_recurring.cli.events import app as events_app  # noqa: E402
from ledger_recurring.cli.recurring import app as recurring_app  # noqa: E402
from ledger_recurring.cli.scheduler import app as scheduler_app  # noqa: E402
from ledger_recurring.cli.templates import app as templates_app  # noqa: E402

app.add_typer(db_app, name="db", help="Database operations.")
app.add_typer(templates_app, name="templates", help="Event template management.")
app.add_typer(recurring_app, name="recurring", help="Recurring schedule management.")
app.add_typer(events_app, name="events", help="Dispatched event history.")
app.add_typer(scheduler_app, name="scheduler", help="Run and inspect the scheduler.")
