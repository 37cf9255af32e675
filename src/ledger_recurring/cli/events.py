"""
CLI: ``ledger-recurring events`` -- dispatched event history.
"""

from __future__ import annotations

import typer

from ledger_recurring.cli.utils import (
    DatabaseOption,
    JsonOption,
    OrgOption,
    make_context,
    output_paged,
    output_result,
)

app = typer.Typer(no_args_is_help=True)

_LIST_COLUMNS = ["id", "type", "reference", "status", "error_message", "created_at"]


@app.command("list")
def list_events(
    status: str | None = typer.Option(None, "--status", "-s", help="PENDING | PROCESSED | FAILED"),
    template: str | None = typer.Option(None, "--template", help="Template ID or orchid"),
    limit: int = typer.Option(50, "--limit", "-n"),
    org: str | None = OrgOption,
    database: str | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """List dispatched events, newest first."""
    from ledger_recurring.ops.events import list_events as _list
    from ledger_recurring.ops.requests import ListEventsRequest

    ctx, _ = make_context(database, organization_id=org)
    result = _list(ctx, ListEventsRequest(status=status, template_id=template, limit=limit))
    output_paged(result, as_json=json_out, title="Events", columns=_LIST_COLUMNS)


@app.command("show")
def show_event(
    instance_id: str = typer.Argument(..., help="Event instance ID"),
    org: str | None = OrgOption,
    database: str | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """Show one dispatched event with its plugin results."""
    from ledger_recurring.ops.events import get_event as _get
    from ledger_recurring.ops.requests import GetEventRequest

    ctx, _ = make_context(database, organization_id=org)
    result = _get(ctx, GetEventRequest(instance_id=instance_id))
    output_result(result, as_json=json_out, title=f"Event: {instance_id}")
