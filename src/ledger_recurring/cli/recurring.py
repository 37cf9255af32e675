"""
CLI: ``ledger-recurring recurring`` -- recurring schedule commands.
"""

from __future__ import annotations

import typer

from ledger_recurring.cli.utils import (
    DatabaseOption,
    JsonOption,
    OrgOption,
    UserOption,
    make_context,
    output_paged,
    output_result,
    parse_json_option,
)

app = typer.Typer(no_args_is_help=True)

_LIST_COLUMNS = ["id", "template_id", "rule", "status", "next_run", "run_count", "max_runs", "failure_count"]
_RUN_COLUMNS = ["occurrence_at", "status", "started_at", "instance_id", "error"]


def _rule(
    kind: str | None,
    time_of_day: str | None,
    day_of_week: int | None,
    day_of_month: int | None,
) -> dict | None:
    if kind is None:
        if any(value is not None for value in (time_of_day, day_of_week, day_of_month)):
            raise typer.BadParameter("--kind is required when changing the recurrence rule")
        return None
    rule: dict = {"type": kind}
    if time_of_day is not None:
        rule["time"] = time_of_day
    if day_of_week is not None:
        rule["dayOfWeek"] = day_of_week
    if day_of_month is not None:
        rule["dayOfMonth"] = day_of_month
    return rule


@app.command("create")
def create_recurring(
    template: str = typer.Argument(..., help="Template ID or orchid"),
    kind: str = typer.Option(..., "--kind", "-k", help="daily | weekly | monthly | calendar_monthly"),
    time_of_day: str | None = typer.Option(None, "--time", "-t", help="Local time HH:MM"),
    day_of_week: int | None = typer.Option(None, "--day-of-week", help="0 = Sunday ... 6 = Saturday"),
    day_of_month: int | None = typer.Option(None, "--day-of-month", help="1-31"),
    timezone: str | None = typer.Option(None, "--timezone", "--tz", help="IANA timezone"),
    start_at: str | None = typer.Option(None, "--start-at", help="ISO 8601 start of window"),
    end_at: str | None = typer.Option(None, "--end-at", help="ISO 8601 end of window"),
    max_runs: int | None = typer.Option(None, "--max-runs", help="Run-count cap"),
    payload: str | None = typer.Option(None, "--payload", "-p", help="Event payload as JSON"),
    enabled: bool = typer.Option(True, "--enabled/--paused"),
    org: str | None = OrgOption,
    user: str | None = UserOption,
    database: str | None = DatabaseOption,
    dry_run: bool = typer.Option(False, "--dry-run", help="Validate without saving"),
    json_out: bool = JsonOption,
) -> None:
    """Create a recurring schedule.

    Example::

        ledger-recurring recurring create RENT --kind monthly --day-of-month 1 \\
            --time 06:00 --tz Asia/Kolkata --payload '{"amount": 1200}'
    """
    from ledger_recurring.ops.recurring import create_recurring as _create
    from ledger_recurring.ops.requests import CreateRecurringRequest

    ctx, _ = make_context(database, organization_id=org, user=user, dry_run=dry_run)
    request = CreateRecurringRequest(
        template_id=template,
        schedule=_rule(kind, time_of_day, day_of_week, day_of_month) or {},
        payload=parse_json_option(payload, "--payload"),
        timezone=timezone,
        start_at=start_at,
        end_at=end_at,
        max_runs=max_runs,
        enabled=enabled,
    )
    result = _create(ctx, request)
    output_result(result, as_json=json_out, title="Recurring Schedule Created")


@app.command("list")
def list_recurring(
    enabled: bool | None = typer.Option(None, "--enabled/--disabled", help="Filter by state"),
    limit: int = typer.Option(50, "--limit", "-n"),
    offset: int = typer.Option(0, "--offset"),
    org: str | None = OrgOption,
    database: str | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """List recurring schedules."""
    from ledger_recurring.ops.recurring import list_recurring as _list
    from ledger_recurring.ops.requests import ListRecurringRequest

    ctx, _ = make_context(database, organization_id=org)
    result = _list(ctx, ListRecurringRequest(enabled=enabled, limit=limit, offset=offset))
    output_paged(result, as_json=json_out, title="Recurring Schedules", columns=_LIST_COLUMNS)


@app.command("show")
def show_recurring(
    schedule_id: str = typer.Argument(..., help="Schedule ID"),
    org: str | None = OrgOption,
    database: str | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """Show recurring schedule details."""
    from ledger_recurring.ops.recurring import get_recurring as _get
    from ledger_recurring.ops.requests import GetRecurringRequest

    ctx, _ = make_context(database, organization_id=org)
    result = _get(ctx, GetRecurringRequest(schedule_id=schedule_id))
    output_result(result, as_json=json_out, title=f"Recurring Schedule: {schedule_id}")


@app.command("update")
def update_recurring(
    schedule_id: str = typer.Argument(..., help="Schedule ID"),
    template: str | None = typer.Option(None, "--template", help="Template ID or orchid"),
    kind: str | None = typer.Option(None, "--kind", "-k"),
    time_of_day: str | None = typer.Option(None, "--time", "-t"),
    day_of_week: int | None = typer.Option(None, "--day-of-week"),
    day_of_month: int | None = typer.Option(None, "--day-of-month"),
    timezone: str | None = typer.Option(None, "--timezone", "--tz"),
    start_at: str | None = typer.Option(None, "--start-at"),
    end_at: str | None = typer.Option(None, "--end-at"),
    max_runs: int | None = typer.Option(None, "--max-runs"),
    payload: str | None = typer.Option(None, "--payload", "-p", help="Event payload as JSON"),
    clear_start_at: bool = typer.Option(False, "--clear-start-at"),
    clear_end_at: bool = typer.Option(False, "--clear-end-at"),
    clear_max_runs: bool = typer.Option(False, "--clear-max-runs"),
    org: str | None = OrgOption,
    user: str | None = UserOption,
    database: str | None = DatabaseOption,
    dry_run: bool = typer.Option(False, "--dry-run"),
    json_out: bool = JsonOption,
) -> None:
    """Edit a recurring schedule. Rule and window changes recompute the next run."""
    from ledger_recurring.ops.recurring import update_recurring as _update
    from ledger_recurring.ops.requests import UpdateRecurringRequest

    ctx, _ = make_context(database, organization_id=org, user=user, dry_run=dry_run)
    request = UpdateRecurringRequest(
        schedule_id=schedule_id,
        template_id=template,
        schedule=_rule(kind, time_of_day, day_of_week, day_of_month),
        payload=parse_json_option(payload, "--payload"),
        timezone=timezone,
        start_at=start_at,
        end_at=end_at,
        max_runs=max_runs,
        clear_start_at=clear_start_at,
        clear_end_at=clear_end_at,
        clear_max_runs=clear_max_runs,
    )
    result = _update(ctx, request)
    output_result(result, as_json=json_out, title="Recurring Schedule Updated")


@app.command("pause")
def pause_recurring(
    schedule_id: str = typer.Argument(..., help="Schedule ID"),
    org: str | None = OrgOption,
    user: str | None = UserOption,
    database: str | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """Pause a recurring schedule."""
    from ledger_recurring.ops.recurring import pause_recurring as _pause
    from ledger_recurring.ops.requests import PauseRecurringRequest

    ctx, _ = make_context(database, organization_id=org, user=user)
    result = _pause(ctx, PauseRecurringRequest(schedule_id=schedule_id))
    output_result(result, as_json=json_out, title="Recurring Schedule Paused")


@app.command("resume")
def resume_recurring(
    schedule_id: str = typer.Argument(..., help="Schedule ID"),
    org: str | None = OrgOption,
    user: str | None = UserOption,
    database: str | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """Resume a paused schedule from the next occurrence after now."""
    from ledger_recurring.ops.recurring import resume_recurring as _resume
    from ledger_recurring.ops.requests import ResumeRecurringRequest

    ctx, _ = make_context(database, organization_id=org, user=user)
    result = _resume(ctx, ResumeRecurringRequest(schedule_id=schedule_id))
    output_result(result, as_json=json_out, title="Recurring Schedule Resumed")


@app.command("delete")
def delete_recurring(
    schedule_id: str = typer.Argument(..., help="Schedule ID"),
    org: str | None = OrgOption,
    database: str | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """Delete a recurring schedule (run history is kept)."""
    from ledger_recurring.ops.recurring import delete_recurring as _delete
    from ledger_recurring.ops.requests import DeleteRecurringRequest

    ctx, _ = make_context(database, organization_id=org)
    result = _delete(ctx, DeleteRecurringRequest(schedule_id=schedule_id))
    output_result(result, as_json=json_out, message=f"[green]Deleted[/green] {schedule_id}")


@app.command("runs")
def list_runs(
    schedule_id: str = typer.Argument(..., help="Schedule ID"),
    status: str | None = typer.Option(None, "--status", help="COMPLETED | FAILED | TIMEOUT | DISCARDED"),
    limit: int = typer.Option(50, "--limit", "-n"),
    org: str | None = OrgOption,
    database: str | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """Show dispatch history for a schedule."""
    from ledger_recurring.ops.recurring import list_recurring_runs as _runs
    from ledger_recurring.ops.requests import ListRecurringRunsRequest

    ctx, _ = make_context(database, organization_id=org)
    result = _runs(ctx, ListRecurringRunsRequest(schedule_id=schedule_id, status=status, limit=limit))
    output_paged(result, as_json=json_out, title=f"Runs: {schedule_id}", columns=_RUN_COLUMNS)


@app.command("trigger")
def trigger_recurring(
    schedule_id: str = typer.Argument(..., help="Schedule ID"),
    org: str | None = OrgOption,
    database: str | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """Fire a schedule now. Counts as a run; the regular next run is kept."""
    import asyncio

    from ledger_recurring.cli.utils import console, err_console, get_cli_settings, get_connection
    from ledger_recurring.core.errors import RecurringError
    from ledger_recurring.core.scheduling import create_scheduler

    settings = get_cli_settings()
    conn = get_connection(database, settings)
    service = create_scheduler(conn, settings)
    try:
        outcome = asyncio.run(service.trigger(schedule_id, org))
    except KeyError:
        err_console.print(f"[bold red]Error[/bold red] (NOT_FOUND): Recurring schedule '{schedule_id}' not found")
        raise typer.Exit(code=1)
    except RecurringError as exc:
        err_console.print(f"[bold red]Error[/bold red]: {exc.message}")
        raise typer.Exit(code=1)

    if json_out:
        console.print_json(data={"schedule_id": schedule_id, "outcome": outcome.value})
    else:
        console.print(f"[bold]{schedule_id}[/bold]: {outcome.value}")
    if outcome.value != "COMMITTED":
        raise typer.Exit(code=1)
