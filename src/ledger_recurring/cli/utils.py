"""
CLI utility helpers -- settings, connection management and output formatting.
"""

from __future__ import annotations

import json
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from ledger_recurring.core.errors import InvalidConfigError
from ledger_recurring.core.settings import RecurringSettings, load_settings
from ledger_recurring.core.sqlite_conn import SqliteConnection
from ledger_recurring.ops.context import OperationContext
from ledger_recurring.ops.result import OperationResult, PagedResult

console = Console()
err_console = Console(stderr=True)

# Shared option declarations
DatabaseOption = typer.Option(None, "--database", "-d", help="SQLite database path")
OrgOption = typer.Option(
    None, "--org", "-o", envvar="LEDGER_RECURRING_ORGANIZATION_ID", help="Organization ID"
)
UserOption = typer.Option(None, "--user", "-u", envvar="LEDGER_RECURRING_USER", help="Acting user ID")
JsonOption = typer.Option(False, "--json", help="JSON output")


# ── Settings & connection helpers ────────────────────────────────────────


def get_cli_settings(**overrides: Any) -> RecurringSettings:
    """Load settings, exiting with a readable message when they are invalid."""
    try:
        return load_settings(**overrides)
    except InvalidConfigError as exc:
        err_console.print(f"[bold red]Configuration error[/bold red]: {exc.message}")
        raise typer.Exit(code=2) from exc


def get_connection(database: str | None = None, settings: RecurringSettings | None = None) -> SqliteConnection:
    """Open the schedule store. Defaults to ``settings.database_path``."""
    settings = settings or get_cli_settings()
    return SqliteConnection(database or settings.database_path)


def make_context(
    database: str | None = None,
    *,
    organization_id: str | None = None,
    user: str | None = None,
    dry_run: bool = False,
) -> tuple[OperationContext, SqliteConnection]:
    """Create an ``OperationContext`` + connection pair for CLI commands."""
    settings = get_cli_settings()
    conn = get_connection(database, settings)
    ctx = OperationContext(
        conn=conn,
        organization_id=organization_id,
        user=user,
        caller="cli",
        dry_run=dry_run,
        default_timezone=settings.default_timezone,
    )
    return ctx, conn


def parse_json_option(value: str | None, name: str) -> Any:
    """Parse a JSON-valued option (``None`` stays ``None``)."""
    if value is None:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"{name} must be valid JSON: {exc.msg}") from exc


# ── Output helpers ───────────────────────────────────────────────────────


def _to_dict(obj: Any) -> dict[str, Any]:
    """Convert a model / dict / scalar to a plain dict."""
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if isinstance(obj, dict):
        return obj
    return {"value": obj}


def _fail(result: OperationResult) -> None:
    err = result.error
    msg = err.message if err else "Unknown error"
    code = err.code if err else "ERROR"
    err_console.print(f"[bold red]Error[/bold red] ({code}): {msg}")
    raise typer.Exit(code=1)


def _warn(result: OperationResult) -> None:
    for warning in result.warnings:
        err_console.print(f"[yellow]Warning[/yellow]: {warning}")


def output_result(
    result: OperationResult,
    *,
    as_json: bool = False,
    title: str = "",
    message: str | None = None,
) -> None:
    """Render an ``OperationResult`` to the terminal."""
    if not result.success:
        _fail(result)
    _warn(result)

    data = result.data

    if as_json:
        console.print_json(json.dumps(result.to_dict(), default=str))
        return

    if data is None:
        console.print(message or "[green]Done.[/green]")
    elif isinstance(data, list):
        if not data:
            console.print("[dim]No items.[/dim]")
            return
        _print_table(data, title=title)
    else:
        _print_dict(_to_dict(data), title=title)


def output_paged(
    result: PagedResult,
    *,
    as_json: bool = False,
    title: str = "",
    columns: list[str] | None = None,
) -> None:
    """Render a ``PagedResult`` to the terminal with pagination info."""
    if not result.success:
        _fail(result)

    items = result.data or []

    if as_json:
        console.print_json(json.dumps(result.to_dict(), default=str))
        return

    if not items:
        console.print("[dim]No items.[/dim]")
        return

    _print_table(items, title=title, columns=columns)
    console.print(f"\n[dim]Showing {len(items)} of {result.total} (offset {result.offset})[/dim]")


# ── Private helpers ──────────────────────────────────────────────────────


def _print_table(items: list, *, title: str = "", columns: list[str] | None = None) -> None:
    """Render a list of models/dicts as a Rich table."""
    rows = [_to_dict(item) for item in items]
    columns = columns or list(rows[0])
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in columns:
        table.add_column(col, overflow="fold")
    for row in rows:
        table.add_row(*(_cell(row.get(col)) for col in columns))
    console.print(table)


def _print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {_cell(v)}")


def _cell(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, dict | list):
        return json.dumps(value, default=str)
    return str(value)
