"""
CLI: ``ledger-recurring scheduler`` -- run the scheduler loop and inspect it.
"""

from __future__ import annotations

import asyncio

import typer

from ledger_recurring.cli.utils import (
    DatabaseOption,
    JsonOption,
    console,
    err_console,
    get_cli_settings,
    get_connection,
)

app = typer.Typer(no_args_is_help=True)


@app.command("run")
def run(
    once: bool = typer.Option(False, "--once", help="Run a single tick and exit"),
    interval: float | None = typer.Option(None, "--interval", help="Seconds between ticks"),
    workers: int | None = typer.Option(None, "--workers", "-w", help="Concurrent dispatches per tick"),
    instance_id: str | None = typer.Option(None, "--instance-id", help="Scheduler instance identity"),
    database: str | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """Start the scheduler (blocks until Ctrl+C).

    Several processes may run against the same database; each occurrence
    is still delivered once.

    Example::

        ledger-recurring scheduler run --interval 5 --workers 4
        ledger-recurring scheduler run --once --json
    """
    from ledger_recurring.core.errors import StoreUnavailableError
    from ledger_recurring.core.logging import configure_logging
    from ledger_recurring.core.schema import create_tables
    from ledger_recurring.core.scheduling import ThreadSchedulerBackend, create_scheduler

    overrides: dict = {}
    if interval is not None:
        overrides["poll_interval_seconds"] = interval
    if workers is not None:
        overrides["max_workers"] = workers
    if instance_id is not None:
        overrides["instance_id"] = instance_id
    settings = get_cli_settings(**overrides)
    configure_logging(level=settings.log_level, json_format=settings.json_logs)

    conn = get_connection(database, settings)
    create_tables(conn)
    backend = ThreadSchedulerBackend(run_immediately=True)
    service = create_scheduler(conn, settings, backend=backend)

    if once:
        try:
            report = asyncio.run(service.tick())
        except StoreUnavailableError as exc:
            err_console.print(f"[bold red]Error[/bold red] (STORE_UNAVAILABLE): {exc.message}")
            raise typer.Exit(code=1) from exc
        if json_out:
            console.print_json(data=report.to_dict())
        else:
            console.print(
                f"[bold]Tick complete[/bold]: due={report.due} committed={report.committed} "
                f"failed={report.failed} claim_lost={report.claim_lost} "
                f"discarded={report.discarded} retired={report.retired}"
            )
        return

    console.print(
        f"[bold green]Starting ledger-recurring scheduler[/bold green] "
        f"(interval={settings.poll_interval_seconds}s, workers={settings.max_workers}, "
        f"instance={service.lease_manager.instance_id})"
    )
    service.start()
    try:
        while not backend.wait(1.0):
            pass
    except KeyboardInterrupt:
        console.print("\n[yellow]Scheduler stopped by user[/yellow]")
    finally:
        service.stop()
        conn.close()


@app.command("health")
def health(
    database: str | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """Show schedule store health: enabled, overdue and leased schedules."""
    from ledger_recurring.core.errors import StoreUnavailableError
    from ledger_recurring.core.scheduling import create_scheduler

    settings = get_cli_settings()
    conn = get_connection(database, settings)
    service = create_scheduler(conn, settings)
    try:
        status = service.health().to_dict()
    except StoreUnavailableError as exc:
        err_console.print(f"[bold red]Error[/bold red] (STORE_UNAVAILABLE): {exc.message}")
        raise typer.Exit(code=1) from exc

    data = {
        "schedules_enabled": status["schedules_enabled"],
        "schedules_overdue": status["schedules_overdue"],
        "active_leases": status["active_leases"],
        "database": str(database or settings.database_path),
    }
    if json_out:
        console.print_json(data=data)
        return
    console.print("[bold]Scheduler Health[/bold]")
    for key, value in data.items():
        console.print(f"  [cyan]{key}[/cyan]: {value}")
