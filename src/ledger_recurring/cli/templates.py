"""
CLI: ``ledger-recurring templates`` -- event template commands.
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
    parse_json_option,
)

app = typer.Typer(no_args_is_help=True)

_LIST_COLUMNS = ["id", "orchid", "name", "plugins", "is_active"]


@app.command("create")
def create_template(
    orchid: str = typer.Argument(..., help="Template code, unique per organization"),
    name: str = typer.Option(..., "--name", help="Display name"),
    prefix: str = typer.Option("DOC", "--prefix", help="Reference prefix"),
    serial_method: str = typer.Option("incrementor", "--serial", help="incrementor | randomHex"),
    length: int = typer.Option(6, "--length", help="Reference serial length"),
    narration: str = typer.Option("", "--narration", help="Narration with %field% placeholders"),
    required: list[str] = typer.Option([], "--required", "-r", help="Required payload field (repeatable)"),
    plugins: list[str] = typer.Option([], "--plugin", help="Plugin name (repeatable, default: journal)"),
    lines_rule: str | None = typer.Option(None, "--lines", help="Journal line rules as JSON"),
    org: str | None = OrgOption,
    database: str | None = DatabaseOption,
    dry_run: bool = typer.Option(False, "--dry-run"),
    json_out: bool = JsonOption,
) -> None:
    """Create an event template."""
    from ledger_recurring.ops.requests import CreateTemplateRequest
    from ledger_recurring.ops.templates import create_template as _create

    ctx, _ = make_context(database, organization_id=org, dry_run=dry_run)
    request = CreateTemplateRequest(
        name=name,
        orchid=orchid,
        reference_config={"prefix": prefix, "serial_method": serial_method, "length": length},
        narration_config=narration,
        input_schema={"required": required} if required else {},
        plugins=plugins or None,
        lines_rule=parse_json_option(lines_rule, "--lines") or [],
    )
    result = _create(ctx, request)
    output_result(result, as_json=json_out, title="Template Created")


@app.command("list")
def list_templates(
    include_inactive: bool = typer.Option(False, "--all", help="Include inactive templates"),
    org: str | None = OrgOption,
    database: str | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """List event templates."""
    from ledger_recurring.ops.requests import ListTemplatesRequest
    from ledger_recurring.ops.templates import list_templates as _list

    ctx, _ = make_context(database, organization_id=org)
    result = _list(ctx, ListTemplatesRequest(include_inactive=include_inactive))
    output_paged(result, as_json=json_out, title="Templates", columns=_LIST_COLUMNS)


@app.command("deactivate")
def deactivate_template(
    template: str = typer.Argument(..., help="Template ID or orchid"),
    org: str | None = OrgOption,
    database: str | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """Deactivate an event template."""
    from ledger_recurring.ops.requests import DeactivateTemplateRequest
    from ledger_recurring.ops.templates import deactivate_template as _deactivate

    ctx, _ = make_context(database, organization_id=org)
    result = _deactivate(ctx, DeactivateTemplateRequest(template_id=template))
    output_result(result, as_json=json_out, message=f"[green]Deactivated[/green] {template}")


@app.command("show")
def show_template(
    template: str = typer.Argument(..., help="Template ID or orchid"),
    org: str | None = OrgOption,
    database: str | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """Show event template details."""
    from ledger_recurring.ops.requests import GetTemplateRequest
    from ledger_recurring.ops.templates import get_template as _get

    ctx, _ = make_context(database, organization_id=org)
    result = _get(ctx, GetTemplateRequest(template_id=template))
    output_result(result, as_json=json_out, title=f"Template: {template}")


@app.command("update")
def update_template(
    template: str = typer.Argument(..., help="Template ID or orchid"),
    name: str | None = typer.Option(None, "--name", help="Display name"),
    prefix: str | None = typer.Option(None, "--prefix", help="Reference prefix"),
    serial_method: str | None = typer.Option(None, "--serial", help="incrementor | randomHex"),
    length: int | None = typer.Option(None, "--length", help="Reference serial length"),
    narration: str | None = typer.Option(None, "--narration", help="Narration with %field% placeholders"),
    required: list[str] = typer.Option([], "--required", "-r", help="Required payload field (repeatable, replaces)"),
    plugins: list[str] = typer.Option([], "--plugin", help="Plugin name (repeatable, replaces)"),
    no_plugins: bool = typer.Option(False, "--no-plugins", help="Remove all plugins"),
    lines_rule: str | None = typer.Option(None, "--lines", help="Journal line rules as JSON"),
    org: str | None = OrgOption,
    database: str | None = DatabaseOption,
    dry_run: bool = typer.Option(False, "--dry-run"),
    json_out: bool = JsonOption,
) -> None:
    """Edit an event template. Schedules use the new version on their next dispatch."""
    from ledger_recurring.ops.requests import UpdateTemplateRequest
    from ledger_recurring.ops.templates import update_template as _update

    reference = {
        key: value
        for key, value in (("prefix", prefix), ("serial_method", serial_method), ("length", length))
        if value is not None
    }
    ctx, _ = make_context(database, organization_id=org, dry_run=dry_run)
    request = UpdateTemplateRequest(
        template_id=template,
        name=name,
        reference_config=reference or None,
        narration_config=narration,
        input_schema={"required": required} if required else None,
        plugins=[] if no_plugins else (plugins or None),
        lines_rule=parse_json_option(lines_rule, "--lines"),
    )
    result = _update(ctx, request)
    output_result(result, as_json=json_out, title="Template Updated")
