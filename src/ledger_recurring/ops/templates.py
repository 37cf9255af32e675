"""
Event template operations.

Templates belong to one organization and are addressed by id or by their
upper-cased orchid. Schedules reference a template; deactivating it makes
later dispatches of those schedules fail until it is replaced.
"""

from __future__ import annotations

from dataclasses import replace

from ledger_recurring.core.logging import get_logger
from ledger_recurring.core.models.events import DEFAULT_PLUGINS, EventTemplate, ReferenceConfig
from ledger_recurring.events.templates import TemplateCreate, TemplateRepository, TemplateUpdate
from ledger_recurring.ops.context import OperationContext
from ledger_recurring.ops.requests import (
    CreateTemplateRequest,
    DeactivateTemplateRequest,
    GetTemplateRequest,
    ListTemplatesRequest,
    UpdateTemplateRequest,
)
from ledger_recurring.ops.result import OperationResult, PagedResult, start_timer

logger = get_logger(__name__)


def _repo(ctx: OperationContext) -> TemplateRepository:
    return TemplateRepository(ctx.conn, clock=ctx.clock)


def create_template(
    ctx: OperationContext,
    request: CreateTemplateRequest,
) -> OperationResult[EventTemplate]:
    """Create an event template in the caller's organization."""
    timer = start_timer()

    if not ctx.organization_id:
        return OperationResult.fail(
            "VALIDATION_FAILED", "organization_id is required", elapsed_ms=timer.elapsed_ms
        )

    try:
        spec = TemplateCreate(
            organization_id=ctx.organization_id,
            name=request.name,
            orchid=request.orchid,
            reference_config=ReferenceConfig.from_dict(request.reference_config),
            narration_config=request.narration_config,
            input_schema=dict(request.input_schema),
            plugins=list(request.plugins if request.plugins is not None else DEFAULT_PLUGINS),
            lines_rule=list(request.lines_rule),
        )
        if ctx.dry_run:
            return OperationResult.ok(
                EventTemplate(
                    id="",
                    organization_id=spec.organization_id,
                    name=spec.name.strip(),
                    orchid=spec.orchid.strip().upper(),
                    reference_config=spec.reference_config,
                    narration_config=spec.narration_config,
                    input_schema=spec.input_schema,
                    plugins=spec.plugins,
                    lines_rule=spec.lines_rule,
                ),
                elapsed_ms=timer.elapsed_ms,
                metadata={"dry_run": True},
            )
        template = _repo(ctx).create(spec)
    except Exception as exc:
        logger.warning("op_rejected", op="create_template", error=str(exc))
        return OperationResult.from_exception(exc, elapsed_ms=timer.elapsed_ms)

    return OperationResult.ok(template, elapsed_ms=timer.elapsed_ms)


def list_templates(
    ctx: OperationContext,
    request: ListTemplatesRequest | None = None,
) -> PagedResult[EventTemplate]:
    """List the organization's templates, ordered by orchid."""
    request = request or ListTemplatesRequest()
    timer = start_timer()

    if not ctx.organization_id:
        return PagedResult.fail(  # type: ignore[return-value]
            "VALIDATION_FAILED", "organization_id is required", elapsed_ms=timer.elapsed_ms
        )

    try:
        items = _repo(ctx).list_templates(ctx.organization_id, include_inactive=request.include_inactive)
    except Exception as exc:
        logger.exception("op_failed", op="list_templates", error=str(exc))
        return PagedResult.from_exception(exc, elapsed_ms=timer.elapsed_ms)  # type: ignore[return-value]

    return PagedResult.from_items(items, total=len(items), limit=max(len(items), 1), elapsed_ms=timer.elapsed_ms)


def get_template(
    ctx: OperationContext,
    request: GetTemplateRequest,
) -> OperationResult[EventTemplate]:
    """Get one template by id or orchid, inactive ones included."""
    timer = start_timer()

    if not ctx.organization_id or not request.template_id:
        return OperationResult.fail(
            "VALIDATION_FAILED",
            "organization_id and template_id are required",
            elapsed_ms=timer.elapsed_ms,
        )

    try:
        template = _repo(ctx).resolve(ctx.organization_id, request.template_id)
    except Exception as exc:
        logger.exception("op_failed", op="get_template", error=str(exc))
        return OperationResult.from_exception(exc, elapsed_ms=timer.elapsed_ms)

    if template is None:
        return OperationResult.fail(
            "NOT_FOUND", f"Template '{request.template_id}' not found", elapsed_ms=timer.elapsed_ms
        )
    return OperationResult.ok(template, elapsed_ms=timer.elapsed_ms)


def update_template(
    ctx: OperationContext,
    request: UpdateTemplateRequest,
) -> OperationResult[EventTemplate]:
    """Edit a template in place. The orchid cannot change.

    Schedules referencing the template pick the edit up on their next
    dispatch.
    """
    timer = start_timer()

    if not ctx.organization_id or not request.template_id:
        return OperationResult.fail(
            "VALIDATION_FAILED",
            "organization_id and template_id are required",
            elapsed_ms=timer.elapsed_ms,
        )

    try:
        repo = _repo(ctx)
        template = repo.resolve(ctx.organization_id, request.template_id)
        if template is None:
            return OperationResult.fail(
                "NOT_FOUND", f"Template '{request.template_id}' not found", elapsed_ms=timer.elapsed_ms
            )

        changes = TemplateUpdate(
            name=request.name.strip() if request.name is not None else None,
            reference_config=(
                ReferenceConfig.from_dict({**template.reference_config.to_dict(), **request.reference_config})
                if request.reference_config is not None
                else None
            ),
            narration_config=request.narration_config,
            input_schema=dict(request.input_schema) if request.input_schema is not None else None,
            plugins=list(request.plugins) if request.plugins is not None else None,
            lines_rule=list(request.lines_rule) if request.lines_rule is not None else None,
        )
        if ctx.dry_run:
            preview = replace(
                template,
                **{k: v for k, v in vars(changes).items() if v is not None},
            )
            return OperationResult.ok(preview, elapsed_ms=timer.elapsed_ms, metadata={"dry_run": True})
        updated = repo.update(template.id, ctx.organization_id, changes)
    except Exception as exc:
        logger.warning("op_rejected", op="update_template", error=str(exc))
        return OperationResult.from_exception(exc, elapsed_ms=timer.elapsed_ms)

    return OperationResult.ok(updated, elapsed_ms=timer.elapsed_ms)


def deactivate_template(
    ctx: OperationContext,
    request: DeactivateTemplateRequest,
) -> OperationResult[None]:
    """Deactivate a template. System-generated templates are refused."""
    timer = start_timer()

    if not ctx.organization_id or not request.template_id:
        return OperationResult.fail(
            "VALIDATION_FAILED",
            "organization_id and template_id are required",
            elapsed_ms=timer.elapsed_ms,
        )

    try:
        repo = _repo(ctx)
        template = repo.resolve(ctx.organization_id, request.template_id)
        if template is None:
            return OperationResult.fail(
                "NOT_FOUND", f"Template '{request.template_id}' not found", elapsed_ms=timer.elapsed_ms
            )
        if not ctx.dry_run:
            repo.deactivate(template.id, ctx.organization_id)
    except Exception as exc:
        logger.warning("op_rejected", op="deactivate_template", error=str(exc))
        return OperationResult.from_exception(exc, elapsed_ms=timer.elapsed_ms)

    logger.info("template.deactivated", template_id=template.id, orchid=template.orchid)
    return OperationResult.ok(None, elapsed_ms=timer.elapsed_ms)
