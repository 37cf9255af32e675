"""
Event instance operations.

Every dispatch, scheduled or manual, leaves an event instance behind:
its reference, payload, status and per-plugin results. These read-only
operations expose that history per organization.
"""

from __future__ import annotations

from ledger_recurring.core.logging import get_logger
from ledger_recurring.core.models.events import EventInstance, InstanceStatus
from ledger_recurring.events.dispatcher import EventDispatcher
from ledger_recurring.events.templates import TemplateRepository
from ledger_recurring.ops.context import OperationContext
from ledger_recurring.ops.requests import GetEventRequest, ListEventsRequest
from ledger_recurring.ops.result import OperationResult, PagedResult, start_timer

logger = get_logger(__name__)


def _dispatcher(ctx: OperationContext) -> EventDispatcher:
    return EventDispatcher(ctx.conn, clock=ctx.clock)


def list_events(
    ctx: OperationContext,
    request: ListEventsRequest | None = None,
) -> PagedResult[EventInstance]:
    """List dispatched events, newest first.

    ``template_id`` accepts an id or an orchid. ``status`` is one of
    ``PENDING``, ``PROCESSED`` or ``FAILED``.
    """
    request = request or ListEventsRequest()
    timer = start_timer()

    if not ctx.organization_id:
        return PagedResult.fail(  # type: ignore[return-value]
            "VALIDATION_FAILED", "organization_id is required", elapsed_ms=timer.elapsed_ms
        )

    status = None
    if request.status is not None:
        try:
            status = InstanceStatus(request.status.upper())
        except ValueError:
            allowed = ", ".join(s.value for s in InstanceStatus)
            return PagedResult.fail(  # type: ignore[return-value]
                "VALIDATION_FAILED",
                f"Unknown status '{request.status}' (expected one of: {allowed})",
                elapsed_ms=timer.elapsed_ms,
            )

    try:
        template_id = None
        if request.template_id is not None:
            template = TemplateRepository(ctx.conn, clock=ctx.clock).resolve(ctx.organization_id, request.template_id)
            if template is None:
                return PagedResult.fail(  # type: ignore[return-value]
                    "NOT_FOUND", f"Template '{request.template_id}' not found", elapsed_ms=timer.elapsed_ms
                )
            template_id = template.id

        items = _dispatcher(ctx).list_instances(
            ctx.organization_id, limit=request.limit, status=status, template_id=template_id
        )
    except Exception as exc:
        logger.exception("op_failed", op="list_events", error=str(exc))
        return PagedResult.from_exception(exc, elapsed_ms=timer.elapsed_ms)  # type: ignore[return-value]

    return PagedResult.from_items(items, total=len(items), limit=request.limit, elapsed_ms=timer.elapsed_ms)


def get_event(
    ctx: OperationContext,
    request: GetEventRequest,
) -> OperationResult[EventInstance]:
    """Get one event instance of the caller's organization."""
    timer = start_timer()

    if not ctx.organization_id or not request.instance_id:
        return OperationResult.fail(
            "VALIDATION_FAILED",
            "organization_id and instance_id are required",
            elapsed_ms=timer.elapsed_ms,
        )

    try:
        instance = _dispatcher(ctx).get_instance(request.instance_id, ctx.organization_id)
    except Exception as exc:
        logger.exception("op_failed", op="get_event", error=str(exc))
        return OperationResult.from_exception(exc, elapsed_ms=timer.elapsed_ms)

    if instance is None:
        return OperationResult.fail(
            "NOT_FOUND", f"Event '{request.instance_id}' not found", elapsed_ms=timer.elapsed_ms
        )
    return OperationResult.ok(instance, elapsed_ms=timer.elapsed_ms)
