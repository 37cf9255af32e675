"""
Recurring schedule operations.

Create, inspect, edit, pause, resume and delete recurring schedules on
behalf of one organization, plus run-history listing. Every function is
scoped to ``ctx.organization_id``: a schedule owned by another tenant is
reported as ``NOT_FOUND``.

Rule, window and run-cap problems are rejected synchronously with code
``INVALID_RULE``; nothing is persisted for a rejected request.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Any

from ledger_recurring.core.errors import InvalidRuleError, RecurringError
from ledger_recurring.core.logging import get_logger
from ledger_recurring.core.models.recurring import ScheduledEvent, ScheduleRun
from ledger_recurring.core.scheduling.calculator import OccurrenceCalculator
from ledger_recurring.core.scheduling.repository import (
    ScheduleCreate,
    ScheduleRepository,
    ScheduleUpdate,
)
from ledger_recurring.core.scheduling.rules import RecurrenceRule
from ledger_recurring.core.timestamps import ensure_utc
from ledger_recurring.events.templates import TemplateRepository
from ledger_recurring.ops.context import OperationContext
from ledger_recurring.ops.requests import (
    CreateRecurringRequest,
    DeleteRecurringRequest,
    GetRecurringRequest,
    ListRecurringRequest,
    ListRecurringRunsRequest,
    PauseRecurringRequest,
    ResumeRecurringRequest,
    UpdateRecurringRequest,
)
from ledger_recurring.ops.result import OperationResult, PagedResult, _Timer, start_timer

logger = get_logger(__name__)


def _schedules(ctx: OperationContext) -> ScheduleRepository:
    return ScheduleRepository(
        ctx.conn,
        clock=ctx.clock,
        calculator=OccurrenceCalculator(ctx.default_timezone),
    )


def _templates(ctx: OperationContext) -> TemplateRepository:
    return TemplateRepository(ctx.conn, clock=ctx.clock)


def _failed(op: str, exc: Exception, timer: _Timer) -> OperationResult[Any]:
    if isinstance(exc, RecurringError):
        logger.warning("op_rejected", op=op, error=exc.message, error_type=type(exc).__name__)
    else:
        logger.exception("op_failed", op=op, error=str(exc))
    return OperationResult.from_exception(exc, elapsed_ms=timer.elapsed_ms)


def _missing_org(timer: _Timer) -> OperationResult[Any]:
    return OperationResult.fail(
        "VALIDATION_FAILED", "organization_id is required", elapsed_ms=timer.elapsed_ms
    )


def _not_found(schedule_id: str, timer: _Timer) -> OperationResult[Any]:
    return OperationResult.fail(
        "NOT_FOUND", f"Recurring schedule '{schedule_id}' not found", elapsed_ms=timer.elapsed_ms
    )


def parse_instant(value: datetime | str | None, field: str) -> datetime | None:
    """Parse an ISO 8601 instant (naive values are taken as UTC).

    Raises:
        InvalidRuleError: If ``value`` is not a valid ISO 8601 string
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    try:
        return ensure_utc(datetime.fromisoformat(value.strip()))
    except (TypeError, ValueError, AttributeError) as exc:
        raise InvalidRuleError(f"{field} is not an ISO 8601 instant: {value!r}", field=field, value=value) from exc


# ------------------------------------------------------------------ #
# Create / read
# ------------------------------------------------------------------ #


def create_recurring(
    ctx: OperationContext,
    request: CreateRecurringRequest,
) -> OperationResult[ScheduledEvent]:
    """Create a recurring schedule for the caller's organization.

    The template is resolved by id or orchid and must exist. With
    ``ctx.dry_run`` the validated record is returned without being stored.
    """
    timer = start_timer()

    if not ctx.organization_id:
        return _missing_org(timer)
    if not request.template_id:
        return OperationResult.fail(
            "VALIDATION_FAILED", "template_id is required", elapsed_ms=timer.elapsed_ms
        )

    try:
        rule = RecurrenceRule.from_dict(request.schedule, timezone=request.timezone)
        template = _templates(ctx).resolve(ctx.organization_id, request.template_id)
        if template is None:
            return OperationResult.fail(
                "NOT_FOUND",
                f"Template '{request.template_id}' not found",
                elapsed_ms=timer.elapsed_ms,
            )

        spec = ScheduleCreate(
            organization_id=ctx.organization_id,
            template_id=template.id,
            rule=rule,
            payload=request.payload,
            start_at=parse_instant(request.start_at, "start_at"),
            end_at=parse_instant(request.end_at, "end_at"),
            max_runs=request.max_runs,
            enabled=request.enabled,
            created_by=ctx.user,
        )
        repo = _schedules(ctx)
        if ctx.dry_run:
            schedule = repo.preview(spec)
        else:
            schedule = repo.create(spec)
            logger.info(
                "recurring.created",
                schedule_id=schedule.id,
                organization_id=schedule.organization_id,
                template=template.orchid,
                next_run=schedule.to_dict()["next_run"],
            )
    except Exception as exc:
        return _failed("create_recurring", exc, timer)

    warnings = [] if schedule.next_run else ["No occurrence falls inside the schedule window"]
    return OperationResult.ok(schedule, warnings=warnings, elapsed_ms=timer.elapsed_ms)


def list_recurring(
    ctx: OperationContext,
    request: ListRecurringRequest | None = None,
) -> PagedResult[ScheduledEvent]:
    """List the organization's recurring schedules, oldest first."""
    request = request or ListRecurringRequest()
    timer = start_timer()

    if not ctx.organization_id:
        return _missing_org(timer)  # type: ignore[return-value]

    try:
        repo = _schedules(ctx)
        items = repo.list_schedules(
            ctx.organization_id, request.enabled, limit=request.limit, offset=request.offset
        )
        total = repo.count(ctx.organization_id, request.enabled)
    except Exception as exc:
        return _failed("list_recurring", exc, timer)  # type: ignore[return-value]

    return PagedResult.from_items(
        items,
        total=total,
        limit=request.limit,
        offset=request.offset,
        elapsed_ms=timer.elapsed_ms,
    )


def get_recurring(
    ctx: OperationContext,
    request: GetRecurringRequest,
) -> OperationResult[ScheduledEvent]:
    """Get one recurring schedule."""
    timer = start_timer()

    if not ctx.organization_id:
        return _missing_org(timer)
    if not request.schedule_id:
        return OperationResult.fail(
            "VALIDATION_FAILED", "schedule_id is required", elapsed_ms=timer.elapsed_ms
        )

    try:
        schedule = _schedules(ctx).get(request.schedule_id, ctx.organization_id)
    except Exception as exc:
        return _failed("get_recurring", exc, timer)

    if schedule is None:
        return _not_found(request.schedule_id, timer)
    return OperationResult.ok(schedule, elapsed_ms=timer.elapsed_ms)


# ------------------------------------------------------------------ #
# Edit
# ------------------------------------------------------------------ #


def _has_changes(request: UpdateRecurringRequest) -> bool:
    return any(
        value is not None
        for value in (
            request.template_id,
            request.schedule,
            request.payload,
            request.timezone,
            request.start_at,
            request.end_at,
            request.max_runs,
            request.enabled,
        )
    ) or (request.clear_start_at or request.clear_end_at or request.clear_max_runs)


def update_recurring(
    ctx: OperationContext,
    request: UpdateRecurringRequest,
) -> OperationResult[ScheduledEvent]:
    """Edit a recurring schedule.

    Changing the rule, timezone, window, run cap or enabled flag recomputes
    ``next_run`` from now and resets the failure streak. A schedule passed
    without a timezone keeps the one it already has.
    """
    timer = start_timer()

    if not ctx.organization_id:
        return _missing_org(timer)
    if not request.schedule_id:
        return OperationResult.fail(
            "VALIDATION_FAILED", "schedule_id is required", elapsed_ms=timer.elapsed_ms
        )
    if not _has_changes(request):
        return OperationResult.fail(
            "VALIDATION_FAILED", "No fields to update", elapsed_ms=timer.elapsed_ms
        )

    try:
        repo = _schedules(ctx)
        current = repo.get(request.schedule_id, ctx.organization_id)
        if current is None:
            return _not_found(request.schedule_id, timer)

        rule: RecurrenceRule | None = None
        if request.schedule is not None:
            rule = RecurrenceRule.from_dict(
                request.schedule, timezone=request.timezone or current.rule.timezone
            )
        elif request.timezone is not None:
            rule = replace(current.rule, timezone=request.timezone)

        template_id = None
        if request.template_id is not None:
            template = _templates(ctx).resolve(ctx.organization_id, request.template_id)
            if template is None:
                return OperationResult.fail(
                    "NOT_FOUND",
                    f"Template '{request.template_id}' not found",
                    elapsed_ms=timer.elapsed_ms,
                )
            template_id = template.id

        updates = ScheduleUpdate(
            template_id=template_id,
            rule=rule,
            payload=request.payload,
            start_at=parse_instant(request.start_at, "start_at"),
            end_at=parse_instant(request.end_at, "end_at"),
            max_runs=request.max_runs,
            enabled=request.enabled,
            clear_start_at=request.clear_start_at,
            clear_end_at=request.clear_end_at,
            clear_max_runs=request.clear_max_runs,
            updated_by=ctx.user,
        )

        if ctx.dry_run:
            return OperationResult.ok(current, elapsed_ms=timer.elapsed_ms, metadata={"dry_run": True})

        schedule = repo.update(request.schedule_id, updates, ctx.organization_id)
    except Exception as exc:
        return _failed("update_recurring", exc, timer)

    if schedule is None:
        return _not_found(request.schedule_id, timer)
    logger.info("recurring.updated", schedule_id=schedule.id, version=schedule.version,
                status=schedule.status)
    return OperationResult.ok(schedule, elapsed_ms=timer.elapsed_ms)


def pause_recurring(
    ctx: OperationContext,
    request: PauseRecurringRequest,
) -> OperationResult[ScheduledEvent]:
    """Pause a schedule. Its ``next_run`` is kept for inspection."""
    return _set_enabled(ctx, request.schedule_id, False)


def resume_recurring(
    ctx: OperationContext,
    request: ResumeRecurringRequest,
) -> OperationResult[ScheduledEvent]:
    """Resume a schedule; ``next_run`` is recomputed from now.

    Missed occurrences while paused are not replayed.
    """
    return _set_enabled(ctx, request.schedule_id, True)


def _set_enabled(ctx: OperationContext, schedule_id: str, enabled: bool) -> OperationResult[ScheduledEvent]:
    timer = start_timer()
    op = "resume_recurring" if enabled else "pause_recurring"

    if not ctx.organization_id:
        return _missing_org(timer)
    if not schedule_id:
        return OperationResult.fail(
            "VALIDATION_FAILED", "schedule_id is required", elapsed_ms=timer.elapsed_ms
        )

    try:
        repo = _schedules(ctx)
        if ctx.dry_run:
            schedule = repo.get(schedule_id, ctx.organization_id)
        else:
            schedule = repo.set_enabled(schedule_id, enabled, ctx.organization_id, updated_by=ctx.user)
    except Exception as exc:
        return _failed(op, exc, timer)

    if schedule is None:
        return _not_found(schedule_id, timer)

    warnings: list[str] = []
    if enabled and not schedule.enabled and not ctx.dry_run:
        warnings.append("Schedule has no remaining occurrences and stays exhausted")
    logger.info(f"recurring.{'resumed' if enabled else 'paused'}", schedule_id=schedule_id,
                status=schedule.status)
    return OperationResult.ok(schedule, warnings=warnings, elapsed_ms=timer.elapsed_ms)


def delete_recurring(
    ctx: OperationContext,
    request: DeleteRecurringRequest,
) -> OperationResult[None]:
    """Delete a schedule. An in-flight dispatch for it is discarded at commit."""
    timer = start_timer()

    if not ctx.organization_id:
        return _missing_org(timer)
    if not request.schedule_id:
        return OperationResult.fail(
            "VALIDATION_FAILED", "schedule_id is required", elapsed_ms=timer.elapsed_ms
        )

    try:
        repo = _schedules(ctx)
        if ctx.dry_run:
            found = repo.get(request.schedule_id, ctx.organization_id) is not None
        else:
            found = repo.delete(request.schedule_id, ctx.organization_id)
    except Exception as exc:
        return _failed("delete_recurring", exc, timer)

    if not found:
        return _not_found(request.schedule_id, timer)
    if not ctx.dry_run:
        logger.info("recurring.deleted", schedule_id=request.schedule_id)
    return OperationResult.ok(None, elapsed_ms=timer.elapsed_ms)


# ------------------------------------------------------------------ #
# Run history
# ------------------------------------------------------------------ #


def list_recurring_runs(
    ctx: OperationContext,
    request: ListRecurringRunsRequest,
) -> PagedResult[ScheduleRun]:
    """Run history for one schedule, newest first.

    History outlives the schedule, so a deleted schedule's runs are still
    listed.
    """
    timer = start_timer()

    if not ctx.organization_id:
        return _missing_org(timer)  # type: ignore[return-value]
    if not request.schedule_id:
        return OperationResult.fail(  # type: ignore[return-value]
            "VALIDATION_FAILED", "schedule_id is required", elapsed_ms=timer.elapsed_ms
        )

    try:
        runs = _schedules(ctx).list_runs(
            request.schedule_id,
            limit=request.limit,
            status=request.status,
            organization_id=ctx.organization_id,
        )
    except Exception as exc:
        return _failed("list_recurring_runs", exc, timer)  # type: ignore[return-value]

    return PagedResult.from_items(runs, total=len(runs), limit=request.limit, elapsed_ms=timer.elapsed_ms)
