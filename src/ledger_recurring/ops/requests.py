"""
Typed request objects for operations.

Each dataclass is the input contract of one operation function. Rules arrive
in document shape (``{"type": "weekly", "time": "09:00", "dayOfWeek": 1}``)
and instants as ISO 8601 strings or datetimes; the operations parse both.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

Instant = datetime | str | None

# ------------------------------------------------------------------ #
# Recurring schedule operations
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class CreateRecurringRequest:
    """Request for :func:`ledger_recurring.ops.recurring.create_recurring`.

    Attributes:
        template_id: Template id or orchid within the caller's organization.
        schedule: Recurrence rule mapping (``type``/``kind``, ``time``,
            ``dayOfWeek``, ``dayOfMonth``).
        payload: Opaque event payload passed to every dispatch.
        timezone: IANA zone, used when ``schedule`` carries none.
        start_at: First instant the schedule may fire.
        end_at: Last instant the schedule may fire.
        max_runs: Run-count cap.
        enabled: Create paused when ``False``.
    """

    template_id: str = ""
    schedule: dict[str, Any] = field(default_factory=dict)
    payload: Any = None
    timezone: str | None = None
    start_at: Instant = None
    end_at: Instant = None
    max_runs: int | None = None
    enabled: bool = True


@dataclass(frozen=True, slots=True)
class UpdateRecurringRequest:
    """Request for :func:`ledger_recurring.ops.recurring.update_recurring`.

    ``None`` leaves a field unchanged; ``clear_*`` removes a bound or cap.
    """

    schedule_id: str = ""
    template_id: str | None = None
    schedule: dict[str, Any] | None = None
    payload: Any = None
    timezone: str | None = None
    start_at: Instant = None
    end_at: Instant = None
    max_runs: int | None = None
    enabled: bool | None = None
    clear_start_at: bool = False
    clear_end_at: bool = False
    clear_max_runs: bool = False


@dataclass(frozen=True, slots=True)
class GetRecurringRequest:
    """Request for :func:`ledger_recurring.ops.recurring.get_recurring`."""

    schedule_id: str = ""


@dataclass(frozen=True, slots=True)
class ListRecurringRequest:
    """Request for :func:`ledger_recurring.ops.recurring.list_recurring`."""

    enabled: bool | None = None
    limit: int = 50
    offset: int = 0


@dataclass(frozen=True, slots=True)
class PauseRecurringRequest:
    """Request for :func:`ledger_recurring.ops.recurring.pause_recurring`."""

    schedule_id: str = ""


@dataclass(frozen=True, slots=True)
class ResumeRecurringRequest:
    """Request for :func:`ledger_recurring.ops.recurring.resume_recurring`."""

    schedule_id: str = ""


@dataclass(frozen=True, slots=True)
class DeleteRecurringRequest:
    """Request for :func:`ledger_recurring.ops.recurring.delete_recurring`."""

    schedule_id: str = ""


@dataclass(frozen=True, slots=True)
class ListRecurringRunsRequest:
    """Request for :func:`ledger_recurring.ops.recurring.list_recurring_runs`."""

    schedule_id: str = ""
    status: str | None = None
    limit: int = 50


# ------------------------------------------------------------------ #
# Template operations
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class CreateTemplateRequest:
    """Request for :func:`ledger_recurring.ops.templates.create_template`."""

    name: str = ""
    orchid: str = ""
    reference_config: dict[str, Any] = field(default_factory=dict)
    narration_config: str = ""
    input_schema: dict[str, Any] = field(default_factory=dict)
    plugins: list[str] | None = None
    lines_rule: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class ListTemplatesRequest:
    """Request for :func:`ledger_recurring.ops.templates.list_templates`."""

    include_inactive: bool = False


@dataclass(frozen=True, slots=True)
class DeactivateTemplateRequest:
    """Request for :func:`ledger_recurring.ops.templates.deactivate_template`."""

    template_id: str = ""


@dataclass(frozen=True, slots=True)
class GetTemplateRequest:
    """Request for :func:`ledger_recurring.ops.templates.get_template`."""

    template_id: str = ""


@dataclass(frozen=True, slots=True)
class UpdateTemplateRequest:
    """Request for :func:`ledger_recurring.ops.templates.update_template`.

    ``None`` leaves a field unchanged. ``reference_config`` is merged over
    the template's current reference settings.
    """

    template_id: str = ""
    name: str | None = None
    reference_config: dict[str, Any] | None = None
    narration_config: str | None = None
    input_schema: dict[str, Any] | None = None
    plugins: list[str] | None = None
    lines_rule: list[dict[str, Any]] | None = None


# ------------------------------------------------------------------ #
# Event instance operations
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class ListEventsRequest:
    """Request for :func:`ledger_recurring.ops.events.list_events`."""

    status: str | None = None
    template_id: str | None = None
    limit: int = 50


@dataclass(frozen=True, slots=True)
class GetEventRequest:
    """Request for :func:`ledger_recurring.ops.events.get_event`."""

    instance_id: str = ""
