"""Recurring schedule models (``recurring_events``, ``recurring_event_runs``).

Manifesto:
    The scheduler, the management operations and the CLI all pass the same
    typed record around. Rule columns are folded into a ``RecurrenceRule``
    value and time columns are aware UTC datetimes, so no caller ever
    compares ISO strings by hand.

Tags:
    models, scheduling, dataclasses, schema-mapping

Doc-Types:
    api-reference, data-model
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ledger_recurring.core.scheduling.rules import RecurrenceRule

# ---------------------------------------------------------------------------
# recurring_events
# ---------------------------------------------------------------------------


@dataclass
class ScheduledEvent:
    """Persisted recurring schedule.

    ``lease_owner`` and ``lease_expires_at`` are internal to the scheduler;
    ``to_dict()`` leaves them out unless asked.
    """

    id: str
    organization_id: str
    template_id: str
    rule: RecurrenceRule
    payload: Any = None
    start_at: datetime | None = None
    end_at: datetime | None = None
    next_run: datetime | None = None
    last_run: datetime | None = None
    run_count: int = 0
    max_runs: int | None = None
    enabled: bool = True
    failure_count: int = 0
    last_error: str | None = None
    lease_owner: str | None = None
    lease_expires_at: datetime | None = None
    created_by: str | None = None
    updated_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    version: int = 1

    @property
    def timezone(self) -> str | None:
        return self.rule.timezone

    @property
    def is_terminal(self) -> bool:
        """Disabled with nothing left to fire."""
        return not self.enabled and self.next_run is None

    @property
    def status(self) -> str:
        if self.enabled:
            return "active"
        return "exhausted" if self.next_run is None else "paused"

    def to_dict(self, include_lease: bool = False) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": self.id,
            "organization_id": self.organization_id,
            "template_id": self.template_id,
            "rule": self.rule.to_dict(),
            "payload": self.payload,
            "start_at": _iso(self.start_at),
            "end_at": _iso(self.end_at),
            "next_run": _iso(self.next_run),
            "last_run": _iso(self.last_run),
            "run_count": self.run_count,
            "max_runs": self.max_runs,
            "enabled": self.enabled,
            "status": self.status,
            "failure_count": self.failure_count,
            "last_error": self.last_error,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "version": self.version,
        }
        if include_lease:
            result["lease_owner"] = self.lease_owner
            result["lease_expires_at"] = _iso(self.lease_expires_at)
        return result


# ---------------------------------------------------------------------------
# recurring_event_runs
# ---------------------------------------------------------------------------


class RunStatus(str, Enum):
    """Final status of one dispatch attempt."""

    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    TIMEOUT = "TIMEOUT"
    DISCARDED = "DISCARDED"


@dataclass
class ScheduleRun:
    """Dispatch attempt history row."""

    id: str = ""
    schedule_id: str = ""
    organization_id: str = ""
    occurrence_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    status: str = RunStatus.COMPLETED.value
    lease_owner: str | None = None
    error: str | None = None
    error_category: str | None = None
    retryable: bool | None = None
    instance_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "schedule_id": self.schedule_id,
            "organization_id": self.organization_id,
            "occurrence_at": _iso(self.occurrence_at),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "status": self.status,
            "error": self.error,
            "error_category": self.error_category,
            "retryable": self.retryable,
            "instance_id": self.instance_id,
        }


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None
