"""Schedule repository - persistence for recurring schedules and run history.

Manifesto:
    Schedule persistence is pure data access. The repository owns the SQL;
    the calculator owns the arithmetic; the service owns the orchestration.
    Every scheduler write that could race with another instance is a single
    conditional UPDATE whose WHERE clause states the expected state, and
    whose ``rowcount`` says whether the expectation held.

Tags:
    scheduling, repository, CRUD, lease, conditional-update

Doc-Types:
    api-reference, architecture-diagram


┌──────────────────────────────────────────────────────────────────────────────┐
│  SCHEDULE REPOSITORY                                                          │
│                                                                               │
│  ┌────────────────────────────────────────────────────────────────────┐      │
│  │                      ScheduleRepository                            │      │
│  │                                                                    │      │
│  │   CRUD Operations:                                                 │      │
│  │   ├── preview(spec) → ScheduledEvent (validated, not written)      │      │
│  │   ├── create(spec) → ScheduledEvent                                │      │
│  │   ├── get(id, organization_id?) → ScheduledEvent | None            │      │
│  │   ├── list_schedules(organization_id?, enabled?, limit, offset)    │      │
│  │   ├── update(id, updates) → ScheduledEvent | None                  │      │
│  │   ├── set_enabled(id, enabled) → ScheduledEvent | None             │      │
│  │   └── delete(id) → bool                                            │      │
│  │                                                                    │      │
│  │   Scheduler Operations (conditional on the claimed lease):         │      │
│  │   ├── get_due_schedules(now) → list[ScheduledEvent]                │      │
│  │   ├── commit(lease, transition, now) → bool                        │      │
│  │   ├── record_failure(lease, error, now, suspend?) → bool           │      │
│  │   └── retire(id, now) → bool                                       │      │
│  │                                                                    │      │
│  │   Run History:                                                     │      │
│  │   ├── create_run(run) / get_run(id)                                │      │
│  │   └── list_runs(schedule_id, limit, status)                        │      │
│  └────────────────────────────────────────────────────────────────────┘      │
│                                                                               │
│  Lease condition on commit / record_failure:                                  │
│    id = ? AND lease_owner = token AND lease_expires_at > now                  │
│    AND next_run_at = claimed AND version = claimed AND enabled = 1            │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ledger_recurring.core.clock import Clock, SystemClock
from ledger_recurring.core.dialect import Dialect, SQLiteDialect
from ledger_recurring.core.errors import InvalidRuleError, store_errors
from ledger_recurring.core.models.recurring import ScheduledEvent, ScheduleRun
from ledger_recurring.core.protocols import Connection
from ledger_recurring.core.scheduling.calculator import OccurrenceCalculator, ScheduleTransition
from ledger_recurring.core.scheduling.lease_manager import Lease
from ledger_recurring.core.scheduling.rules import RecurrenceRule
from ledger_recurring.core.timestamps import ensure_utc, from_iso8601, generate_ulid, to_iso8601

logger = logging.getLogger(__name__)

_SCHEDULE_COLUMNS = [
    "id",
    "organization_id",
    "template_id",
    "payload",
    "kind",
    "time_of_day",
    "day_of_week",
    "day_of_month",
    "timezone",
    "start_at",
    "end_at",
    "next_run_at",
    "last_run_at",
    "run_count",
    "max_runs",
    "enabled",
    "failure_count",
    "last_error",
    "lease_owner",
    "lease_expires_at",
    "created_by",
    "updated_by",
    "created_at",
    "updated_at",
    "version",
]

_RUN_COLUMNS = [
    "id",
    "schedule_id",
    "organization_id",
    "occurrence_at",
    "started_at",
    "completed_at",
    "status",
    "lease_owner",
    "error",
    "error_category",
    "retryable",
    "instance_id",
]

_SELECT_SCHEDULE = f"SELECT {', '.join(_SCHEDULE_COLUMNS)} FROM recurring_events"
_SELECT_RUN = f"SELECT {', '.join(_RUN_COLUMNS)} FROM recurring_event_runs"


# ---------------------------------------------------------------------------
# Create/Update DTOs
# ---------------------------------------------------------------------------


@dataclass
class ScheduleCreate:
    """DTO for creating a new recurring schedule."""

    organization_id: str
    template_id: str
    rule: RecurrenceRule
    payload: Any = None
    start_at: datetime | None = None
    end_at: datetime | None = None
    max_runs: int | None = None
    enabled: bool = True
    created_by: str | None = None


@dataclass
class ScheduleUpdate:
    """DTO for updating a schedule. ``None`` leaves a field unchanged.

    Use the ``clear_*`` flags to remove an optional window bound or run cap.
    """

    template_id: str | None = None
    rule: RecurrenceRule | None = None
    payload: Any = None
    start_at: datetime | None = None
    end_at: datetime | None = None
    max_runs: int | None = None
    enabled: bool | None = None
    clear_start_at: bool = False
    clear_end_at: bool = False
    clear_max_runs: bool = False
    updated_by: str | None = None

    @property
    def reschedules(self) -> bool:
        """True if the update changes when the schedule fires."""
        return (
            self.rule is not None
            or self.start_at is not None
            or self.end_at is not None
            or self.max_runs is not None
            or self.enabled is not None
            or self.clear_start_at
            or self.clear_end_at
            or self.clear_max_runs
        )


# ---------------------------------------------------------------------------
# Repository Implementation
# ---------------------------------------------------------------------------


class ScheduleRepository:
    """Repository for recurring schedules.

    Example:
        >>> repo = ScheduleRepository(conn, clock=clock)
        >>> schedule = repo.create(ScheduleCreate(
        ...     organization_id="org-1",
        ...     template_id="RENT",
        ...     rule=RecurrenceRule(kind="monthly", day_of_month=1, time_of_day="06:00"),
        ... ))
        >>> due = repo.get_due_schedules(clock.now())
    """

    def __init__(
        self,
        conn: Connection,
        dialect: Dialect | None = None,
        *,
        clock: Clock | None = None,
        calculator: OccurrenceCalculator | None = None,
    ) -> None:
        """Initialize repository with database connection.

        Args:
            conn: Database connection (any backend satisfying Connection protocol)
            dialect: SQL dialect for portable queries. Defaults to SQLiteDialect.
            clock: Time source for audit columns and initial next_run
            calculator: Occurrence calculator (carries the default timezone)
        """
        self.conn = conn
        self.dialect: Dialect = dialect or SQLiteDialect()
        self.clock: Clock = clock or SystemClock()
        self.calculator = calculator or OccurrenceCalculator()

    def _ph(self, count: int = 1) -> str:
        """Generate placeholder string for this dialect."""
        return self.dialect.placeholders(count)

    # === CRUD Operations ===

    def preview(self, spec: ScheduleCreate) -> ScheduledEvent:
        """Validate ``spec`` and return the record ``create`` would store.

        Nothing is written; the returned record has an empty ``id``.

        Raises:
            InvalidRuleError: Invalid rule, inverted window, or run cap < 1
        """
        rule = spec.rule.normalized()
        rule.validate()
        _check_window(spec.start_at, spec.end_at)
        _check_max_runs(spec.max_runs)

        now = self.clock.now()
        next_run = self.calculator.initial_next_run(rule, now, spec.start_at, spec.end_at)
        return ScheduledEvent(
            id="",
            organization_id=spec.organization_id,
            template_id=spec.template_id,
            rule=rule,
            payload=spec.payload,
            start_at=ensure_utc(spec.start_at) if spec.start_at else None,
            end_at=ensure_utc(spec.end_at) if spec.end_at else None,
            next_run=next_run,
            max_runs=spec.max_runs,
            enabled=spec.enabled and next_run is not None,
            created_by=spec.created_by,
            updated_by=spec.created_by,
            created_at=now,
            updated_at=now,
        )

    def create(self, spec: ScheduleCreate) -> ScheduledEvent:
        """Create a schedule with its initial ``next_run``.

        If no occurrence fits the window the record is stored exhausted
        (``enabled=False``, ``next_run=None``).

        Raises:
            InvalidRuleError: Invalid rule, inverted window, or run cap < 1
        """
        record = self.preview(spec)
        rule = record.rule
        next_run = record.next_run
        schedule_id = generate_ulid()
        now_iso = to_iso8601(record.created_at)

        with store_errors("create", organization_id=spec.organization_id):
            self.conn.execute(
                f"""
                INSERT INTO recurring_events (
                    id, organization_id, template_id, payload,
                    kind, time_of_day, day_of_week, day_of_month, timezone,
                    start_at, end_at, next_run_at, run_count, max_runs, enabled,
                    created_by, updated_by, created_at, updated_at
                ) VALUES ({self._ph(19)})
                """,
                (
                    schedule_id,
                    spec.organization_id,
                    spec.template_id,
                    _dump(spec.payload),
                    rule.kind.value,
                    rule.time_of_day,
                    rule.day_of_week,
                    rule.day_of_month,
                    rule.timezone,
                    to_iso8601(spec.start_at),
                    to_iso8601(spec.end_at),
                    to_iso8601(next_run),
                    0,
                    spec.max_runs,
                    1 if record.enabled else 0,
                    spec.created_by,
                    spec.created_by,
                    now_iso,
                    now_iso,
                ),
            )
            self.conn.commit()

        if next_run is None:
            logger.info(f"Schedule {schedule_id} created exhausted: no occurrence inside its window")
        return self.get(schedule_id)  # type: ignore[return-value]

    def get(self, schedule_id: str, organization_id: str | None = None) -> ScheduledEvent | None:
        """Get schedule by ID, optionally scoped to an organization."""
        sql = f"{_SELECT_SCHEDULE} WHERE id = {self._ph()}"
        params: list[Any] = [schedule_id]
        if organization_id is not None:
            sql += f" AND organization_id = {self._ph()}"
            params.append(organization_id)

        with store_errors("get", schedule_id=schedule_id):
            row = self.conn.execute(sql, tuple(params)).fetchone()
        if not row:
            return None
        return self._row_to_schedule(row)

    def list_schedules(
        self,
        organization_id: str | None = None,
        enabled: bool | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ScheduledEvent]:
        """List schedules, oldest first."""
        where, params = self._filters(organization_id, enabled)
        with store_errors("list", organization_id=organization_id):
            cursor = self.conn.execute(
                f"{_SELECT_SCHEDULE}{where} ORDER BY created_at, id LIMIT {self._ph()} OFFSET {self._ph()}",
                (*params, limit, offset),
            )
            rows = cursor.fetchall()
        return [self._row_to_schedule(row) for row in rows]

    def count(self, organization_id: str | None = None, enabled: bool | None = None) -> int:
        where, params = self._filters(organization_id, enabled)
        with store_errors("count", organization_id=organization_id):
            row = self.conn.execute(f"SELECT COUNT(*) FROM recurring_events{where}", tuple(params)).fetchone()
        return row[0]

    def count_overdue(self, now: datetime) -> int:
        """Enabled schedules whose ``next_run`` has passed."""
        with store_errors("count_overdue"):
            row = self.conn.execute(
                f"""
                SELECT COUNT(*) FROM recurring_events
                WHERE enabled = 1 AND next_run_at IS NOT NULL AND next_run_at <= {self._ph()}
                """,
                (to_iso8601(now),),
            ).fetchone()
        return row[0]

    def update(
        self,
        schedule_id: str,
        updates: ScheduleUpdate,
        organization_id: str | None = None,
    ) -> ScheduledEvent | None:
        """Apply a user edit.

        Changes to the rule, window, run cap or enabled flag recompute
        ``next_run`` from now and reset the failure streak.

        Returns:
            Updated schedule, or None if not found

        Raises:
            InvalidRuleError: If the edited rule or window is invalid
        """
        current = self.get(schedule_id, organization_id)
        if current is None:
            return None

        rule = (updates.rule or current.rule).normalized()
        rule.validate()
        start_at = None if updates.clear_start_at else (updates.start_at or current.start_at)
        end_at = None if updates.clear_end_at else (updates.end_at or current.end_at)
        max_runs = None if updates.clear_max_runs else (
            updates.max_runs if updates.max_runs is not None else current.max_runs
        )
        _check_window(start_at, end_at)
        _check_max_runs(max_runs)

        now = self.clock.now()
        values: dict[str, Any] = {}
        if updates.template_id is not None:
            values["template_id"] = updates.template_id
        if updates.payload is not None:
            values["payload"] = _dump(updates.payload)

        if updates.reschedules:
            enabled = current.enabled if updates.enabled is None else updates.enabled
            next_run = self.calculator.initial_next_run(rule, now, start_at, end_at)
            if max_runs is not None and current.run_count >= max_runs:
                next_run = None
            values.update(
                kind=rule.kind.value,
                time_of_day=rule.time_of_day,
                day_of_week=rule.day_of_week,
                day_of_month=rule.day_of_month,
                timezone=rule.timezone,
                start_at=to_iso8601(start_at),
                end_at=to_iso8601(end_at),
                max_runs=max_runs,
                next_run_at=to_iso8601(next_run),
                enabled=1 if (enabled and next_run is not None) else 0,
                failure_count=0,
                last_error=None,
            )

        if not values:
            return current

        values["updated_by"] = updates.updated_by
        values["updated_at"] = to_iso8601(now)
        set_parts = [f"{column} = {self._ph()}" for column in values]
        set_parts.append("version = version + 1")

        with store_errors("update", schedule_id=schedule_id):
            self.conn.execute(
                f"UPDATE recurring_events SET {', '.join(set_parts)} WHERE id = {self._ph()}",
                (*values.values(), schedule_id),
            )
            self.conn.commit()

        return self.get(schedule_id)

    def set_enabled(
        self,
        schedule_id: str,
        enabled: bool,
        organization_id: str | None = None,
        updated_by: str | None = None,
    ) -> ScheduledEvent | None:
        """Pause (keeps ``next_run``) or resume (recomputes ``next_run`` from now)."""
        current = self.get(schedule_id, organization_id)
        if current is None:
            return None
        if not enabled:
            now_iso = to_iso8601(self.clock.now())
            with store_errors("pause", schedule_id=schedule_id):
                self.conn.execute(
                    f"""
                    UPDATE recurring_events
                    SET enabled = 0, updated_by = {self._ph()}, updated_at = {self._ph()},
                        version = version + 1
                    WHERE id = {self._ph()}
                    """,
                    (updated_by, now_iso, schedule_id),
                )
                self.conn.commit()
            return self.get(schedule_id)
        return self.update(schedule_id, ScheduleUpdate(enabled=True, updated_by=updated_by), organization_id)

    def delete(self, schedule_id: str, organization_id: str | None = None) -> bool:
        """Hard-delete a schedule. Run history is kept.

        Returns:
            True if deleted, False if not found
        """
        sql = f"DELETE FROM recurring_events WHERE id = {self._ph()}"
        params: list[Any] = [schedule_id]
        if organization_id is not None:
            sql += f" AND organization_id = {self._ph()}"
            params.append(organization_id)
        with store_errors("delete", schedule_id=schedule_id):
            cursor = self.conn.execute(sql, tuple(params))
            self.conn.commit()
        return cursor.rowcount > 0

    # === Scheduler Operations ===

    def get_due_schedules(self, now: datetime, limit: int | None = None) -> list[ScheduledEvent]:
        """Enabled schedules with ``next_run <= now``, most overdue first."""
        sql = f"""
            {_SELECT_SCHEDULE}
            WHERE enabled = 1 AND next_run_at IS NOT NULL AND next_run_at <= {self._ph()}
            ORDER BY next_run_at, id
        """
        params: list[Any] = [to_iso8601(now)]
        if limit is not None:
            sql += f" LIMIT {self._ph()}"
            params.append(limit)
        with store_errors("get_due_schedules"):
            rows = self.conn.execute(sql, tuple(params)).fetchall()
        return [self._row_to_schedule(row) for row in rows]

    def _lease_condition(self) -> str:
        return (
            f"id = {self._ph()} AND lease_owner = {self._ph()} AND lease_expires_at > {self._ph()}"
            f" AND next_run_at = {self._ph()} AND version = {self._ph()} AND enabled = 1"
        )

    def _lease_params(self, lease: Lease, now_iso: str) -> tuple[Any, ...]:
        return (lease.schedule_id, lease.token, now_iso, to_iso8601(lease.next_run), lease.version)

    def commit(self, lease: Lease, transition: ScheduleTransition, now: datetime) -> bool:
        """Persist a successful run and release the lease in one statement.

        Returns:
            False if the lease was lost or the schedule was deleted, disabled
            or edited since the claim (nothing is written).
        """
        now_iso = to_iso8601(now)
        with store_errors("commit", schedule_id=lease.schedule_id, lease_owner=lease.token):
            cursor = self.conn.execute(
                f"""
                UPDATE recurring_events
                SET last_run_at = {self._ph()}, next_run_at = {self._ph()},
                    run_count = {self._ph()}, enabled = {self._ph()},
                    failure_count = 0, last_error = NULL,
                    lease_owner = NULL, lease_expires_at = NULL,
                    updated_at = {self._ph()}
                WHERE {self._lease_condition()}
                """,
                (
                    to_iso8601(transition.last_run),
                    to_iso8601(transition.next_run),
                    transition.run_count,
                    1 if transition.enabled else 0,
                    now_iso,
                    *self._lease_params(lease, now_iso),
                ),
            )
            self.conn.commit()
        return cursor.rowcount == 1

    def record_failure(self, lease: Lease, error: str, now: datetime, *, suspend: bool = False) -> bool:
        """Record a failed attempt and release the lease; progress fields stay untouched.

        With ``suspend`` the same statement disables the schedule, keeping
        its ``next_run`` so a resume picks the occurrence up again.

        Returns:
            False if the lease was lost or the schedule changed since the claim.
        """
        now_iso = to_iso8601(now)
        with store_errors("record_failure", schedule_id=lease.schedule_id, lease_owner=lease.token):
            cursor = self.conn.execute(
                f"""
                UPDATE recurring_events
                SET failure_count = {self._ph()}, last_error = {self._ph()},
                    enabled = {self._ph()},
                    lease_owner = NULL, lease_expires_at = NULL,
                    updated_at = {self._ph()}
                WHERE {self._lease_condition()} AND failure_count = {self._ph()}
                """,
                (
                    lease.failure_count + 1,
                    error,
                    0 if suspend else 1,
                    now_iso,
                    *self._lease_params(lease, now_iso),
                    lease.failure_count,
                ),
            )
            self.conn.commit()
        return cursor.rowcount == 1

    def retire(self, schedule_id: str, now: datetime) -> bool:
        """Mark an exhausted schedule terminal without dispatching it."""
        with store_errors("retire", schedule_id=schedule_id):
            cursor = self.conn.execute(
                f"""
                UPDATE recurring_events
                SET enabled = 0, next_run_at = NULL, updated_at = {self._ph()}
                WHERE id = {self._ph()} AND enabled = 1
                """,
                (to_iso8601(now), schedule_id),
            )
            self.conn.commit()
        return cursor.rowcount == 1

    # === Run History ===

    def create_run(self, run: ScheduleRun) -> ScheduleRun:
        """Insert a run history row (``id`` is generated when empty)."""
        run.id = run.id or generate_ulid()
        values = [
            run.id,
            run.schedule_id,
            run.organization_id,
            to_iso8601(run.occurrence_at),
            to_iso8601(run.started_at or self.clock.now()),
            to_iso8601(run.completed_at),
            run.status,
            run.lease_owner,
            run.error,
            run.error_category,
            None if run.retryable is None else int(run.retryable),
            run.instance_id,
        ]
        with store_errors("create_run", schedule_id=run.schedule_id):
            self.conn.execute(
                f"INSERT INTO recurring_event_runs ({', '.join(_RUN_COLUMNS)}) VALUES ({self._ph(len(values))})",
                tuple(values),
            )
            self.conn.commit()
        return run

    def get_run(self, run_id: str) -> ScheduleRun | None:
        with store_errors("get_run"):
            row = self.conn.execute(f"{_SELECT_RUN} WHERE id = {self._ph()}", (run_id,)).fetchone()
        if not row:
            return None
        return self._row_to_run(row)

    def list_runs(
        self,
        schedule_id: str,
        limit: int = 50,
        status: str | None = None,
        organization_id: str | None = None,
    ) -> list[ScheduleRun]:
        """List run history, newest first."""
        sql = f"{_SELECT_RUN} WHERE schedule_id = {self._ph()}"
        params: list[Any] = [schedule_id]
        if organization_id is not None:
            sql += f" AND organization_id = {self._ph()}"
            params.append(organization_id)
        if status:
            sql += f" AND status = {self._ph()}"
            params.append(status)
        sql += f" ORDER BY started_at DESC, id DESC LIMIT {self._ph()}"
        params.append(limit)
        with store_errors("list_runs", schedule_id=schedule_id):
            rows = self.conn.execute(sql, tuple(params)).fetchall()
        return [self._row_to_run(row) for row in rows]

    # === Private Helpers ===

    def _filters(self, organization_id: str | None, enabled: bool | None) -> tuple[str, list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        if organization_id is not None:
            clauses.append(f"organization_id = {self._ph()}")
            params.append(organization_id)
        if enabled is not None:
            clauses.append(f"enabled = {self._ph()}")
            params.append(1 if enabled else 0)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, params

    def _row_to_schedule(self, row: tuple) -> ScheduledEvent:
        """Convert database row to ScheduledEvent model."""
        data = dict(zip(_SCHEDULE_COLUMNS, row, strict=True))
        rule = RecurrenceRule(
            kind=data["kind"],
            time_of_day=data["time_of_day"],
            day_of_week=data["day_of_week"],
            day_of_month=data["day_of_month"],
            timezone=data["timezone"],
        )
        return ScheduledEvent(
            id=data["id"],
            organization_id=data["organization_id"],
            template_id=data["template_id"],
            rule=rule,
            payload=_load(data["payload"]),
            start_at=from_iso8601(data["start_at"]),
            end_at=from_iso8601(data["end_at"]),
            next_run=from_iso8601(data["next_run_at"]),
            last_run=from_iso8601(data["last_run_at"]),
            run_count=data["run_count"],
            max_runs=data["max_runs"],
            enabled=bool(data["enabled"]),
            failure_count=data["failure_count"],
            last_error=data["last_error"],
            lease_owner=data["lease_owner"],
            lease_expires_at=from_iso8601(data["lease_expires_at"]),
            created_by=data["created_by"],
            updated_by=data["updated_by"],
            created_at=from_iso8601(data["created_at"]),
            updated_at=from_iso8601(data["updated_at"]),
            version=data["version"],
        )

    def _row_to_run(self, row: tuple) -> ScheduleRun:
        """Convert database row to ScheduleRun model."""
        data = dict(zip(_RUN_COLUMNS, row, strict=True))
        for key in ("occurrence_at", "started_at", "completed_at"):
            data[key] = from_iso8601(data[key])
        if data["retryable"] is not None:
            data["retryable"] = bool(data["retryable"])
        return ScheduleRun(**data)


def _check_window(start_at: datetime | None, end_at: datetime | None) -> None:
    if start_at is not None and end_at is not None and ensure_utc(end_at) < ensure_utc(start_at):
        raise InvalidRuleError(
            f"end_at {end_at.isoformat()} is before start_at {start_at.isoformat()}",
            field="end_at",
            value=end_at,
        )


def _check_max_runs(max_runs: int | None) -> None:
    if max_runs is not None and (isinstance(max_runs, bool) or not isinstance(max_runs, int) or max_runs < 1):
        raise InvalidRuleError(f"max_runs must be a positive integer, got {max_runs!r}", field="max_runs", value=max_runs)


def _dump(payload: Any) -> str | None:
    return None if payload is None else json.dumps(payload)


def _load(raw: str | None) -> Any:
    return None if raw is None else json.loads(raw)
