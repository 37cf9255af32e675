"""Occurrence calculator - due-ness and next-state computation.

Manifesto:
    Every state change the scheduler persists is computed here, in one
    place, as a whole tuple. The loop never invents a ``next_run`` of its
    own, so "next_run is always a rule occurrence inside the window" holds
    by construction.

Tags:
    scheduling, recurrence, calculator, state-transition

Doc-Types:
    api-reference, algorithm


┌──────────────────────────────────────────────────────────────────────────────┐
│  OCCURRENCE CALCULATOR                                                        │
│                                                                               │
│  is_due(s, now)                                                               │
│     enabled ∧ next_run ≤ now ∧ next_run ≤ end_at ∧ run_count < max_runs       │
│                                                                               │
│  advance(s, now) ──► ScheduleTransition(last_run, next_run, run_count,        │
│                                         enabled)                              │
│     last_run   = fired next_run                                               │
│     reference  = max(next_run, now)                 daily/weekly/monthly      │
│                = max(next_run, month_start(now)-1µs) calendar_monthly         │
│     next_run   = rule.next_occurrence(reference)                              │
│     exhausted  = run_count ≥ max_runs ∨ next_run > end_at                     │
│                  ──► enabled = False, next_run = None                         │
│                                                                               │
│  Overdue records fire once per poll for the most overdue occurrence; the     │
│  next occurrence is computed relative to now, so there is no catch-up burst. │
│  calendar_monthly additionally picks up a missed occurrence of the current   │
│  calendar month on the following poll.                                       │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from ledger_recurring.core.models.recurring import ScheduledEvent
from ledger_recurring.core.scheduling.rules import RecurrenceKind, RecurrenceRule
from ledger_recurring.core.timestamps import ensure_utc

_EPSILON = timedelta(microseconds=1)


@dataclass(frozen=True)
class ScheduleTransition:
    """Complete post-fire state of a schedule, persisted in one update."""

    last_run: datetime | None
    next_run: datetime | None
    run_count: int
    enabled: bool

    @property
    def exhausted(self) -> bool:
        return not self.enabled and self.next_run is None


class OccurrenceCalculator:
    """Computes due-ness and the next state of schedules.

    Args:
        default_timezone: Zone for rules that carry no timezone of their own
    """

    def __init__(self, default_timezone: str = "UTC") -> None:
        self.default_timezone = default_timezone

    def next_occurrence(self, rule: RecurrenceRule, after: datetime) -> datetime:
        return rule.next_occurrence(after, self.default_timezone)

    def is_due(self, schedule: ScheduledEvent, now: datetime) -> bool:
        """True if the schedule should fire at ``now``."""
        if not schedule.enabled or schedule.next_run is None:
            return False
        now = ensure_utc(now)
        if schedule.next_run > now:
            return False
        if schedule.end_at is not None and schedule.next_run > schedule.end_at:
            return False
        if schedule.max_runs is not None and schedule.run_count >= schedule.max_runs:
            return False
        return True

    def is_exhausted(self, schedule: ScheduledEvent) -> bool:
        """True if the schedule can never fire again."""
        if schedule.max_runs is not None and schedule.run_count >= schedule.max_runs:
            return True
        if schedule.next_run is not None and schedule.end_at is not None:
            return schedule.next_run > schedule.end_at
        return False

    def initial_next_run(
        self,
        rule: RecurrenceRule,
        now: datetime,
        start_at: datetime | None = None,
        end_at: datetime | None = None,
    ) -> datetime | None:
        """First occurrence at or after ``max(now, start_at)``, or None outside the window.

        An occurrence exactly at ``start_at`` counts.
        """
        after = ensure_utc(now)
        if start_at is not None:
            after = max(after, ensure_utc(start_at) - _EPSILON)
        candidate = self.next_occurrence(rule, after)
        if end_at is not None and candidate > ensure_utc(end_at):
            return None
        return candidate

    def advance(self, schedule: ScheduledEvent, now: datetime) -> ScheduleTransition:
        """State after a successful dispatch of ``schedule.next_run``."""
        now = ensure_utc(now)
        fired = schedule.next_run or now
        run_count = schedule.run_count + 1

        if schedule.rule.kind is RecurrenceKind.CALENDAR_MONTHLY:
            month_start = schedule.rule.calendar_month_start(now, self.default_timezone)
            reference = max(fired, month_start - _EPSILON)
        else:
            reference = max(fired, now)

        return self._transition(schedule, last_run=fired, run_count=run_count,
                                next_run=self.next_occurrence(schedule.rule, reference))

    def advance_manual(self, schedule: ScheduledEvent, now: datetime) -> ScheduleTransition:
        """State after a manual trigger.

        A trigger counts as a run. If the scheduled occurrence is already due
        it is consumed as usual; otherwise the upcoming ``next_run`` is kept.
        """
        now = ensure_utc(now)
        if schedule.next_run is None or schedule.next_run <= now:
            return self.advance(schedule, now)
        return self._transition(schedule, last_run=now, run_count=schedule.run_count + 1,
                                next_run=schedule.next_run)

    def _transition(
        self,
        schedule: ScheduledEvent,
        *,
        last_run: datetime,
        run_count: int,
        next_run: datetime,
    ) -> ScheduleTransition:
        capped = schedule.max_runs is not None and run_count >= schedule.max_runs
        past_end = schedule.end_at is not None and next_run > schedule.end_at
        if capped or past_end:
            return ScheduleTransition(last_run=last_run, next_run=None, run_count=run_count, enabled=False)
        return ScheduleTransition(last_run=last_run, next_run=next_run, run_count=run_count, enabled=True)
