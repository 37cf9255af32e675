"""Recurrence rules and occurrence computation.

Manifesto:
    A recurrence rule is a value, not a job. It answers one question:
    "given this instant, when is the next firing?" Everything else
    (windows, run caps, leases) is layered on top by the calculator and
    the scheduler. Keeping the rule pure makes DST and month-length edge
    cases testable without a database or a clock.

┌──────────────────────────────────────────────────────────────────────────────┐
│  OCCURRENCE COMPUTATION                                                       │
│                                                                               │
│   after (UTC) ──► astimezone(rule zone) ──► walk local calendar ──►          │
│                                             combine(date, time_of_day, tz)    │
│                                                        │                      │
│                                                        ▼                      │
│                                       astimezone(UTC), keep if > after       │
│                                                                               │
│   daily            : today at time_of_day, else tomorrow                     │
│   weekly           : next local date with weekday == day_of_week             │
│                      (0 = Sunday ... 6 = Saturday)                           │
│   monthly          : next month that HAS day_of_month (31 skips April)       │
│   calendar_monthly : last day of each month, or day_of_month when given;     │
│                      the calculator anchors its backfill on the calendar-    │
│                      month boundary                                          │
│                                                                               │
│  Wall-clock time is preserved across DST. Nonexistent local times use the    │
│  offset in force before the transition; ambiguous times take the first.      │
└──────────────────────────────────────────────────────────────────────────────┘

Tags:
    scheduling, recurrence, timezone, zoneinfo, dst, value-object

Doc-Types:
    api-reference, algorithm
"""

from __future__ import annotations

import calendar
import re
from dataclasses import dataclass, replace
from datetime import UTC, date, datetime, time, timedelta
from enum import Enum
from typing import Any, Mapping
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ledger_recurring.core.errors import InvalidRuleError
from ledger_recurring.core.timestamps import ensure_utc

_TIME_OF_DAY = re.compile(r"^(?P<hour>[01]?\d|2[0-3]):(?P<minute>[0-5]\d)$")

# A day-of-month between 1 and 31 appears at least once in any 12 consecutive months.
_MONTH_SEARCH_LIMIT = 25


class RecurrenceKind(str, Enum):
    """Supported recurrence kinds."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CALENDAR_MONTHLY = "calendar_monthly"

    @property
    def uses_day_of_month(self) -> bool:
        return self in (RecurrenceKind.MONTHLY, RecurrenceKind.CALENDAR_MONTHLY)

    @property
    def requires_day_of_month(self) -> bool:
        """calendar_monthly without a day fires on the last day of the month."""
        return self is RecurrenceKind.MONTHLY


def resolve_zone(name: str) -> ZoneInfo:
    """Load an IANA zone, raising ``InvalidRuleError`` for unknown names."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise InvalidRuleError(
            f"Unknown timezone: {name!r}", field="timezone", value=name, cause=exc
        ) from exc


@dataclass(frozen=True)
class RecurrenceRule:
    """Declarative recurrence definition.

    Construction validates the fields relevant to ``kind``; fields that do
    not apply to ``kind`` are tolerated and ignored (``normalized()`` drops
    them before persistence).

    Example:
        >>> rule = RecurrenceRule(kind="daily", time_of_day="09:00", timezone="Asia/Kolkata")
        >>> rule.next_occurrence(datetime(2024, 1, 1, 10, 0, tzinfo=UTC))
        datetime.datetime(2024, 1, 2, 3, 30, tzinfo=datetime.timezone.utc)
    """

    kind: RecurrenceKind
    time_of_day: str | None = None
    day_of_week: int | None = None
    day_of_month: int | None = None
    timezone: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.kind, RecurrenceKind):
            try:
                object.__setattr__(self, "kind", RecurrenceKind(self.kind))
            except ValueError as exc:
                allowed = ", ".join(k.value for k in RecurrenceKind)
                raise InvalidRuleError(
                    f"Unknown recurrence kind {self.kind!r} (expected one of: {allowed})",
                    field="kind",
                    value=self.kind,
                ) from exc
        self.validate()

    # === Validation ===

    def validate(self) -> None:
        """Check that the fields required by ``kind`` are present and well formed.

        Raises:
            InvalidRuleError: On a missing/malformed field or unknown timezone.
        """
        if self.time_of_day is not None:
            if not isinstance(self.time_of_day, str) or not _TIME_OF_DAY.match(self.time_of_day):
                raise InvalidRuleError(
                    f"time_of_day must be HH:MM (24h), got {self.time_of_day!r}",
                    field="time_of_day",
                    value=self.time_of_day,
                )

        if self.kind is RecurrenceKind.WEEKLY:
            _require_int(self.day_of_week, "day_of_week", 0, 6, self.kind)

        if self.kind.requires_day_of_month or (self.kind.uses_day_of_month and self.day_of_month is not None):
            _require_int(self.day_of_month, "day_of_month", 1, 31, self.kind)

        if self.timezone is not None:
            resolve_zone(self.timezone)

    def normalized(self) -> RecurrenceRule:
        """Copy with only the fields relevant to ``kind`` populated."""
        return replace(
            self,
            day_of_week=self.day_of_week if self.kind is RecurrenceKind.WEEKLY else None,
            day_of_month=self.day_of_month if self.kind.uses_day_of_month else None,
        )

    # === Accessors ===

    @property
    def fires_on_month_end(self) -> bool:
        return self.kind is RecurrenceKind.CALENDAR_MONTHLY and self.day_of_month is None

    @property
    def wall_time(self) -> time:
        """Local firing time (midnight when ``time_of_day`` is unset)."""
        if not self.time_of_day:
            return time(0, 0)
        match = _TIME_OF_DAY.match(self.time_of_day)
        return time(int(match["hour"]), int(match["minute"]))

    def zone(self, default_timezone: str = "UTC") -> ZoneInfo:
        """Zone the rule is evaluated in."""
        return resolve_zone(self.timezone or default_timezone)

    # === Computation ===

    def next_occurrence(self, after: datetime, default_timezone: str = "UTC") -> datetime:
        """Smallest instant strictly after ``after`` that satisfies the rule (UTC)."""
        return next_occurrence(self, default_timezone, after)

    def calendar_month_start(self, instant: datetime, default_timezone: str = "UTC") -> datetime:
        """First instant (UTC) of the local calendar month containing ``instant``."""
        tz = self.zone(default_timezone)
        local = ensure_utc(instant).astimezone(tz)
        return _at(date(local.year, local.month, 1), time(0, 0), tz)

    # === Serialization ===

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], timezone: str | None = None) -> RecurrenceRule:
        """Build a rule from a mapping.

        Accepts snake_case keys and the document shape
        ``{"type", "time", "dayOfWeek", "dayOfMonth"}``. ``timezone`` is used
        when the mapping itself carries none.
        """
        if not isinstance(data, Mapping):
            raise InvalidRuleError("Recurrence rule must be a mapping", value=data)

        kind = _first(data, "kind", "type")
        if kind is None:
            raise InvalidRuleError("Recurrence rule requires a kind", field="kind")

        return cls(
            kind=kind,
            time_of_day=_first(data, "time_of_day", "timeOfDay", "time"),
            day_of_week=_first(data, "day_of_week", "dayOfWeek"),
            day_of_month=_first(data, "day_of_month", "dayOfMonth"),
            timezone=_first(data, "timezone") or timezone,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize populated fields."""
        result: dict[str, Any] = {"kind": self.kind.value}
        for key in ("time_of_day", "day_of_week", "day_of_month", "timezone"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        return result


def next_occurrence(rule: RecurrenceRule, timezone: str | None, after: datetime) -> datetime:
    """Compute the next firing instant of ``rule`` strictly after ``after``.

    Args:
        rule: Recurrence rule
        timezone: Zone used when the rule carries none
        after: Reference instant (naive values are taken as UTC)

    Returns:
        Aware UTC datetime
    """
    tz = rule.zone(timezone or "UTC")
    after_utc = ensure_utc(after)
    local = after_utc.astimezone(tz)
    wall = rule.wall_time

    if rule.kind is RecurrenceKind.DAILY:
        for offset in range(3):
            candidate = _at(local.date() + timedelta(days=offset), wall, tz)
            if candidate > after_utc:
                return candidate

    elif rule.kind is RecurrenceKind.WEEKLY:
        current = local.isoweekday() % 7  # 0 = Sunday
        first = local.date() + timedelta(days=(rule.day_of_week - current) % 7)
        for weeks in range(3):
            candidate = _at(first + timedelta(weeks=weeks), wall, tz)
            if candidate > after_utc:
                return candidate

    else:
        year, month = local.year, local.month
        for _ in range(_MONTH_SEARCH_LIMIT):
            last_day = calendar.monthrange(year, month)[1]
            day = last_day if rule.fires_on_month_end else rule.day_of_month
            if day <= last_day:
                candidate = _at(date(year, month, day), wall, tz)
                if candidate > after_utc:
                    return candidate
            month += 1
            if month > 12:
                month, year = 1, year + 1

    raise InvalidRuleError(f"Rule {rule.to_dict()} produced no occurrence after {after_utc.isoformat()}")


def _at(day: date, wall: time, tz: ZoneInfo) -> datetime:
    """Local wall-clock time on ``day`` in ``tz``, as a UTC instant."""
    return datetime.combine(day, wall, tzinfo=tz).astimezone(UTC)


def _require_int(value: Any, name: str, low: int, high: int, kind: RecurrenceKind) -> None:
    if value is None:
        raise InvalidRuleError(f"{name} is required for {kind.value} rules", field=name)
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidRuleError(f"{name} must be an integer, got {value!r}", field=name, value=value)
    if not low <= value <= high:
        raise InvalidRuleError(
            f"{name} must be between {low} and {high}, got {value}", field=name, value=value
        )


def _first(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None
