"""Clock abstraction.

Everything that asks "what time is it?" (due-ness checks, lease expiry,
audit timestamps) takes a ``Clock`` instead of calling ``datetime.now``.
Tests pass a ``FrozenClock`` and move it forward explicitly, so
occurrence and lease behaviour is reproducible without sleeping.

Example:
    >>> clock = FrozenClock(datetime(2024, 1, 1, 10, 0, tzinfo=UTC))
    >>> _ = clock.advance(hours=1)
    >>> clock.now().hour
    11
"""

from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta
from typing import Protocol, runtime_checkable

from ledger_recurring.core.timestamps import ensure_utc


@runtime_checkable
class Clock(Protocol):
    """Source of the current instant (always timezone-aware UTC)."""

    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall clock."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class FrozenClock:
    """Manually driven clock for tests and replays.

    Thread-safe: the thread scheduler backend may read it while a test
    thread moves it.
    """

    def __init__(self, start: datetime | None = None) -> None:
        self._now = ensure_utc(start) if start else datetime.now(UTC)
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def set(self, instant: datetime) -> None:
        with self._lock:
            self._now = ensure_utc(instant)

    def advance(self, delta: timedelta | None = None, **kwargs: float) -> datetime:
        """Move the clock forward by ``delta`` or ``timedelta(**kwargs)``."""
        step = delta if delta is not None else timedelta(**kwargs)
        with self._lock:
            self._now = self._now + step
            return self._now
