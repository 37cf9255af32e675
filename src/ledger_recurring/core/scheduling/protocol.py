"""Scheduler backend protocol.

┌──────────────────────────────────────────────────────────────────────────────┐
│  SCHEDULER BACKEND PROTOCOL                                                   │
│                                                                               │
│  The scheduler is a "beat-as-poller": a backend decides WHEN a tick runs,    │
│  SchedulerService decides WHAT a tick does.                                  │
│                                                                               │
│   ┌─────────────────┐       tick()       ┌──────────────────────────┐        │
│   │  Thread Backend │ ─────────────────► │  SchedulerService        │        │
│   │  (default)      │                    │                          │        │
│   └─────────────────┘                    │  - query due schedules   │        │
│                                          │  - claim lease           │        │
│   ┌─────────────────┐       tick()       │  - dispatch occurrence   │        │
│   │  Custom backend │ ─────────────────► │  - conditional commit    │        │
│   │  (cron, k8s...) │                    └──────────────────────────┘        │
│   └─────────────────┘                                                         │
│                                                                               │
│  Ticks from several processes may overlap; the lease on each schedule row    │
│  keeps every occurrence single-fire regardless of how ticks are timed.       │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

TickCallback = Callable[[], Awaitable[Any]]


@runtime_checkable
class SchedulerBackend(Protocol):
    """Protocol for pluggable scheduler timing backends.

    A backend is responsible ONLY for timing: calling the tick callback
    at the configured interval. All schedule evaluation lives in
    SchedulerService.

    Example (custom backend):
        >>> class CronJobBackend:
        ...     name = "cronjob"
        ...
        ...     def start(self, tick_callback, interval_seconds=10.0):
        ...         asyncio.run(tick_callback())
        ...
        ...     def stop(self):
        ...         pass
        ...
        ...     def health(self) -> dict:
        ...         return {"healthy": True, "backend": "cronjob"}
    """

    name: str

    def start(
        self,
        tick_callback: TickCallback,
        interval_seconds: float = 10.0,
    ) -> None:
        """Start the polling loop.

        Args:
            tick_callback: Async function to call on each tick.
            interval_seconds: How often to tick (default: 10s).
        """
        ...

    def stop(self) -> None:
        """Stop the polling loop, letting the current tick finish."""
        ...

    def health(self) -> dict[str, Any]:
        """Return backend health status.

        Returns:
            dict with at least:
                - healthy: bool, whether the backend is running
                - backend: str, backend name
                - tick_count: int, number of ticks executed
                - last_tick: str | None, ISO timestamp of last tick
        """
        ...


@dataclass
class BackendHealth:
    """Structured backend health response."""

    healthy: bool
    backend: str
    tick_count: int = 0
    last_tick: datetime | None = None
    failed_ticks: int = 0
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "healthy": self.healthy,
            "backend": self.backend,
            "tick_count": self.tick_count,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            "failed_ticks": self.failed_ticks,
            **self.extra,
        }
