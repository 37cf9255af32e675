"""Threading-based scheduler backend.

The default backend: one daemon thread that wakes on a fixed interval and
runs the service's async tick to completion with ``asyncio.run``.

┌──────────────────────────────────────────────────────────────────────────────┐
│  THREAD BACKEND                                                               │
│                                                                               │
│   start()                                                                     │
│      │                                                                        │
│      ▼                                                                        │
│   ┌─────────────────────────────────────────────────────────┐                │
│   │              Daemon Thread (loop)                       │                │
│   │                                                         │                │
│   │   [run_immediately: one tick before the first wait]     │                │
│   │   while not stop_event.wait(interval):                  │                │
│   │       tick_count += 1                                   │                │
│   │       asyncio.run(tick_callback())                      │                │
│   │       (a failed tick is logged; the loop keeps going)   │                │
│   └─────────────────────────────────────────────────────────┘                │
│                                                                               │
│   stop()  → stop_event.set(); thread.join(stop_timeout)                       │
│                                                                               │
│  A tick that raises (for example StoreUnavailableError) only ends that       │
│  tick. The next wake-up polls again from scratch.                            │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import asyncio
import logging
import threading
from datetime import UTC, datetime
from typing import Any

from .protocol import BackendHealth, TickCallback

logger = logging.getLogger(__name__)


class ThreadSchedulerBackend:
    """Threading-based scheduler backend.

    Example:
        >>> backend = ThreadSchedulerBackend()
        >>> backend.start(service.tick, interval_seconds=5.0)
        >>> # ... later ...
        >>> backend.stop()
    """

    name = "thread"

    def __init__(self, *, run_immediately: bool = False, stop_timeout: float = 30.0) -> None:
        """Initialize thread backend.

        Args:
            run_immediately: Tick once right after start instead of after the first interval
            stop_timeout: Seconds ``stop()`` waits for an in-flight tick
        """
        self.run_immediately = run_immediately
        self.stop_timeout = stop_timeout
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._tick_count = 0
        self._failed_ticks = 0
        self._last_tick: datetime | None = None
        self._last_error: str | None = None
        self._interval: float = 10.0
        self._started = False
        self._lock = threading.Lock()

    def start(
        self,
        tick_callback: TickCallback,
        interval_seconds: float = 10.0,
    ) -> None:
        """Start the polling loop in a daemon thread."""
        if self._started:
            logger.warning("ThreadSchedulerBackend already started")
            return

        self._interval = interval_seconds
        self._stop_event.clear()

        def _run_tick() -> None:
            with self._lock:
                self._tick_count += 1
                self._last_tick = datetime.now(UTC)
            try:
                asyncio.run(tick_callback())
            except Exception as e:
                with self._lock:
                    self._failed_ticks += 1
                    self._last_error = str(e)
                logger.exception(f"Tick failed: {e}")

        def _loop() -> None:
            logger.info(f"ThreadSchedulerBackend started (interval={interval_seconds}s)")
            if self.run_immediately and not self._stop_event.is_set():
                _run_tick()
            while not self._stop_event.wait(interval_seconds):
                _run_tick()
            logger.info("ThreadSchedulerBackend stopped")

        self._thread = threading.Thread(target=_loop, daemon=True, name="ledger-recurring-scheduler")
        self._thread.start()
        self._started = True

    def stop(self) -> None:
        """Stop the polling loop, waiting up to ``stop_timeout`` for the current tick."""
        if not self._started:
            return

        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=self.stop_timeout)
            if self._thread.is_alive():
                logger.warning("Scheduler thread did not stop cleanly")

        self._started = False
        logger.info("ThreadSchedulerBackend shutdown complete")

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the backend is stopped. Returns True if it stopped."""
        return self._stop_event.wait(timeout)

    def health(self) -> dict[str, Any]:
        return self.get_health().to_dict()

    def get_health(self) -> BackendHealth:
        """Return structured health status."""
        with self._lock:
            return BackendHealth(
                healthy=self.is_running,
                backend=self.name,
                tick_count=self._tick_count,
                last_tick=self._last_tick,
                failed_ticks=self._failed_ticks,
                extra={"interval_seconds": self._interval, "last_error": self._last_error},
            )

    @property
    def is_running(self) -> bool:
        return self._started and self._thread is not None and self._thread.is_alive()

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def last_tick(self) -> datetime | None:
        return self._last_tick
