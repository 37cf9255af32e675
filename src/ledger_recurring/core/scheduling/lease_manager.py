"""Per-schedule lease manager.

Manifesto:
    Multiple scheduler instances must never dispatch the same occurrence
    twice. A lease is a short-lived claim on one schedule row, taken with
    a conditional UPDATE that also pins the row as the worker read it
    (``next_run_at``, ``version``, ``failure_count``). TTL-based expiry
    means a crashed instance delays a schedule by at most one TTL instead
    of blocking it forever.

This module provides claim/release for schedule leases plus maintenance
helpers used by the scheduler's housekeeping pass and health report.

Tags:
    scheduling, lease, TTL, concurrency, optimistic-locking

Doc-Types:
    api-reference, architecture-diagram


    Lease Flow::

        Instance A                       Instance B
        ──────────                       ──────────
        claim(s)                         claim(s)
          UPDATE ... WHERE id = s          UPDATE ... WHERE id = s
            AND next_run_at = T              AND next_run_at = T
            AND version = v                  AND version = v
            AND enabled = 1                  AND enabled = 1
            AND (lease_owner IS NULL         AND (lease_owner IS NULL
                 OR lease_expires_at <= now)      OR lease_expires_at <= now)
          rowcount = 1 → Lease             rowcount = 0 → None (CLAIM_LOST)

        Tokens are per claim (``<instance_id>:<hex>``), so a stale worker
        of the same instance can never commit over a newer claim.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import uuid4

from ledger_recurring.core.clock import Clock, SystemClock
from ledger_recurring.core.dialect import Dialect, SQLiteDialect
from ledger_recurring.core.errors import store_errors
from ledger_recurring.core.models.recurring import ScheduledEvent
from ledger_recurring.core.protocols import Connection
from ledger_recurring.core.timestamps import from_iso8601, to_iso8601

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Lease:
    """A won claim on one occurrence of one schedule.

    ``version`` and ``failure_count`` are the values the claim was pinned
    to; writes made under the lease are conditioned on them.
    """

    schedule_id: str
    token: str
    next_run: datetime
    version: int
    failure_count: int
    expires_at: datetime


class LeaseManager:
    """Lease manager for schedule claims.

    Example:
        >>> leases = LeaseManager(conn, instance_id="scheduler-1")
        >>> lease = leases.claim(schedule)
        >>> if lease is None:
        ...     print("Another worker holds this occurrence")
    """

    def __init__(
        self,
        conn: Connection,
        dialect: Dialect | None = None,
        instance_id: str | None = None,
        *,
        ttl_seconds: float = 300,
        clock: Clock | None = None,
    ) -> None:
        """Initialize lease manager.

        Args:
            conn: Database connection
            dialect: SQL dialect for portable queries
            instance_id: Unique identifier for this scheduler instance.
                        Auto-generated if not provided.
            ttl_seconds: Lease lifetime
            clock: Time source for lease expiry
        """
        self.conn = conn
        self.dialect: Dialect = dialect or SQLiteDialect()
        self.instance_id = instance_id or str(uuid4())
        self.ttl_seconds = ttl_seconds
        self.clock: Clock = clock or SystemClock()

    def _ph(self, index: int) -> str:
        """Generate dialect-specific placeholder at 1-based position."""
        return self.dialect.placeholder(index - 1)

    def new_token(self) -> str:
        return f"{self.instance_id}:{secrets.token_hex(8)}"

    # === Claims ===

    def claim(self, schedule: ScheduledEvent, ttl_seconds: float | None = None) -> Lease | None:
        """Claim the pending occurrence of ``schedule`` as it was read.

        Succeeds only if the schedule is enabled, holds no live lease, and
        its ``next_run``, ``version`` and ``failure_count`` still match
        ``schedule``.

        Returns:
            Lease if won, None if another worker holds it or the schedule
            changed since it was read.

        Raises:
            StoreUnavailableError: On driver failure
        """
        if schedule.next_run is None:
            return None

        now = self.clock.now()
        expires = now + timedelta(seconds=ttl_seconds or self.ttl_seconds)
        token = self.new_token()
        now_iso = to_iso8601(now)

        with store_errors("claim", schedule_id=schedule.id):
            cursor = self.conn.execute(
                f"""
                UPDATE recurring_events
                SET lease_owner = {self._ph(1)}, lease_expires_at = {self._ph(2)}
                WHERE id = {self._ph(3)}
                  AND next_run_at = {self._ph(4)}
                  AND version = {self._ph(5)}
                  AND failure_count = {self._ph(6)}
                  AND enabled = 1
                  AND (lease_owner IS NULL OR lease_expires_at <= {self._ph(7)})
                """,
                (
                    token,
                    to_iso8601(expires),
                    schedule.id,
                    to_iso8601(schedule.next_run),
                    schedule.version,
                    schedule.failure_count,
                    now_iso,
                ),
            )
            self.conn.commit()

        if cursor.rowcount == 1:
            logger.debug(f"Claimed schedule {schedule.id} ({token})")
            return Lease(
                schedule_id=schedule.id,
                token=token,
                next_run=schedule.next_run,
                version=schedule.version,
                failure_count=schedule.failure_count,
                expires_at=expires,
            )

        logger.debug(f"Claim lost for schedule {schedule.id}")
        return None

    def release(self, schedule_id: str, token: str) -> bool:
        """Release a lease if ``token`` still holds it.

        Returns:
            True if released, False if not held (expired and re-claimed, or
            the schedule was deleted)
        """
        with store_errors("release", schedule_id=schedule_id, lease_owner=token):
            cursor = self.conn.execute(
                f"""
                UPDATE recurring_events
                SET lease_owner = NULL, lease_expires_at = NULL
                WHERE id = {self._ph(1)} AND lease_owner = {self._ph(2)}
                """,
                (schedule_id, token),
            )
            self.conn.commit()

        if cursor.rowcount > 0:
            logger.debug(f"Released lease for schedule {schedule_id}")
            return True
        return False

    def is_leased(self, schedule_id: str) -> bool:
        """Check if a schedule holds a live lease (from any instance)."""
        return self.get_lease_holder(schedule_id) is not None

    def get_lease_holder(self, schedule_id: str) -> str | None:
        """Token of the live lease on a schedule, if any."""
        with store_errors("get_lease_holder", schedule_id=schedule_id):
            row = self.conn.execute(
                f"""
                SELECT lease_owner FROM recurring_events
                WHERE id = {self._ph(1)} AND lease_owner IS NOT NULL
                  AND lease_expires_at > {self._ph(2)}
                """,
                (schedule_id, to_iso8601(self.clock.now())),
            ).fetchone()
        return row[0] if row else None

    # === Maintenance ===

    def cleanup_expired(self) -> int:
        """Clear leases whose TTL has passed.

        Claims already ignore expired leases; this keeps the columns tidy
        and the health report accurate.

        Returns:
            Number of leases cleared
        """
        with store_errors("cleanup_expired"):
            cursor = self.conn.execute(
                f"""
                UPDATE recurring_events
                SET lease_owner = NULL, lease_expires_at = NULL
                WHERE lease_owner IS NOT NULL AND lease_expires_at <= {self._ph(1)}
                """,
                (to_iso8601(self.clock.now()),),
            )
            self.conn.commit()

        count = cursor.rowcount
        if count > 0:
            logger.info(f"Cleaned up {count} expired leases")
        return count

    def list_active(self) -> list[dict]:
        """List live leases."""
        with store_errors("list_active"):
            rows = self.conn.execute(
                f"""
                SELECT id, lease_owner, lease_expires_at
                FROM recurring_events
                WHERE lease_owner IS NOT NULL AND lease_expires_at > {self._ph(1)}
                ORDER BY lease_expires_at
                """,
                (to_iso8601(self.clock.now()),),
            ).fetchall()
        return [
            {
                "schedule_id": row[0],
                "lease_owner": row[1],
                "expires_at": from_iso8601(row[2]),
            }
            for row in rows
        ]

    def count_active(self) -> int:
        return len(self.list_active())
