"""Settings for the recurring event engine.

``RecurringSettings`` gathers every knob the scheduler process needs
(database location, default timezone, poll interval, worker pool size,
lease and dispatch timeouts, retry exhaustion) and reads them from
environment variables prefixed ``LEDGER_RECURRING_`` or a ``.env`` file.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.
    A scheduler started with a dispatch timeout longer than its lease TTL
    can double-fire; that combination must fail at startup, not in
    production.

    - **Pydantic validation:** Type-checked at startup
    - **Environment-driven:** Reads from env vars and .env files
    - **Sensible defaults:** Works out of the box for development

Examples:
    >>> from ledger_recurring.core.settings import RecurringSettings
    >>> settings = RecurringSettings(poll_interval_seconds=5)
    >>> settings.default_timezone
    'UTC'

Tags:
    settings, configuration, pydantic, environment, env-prefix

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ledger_recurring.core.errors import InvalidConfigError


class RecurringSettings(BaseSettings):
    """Settings shared by the scheduler process, the CLI and the ops layer.

    Fields
    ──────
    database_path            : SQLite database file for the schedule store
    default_timezone         : Zone used when a rule carries none
    poll_interval_seconds    : Scheduler tick interval
    max_workers              : Concurrent dispatches per tick
    lease_ttl_seconds        : Lease lifetime before another worker may claim
    dispatch_timeout_seconds : Upper bound on one delivery attempt
    max_consecutive_failures : Failed attempts before a schedule is suspended
                               (None retries forever)
    lease_cleanup_every      : Sweep expired leases every N ticks
    instance_id              : Scheduler instance identity (auto if unset)
    log_level                : Structlog log level
    json_logs                : JSON log output (None = auto-detect tty)
    """

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_RECURRING_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Storage ──────────────────────────────────────────────────
    database_path: Path = Field(
        default_factory=lambda: Path.home() / ".ledger-recurring" / "recurring.db",
        description="SQLite database file for the schedule store",
    )

    # ── Scheduling ───────────────────────────────────────────────
    default_timezone: str = "UTC"
    poll_interval_seconds: float = Field(default=10.0, gt=0)
    max_workers: int = Field(default=8, ge=1)
    lease_ttl_seconds: int = Field(default=300, ge=1)
    dispatch_timeout_seconds: float = Field(default=60.0, gt=0)
    max_consecutive_failures: int | None = Field(default=5, ge=1)
    lease_cleanup_every: int = Field(default=6, ge=1)
    instance_id: str | None = None

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None

    @field_validator("default_timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone {value!r}") from exc
        return value

    @model_validator(mode="after")
    def _timeout_below_lease(self) -> RecurringSettings:
        # A dispatch outliving its lease lets a second worker claim the same occurrence.
        if self.dispatch_timeout_seconds >= self.lease_ttl_seconds:
            raise ValueError(
                "dispatch_timeout_seconds must be lower than lease_ttl_seconds "
                f"({self.dispatch_timeout_seconds} >= {self.lease_ttl_seconds})"
            )
        return self


def load_settings(**overrides) -> RecurringSettings:
    """Build settings, converting validation failures to ``InvalidConfigError``."""
    try:
        return RecurringSettings(**overrides)
    except ValidationError as exc:
        first = exc.errors()[0]
        key = ".".join(str(part) for part in first.get("loc", ())) or "settings"
        raise InvalidConfigError(key, first.get("input"), first.get("msg")) from exc


@lru_cache(maxsize=1)
def get_settings() -> RecurringSettings:
    """Process-wide settings, loaded once."""
    return load_settings()
