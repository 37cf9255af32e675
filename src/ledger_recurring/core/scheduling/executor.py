"""Dispatch executor - one delivery attempt for one due occurrence.

The executor resolves the schedule's template, checks the payload against
the template's required fields, and calls the delivery collaborator
exactly once under a timeout. It never retries and never touches schedule
state; the scheduler service decides what a failure means.

Every failure is a ``DispatchError`` subclass carrying the schedule's
context, so the run row can record its category and retryability.

Tags:
    scheduling, dispatch, delivery, timeout

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime

from ledger_recurring.core.errors import (
    DispatchError,
    DispatchTimeoutError,
    PayloadRejectedError,
    TemplateNotFoundError,
    is_retryable,
)
from ledger_recurring.core.logging import get_logger
from ledger_recurring.core.models.recurring import ScheduledEvent
from ledger_recurring.core.timestamps import to_iso8601
from ledger_recurring.events.delivery import DeliveryRequest, EventDelivery
from ledger_recurring.events.templates import TemplateRepository, missing_required_fields

logger = get_logger(__name__)

TRIGGER_SOURCE = "schedule"
SYSTEM_ROLE = "system"


@dataclass(frozen=True)
class DispatchOutcome:
    """Result of one dispatch attempt."""

    success: bool
    error: DispatchError | None = None
    instance_id: str | None = None

    @classmethod
    def ok(cls, instance_id: str | None = None) -> DispatchOutcome:
        return cls(success=True, instance_id=instance_id)

    @classmethod
    def failure(cls, error: DispatchError, *, instance_id: str | None = None) -> DispatchOutcome:
        return cls(success=False, error=error, instance_id=instance_id)

    @property
    def reason(self) -> str | None:
        return self.error.message if self.error else None

    @property
    def timed_out(self) -> bool:
        return isinstance(self.error, DispatchTimeoutError)

    @property
    def retryable(self) -> bool | None:
        return is_retryable(self.error) if self.error else None

    @property
    def error_category(self) -> str | None:
        return self.error.category.value if self.error else None


class DispatchExecutor:
    """Fires one occurrence of a schedule through ``EventDelivery``.

    Args:
        templates: Template lookup
        delivery: Downstream delivery collaborator
        timeout_seconds: Upper bound for one delivery call (None = no bound)
    """

    def __init__(
        self,
        templates: TemplateRepository,
        delivery: EventDelivery,
        timeout_seconds: float | None = None,
    ) -> None:
        self.templates = templates
        self.delivery = delivery
        self.timeout_seconds = timeout_seconds

    def build_request(self, schedule: ScheduledEvent, occurrence_at: datetime | None) -> DeliveryRequest:
        """Resolve the template and build the delivery request.

        Raises:
            TemplateNotFoundError: Template missing or inactive
            PayloadRejectedError: Payload lacks a required field
        """
        template = self.templates.resolve(schedule.organization_id, schedule.template_id)
        if template is None:
            raise TemplateNotFoundError(f"Template not found: {schedule.template_id}")
        if not template.is_active:
            raise TemplateNotFoundError(f"Template is inactive: {template.orchid}")

        missing = missing_required_fields(template, schedule.payload)
        if missing:
            raise PayloadRejectedError(f"Missing required fields: {', '.join(missing)}")

        return DeliveryRequest(
            template=template,
            payload=schedule.payload,
            organization_id=schedule.organization_id,
            context={
                "trigger_source": TRIGGER_SOURCE,
                "schedule_id": schedule.id,
                "occurrence_at": to_iso8601(occurrence_at),
                "user_id": schedule.created_by,
                "role": SYSTEM_ROLE,
            },
        )

    async def dispatch(self, schedule: ScheduledEvent, occurrence_at: datetime | None = None) -> DispatchOutcome:
        """Deliver the occurrence ``occurrence_at`` (defaults to ``schedule.next_run``)."""
        occurrence_at = occurrence_at or schedule.next_run
        try:
            request = self.build_request(schedule, occurrence_at)
            instance_id = await self._deliver(schedule, request)
        except DispatchError as exc:
            exc.with_context(
                schedule_id=schedule.id,
                organization_id=schedule.organization_id,
                template_id=schedule.template_id,
                occurrence_at=to_iso8601(occurrence_at),
            )
            return DispatchOutcome.failure(exc, instance_id=exc.context.metadata.get("instance_id"))
        return DispatchOutcome.ok(instance_id=instance_id)

    async def _deliver(self, schedule: ScheduledEvent, request: DeliveryRequest) -> str | None:
        try:
            if self.timeout_seconds is None:
                result = await self.delivery.deliver(request)
            else:
                result = await asyncio.wait_for(self.delivery.deliver(request), timeout=self.timeout_seconds)
        except TimeoutError as exc:
            raise DispatchTimeoutError(f"Delivery timed out after {self.timeout_seconds}s", cause=exc) from exc
        except Exception as exc:  # collaborator errors become a failed attempt
            logger.warning("schedule.delivery_raised", schedule_id=schedule.id, error=str(exc),
                           error_type=type(exc).__name__)
            raise DispatchError(str(exc) or type(exc).__name__, cause=exc) from exc

        if not result.success:
            raise DispatchError(result.error or "Delivery failed").with_context(instance_id=result.instance_id)
        return result.instance_id
