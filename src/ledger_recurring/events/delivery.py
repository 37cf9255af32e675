"""Event delivery contract.

The scheduler hands every due occurrence to an ``EventDelivery``
collaborator exactly once per attempt. The default implementation is
``EventDispatcher``; tests substitute recording or failing fakes.

Tags:
    events, protocol, delivery

Doc-Types:
    api-reference
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from ledger_recurring.core.models.events import EventTemplate


@dataclass(frozen=True)
class DeliveryRequest:
    """One event to deliver. ``payload`` is passed through untouched."""

    template: EventTemplate
    payload: Any
    organization_id: str
    context: dict[str, Any] = field(default_factory=dict)


@dataclass
class DeliveryResult:
    success: bool
    instance_id: str | None = None
    reference: str | None = None
    error: str | None = None

    @classmethod
    def ok(cls, instance_id: str | None = None, reference: str | None = None) -> DeliveryResult:
        return cls(success=True, instance_id=instance_id, reference=reference)

    @classmethod
    def failed(cls, error: str, instance_id: str | None = None) -> DeliveryResult:
        return cls(success=False, instance_id=instance_id, error=error)


@runtime_checkable
class EventDelivery(Protocol):
    """Downstream event-delivery collaborator."""

    async def deliver(self, request: DeliveryRequest) -> DeliveryResult:
        """Deliver one event. May raise; the caller records the failure."""
        ...
