"""Event collaborators: templates, delivery contract, dispatcher and plugins."""

from ledger_recurring.events.delivery import DeliveryRequest, DeliveryResult, EventDelivery
from ledger_recurring.events.dispatcher import EventDispatcher
from ledger_recurring.events.plugins import EventPlugin, JournalEntry, JournalPlugin
from ledger_recurring.events.templates import (
    TemplateCreate,
    TemplateRepository,
    TemplateUpdate,
    missing_required_fields,
)

__all__ = [
    "DeliveryRequest",
    "DeliveryResult",
    "EventDelivery",
    "EventDispatcher",
    "EventPlugin",
    "JournalEntry",
    "JournalPlugin",
    "TemplateCreate",
    "TemplateRepository",
    "TemplateUpdate",
    "missing_required_fields",
]
