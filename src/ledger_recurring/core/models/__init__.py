"""Dataclass models for the ledger-recurring tables.

Field names follow the SQL columns in ``ledger_recurring.core.schema``,
except that time columns are parsed into aware UTC datetimes and the rule
columns of a schedule are folded into one ``RecurrenceRule``.

Modules
-------
recurring
    ``recurring_events`` and ``recurring_event_runs``.
events
    ``event_templates`` and ``event_instances``.

Tags:
    models, dataclasses, schema-mapping

Doc-Types:
    package-overview, module-index
"""

from ledger_recurring.core.models.events import (
    DEFAULT_PLUGINS,
    EventInstance,
    EventTemplate,
    InstanceStatus,
    PluginResult,
    ReferenceConfig,
    SerialMethod,
)
from ledger_recurring.core.models.recurring import (
    RunStatus,
    ScheduledEvent,
    ScheduleRun,
)

__all__ = [
    "DEFAULT_PLUGINS",
    "EventInstance",
    "EventTemplate",
    "InstanceStatus",
    "PluginResult",
    "ReferenceConfig",
    "SerialMethod",
    "RunStatus",
    "ScheduledEvent",
    "ScheduleRun",
]
