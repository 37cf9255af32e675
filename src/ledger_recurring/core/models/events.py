"""Event template and instance models (``event_templates``, ``event_instances``).

Tags:
    models, events, templates, dataclasses

Doc-Types:
    api-reference, data-model
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

DEFAULT_PLUGINS = ("journal",)


class SerialMethod(str, Enum):
    """How instance references are numbered."""

    INCREMENTOR = "incrementor"
    RANDOM_HEX = "randomHex"


@dataclass
class ReferenceConfig:
    """Reference numbering, e.g. ``INV-000042``."""

    prefix: str = "DOC"
    serial_method: SerialMethod = SerialMethod.INCREMENTOR
    length: int = 6

    def __post_init__(self) -> None:
        self.serial_method = SerialMethod(self.serial_method)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ReferenceConfig:
        data = data or {}
        return cls(
            prefix=data.get("prefix", "DOC"),
            serial_method=data.get("serial_method", data.get("serialMethod", SerialMethod.INCREMENTOR)),
            length=int(data.get("length", 6)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"prefix": self.prefix, "serial_method": self.serial_method.value, "length": self.length}


@dataclass
class EventTemplate:
    """Per-organization event template, addressed by ``orchid``."""

    id: str
    organization_id: str
    name: str
    orchid: str
    reference_config: ReferenceConfig = field(default_factory=ReferenceConfig)
    narration_config: str = ""
    input_schema: dict[str, Any] = field(default_factory=dict)
    plugins: list[str] = field(default_factory=lambda: list(DEFAULT_PLUGINS))
    lines_rule: list[dict[str, Any]] = field(default_factory=list)
    is_system_generated: bool = False
    is_active: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def required_fields(self) -> list[str]:
        required = self.input_schema.get("required") if isinstance(self.input_schema, dict) else None
        return list(required) if isinstance(required, list) else []

    def to_dict(self) -> dict[str, Any]:
        result = asdict(self)
        result["reference_config"] = self.reference_config.to_dict()
        result["created_at"] = self.created_at.isoformat() if self.created_at else None
        result["updated_at"] = self.updated_at.isoformat() if self.updated_at else None
        return result


class InstanceStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSED = "PROCESSED"
    FAILED = "FAILED"


@dataclass
class PluginResult:
    """Outcome of one plugin run for one instance."""

    plugin: str
    success: bool
    result_id: str | None = None
    error: str | None = None
    detail: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class EventInstance:
    """One dispatched event."""

    id: str
    organization_id: str
    template_id: str
    type: str
    reference: str
    payload: Any = None
    status: InstanceStatus = InstanceStatus.PENDING
    processed_at: datetime | None = None
    error_message: str | None = None
    results: list[PluginResult] = field(default_factory=list)
    context: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "template_id": self.template_id,
            "type": self.type,
            "reference": self.reference,
            "payload": self.payload,
            "status": self.status.value,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
            "error_message": self.error_message,
            "results": [r.to_dict() for r in self.results],
            "context": self.context,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
