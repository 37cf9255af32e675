"""Event template repository.

Templates are addressed per organization either by id or by ``orchid``
(an upper-cased short code such as ``RENT`` or ``PAYROLL``). A schedule's
``template_id`` may hold either form.

Tags:
    events, templates, repository

Doc-Types:
    api-reference
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Mapping

from ledger_recurring.core.clock import Clock, SystemClock
from ledger_recurring.core.dialect import Dialect, SQLiteDialect
from ledger_recurring.core.errors import ValidationError, store_errors
from ledger_recurring.core.logging import get_logger
from ledger_recurring.core.models.events import (
    DEFAULT_PLUGINS,
    EventTemplate,
    ReferenceConfig,
)
from ledger_recurring.core.protocols import Connection
from ledger_recurring.core.timestamps import from_iso8601, generate_ulid, to_iso8601

logger = get_logger(__name__)

_COLUMNS = [
    "id",
    "organization_id",
    "name",
    "orchid",
    "reference_config",
    "narration_config",
    "input_schema",
    "plugins",
    "lines_rule",
    "is_system_generated",
    "is_active",
    "created_at",
    "updated_at",
]

_SELECT = f"SELECT {', '.join(_COLUMNS)} FROM event_templates"


@dataclass
class TemplateCreate:
    """DTO for creating an event template."""

    organization_id: str
    name: str
    orchid: str
    reference_config: ReferenceConfig = field(default_factory=ReferenceConfig)
    narration_config: str = ""
    input_schema: dict[str, Any] = field(default_factory=dict)
    plugins: list[str] = field(default_factory=lambda: list(DEFAULT_PLUGINS))
    lines_rule: list[dict[str, Any]] = field(default_factory=list)
    is_system_generated: bool = False


@dataclass
class TemplateUpdate:
    """DTO for editing a template. ``None`` leaves a field unchanged; the orchid is fixed."""

    name: str | None = None
    reference_config: ReferenceConfig | None = None
    narration_config: str | None = None
    input_schema: dict[str, Any] | None = None
    plugins: list[str] | None = None
    lines_rule: list[dict[str, Any]] | None = None

    def changed_columns(self) -> dict[str, Any]:
        columns: dict[str, Any] = {}
        if self.name is not None:
            columns["name"] = self.name.strip()
        if self.reference_config is not None:
            columns["reference_config"] = json.dumps(self.reference_config.to_dict())
        if self.narration_config is not None:
            columns["narration_config"] = self.narration_config
        if self.input_schema is not None:
            columns["input_schema"] = json.dumps(self.input_schema)
        if self.plugins is not None:
            columns["plugins"] = json.dumps(self.plugins)
        if self.lines_rule is not None:
            columns["lines_rule"] = json.dumps(self.lines_rule)
        return columns


def missing_required_fields(template: EventTemplate, payload: Any) -> list[str]:
    """Fields listed in ``input_schema.required`` that the payload lacks.

    Only mapping payloads are checked. A field counts as missing when it is
    absent, ``None`` or an empty string.
    """
    if not isinstance(payload, Mapping):
        return []
    return [name for name in template.required_fields if payload.get(name) in (None, "")]


class TemplateRepository:
    """Persistence for event templates."""

    def __init__(self, conn: Connection, dialect: Dialect | None = None, *, clock: Clock | None = None) -> None:
        self.conn = conn
        self.dialect: Dialect = dialect or SQLiteDialect()
        self.clock: Clock = clock or SystemClock()

    def _ph(self, count: int = 1) -> str:
        return self.dialect.placeholders(count)

    def create(self, spec: TemplateCreate) -> EventTemplate:
        """Create a template.

        Raises:
            ValidationError: Empty name/orchid or orchid already used in the organization
        """
        orchid = spec.orchid.strip().upper()
        name = spec.name.strip()
        if not orchid:
            raise ValidationError("Template orchid is required", field="orchid")
        if not name:
            raise ValidationError("Template name is required", field="name")
        if self.get_by_orchid(spec.organization_id, orchid) is not None:
            raise ValidationError(
                f"Template {orchid} already exists for organization {spec.organization_id}",
                field="orchid",
                value=orchid,
            )

        template_id = generate_ulid()
        now = to_iso8601(self.clock.now())
        with store_errors("create_template", organization_id=spec.organization_id):
            self.conn.execute(
                f"INSERT INTO event_templates ({', '.join(_COLUMNS)}) VALUES ({self._ph(len(_COLUMNS))})",
                (
                    template_id,
                    spec.organization_id,
                    name,
                    orchid,
                    json.dumps(spec.reference_config.to_dict()),
                    spec.narration_config,
                    json.dumps(spec.input_schema),
                    json.dumps(spec.plugins),
                    json.dumps(spec.lines_rule),
                    1 if spec.is_system_generated else 0,
                    1,
                    now,
                    now,
                ),
            )
            self.conn.commit()

        logger.info("template.created", template_id=template_id, orchid=orchid,
                    organization_id=spec.organization_id)
        return self.get(template_id)  # type: ignore[return-value]

    def get(self, template_id: str, organization_id: str | None = None) -> EventTemplate | None:
        sql = f"{_SELECT} WHERE id = {self._ph()}"
        params: list[Any] = [template_id]
        if organization_id is not None:
            sql += f" AND organization_id = {self._ph()}"
            params.append(organization_id)
        with store_errors("get_template", template_id=template_id):
            row = self.conn.execute(sql, tuple(params)).fetchone()
        return self._row_to_template(row) if row else None

    def get_by_orchid(self, organization_id: str, orchid: str) -> EventTemplate | None:
        with store_errors("get_template_by_orchid", organization_id=organization_id):
            row = self.conn.execute(
                f"{_SELECT} WHERE organization_id = {self._ph()} AND orchid = {self._ph()}",
                (organization_id, orchid.strip().upper()),
            ).fetchone()
        return self._row_to_template(row) if row else None

    def resolve(self, organization_id: str, ref: str) -> EventTemplate | None:
        """Look a template up by id, then by orchid, within one organization."""
        return self.get(ref, organization_id) or self.get_by_orchid(organization_id, ref)

    def list_templates(self, organization_id: str, include_inactive: bool = False) -> list[EventTemplate]:
        sql = f"{_SELECT} WHERE organization_id = {self._ph()}"
        if not include_inactive:
            sql += " AND is_active = 1"
        sql += " ORDER BY orchid"
        with store_errors("list_templates", organization_id=organization_id):
            rows = self.conn.execute(sql, (organization_id,)).fetchall()
        return [self._row_to_template(row) for row in rows]

    def update(self, template_id: str, organization_id: str, changes: TemplateUpdate) -> EventTemplate | None:
        """Apply ``changes`` to a template.

        Schedules keep referencing the template, so later dispatches use the
        edited version.

        Returns:
            The updated template, or None if not found

        Raises:
            ValidationError: Blank name
        """
        template = self.get(template_id, organization_id)
        if template is None:
            return None

        columns = changes.changed_columns()
        if columns.get("name") == "":
            raise ValidationError("Template name is required", field="name")
        if not columns:
            return template

        columns["updated_at"] = to_iso8601(self.clock.now())
        assignments = ", ".join(f"{name} = {self._ph()}" for name in columns)
        with store_errors("update_template", template_id=template_id):
            self.conn.execute(
                f"UPDATE event_templates SET {assignments} WHERE id = {self._ph()} AND organization_id = {self._ph()}",
                (*columns.values(), template_id, organization_id),
            )
            self.conn.commit()

        logger.info("template.updated", template_id=template_id, orchid=template.orchid,
                    fields=sorted(k for k in columns if k != "updated_at"))
        return self.get(template_id, organization_id)

    def deactivate(self, template_id: str, organization_id: str) -> bool:
        """Deactivate a template. System-generated templates cannot be deactivated.

        Returns:
            True if deactivated, False if not found
        """
        template = self.get(template_id, organization_id)
        if template is None:
            return False
        if template.is_system_generated:
            raise ValidationError(
                f"Template {template.orchid} is system generated and cannot be deactivated",
                field="is_system_generated",
            )
        with store_errors("deactivate_template", template_id=template_id):
            self.conn.execute(
                f"UPDATE event_templates SET is_active = 0, updated_at = {self._ph()} WHERE id = {self._ph()}",
                (to_iso8601(self.clock.now()), template_id),
            )
            self.conn.commit()
        return True

    def _row_to_template(self, row: tuple) -> EventTemplate:
        data = dict(zip(_COLUMNS, row, strict=True))
        return EventTemplate(
            id=data["id"],
            organization_id=data["organization_id"],
            name=data["name"],
            orchid=data["orchid"],
            reference_config=ReferenceConfig.from_dict(json.loads(data["reference_config"] or "{}")),
            narration_config=data["narration_config"] or "",
            input_schema=json.loads(data["input_schema"] or "{}"),
            plugins=json.loads(data["plugins"] or "[]"),
            lines_rule=json.loads(data["lines_rule"] or "[]"),
            is_system_generated=bool(data["is_system_generated"]),
            is_active=bool(data["is_active"]),
            created_at=from_iso8601(data["created_at"]),
            updated_at=from_iso8601(data["updated_at"]),
        )
