"""Event dispatcher - default ``EventDelivery`` implementation.

Manifesto:
    Every delivered event leaves a durable ``event_instances`` row with a
    human-readable reference, the untouched payload, and one result per
    plugin. A failed plugin marks the instance FAILED but never loses it.

Architecture::

    deliver(request)
      │
      ├── required fields missing? ──► FAILED instance (reference "PENDING")
      │
      ├── generate_reference()   incrementor: event_counters[org:orchid] += 1
      │                          randomHex:   secrets.token_hex
      ├── INSERT instance (PENDING)
      ├── for plugin in template.plugins:  run, collect PluginResult
      └── UPDATE instance → PROCESSED | FAILED

Tags:
    events, dispatcher, references, plugins

Doc-Types:
    api-reference, architecture-diagram
"""

from __future__ import annotations

import json
import math
import secrets
from typing import Any

from ledger_recurring.core.clock import Clock, SystemClock
from ledger_recurring.core.dialect import Dialect, SQLiteDialect
from ledger_recurring.core.errors import store_errors
from ledger_recurring.core.logging import get_logger
from ledger_recurring.core.models.events import (
    EventInstance,
    InstanceStatus,
    PluginResult,
    ReferenceConfig,
    SerialMethod,
)
from ledger_recurring.core.protocols import Connection
from ledger_recurring.core.timestamps import from_iso8601, generate_ulid, to_iso8601
from ledger_recurring.events.delivery import DeliveryRequest, DeliveryResult
from ledger_recurring.events.plugins import EventPlugin, default_plugins
from ledger_recurring.events.templates import missing_required_fields

logger = get_logger(__name__)

_INSTANCE_COLUMNS = [
    "id",
    "organization_id",
    "template_id",
    "type",
    "reference",
    "payload",
    "status",
    "processed_at",
    "error_message",
    "results",
    "context",
    "created_at",
    "updated_at",
]


class EventDispatcher:
    """Records event instances and runs template plugins.

    Example:
        >>> dispatcher = EventDispatcher(conn)
        >>> result = await dispatcher.deliver(DeliveryRequest(template, {"amount": 100}, "org-1"))
        >>> result.reference
        'RENT-000001'
    """

    def __init__(
        self,
        conn: Connection,
        dialect: Dialect | None = None,
        *,
        plugins: dict[str, EventPlugin] | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.conn = conn
        self.dialect: Dialect = dialect or SQLiteDialect()
        self.plugins = default_plugins() if plugins is None else plugins
        self.clock: Clock = clock or SystemClock()

    def _ph(self, count: int = 1) -> str:
        return self.dialect.placeholders(count)

    def register_plugin(self, plugin: EventPlugin) -> None:
        self.plugins[plugin.name] = plugin

    # === Delivery ===

    async def deliver(self, request: DeliveryRequest) -> DeliveryResult:
        template = request.template
        missing = missing_required_fields(template, request.payload)
        if missing:
            error = f"Missing required fields: {', '.join(missing)}"
            instance = self._insert_instance(request, "PENDING", InstanceStatus.FAILED, error)
            logger.warning("event.rejected", instance_id=instance.id, orchid=template.orchid, error=error)
            return DeliveryResult.failed(error, instance_id=instance.id)

        reference = self.generate_reference(request.organization_id, template.orchid, template.reference_config)
        instance = self._insert_instance(request, reference, InstanceStatus.PENDING, None)

        results: list[PluginResult] = []
        for name in template.plugins:
            plugin = self.plugins.get(name)
            if plugin is None:
                results.append(PluginResult(plugin=name, success=False, error="Unknown plugin"))
                continue
            try:
                results.append(await plugin(template, instance, request.context))
            except Exception as exc:  # plugin failures are recorded on the instance
                results.append(PluginResult(plugin=name, success=False, error=str(exc) or repr(exc)))

        failed = next((r for r in results if not r.success), None)
        status = InstanceStatus.FAILED if failed else InstanceStatus.PROCESSED
        error = failed.error if failed else None
        self._finish_instance(instance.id, status, results, error)

        logger.info(
            "event.dispatched",
            instance_id=instance.id,
            reference=reference,
            orchid=template.orchid,
            status=status.value,
        )
        if failed:
            return DeliveryResult.failed(f"Plugin {failed.plugin} failed: {error}", instance_id=instance.id)
        return DeliveryResult.ok(instance_id=instance.id, reference=reference)

    # === References ===

    def generate_reference(self, organization_id: str, orchid: str, config: ReferenceConfig) -> str:
        """Next reference for a template, e.g. ``INV-000042`` or ``INV-9f3a1c``."""
        if config.serial_method is SerialMethod.RANDOM_HEX:
            digits = secrets.token_hex(math.ceil(config.length / 2))[: config.length]
            return f"{config.prefix}-{digits}"
        seq = self.next_sequence(f"{organization_id}:{orchid}")
        return f"{config.prefix}-{str(seq).zfill(config.length)}"

    def next_sequence(self, key: str) -> int:
        """Increment and return the counter for ``key`` (starting at 1)."""
        now = to_iso8601(self.clock.now())
        with store_errors("next_sequence", metadata={"counter": key}):
            self.conn.execute(
                self.dialect.insert_or_ignore("event_counters", ["key", "seq", "updated_at"]),
                (key, 0, now),
            )
            self.conn.execute(
                f"UPDATE event_counters SET seq = seq + 1, updated_at = {self._ph()} WHERE key = {self._ph()}",
                (now, key),
            )
            row = self.conn.execute(f"SELECT seq FROM event_counters WHERE key = {self._ph()}", (key,)).fetchone()
            self.conn.commit()
        return row[0]

    # === Instances ===

    def get_instance(self, instance_id: str, organization_id: str | None = None) -> EventInstance | None:
        sql = f"SELECT {', '.join(_INSTANCE_COLUMNS)} FROM event_instances WHERE id = {self._ph()}"
        params: list[Any] = [instance_id]
        if organization_id is not None:
            sql += f" AND organization_id = {self._ph()}"
            params.append(organization_id)
        with store_errors("get_instance"):
            row = self.conn.execute(sql, tuple(params)).fetchone()
        return self._row_to_instance(row) if row else None

    def list_instances(
        self,
        organization_id: str,
        limit: int = 50,
        *,
        status: InstanceStatus | str | None = None,
        template_id: str | None = None,
    ) -> list[EventInstance]:
        """Dispatched events of one organization, newest first."""
        sql = f"SELECT {', '.join(_INSTANCE_COLUMNS)} FROM event_instances WHERE organization_id = {self._ph()}"
        params: list[Any] = [organization_id]
        if status is not None:
            sql += f" AND status = {self._ph()}"
            params.append(InstanceStatus(status).value)
        if template_id is not None:
            sql += f" AND template_id = {self._ph()}"
            params.append(template_id)
        sql += f" ORDER BY created_at DESC, id DESC LIMIT {self._ph()}"
        params.append(limit)
        with store_errors("list_instances", organization_id=organization_id):
            rows = self.conn.execute(sql, tuple(params)).fetchall()
        return [self._row_to_instance(row) for row in rows]

    def _insert_instance(
        self,
        request: DeliveryRequest,
        reference: str,
        status: InstanceStatus,
        error: str | None,
    ) -> EventInstance:
        now = self.clock.now()
        instance = EventInstance(
            id=generate_ulid(),
            organization_id=request.organization_id,
            template_id=request.template.id,
            type=request.template.orchid,
            reference=reference,
            payload=request.payload,
            status=status,
            error_message=error,
            context=dict(request.context),
            created_at=now,
            updated_at=now,
        )
        values = [
            instance.id,
            instance.organization_id,
            instance.template_id,
            instance.type,
            instance.reference,
            json.dumps(instance.payload),
            instance.status.value,
            None,
            error,
            "[]",
            json.dumps(instance.context, default=str),
            to_iso8601(now),
            to_iso8601(now),
        ]
        with store_errors("insert_instance", organization_id=request.organization_id):
            self.conn.execute(
                f"INSERT INTO event_instances ({', '.join(_INSTANCE_COLUMNS)}) VALUES ({self._ph(len(values))})",
                tuple(values),
            )
            self.conn.commit()
        return instance

    def _finish_instance(
        self,
        instance_id: str,
        status: InstanceStatus,
        results: list[PluginResult],
        error: str | None,
    ) -> None:
        now = to_iso8601(self.clock.now())
        with store_errors("finish_instance"):
            self.conn.execute(
                f"""
                UPDATE event_instances
                SET status = {self._ph()}, processed_at = {self._ph()}, results = {self._ph()},
                    error_message = {self._ph()}, updated_at = {self._ph()}
                WHERE id = {self._ph()}
                """,
                (status.value, now, json.dumps([r.to_dict() for r in results]), error, now, instance_id),
            )
            self.conn.commit()

    def _row_to_instance(self, row: tuple) -> EventInstance:
        data: dict[str, Any] = dict(zip(_INSTANCE_COLUMNS, row, strict=True))
        return EventInstance(
            id=data["id"],
            organization_id=data["organization_id"],
            template_id=data["template_id"],
            type=data["type"],
            reference=data["reference"],
            payload=json.loads(data["payload"]) if data["payload"] is not None else None,
            status=InstanceStatus(data["status"]),
            processed_at=from_iso8601(data["processed_at"]),
            error_message=data["error_message"],
            results=[PluginResult(**r) for r in json.loads(data["results"] or "[]")],
            context=json.loads(data["context"] or "{}"),
            created_at=from_iso8601(data["created_at"]),
            updated_at=from_iso8601(data["updated_at"]),
        )
