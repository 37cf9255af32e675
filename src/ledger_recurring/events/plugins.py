"""Event plugins.

A plugin turns one dispatched event instance into a side effect and
reports a ``PluginResult``. Templates list the plugins to run by name;
``journal`` is the default.

The journal plugin derives a double-entry journal entry from the
template's ``lines_rule``:

    lines_rule item                          payload {"amount": 1200}
    ──────────────────────────────────────   ────────────────────────
    {"account_code": "5100",                 debit  5100  1200.00
     "direction": "debit",
     "amount_config": {"field": "amount"}}
    {"account_code": "2100",                 credit 2100   216.00
     "direction": "credit",
     "amount_config": {"field": "amount",
                       "operator": "%",
                       "operand": 18}}

Narrations may reference payload fields and the instance reference as
``%field%`` / ``%reference%``. Entries must balance; the posted entry is
handed to a ``JournalSink`` (or kept on the plugin result when none is
configured).

Tags:
    events, plugins, journal, double-entry

Doc-Types:
    api-reference
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Mapping, Protocol

from ledger_recurring.core.models.events import EventInstance, EventTemplate, PluginResult
from ledger_recurring.core.timestamps import generate_ulid

_PLACEHOLDER = re.compile(r"%([a-zA-Z0-9_]+)%")
_CENT = Decimal("0.01")


class EventPlugin(Protocol):
    """Plugin contract: ``await plugin(template, instance, context)``."""

    name: str

    async def __call__(
        self,
        template: EventTemplate,
        instance: EventInstance,
        context: Mapping[str, Any],
    ) -> PluginResult:
        ...


@dataclass
class JournalLine:
    account: str
    debit: Decimal = Decimal("0")
    credit: Decimal = Decimal("0")
    narration: str | None = None


@dataclass
class JournalEntry:
    organization_id: str
    reference: str
    description: str
    lines: list[JournalLine] = field(default_factory=list)
    user_id: str | None = None

    @property
    def total_debit(self) -> Decimal:
        return sum((line.debit for line in self.lines), Decimal("0"))

    @property
    def total_credit(self) -> Decimal:
        return sum((line.credit for line in self.lines), Decimal("0"))

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for line in data["lines"]:
            line["debit"] = str(line["debit"])
            line["credit"] = str(line["credit"])
        return data


class JournalSink(Protocol):
    """Posts a journal entry and returns its id."""

    def __call__(self, entry: JournalEntry) -> str:
        ...


def render_narration(template_text: str | list[str] | None, payload: Mapping[str, Any], reference: str) -> str:
    """Substitute ``%field%`` placeholders from the payload and ``%reference%``."""
    if isinstance(template_text, list):
        template_text = "".join(template_text)
    if not template_text:
        return ""

    def replace(match: re.Match[str]) -> str:
        key = match.group(1)
        if key == "reference":
            return reference
        value = payload.get(key)
        return "" if value is None else str(value)

    return _PLACEHOLDER.sub(replace, template_text)


def compute_amount(amount_config: Mapping[str, Any], payload: Mapping[str, Any]) -> Decimal:
    """Evaluate one ``amount_config`` against the payload, rounded half-up to cents.

    Raises:
        ValueError: Non-numeric payload value or unknown operator
    """
    field_name = amount_config.get("field")
    operator = amount_config.get("operator", "direct")
    try:
        base = Decimal(str(payload.get(field_name) or 0))
        operand = Decimal(str(amount_config.get("operand") or 0))
    except InvalidOperation as exc:
        raise ValueError(f"Amount field {field_name!r} is not numeric") from exc

    if operator == "direct":
        amount = base
    elif operator == "%":
        amount = base * operand / 100
    elif operator == "+":
        amount = base + operand
    elif operator == "-":
        amount = base - operand
    elif operator == "*":
        amount = base * operand
    else:
        raise ValueError(f"Unknown amount operator {operator!r}")
    return amount.quantize(_CENT, rounding=ROUND_HALF_UP)


class JournalPlugin:
    """Builds a balanced journal entry from the template's line rules."""

    name = "journal"

    def __init__(self, sink: JournalSink | None = None) -> None:
        self.sink = sink

    def build_entry(
        self,
        template: EventTemplate,
        instance: EventInstance,
        context: Mapping[str, Any],
    ) -> JournalEntry:
        payload = instance.payload if isinstance(instance.payload, Mapping) else {}
        lines: list[JournalLine] = []
        for rule in template.lines_rule:
            account = rule.get("account_id") or rule.get("account_code")
            if not account:
                raise ValueError("Each line rule must include account_code or account_id")
            amount = compute_amount(rule.get("amount_config") or {}, payload)
            direction = rule.get("direction")
            if direction not in ("debit", "credit"):
                raise ValueError(f"Line direction must be debit or credit, got {direction!r}")
            lines.append(
                JournalLine(
                    account=str(account),
                    debit=amount if direction == "debit" else Decimal("0"),
                    credit=amount if direction == "credit" else Decimal("0"),
                    narration=render_narration(rule.get("narration_config"), payload, instance.reference) or None,
                )
            )

        description = render_narration(template.narration_config, payload, instance.reference)
        return JournalEntry(
            organization_id=instance.organization_id,
            reference=instance.reference,
            description=description or f"Event {instance.type} {instance.reference}",
            lines=lines,
            user_id=context.get("user_id"),
        )

    async def __call__(
        self,
        template: EventTemplate,
        instance: EventInstance,
        context: Mapping[str, Any],
    ) -> PluginResult:
        try:
            entry = self.build_entry(template, instance, context)
            if not entry.lines:
                raise ValueError(f"Template {template.orchid} has no line rules")
            if entry.total_debit != entry.total_credit:
                raise ValueError(
                    f"Journal entry is not balanced: debit {entry.total_debit} != credit {entry.total_credit}"
                )
            entry_id = self.sink(entry) if self.sink else generate_ulid()
        except ValueError as exc:
            return PluginResult(plugin=self.name, success=False, error=str(exc))
        return PluginResult(plugin=self.name, success=True, result_id=entry_id, detail=entry.to_dict())


def default_plugins() -> dict[str, EventPlugin]:
    return {"journal": JournalPlugin()}
