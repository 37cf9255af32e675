"""Tests for ledger_recurring.ops.templates: event template management."""

from ledger_recurring.events.templates import TemplateCreate
from ledger_recurring.ops.requests import (
    CreateTemplateRequest,
    DeactivateTemplateRequest,
    GetTemplateRequest,
    ListTemplatesRequest,
    UpdateTemplateRequest,
)
from ledger_recurring.ops.templates import (
    create_template,
    deactivate_template,
    get_template,
    list_templates,
    update_template,
)

LINES = [
    {"account_code": "6100", "direction": "debit", "amount_config": {"field": "amount"}},
    {"account_code": "2100", "direction": "credit", "amount_config": {"field": "amount"}},
]


def _request(**kwargs):
    kwargs.setdefault("name", "Monthly rent")
    kwargs.setdefault("orchid", "rent")
    kwargs.setdefault("reference_config", {"prefix": "RENT"})
    kwargs.setdefault("input_schema", {"required": ["amount"]})
    kwargs.setdefault("lines_rule", LINES)
    return CreateTemplateRequest(**kwargs)


class TestCreateTemplate:
    def test_creates(self, ctx):
        result = create_template(ctx, _request())
        assert result.success is True
        assert result.data.id
        assert result.data.orchid == "RENT"
        assert result.data.organization_id == "org-1"
        assert result.data.plugins == ["journal"]
        assert result.data.reference_config.prefix == "RENT"

    def test_custom_plugins(self, ctx):
        result = create_template(ctx, _request(plugins=[]))
        assert result.data.plugins == []

    def test_duplicate_orchid(self, ctx):
        create_template(ctx, _request())
        result = create_template(ctx, _request(name="Again"))
        assert result.code == "VALIDATION_FAILED"
        assert "already exists" in result.error.message

    def test_same_orchid_other_tenant(self, ctx, other_ctx):
        create_template(ctx, _request())
        assert create_template(other_ctx, _request()).success is True

    def test_blank_name(self, ctx):
        assert create_template(ctx, _request(name=" ")).code == "VALIDATION_FAILED"

    def test_missing_org(self, no_org_ctx):
        assert create_template(no_org_ctx, _request()).code == "VALIDATION_FAILED"

    def test_dry_run(self, dry_ctx, ctx):
        result = create_template(dry_ctx, _request())
        assert result.success is True
        assert result.data.id == ""
        assert result.data.orchid == "RENT"
        assert list_templates(ctx).total == 0


class TestListTemplates:
    def test_ordered_by_orchid(self, ctx):
        create_template(ctx, _request(orchid="payroll", name="Payroll"))
        create_template(ctx, _request())
        result = list_templates(ctx)
        assert [t.orchid for t in result.data] == ["PAYROLL", "RENT"]
        assert result.total == 2
        assert result.has_more is False

    def test_empty(self, ctx):
        result = list_templates(ctx)
        assert result.success is True
        assert result.data == []

    def test_include_inactive(self, ctx):
        created = create_template(ctx, _request()).data
        deactivate_template(ctx, DeactivateTemplateRequest(template_id=created.id))
        assert list_templates(ctx).total == 0
        assert list_templates(ctx, ListTemplatesRequest(include_inactive=True)).total == 1

    def test_missing_org(self, no_org_ctx):
        assert list_templates(no_org_ctx).code == "VALIDATION_FAILED"


class TestDeactivateTemplate:
    def test_by_orchid(self, ctx):
        create_template(ctx, _request())
        result = deactivate_template(ctx, DeactivateTemplateRequest(template_id="RENT"))
        assert result.success is True
        assert list_templates(ctx, ListTemplatesRequest(include_inactive=True)).data[0].is_active is False

    def test_not_found(self, ctx):
        result = deactivate_template(ctx, DeactivateTemplateRequest(template_id="NOPE"))
        assert result.code == "NOT_FOUND"

    def test_other_tenant(self, ctx, other_ctx):
        create_template(ctx, _request())
        assert deactivate_template(other_ctx, DeactivateTemplateRequest(template_id="RENT")).code == "NOT_FOUND"

    def test_system_generated_refused(self, ctx, templates):
        templates.create(
            TemplateCreate(organization_id="org-1", name="Opening balance", orchid="OB", is_system_generated=True)
        )
        result = deactivate_template(ctx, DeactivateTemplateRequest(template_id="OB"))
        assert result.code == "VALIDATION_FAILED"
        assert "system generated" in result.error.message

    def test_dry_run(self, ctx, dry_ctx):
        create_template(ctx, _request())
        assert deactivate_template(dry_ctx, DeactivateTemplateRequest(template_id="RENT")).success is True
        assert list_templates(ctx).total == 1

    def test_requires_id(self, ctx):
        assert deactivate_template(ctx, DeactivateTemplateRequest()).code == "VALIDATION_FAILED"


class TestGetTemplate:
    def test_by_orchid_or_id(self, ctx):
        created = create_template(ctx, _request()).data
        assert get_template(ctx, GetTemplateRequest(template_id="rent")).data.id == created.id
        assert get_template(ctx, GetTemplateRequest(template_id=created.id)).data.orchid == "RENT"

    def test_inactive_still_visible(self, ctx):
        create_template(ctx, _request())
        deactivate_template(ctx, DeactivateTemplateRequest(template_id="RENT"))
        assert get_template(ctx, GetTemplateRequest(template_id="RENT")).data.is_active is False

    def test_other_tenant(self, ctx, other_ctx):
        create_template(ctx, _request())
        assert get_template(other_ctx, GetTemplateRequest(template_id="RENT")).code == "NOT_FOUND"

    def test_requires_id(self, ctx):
        assert get_template(ctx, GetTemplateRequest()).code == "VALIDATION_FAILED"


class TestUpdateTemplate:
    def test_updates_fields(self, ctx):
        create_template(ctx, _request())
        result = update_template(
            ctx,
            UpdateTemplateRequest(template_id="RENT", name="Office rent", input_schema={"required": ["amount", "month"]}),
        )
        assert result.success is True
        assert result.data.name == "Office rent"
        assert result.data.required_fields == ["amount", "month"]
        assert result.data.lines_rule == LINES

    def test_reference_config_merged(self, ctx):
        create_template(ctx, _request(reference_config={"prefix": "RENT", "length": 4}))
        result = update_template(ctx, UpdateTemplateRequest(template_id="RENT", reference_config={"prefix": "RNT"}))
        assert result.data.reference_config.prefix == "RNT"
        assert result.data.reference_config.length == 4

    def test_blank_name(self, ctx):
        create_template(ctx, _request())
        result = update_template(ctx, UpdateTemplateRequest(template_id="RENT", name="  "))
        assert result.code == "VALIDATION_FAILED"

    def test_not_found(self, ctx):
        assert update_template(ctx, UpdateTemplateRequest(template_id="NOPE", name="x")).code == "NOT_FOUND"

    def test_other_tenant(self, ctx, other_ctx):
        create_template(ctx, _request())
        result = update_template(other_ctx, UpdateTemplateRequest(template_id="RENT", name="Stolen"))
        assert result.code == "NOT_FOUND"
        assert get_template(ctx, GetTemplateRequest(template_id="RENT")).data.name == "Monthly rent"

    def test_dry_run(self, ctx, dry_ctx):
        create_template(ctx, _request())
        result = update_template(dry_ctx, UpdateTemplateRequest(template_id="RENT", name="Preview", plugins=[]))
        assert result.data.name == "Preview"
        assert result.data.plugins == []
        assert result.metadata == {"dry_run": True}
        assert get_template(ctx, GetTemplateRequest(template_id="RENT")).data.name == "Monthly rent"
