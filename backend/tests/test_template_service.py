# Overview: Pytest coverage for template resolution, named templates and scenario preferences.

import pytest
from sqlalchemy.exc import OperationalError

from billing.models import TemplatePreference, TemplateSettings
from billing.services import template_service
from billing.services.template_service import (
    LAYER_DEFAULT,
    LAYER_REQUEST,
    LAYER_STORE,
    LAYER_TENANT,
    RequestOverride,
    StoreLayer,
    TenantLayer,
    create_template,
    delete_template,
    get_template_preferences,
    get_template_settings,
    list_templates,
    merge_layers,
    resolve_company_info,
    resolve_template,
    set_default_template,
    set_template_preferences,
    update_template,
    update_template_settings,
)
from billing.validation import ConflictError, IntegrationError, NotFoundError, ValidationError


class TestMergeLayers:
    """Pure precedence checks, no database."""

    def test_all_empty_gives_defaults(self):
        resolved = merge_layers(None, TenantLayer(), StoreLayer())
        company = resolved.company
        assert company.name == ""
        assert company.email == ""
        assert company.logo == ""
        assert company.logo_position == "top-left"
        assert company.address.street == ""
        assert company.is_empty()
        assert resolved.design.primary_color == "#000000"
        assert resolved.layout.header_style == "standard"
        assert resolved.sources["name"] == LAYER_DEFAULT

    def test_field_by_field_precedence(self):
        resolved = merge_layers(
            RequestOverride(logo="https://cdn.test/one-off.png"),
            TenantLayer(email="tenant@acme.test", name=""),
            StoreLayer(name="Acme Online", website="https://shop.acme.test", logo="https://cdn.test/store.png"),
        )
        company = resolved.company
        assert company.name == "Acme Online"
        assert company.email == "tenant@acme.test"
        assert company.website == "https://shop.acme.test"
        assert company.logo == "https://cdn.test/one-off.png"
        assert resolved.sources["name"] == LAYER_STORE
        assert resolved.sources["email"] == LAYER_TENANT
        assert resolved.sources["logo"] == LAYER_REQUEST

    def test_tenant_beats_store(self):
        resolved = merge_layers(None, TenantLayer(name="Acme Corp"), StoreLayer(name="Acme Online"))
        assert resolved.company.name == "Acme Corp"

    def test_store_never_supplies_contact_fields(self):
        resolved = merge_layers(None, TenantLayer(), StoreLayer(name="Acme Online"))
        assert resolved.company.email == ""
        assert resolved.company.phone == ""

    def test_override_logo_position_moves_layout(self):
        resolved = merge_layers(
            RequestOverride(logo_position="top-right"),
            TenantLayer(logo_position="top-center", layout={"logo_position": "top-center"}),
            StoreLayer(),
        )
        assert resolved.company.logo_position == "top-right"
        assert resolved.layout.logo_position == "top-right"

    def test_override_from_payload_rejects_unknown_fields(self):
        with pytest.raises(ValidationError) as exc:
            RequestOverride.from_payload({"name": "X", "slogan": "Best"})
        assert exc.value.details["fields"] == ["company_info.slogan"]

    def test_override_from_payload_accepts_flat_address(self):
        override = RequestOverride.from_payload({"name": "X", "city": "Lagos"})
        assert override.address == {"city": "Lagos"}


class TestResolveTemplate:

    def test_store_fills_identity_and_org_fills_contact(self, db_session, org_a, store_a):
        company = resolve_company_info(org_a.id, "receipt", store_id=store_a.id)
        assert company.name == "Acme Online"
        assert company.website == "https://shop.acme.test"
        assert company.logo == "https://cdn.acme.test/store-logo.png"
        assert company.email == "billing@acme.test"

    def test_tenant_settings_override_store(self, db_session, org_a, store_a):
        db_session.add(
            TemplateSettings(
                org_id=org_a.id,
                document_kind="receipt",
                store_name="Acme Corporation",
                email="receipts@acme.test",
                address_city="Springfield",
                primary_color="#ff0000",
            )
        )
        db_session.commit()

        resolved = resolve_template(org_a.id, "receipt", store_id=store_a.id)
        assert resolved.company.name == "Acme Corporation"
        assert resolved.company.email == "receipts@acme.test"
        assert resolved.company.logo == "https://cdn.acme.test/store-logo.png"
        assert resolved.company.address.city == "Springfield"
        assert resolved.design.primary_color == "#ff0000"
        assert resolved.design.secondary_color == "#666666"

    def test_settings_are_per_document_kind(self, db_session, org_a, store_a):
        db_session.add(TemplateSettings(org_id=org_a.id, document_kind="invoice", store_name="Acme Invoicing"))
        db_session.commit()

        assert resolve_company_info(org_a.id, "invoice", store_id=store_a.id).name == "Acme Invoicing"
        assert resolve_company_info(org_a.id, "receipt", store_id=store_a.id).name == "Acme Online"

    def test_missing_everything_degrades_to_defaults(self, db_session):
        company = resolve_company_info(12345, "receipt", store_id=67890)
        assert company.is_empty()

    def test_foreign_store_contributes_nothing(self, db_session, org_a, store_b):
        company = resolve_company_info(org_a.id, "receipt", store_id=store_b.id)
        assert company.name == ""

    def test_invalid_kind_rejected(self, db_session, org_a):
        with pytest.raises(ValidationError):
            resolve_template(org_a.id, "quote")

    def test_unreadable_database_is_integration_error(self, db_session, org_a, monkeypatch):
        def _boom(*args):
            raise OperationalError("SELECT 1", {}, Exception("database is locked"))

        monkeypatch.setattr(template_service, "_load_tenant_layer", _boom)
        with pytest.raises(IntegrationError) as exc:
            resolve_template(org_a.id, "receipt")
        assert "locked" not in str(exc.value)


class TestTemplateSettingsManagement:

    def test_nested_payload_creates_row(self, db_session, org_a):
        row = update_template_settings(
            org_a.id,
            "receipt",
            {
                "store_info": {"name": "Acme", "logo": "https://cdn.test/logo.png"},
                "design": {"primary_color": "#123abc"},
                "layout": {"logo_position": "top-center"},
                "phone": "+1 555 0100",
            },
            actor_user_id=3,
        )
        assert row.id is not None
        assert row.store_name == "Acme"
        assert row.primary_color == "#123abc"
        assert row.logo_position == "top-center"
        assert row.updated_by_user_id == 3

    def test_patch_keeps_other_fields(self, db_session, org_a):
        update_template_settings(org_a.id, "receipt", {"store_name": "Acme", "email": "a@acme.test"})
        row = update_template_settings(org_a.id, "receipt", {"email": "b@acme.test"})
        assert row.store_name == "Acme"
        assert row.email == "b@acme.test"
        assert db_session.query(TemplateSettings).filter_by(org_id=org_a.id).count() == 1

    @pytest.mark.parametrize(
        "payload, field",
        [
            ({"primary_color": "red"}, "primary_color"),
            ({"layout": {"logo_position": "bottom"}}, "logo_position"),
            ({"slogan": "Best"}, "slogan"),
            ({"design": {"font": "Arial"}}, "design.font"),
        ],
    )
    def test_invalid_payloads(self, db_session, org_a, payload, field):
        with pytest.raises(ValidationError) as exc:
            update_template_settings(org_a.id, "receipt", payload)
        assert exc.value.details["field"] == field

    def test_unknown_org(self, db_session):
        with pytest.raises(NotFoundError):
            update_template_settings(999, "receipt", {"store_name": "Ghost"})

    def test_updates_land_on_the_default_template(self, db_session, org_a):
        create_template(org_a.id, "receipt", {"name": "Standard"})
        branded = create_template(org_a.id, "receipt", {"name": "Branded", "is_default": True})

        row = update_template_settings(org_a.id, "receipt", {"store_name": "Acme Branded"})
        assert row.id == branded.id
        assert get_template_settings(org_a.id, "receipt").store_name == "Acme Branded"


class TestNamedTemplates:

    def test_first_template_becomes_default(self, db_session, org_a):
        first = create_template(org_a.id, "invoice", {"name": "Classic", "template_type": "classic"}, actor_user_id=3)
        second = create_template(org_a.id, "invoice", {"name": "Modern", "template_type": "modern"})

        assert first.is_default is True
        assert second.is_default is False
        assert first.template_type == "classic"
        assert first.updated_by_user_id == 3
        assert [t.name for t in list_templates(org_a.id, "invoice")] == ["Classic", "Modern"]
        assert list_templates(org_a.id, "receipt") == []

    def test_set_default_moves_flag(self, db_session, org_a, store_a):
        first = create_template(org_a.id, "receipt", {"name": "Standard", "store_name": "Acme Standard"})
        second = create_template(org_a.id, "receipt", {"name": "Holiday", "store_name": "Acme Holiday"})

        set_default_template(org_a.id, "receipt", second.id)

        db_session.refresh(first)
        assert first.is_default is False
        assert second.is_default is True
        resolved = resolve_template(org_a.id, "receipt", store_id=store_a.id)
        assert resolved.company.name == "Acme Holiday"
        assert resolved.template_id == second.id
        assert resolved.sources["name"] == LAYER_TENANT

    def test_duplicate_name_is_conflict(self, db_session, org_a):
        create_template(org_a.id, "receipt", {"name": "Standard"})
        with pytest.raises(ConflictError) as exc:
            create_template(org_a.id, "receipt", {"name": "Standard"})
        assert exc.value.details["field"] == "name"
        # Same name under the other kind is fine.
        assert create_template(org_a.id, "invoice", {"name": "Standard"}).id is not None

    @pytest.mark.parametrize(
        "payload, field",
        [
            ({"name": "  "}, "name"),
            ({"name": "Odd", "template_type": "baroque"}, "template_type"),
            ({"name": "Odd", "is_default": "yes"}, "is_default"),
            ({"name": "Odd", "primary_color": "blue"}, "primary_color"),
        ],
    )
    def test_invalid_template_payloads(self, db_session, org_a, payload, field):
        with pytest.raises(ValidationError) as exc:
            create_template(org_a.id, "receipt", payload)
        assert exc.value.details["field"] == field

    def test_name_is_required(self, db_session, org_a):
        with pytest.raises(ValidationError) as exc:
            create_template(org_a.id, "receipt", {"store_name": "Acme"})
        assert exc.value.details == {"fields": ["name"]}

    def test_update_renames_and_restyles(self, db_session, org_a):
        row = create_template(org_a.id, "receipt", {"name": "Standard"})
        updated = update_template(
            org_a.id,
            "receipt",
            row.id,
            {"name": "Standard v2", "design": {"primary_color": "#0a0a0a"}},
        )
        assert updated.name == "Standard v2"
        assert updated.primary_color == "#0a0a0a"

    def test_default_cannot_be_unset_directly(self, db_session, org_a):
        row = create_template(org_a.id, "receipt", {"name": "Standard"})
        with pytest.raises(ValidationError) as exc:
            update_template(org_a.id, "receipt", row.id, {"is_default": False})
        assert exc.value.details == {"field": "is_default"}

    def test_delete_default_promotes_oldest_and_drops_preferences(self, db_session, org_a):
        first = create_template(org_a.id, "receipt", {"name": "Standard"})
        second = create_template(org_a.id, "receipt", {"name": "Web"})
        third = create_template(org_a.id, "receipt", {"name": "Kiosk"})
        set_template_preferences(org_a.id, "receipt", {"order": first.id, "manual": third.id})

        delete_template(org_a.id, "receipt", first.id)

        assert db_session.get(TemplateSettings, first.id) is None
        db_session.refresh(second)
        assert second.is_default is True
        prefs = get_template_preferences(org_a.id, "receipt")
        assert prefs["order"] is None
        assert prefs["manual"]["template_id"] == third.id
        assert db_session.query(TemplatePreference).count() == 1

    def test_other_tenants_template_is_not_found(self, db_session, org_a, org_b):
        row = create_template(org_a.id, "receipt", {"name": "Standard"})
        with pytest.raises(NotFoundError):
            set_default_template(org_b.id, "receipt", row.id)
        with pytest.raises(NotFoundError):
            delete_template(org_a.id, "invoice", row.id)

    def test_unknown_explicit_template(self, db_session, org_a):
        with pytest.raises(NotFoundError) as exc:
            resolve_template(org_a.id, "receipt", template_id=4242)
        assert exc.value.details == {"template_id": 4242}


class TestTemplatePreferences:

    def test_preference_picks_template_per_scenario(self, db_session, org_a):
        standard = create_template(org_a.id, "receipt", {"name": "Standard", "store_name": "Acme"})
        online = create_template(org_a.id, "receipt", {"name": "Online", "store_name": "Acme Web"})

        prefs = set_template_preferences(org_a.id, "receipt", {"order": online.id}, actor_user_id=5)

        assert prefs["order"] == {"scenario": "order", "template_id": online.id, "template_name": "Online"}
        assert prefs["subscription"] is None
        assert resolve_company_info(org_a.id, "receipt").name == "Acme"
        assert resolve_template(org_a.id, "receipt", scenario="order").company.name == "Acme Web"
        assert resolve_template(org_a.id, "receipt", scenario="subscription").template_id == standard.id

    def test_null_clears_preference(self, db_session, org_a):
        online = create_template(org_a.id, "receipt", {"name": "Online"})
        set_template_preferences(org_a.id, "receipt", {"order": online.id})
        prefs = set_template_preferences(org_a.id, "receipt", {"order": None})
        assert prefs["order"] is None
        assert db_session.query(TemplatePreference).count() == 0

    def test_unknown_scenario_rejected(self, db_session, org_a):
        with pytest.raises(ValidationError) as exc:
            set_template_preferences(org_a.id, "receipt", {"pos": 1})
        assert exc.value.details == {"fields": ["pos"]}

    def test_template_from_other_kind_is_not_found(self, db_session, org_a):
        invoice_template = create_template(org_a.id, "invoice", {"name": "Invoice"})
        with pytest.raises(NotFoundError):
            set_template_preferences(org_a.id, "receipt", {"order": invoice_template.id})

    def test_non_integer_template_id_rejected(self, db_session, org_a):
        with pytest.raises(ValidationError) as exc:
            set_template_preferences(org_a.id, "receipt", {"order": "3"})
        assert exc.value.details == {"field": "order"}
