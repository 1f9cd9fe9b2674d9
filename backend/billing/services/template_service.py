"""
Template configuration resolution.

Company identity and branding on a document come from up to four layers,
merged field by field (highest wins):

    REQUEST  explicit company block / logo supplied with this one document
    TENANT   selected TemplateSettings row for (org, kind), plus org contact fields
    STORE    selected store identity (name, website, logo only)
    DEFAULT  empty strings and the default design/layout

A field left blank in a higher layer falls through to the next one, so the
name may come from the store while the email comes from tenant settings.
Missing tenant, store or settings rows are not errors: the layer is simply
empty. An unreadable database surfaces as IntegrationError, and an
explicitly requested template that does not exist as NotFoundError.

The TENANT row is chosen as: an explicit template id, else the template
the org prefers for the scenario, else the kind's default template. With
no flagged default the oldest template stands in.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field, fields
from typing import Any

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Organization, Store, TemplatePreference, TemplateSettings
from ..validation import (
    ConflictError,
    IntegrationError,
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    ensure_document_kind,
    validate_payload,
)
from .scenario_service import SCENARIOS


LAYER_REQUEST = "REQUEST"
LAYER_TENANT = "TENANT"
LAYER_STORE = "STORE"
LAYER_DEFAULT = "DEFAULT"
PRECEDENCE = [LAYER_REQUEST, LAYER_TENANT, LAYER_STORE]

COLOR_RE = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")
LOGO_POSITIONS = ("top-left", "top-right", "top-center")

DEFAULT_LOGO_POSITION = "top-left"
DEFAULT_PRIMARY_COLOR = "#000000"
DEFAULT_SECONDARY_COLOR = "#666666"
DEFAULT_BACKGROUND_COLOR = "#ffffff"
DEFAULT_HEADER_STYLE = "standard"
DEFAULT_FOOTER_STYLE = "standard"

ADDRESS_FIELDS = ("street", "city", "state", "zip_code", "country")
COMPANY_FIELDS = ("name", "email", "phone", "website", "logo", "logo_position")


@dataclass(frozen=True)
class CompanyAddress:
    street: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    country: str = ""

    def is_empty(self) -> bool:
        return not any(getattr(self, f) for f in ADDRESS_FIELDS)


@dataclass(frozen=True)
class CompanyInfo:
    """Company header copied onto a document. Every field is a string, never None."""
    name: str = ""
    email: str = ""
    phone: str = ""
    website: str = ""
    logo: str = ""
    logo_position: str = DEFAULT_LOGO_POSITION
    address: CompanyAddress = field(default_factory=CompanyAddress)

    def is_empty(self) -> bool:
        return not any(getattr(self, f) for f in ("name", "email", "phone", "website", "logo")) and self.address.is_empty()

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class DesignConfig:
    primary_color: str = DEFAULT_PRIMARY_COLOR
    secondary_color: str = DEFAULT_SECONDARY_COLOR
    background_color: str = DEFAULT_BACKGROUND_COLOR

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class LayoutConfig:
    logo_position: str = DEFAULT_LOGO_POSITION
    header_style: str = DEFAULT_HEADER_STYLE
    footer_style: str = DEFAULT_FOOTER_STYLE

    def to_dict(self) -> dict:
        return asdict(self)


# Layers. A None field means "this layer has no opinion".


@dataclass(frozen=True)
class RequestOverride:
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    website: str | None = None
    logo: str | None = None
    logo_position: str | None = None
    address: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: dict | None) -> "RequestOverride | None":
        """
        Build an override from a request's `company_info` block.

        Accepts the nested address shape or flat address keys.
        """
        if not payload:
            return None
        if not isinstance(payload, dict):
            raise ValidationError("company_info must be an object", details={"field": "company_info"})
        known = set(COMPANY_FIELDS) | {"address"} | set(ADDRESS_FIELDS)
        unknown = sorted(k for k in payload if k not in known)
        if unknown:
            raise ValidationError(
                f"Unknown company_info fields: {', '.join(unknown)}",
                details={"fields": [f"company_info.{k}" for k in unknown]},
            )
        address = payload.get("address") or {}
        if not isinstance(address, dict):
            raise ValidationError("company_info.address must be an object", details={"field": "company_info.address"})
        address = {**{k: payload[k] for k in ADDRESS_FIELDS if k in payload}, **address}
        logo_position = payload.get("logo_position")
        if logo_position and logo_position not in LOGO_POSITIONS:
            raise ValidationError(
                f"company_info.logo_position must be one of {list(LOGO_POSITIONS)}",
                details={"field": "company_info.logo_position"},
            )
        return cls(
            **{k: _text(payload.get(k)) for k in COMPANY_FIELDS},
            address={k: _text(address.get(k)) for k in ADDRESS_FIELDS if address.get(k) is not None},
        )


@dataclass(frozen=True)
class TenantLayer:
    template_id: int | None = None
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    website: str | None = None
    logo: str | None = None
    logo_position: str | None = None
    address: dict[str, str] = field(default_factory=dict)
    design: dict[str, str] = field(default_factory=dict)
    layout: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class StoreLayer:
    name: str | None = None
    website: str | None = None
    logo: str | None = None


@dataclass(frozen=True)
class ResolvedTemplate:
    company: CompanyInfo
    design: DesignConfig
    layout: LayoutConfig
    sources: dict[str, str] = field(default_factory=dict)
    template_id: int | None = None

    def to_dict(self) -> dict:
        return {
            "company_info": self.company.to_dict(),
            "design": self.design.to_dict(),
            "layout": self.layout.to_dict(),
            "sources": dict(self.sources),
            "template_id": self.template_id,
        }


def _text(value: Any) -> str | None:
    if value is None:
        return None
    return str(value).strip()


def _select_template(
    org_id: int,
    kind: str,
    scenario: str | None = None,
    template_id: int | None = None,
) -> TemplateSettings | None:
    query = db.session.query(TemplateSettings).filter_by(org_id=org_id, document_kind=kind)
    if template_id is not None:
        row = query.filter_by(id=template_id).first()
        if row is None:
            raise NotFoundError(f"Template {template_id} not found", details={"template_id": template_id})
        return row
    if scenario:
        pref = (
            db.session.query(TemplatePreference)
            .filter_by(org_id=org_id, document_kind=kind, scenario=scenario)
            .first()
        )
        if pref is not None and pref.template is not None:
            return pref.template
    return query.order_by(TemplateSettings.is_default.desc(), TemplateSettings.id.asc()).first()


def _load_tenant_layer(
    org_id: int,
    kind: str,
    scenario: str | None = None,
    template_id: int | None = None,
) -> TenantLayer:
    org = db.session.query(Organization).filter_by(id=org_id).first()
    row = _select_template(org_id, kind, scenario, template_id)
    if row is None and org is None:
        return TenantLayer()

    # Tenant contact fields back up the template's own contact fields.
    org_email = _text(org.email) if org else None
    org_phone = _text(org.phone) if org else None
    if row is None:
        return TenantLayer(email=org_email, phone=org_phone)

    return TenantLayer(
        template_id=row.id,
        name=_text(row.store_name),
        email=_text(row.email) or org_email,
        phone=_text(row.phone) or org_phone,
        website=_text(row.store_website),
        logo=_text(row.store_logo),
        logo_position=_text(row.logo_position),
        address={
            "street": _text(row.address_street),
            "city": _text(row.address_city),
            "state": _text(row.address_state),
            "zip_code": _text(row.address_zip_code),
            "country": _text(row.address_country),
        },
        design={
            "primary_color": _text(row.primary_color),
            "secondary_color": _text(row.secondary_color),
            "background_color": _text(row.background_color),
        },
        layout={
            "logo_position": _text(row.logo_position),
            "header_style": _text(row.header_style),
            "footer_style": _text(row.footer_style),
        },
    )


def _load_store_layer(org_id: int, store_id: int | None) -> StoreLayer:
    if not store_id:
        return StoreLayer()
    # Scoped to the tenant: another org's store contributes nothing.
    store = db.session.query(Store).filter_by(id=store_id, org_id=org_id).first()
    if store is None:
        return StoreLayer()
    return StoreLayer(name=_text(store.name), website=_text(store.url), logo=_text(store.logo_url))


def _pick(layers: list[tuple[str, Any]], key: str, default: str, getter=getattr) -> tuple[str, str]:
    for layer_name, layer in layers:
        value = getter(layer, key, None)
        if value:
            return value, layer_name
    return default, LAYER_DEFAULT


def merge_layers(
    override: RequestOverride | None,
    tenant: TenantLayer,
    store: StoreLayer,
) -> ResolvedTemplate:
    """Field-by-field merge of already-loaded layers. Pure."""
    layers: list[tuple[str, Any]] = []
    if override is not None:
        layers.append((LAYER_REQUEST, override))
    layers.append((LAYER_TENANT, tenant))
    layers.append((LAYER_STORE, store))

    sources: dict[str, str] = {}
    company: dict[str, Any] = {}
    for key in COMPANY_FIELDS:
        default = DEFAULT_LOGO_POSITION if key == "logo_position" else ""
        company[key], sources[key] = _pick(layers, key, default)

    address_layers = [(n, l.address) for n, l in layers if hasattr(l, "address")]
    address: dict[str, str] = {}
    for key in ADDRESS_FIELDS:
        address[key], sources[f"address.{key}"] = _pick(
            address_layers, key, "", getter=lambda d, k, _: d.get(k)
        )

    design: dict[str, str] = {}
    for f in fields(DesignConfig):
        design[f.name] = tenant.design.get(f.name) or f.default

    layout: dict[str, str] = {}
    for f in fields(LayoutConfig):
        layout[f.name] = tenant.layout.get(f.name) or f.default
    # A per-document logo position also moves the layout's logo slot.
    layout["logo_position"] = company["logo_position"]

    return ResolvedTemplate(
        company=CompanyInfo(address=CompanyAddress(**address), **company),
        design=DesignConfig(**design),
        layout=LayoutConfig(**layout),
        sources=sources,
        template_id=tenant.template_id,
    )


def resolve_template(
    org_id: int,
    kind: str,
    store_id: int | None = None,
    override: RequestOverride | None = None,
    *,
    scenario: str | None = None,
    template_id: int | None = None,
) -> ResolvedTemplate:
    ensure_document_kind(kind)
    try:
        tenant = _load_tenant_layer(org_id, kind, scenario, template_id)
        store = _load_store_layer(org_id, store_id)
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error("Template configuration unreadable for org %s: %s", org_id, exc)
        raise IntegrationError("Template configuration is unavailable") from exc
    return merge_layers(override, tenant, store)


def resolve_company_info(
    org_id: int,
    kind: str,
    store_id: int | None = None,
    override: RequestOverride | None = None,
) -> CompanyInfo:
    return resolve_template(org_id, kind, store_id=store_id, override=override).company


# Settings management


TEMPLATE_SETTINGS_POLICY = ModelValidationPolicy(
    writable_fields={
        "store_name",
        "store_website",
        "store_logo",
        "email",
        "phone",
        "address_street",
        "address_city",
        "address_state",
        "address_zip_code",
        "address_country",
        "primary_color",
        "secondary_color",
        "background_color",
        "logo_position",
        "header_style",
        "footer_style",
    },
    required_on_create=set(),
)

TEMPLATE_POLICY = ModelValidationPolicy(
    writable_fields=TEMPLATE_SETTINGS_POLICY.writable_fields | {"name", "template_type", "is_default"},
    required_on_create={"name"},
)

TEMPLATE_TYPES = ("professional", "modern", "minimal", "classic", "custom")
DEFAULT_TEMPLATE_NAME = "Default"

# Nested request shape -> column name
_NESTED_KEYS = {
    "store_info": {"name": "store_name", "website": "store_website", "logo": "store_logo"},
    "address": {k: f"address_{k}" for k in ADDRESS_FIELDS},
    "design": {
        "primary_color": "primary_color",
        "secondary_color": "secondary_color",
        "background_color": "background_color",
    },
    "layout": {
        "logo_position": "logo_position",
        "header_style": "header_style",
        "footer_style": "footer_style",
    },
}


def _flatten_settings_payload(payload: dict) -> dict:
    flat: dict = {}
    for key, value in payload.items():
        mapping = _NESTED_KEYS.get(key)
        if mapping is None:
            flat[key] = value
            continue
        if not isinstance(value, dict):
            raise ValidationError(f"{key} must be an object", details={"field": key})
        for sub_key, sub_value in value.items():
            if sub_key not in mapping:
                raise ValidationError(f"Field not allowed: {key}.{sub_key}", details={"field": f"{key}.{sub_key}"})
            flat[mapping[sub_key]] = sub_value
    return flat


def _validate_branding(patch: dict) -> None:
    for key in ("primary_color", "secondary_color", "background_color"):
        value = patch.get(key)
        if value and not COLOR_RE.match(value):
            raise ValidationError(f"{key}: expected hex color", details={"field": key})
    position = patch.get("logo_position")
    if position and position not in LOGO_POSITIONS:
        raise ValidationError(
            f"logo_position: expected one of {list(LOGO_POSITIONS)}",
            details={"field": "logo_position"},
        )


def _require_org(org_id: int) -> Organization:
    org = db.session.query(Organization).filter_by(id=org_id).first()
    if org is None:
        raise NotFoundError("Organization not found", details={"org_id": org_id})
    return org


def _template_query(org_id: int, kind: str):
    return db.session.query(TemplateSettings).filter_by(org_id=org_id, document_kind=kind)


def _clean_patch(payload: dict, policy: ModelValidationPolicy, *, partial: bool) -> dict:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    patch = validate_payload(
        model=TemplateSettings,
        payload=_flatten_settings_payload(payload),
        policy=policy,
        partial=partial,
    )
    _validate_branding(patch)
    if "name" in patch and not patch["name"]:
        raise ValidationError("name cannot be blank", details={"field": "name"})
    template_type = patch.get("template_type")
    if template_type is not None and template_type not in TEMPLATE_TYPES:
        raise ValidationError(
            f"template_type: expected one of {list(TEMPLATE_TYPES)}",
            details={"field": "template_type"},
        )
    return patch


def _ensure_unique_name(org_id: int, kind: str, name: str, exclude_id: int | None = None) -> None:
    query = _template_query(org_id, kind).filter_by(name=name)
    if exclude_id is not None:
        query = query.filter(TemplateSettings.id != exclude_id)
    if query.first() is not None:
        raise ConflictError(
            f"A {kind} template named '{name}' already exists",
            details={"field": "name", "name": name},
        )


def _make_default(org_id: int, kind: str, row: TemplateSettings) -> None:
    for other in _template_query(org_id, kind).filter(TemplateSettings.is_default.is_(True)):
        if other.id != row.id:
            other.is_default = False
    row.is_default = True


def get_template_settings(org_id: int, kind: str) -> TemplateSettings | None:
    """The kind's default template, or None when the tenant has none."""
    ensure_document_kind(kind)
    return _select_template(org_id, kind)


def update_template_settings(
    org_id: int,
    kind: str,
    payload: dict,
    *,
    actor_user_id: int | None = None,
) -> TemplateSettings:
    """
    Create or patch the tenant's default template for one document kind.

    Already-generated documents keep their own snapshots; nothing here
    touches them.
    """
    ensure_document_kind(kind)
    _require_org(org_id)
    patch = _clean_patch(payload, TEMPLATE_SETTINGS_POLICY, partial=True)

    row = get_template_settings(org_id, kind)
    if row is None:
        row = TemplateSettings(org_id=org_id, document_kind=kind, name=DEFAULT_TEMPLATE_NAME, is_default=True)
        db.session.add(row)
    for key, value in patch.items():
        setattr(row, key, value)
    row.updated_by_user_id = actor_user_id
    db.session.commit()
    current_app.logger.info(
        "Template settings updated for org %s kind %s fields=%s", org_id, kind, sorted(patch)
    )
    return row


# Named templates


def list_templates(org_id: int, kind: str) -> list[TemplateSettings]:
    ensure_document_kind(kind)
    return (
        _template_query(org_id, kind)
        .order_by(TemplateSettings.is_default.desc(), TemplateSettings.name.asc())
        .all()
    )


def get_template(org_id: int, kind: str, template_id: int) -> TemplateSettings:
    ensure_document_kind(kind)
    row = _template_query(org_id, kind).filter_by(id=template_id).first()
    if row is None:
        raise NotFoundError(f"Template {template_id} not found", details={"template_id": template_id})
    return row


def create_template(
    org_id: int,
    kind: str,
    payload: dict,
    *,
    actor_user_id: int | None = None,
) -> TemplateSettings:
    """
    Add a named template.

    The org's first template of a kind becomes its default; later ones only
    when created with is_default.
    """
    ensure_document_kind(kind)
    _require_org(org_id)
    patch = _clean_patch(payload, TEMPLATE_POLICY, partial=False)
    _ensure_unique_name(org_id, kind, patch["name"])

    make_default = bool(patch.pop("is_default", False))
    if _template_query(org_id, kind).first() is None:
        make_default = True

    row = TemplateSettings(org_id=org_id, document_kind=kind)
    for key, value in patch.items():
        setattr(row, key, value)
    row.updated_by_user_id = actor_user_id
    db.session.add(row)
    if make_default:
        _make_default(org_id, kind, row)
    db.session.commit()
    current_app.logger.info("Template %s (%s) created for org %s kind %s", row.id, row.name, org_id, kind)
    return row


def update_template(
    org_id: int,
    kind: str,
    template_id: int,
    payload: dict,
    *,
    actor_user_id: int | None = None,
) -> TemplateSettings:
    row = get_template(org_id, kind, template_id)
    patch = _clean_patch(payload, TEMPLATE_POLICY, partial=True)
    if "name" in patch:
        _ensure_unique_name(org_id, kind, patch["name"], exclude_id=row.id)

    is_default = patch.pop("is_default", None)
    if is_default is False and row.is_default:
        raise ValidationError(
            "The default template cannot be unset; make another template the default instead",
            details={"field": "is_default"},
        )
    for key, value in patch.items():
        setattr(row, key, value)
    if is_default:
        _make_default(org_id, kind, row)
    row.updated_by_user_id = actor_user_id
    db.session.commit()
    current_app.logger.info("Template %s updated for org %s fields=%s", row.id, org_id, sorted(patch))
    return row


def set_default_template(
    org_id: int,
    kind: str,
    template_id: int,
    *,
    actor_user_id: int | None = None,
) -> TemplateSettings:
    row = get_template(org_id, kind, template_id)
    _make_default(org_id, kind, row)
    row.updated_by_user_id = actor_user_id
    db.session.commit()
    current_app.logger.info("Template %s is now the default %s template for org %s", row.id, kind, org_id)
    return row


def delete_template(org_id: int, kind: str, template_id: int) -> None:
    """
    Remove a named template and any scenario preferences pointing at it.

    Deleting the default promotes the oldest remaining template.
    """
    row = get_template(org_id, kind, template_id)
    was_default = bool(row.is_default)
    db.session.query(TemplatePreference).filter_by(template_id=row.id).delete(synchronize_session=False)
    db.session.delete(row)
    db.session.flush()
    if was_default:
        successor = _template_query(org_id, kind).order_by(TemplateSettings.id.asc()).first()
        if successor is not None:
            successor.is_default = True
    db.session.commit()
    current_app.logger.info("Template %s deleted for org %s kind %s", template_id, org_id, kind)


# Scenario preferences


def get_template_preferences(org_id: int, kind: str) -> dict[str, dict | None]:
    """Preferred template per scenario; None where the kind's default applies."""
    ensure_document_kind(kind)
    rows = db.session.query(TemplatePreference).filter_by(org_id=org_id, document_kind=kind).all()
    by_scenario = {row.scenario: row.to_dict() for row in rows}
    return {scenario: by_scenario.get(scenario) for scenario in SCENARIOS}


def set_template_preferences(
    org_id: int,
    kind: str,
    payload: dict,
    *,
    actor_user_id: int | None = None,
) -> dict[str, dict | None]:
    """
    Pick templates per scenario, e.g. {"order": 3, "subscription": None}.

    A null template id clears the preference. Scenarios left out of the
    payload are unchanged.
    """
    ensure_document_kind(kind)
    _require_org(org_id)
    if not isinstance(payload, dict) or not payload:
        raise ValidationError("Preferences must be a non-empty object", details={"field": "preferences"})
    unknown = sorted(k for k in payload if k not in SCENARIOS)
    if unknown:
        raise ValidationError(
            f"Unknown scenarios: {', '.join(unknown)}",
            details={"fields": unknown},
        )

    for scenario, raw_id in payload.items():
        pref = (
            db.session.query(TemplatePreference)
            .filter_by(org_id=org_id, document_kind=kind, scenario=scenario)
            .first()
        )
        if raw_id is None:
            if pref is not None:
                db.session.delete(pref)
            continue
        if isinstance(raw_id, bool) or not isinstance(raw_id, int):
            raise ValidationError(f"{scenario} must be a template id", details={"field": scenario})
        template = get_template(org_id, kind, raw_id)
        if pref is None:
            pref = TemplatePreference(org_id=org_id, document_kind=kind, scenario=scenario)
            db.session.add(pref)
        pref.template_id = template.id
        pref.updated_by_user_id = actor_user_id

    db.session.commit()
    current_app.logger.info(
        "Template preferences updated for org %s kind %s: %s", org_id, kind, sorted(payload)
    )
    return get_template_preferences(org_id, kind)
