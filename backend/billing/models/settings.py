from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class TemplateSettings(db.Model):
    """
    Named, tenant-owned template for one document kind.

    An org may keep several templates per kind. One is flagged default and
    feeds the TENANT layer unless a preference or request picks another.
    Holds the storeInfo override, contact fields, address and design/layout
    choices. This is configuration, not a document: it is mutable and keeps
    no history.
    Documents copy what they need at generation time.
    """
    __tablename__ = "template_settings"
    __table_args__ = (
        db.UniqueConstraint("org_id", "document_kind", "name", name="uq_template_settings_org_kind_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    document_kind = db.Column(db.String(16), nullable=False)  # receipt / invoice
    name = db.Column(db.String(120), nullable=False, default="Default")
    template_type = db.Column(db.String(32), nullable=False, default="professional")
    is_default = db.Column(db.Boolean, nullable=False, default=False)

    # storeInfo override
    store_name = db.Column(db.String(255), nullable=True)
    store_website = db.Column(db.String(512), nullable=True)
    store_logo = db.Column(db.String(1024), nullable=True)

    # Contact fields
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(64), nullable=True)

    # Address
    address_street = db.Column(db.String(255), nullable=True)
    address_city = db.Column(db.String(128), nullable=True)
    address_state = db.Column(db.String(128), nullable=True)
    address_zip_code = db.Column(db.String(32), nullable=True)
    address_country = db.Column(db.String(128), nullable=True)

    # Design
    primary_color = db.Column(db.String(16), nullable=True)
    secondary_color = db.Column(db.String(16), nullable=True)
    background_color = db.Column(db.String(16), nullable=True)

    # Layout
    logo_position = db.Column(db.String(16), nullable=True)
    header_style = db.Column(db.String(32), nullable=True)
    footer_style = db.Column(db.String(32), nullable=True)

    updated_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    organization = db.relationship("Organization", backref=db.backref("template_settings", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "document_kind": self.document_kind,
            "name": self.name,
            "template_type": self.template_type,
            "is_default": bool(self.is_default),
            "store_info": {
                "name": self.store_name,
                "website": self.store_website,
                "logo": self.store_logo,
            },
            "email": self.email,
            "phone": self.phone,
            "address": {
                "street": self.address_street,
                "city": self.address_city,
                "state": self.address_state,
                "zip_code": self.address_zip_code,
                "country": self.address_country,
            },
            "design": {
                "primary_color": self.primary_color,
                "secondary_color": self.secondary_color,
                "background_color": self.background_color,
            },
            "layout": {
                "logo_position": self.logo_position,
                "header_style": self.header_style,
                "footer_style": self.footer_style,
            },
            "updated_by_user_id": self.updated_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class TemplatePreference(db.Model):
    """
    Which template a scenario uses by default, per (org, kind).

    Lets an org print order receipts with one template and subscription
    receipts with another. Falls back to the kind's default template when
    no preference exists.
    """
    __tablename__ = "template_preferences"
    __table_args__ = (
        db.UniqueConstraint("org_id", "document_kind", "scenario", name="uq_template_preferences_org_kind_scenario"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    document_kind = db.Column(db.String(16), nullable=False)
    scenario = db.Column(db.String(16), nullable=False)  # order / subscription / manual
    template_id = db.Column(db.Integer, db.ForeignKey("template_settings.id"), nullable=False)

    updated_by_user_id = db.Column(db.Integer, nullable=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    template = db.relationship("TemplateSettings")

    def to_dict(self) -> dict:
        return {
            "scenario": self.scenario,
            "template_id": self.template_id,
            "template_name": self.template.name if self.template else None,
        }
