from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class AuditLogEntry(db.Model):
    """
    Append-only audit trail of document actions.

    Written by the audit event handler after the action it records has been
    committed. Never updated or deleted.
    """
    __tablename__ = "audit_log"
    __table_args__ = (
        db.Index("ix_audit_log_org_occurred", "org_id", "occurred_at"),
        db.Index("ix_audit_log_resource", "resource_type", "resource_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False)
    action = db.Column(db.String(64), nullable=False)  # e.g. receipt.created
    resource_type = db.Column(db.String(32), nullable=False)
    resource_id = db.Column(db.Integer, nullable=False)
    actor_user_id = db.Column(db.Integer, nullable=True)
    before_json = db.Column(db.JSON, nullable=True)
    after_json = db.Column(db.JSON, nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "action": self.action,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "actor_user_id": self.actor_user_id,
            "before": self.before_json,
            "after": self.after_json,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class Notification(db.Model):
    """
    Outbox row for the tenant notification collaborator.

    Payload is deliberately small: tenant id, document number, customer name.
    """
    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_org_created", "org_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False)
    event_type = db.Column(db.String(64), nullable=False)
    title = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text, nullable=False)
    payload_json = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "event_type": self.event_type,
            "title": self.title,
            "message": self.message,
            "payload": self.payload_json,
            "created_at": to_utc_z(self.created_at),
        }
