# Overview: Default event handlers feeding the audit-log and notification collaborators.

"""
Audit and notification handlers.

- Audit rows are append-only: one per event, never updated.
- Notifications are queued only for document creation; delivery belongs to
  the push/notification collaborator.
- Each handler commits its own work. The document it describes is already
  committed by the time the handler runs.
"""

from __future__ import annotations

from ..extensions import db
from ..events import (
    ALL_EVENTS,
    DOCUMENT_CREATED,
    DomainEvent,
    EventBus,
)
from ..models import AuditLogEntry, Notification


def _action_name(event: DomainEvent) -> str:
    # document.created -> receipt.created / invoice.created
    verb = event.name.split(".", 1)[1]
    return f"{event.document_kind}.{verb}"


def record_audit(event: DomainEvent) -> AuditLogEntry:
    entry = AuditLogEntry(
        org_id=event.org_id,
        action=_action_name(event),
        resource_type=event.document_kind,
        resource_id=event.document_id,
        actor_user_id=event.actor_user_id,
        before_json=event.before,
        after_json=event.after,
    )
    db.session.add(entry)
    db.session.commit()
    return entry


def queue_creation_notification(event: DomainEvent) -> Notification:
    kind_label = event.document_kind.capitalize()
    customer = event.customer_name or "subscription payment"
    note = Notification(
        org_id=event.org_id,
        event_type=f"{event.document_kind}_created",
        title=f"New {kind_label} Created",
        message=f"{kind_label} {event.document_number} has been created for {customer}",
        payload_json={
            "org_id": event.org_id,
            "document_number": event.document_number,
            "customer_name": event.customer_name,
        },
    )
    db.session.add(note)
    db.session.commit()
    return note


def register_default_handlers(bus: EventBus) -> None:
    bus.subscribe(ALL_EVENTS, record_audit)
    bus.subscribe(DOCUMENT_CREATED, queue_creation_notification)
