# Overview: In-process domain events emitted after document state is committed.

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable

from flask import Flask, current_app

from .extensions import db


DOCUMENT_CREATED = "document.created"
DOCUMENT_UPDATED = "document.updated"
DOCUMENT_CANCELLED = "document.cancelled"
DOCUMENT_REFUNDED = "document.refunded"
DOCUMENT_EMAIL_REQUESTED = "document.email_requested"

ALL_EVENTS = "*"

EXTENSION_KEY = "billing_events"


@dataclass(frozen=True)
class DomainEvent:
    """
    Something that happened to a persisted document.

    Events are only published after the transaction that produced them has
    committed, so handlers always observe durable state.
    """
    name: str
    org_id: int
    document_id: int
    document_kind: str
    document_number: str
    actor_user_id: int | None = None
    customer_name: str | None = None
    before: dict | None = None
    after: dict | None = None
    payload: dict[str, Any] = field(default_factory=dict)


def document_event(
    name: str,
    doc,
    *,
    actor_user_id: int | None = None,
    before: dict | None = None,
    **payload: Any,
) -> DomainEvent:
    """Build an event from a committed Document; `after` is its current summary."""
    return DomainEvent(
        name=name,
        org_id=doc.org_id,
        document_id=doc.id,
        document_kind=doc.kind,
        document_number=doc.document_number,
        actor_user_id=actor_user_id,
        customer_name=doc.customer_name,
        before=before,
        after=doc.summary(),
        payload=payload,
    )


Handler = Callable[[DomainEvent], None]


class EventBus:
    """
    Synchronous publish/subscribe registry.

    A failing handler is logged and its session work rolled back; the
    remaining handlers still run and the publishing operation is not undone.
    """

    def __init__(self):
        self._handlers: dict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, name: str, handler: Handler) -> None:
        self._handlers[name].append(handler)

    def unsubscribe(self, name: str, handler: Handler) -> None:
        if handler in self._handlers.get(name, []):
            self._handlers[name].remove(handler)

    def handlers_for(self, name: str) -> list[Handler]:
        return list(self._handlers.get(name, [])) + list(self._handlers.get(ALL_EVENTS, []))

    def publish(self, event: DomainEvent) -> None:
        for handler in self.handlers_for(event.name):
            try:
                handler(event)
            except Exception:
                db.session.rollback()
                current_app.logger.exception(
                    "Event handler %s failed for %s on document %s",
                    getattr(handler, "__name__", repr(handler)),
                    event.name,
                    event.document_number,
                )


def init_app(app: Flask, bus: EventBus | None = None) -> EventBus:
    bus = bus or EventBus()
    app.extensions[EXTENSION_KEY] = bus
    return bus


def get_event_bus() -> EventBus:
    return current_app.extensions[EXTENSION_KEY]


def emit(*events: DomainEvent) -> None:
    bus = get_event_bus()
    for event in events:
        bus.publish(event)
