# Overview: Document lifecycle: line edits, cancellation and refunds.

"""
Billing Document Lifecycle Service

STATE MACHINE:
    active -> cancelled
    active -> refunded

    active:    issued; line items may still be edited (totals recomputed)
    cancelled: TERMINAL, soft state; amounts are kept as issued
    refunded:  TERMINAL; refund_amount / refund_date / refund_reason recorded

RULES:
1. No transition out of a terminal state.
2. A refunded document cannot be refunded again; the retry is a conflict and
   changes nothing.
3. Documents are never physically deleted.
4. Every mutation holds the document row lock and is checked against
   version_id, so concurrent edits cannot overwrite each other's totals.
5. Events are emitted only after the change is committed.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Literal

from flask import current_app

from ..events import (
    DOCUMENT_CANCELLED,
    DOCUMENT_REFUNDED,
    DOCUMENT_UPDATED,
    document_event,
    emit,
)
from ..extensions import db
from ..models import Document
from ..time_utils import utcnow
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    ensure_document_kind,
    parse_money,
)
from .concurrency import lock_for_update, run_with_retry
from .document_service import apply_totals, build_document_lines
from .totals import ZERO, compute_totals, parse_line_items, quantize


STATUS_ACTIVE = "active"
STATUS_CANCELLED = "cancelled"
STATUS_REFUNDED = "refunded"

VALID_STATUSES = {STATUS_ACTIVE, STATUS_CANCELLED, STATUS_REFUNDED}
DocumentStatus = Literal["active", "cancelled", "refunded"]

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    STATUS_ACTIVE: {STATUS_CANCELLED, STATUS_REFUNDED},
    STATUS_CANCELLED: set(),
    STATUS_REFUNDED: set(),
}


def validate_status(status: str) -> None:
    if status not in VALID_STATUSES:
        raise ValidationError(
            f"Invalid status '{status}'. Must be one of: {', '.join(sorted(VALID_STATUSES))}",
            details={"field": "status"},
        )


def can_transition(current: str, target: str) -> bool:
    validate_status(current)
    validate_status(target)
    return target in ALLOWED_TRANSITIONS[current]


def _conflict(doc: Document, message: str) -> ConflictError:
    return ConflictError(message, details={"document": doc.summary()})


def _locked_document(org_id: int, kind: str, doc_id: int) -> Document:
    doc = lock_for_update(
        db.session.query(Document).filter_by(id=doc_id, org_id=org_id, kind=kind)
    ).first()
    if doc is None:
        raise NotFoundError(f"{kind.capitalize()} not found", details={"id": doc_id})
    return doc


def _require_transition(doc: Document, target: str) -> None:
    if doc.status == target:
        raise _conflict(doc, f"{doc.kind.capitalize()} {doc.document_number} is already {target}")
    if not can_transition(doc.status, target):
        raise _conflict(
            doc,
            f"Cannot move {doc.kind} {doc.document_number} from {doc.status} to {target}",
        )


def cancel_document(
    org_id: int,
    kind: str,
    doc_id: int,
    *,
    actor_user_id: int | None = None,
    reason: str | None = None,
) -> Document:
    """
    Soft-cancel an active document.

    Amounts and lines stay as issued; only status and the actor are recorded.
    """
    ensure_document_kind(kind)
    captured: dict = {}

    def _op() -> Document:
        doc = _locked_document(org_id, kind, doc_id)
        _require_transition(doc, STATUS_CANCELLED)
        captured["before"] = doc.summary()

        doc.status = STATUS_CANCELLED
        doc.cancelled_at = utcnow()
        doc.cancelled_by_user_id = actor_user_id
        doc.cancel_reason = (reason or "").strip() or None
        doc.updated_by_user_id = actor_user_id
        db.session.commit()
        return doc

    doc = run_with_retry(_op)
    current_app.logger.info("Cancelled %s %s (org %s)", kind, doc.document_number, org_id)
    emit(document_event(DOCUMENT_CANCELLED, doc, actor_user_id=actor_user_id, before=captured["before"]))
    return doc


def refund_document(
    org_id: int,
    kind: str,
    doc_id: int,
    *,
    amount=None,
    reason: str | None = None,
    actor_user_id: int | None = None,
) -> Document:
    """
    Refund an active document once.

    amount defaults to the document's current total and must satisfy
    0 < amount <= total_amount. Refunding a refunded or cancelled document
    raises ConflictError carrying the document's current state.
    """
    ensure_document_kind(kind)
    requested = parse_money(amount, "amount", allow_none=True)
    captured: dict = {}

    def _op() -> Document:
        doc = _locked_document(org_id, kind, doc_id)
        _require_transition(doc, STATUS_REFUNDED)

        total = Decimal(doc.total_amount)
        refund = total if requested is None else requested
        if refund <= ZERO:
            raise ValidationError("amount must be > 0", details={"field": "amount"})
        if refund > total:
            raise ValidationError(
                f"amount {refund} exceeds document total {total}",
                details={"field": "amount", "total_amount": float(total)},
            )

        captured["before"] = doc.summary()
        doc.status = STATUS_REFUNDED
        doc.refund_amount = quantize(refund)
        doc.refund_date = utcnow()
        doc.refund_reason = (reason or "").strip() or None
        doc.refunded_by_user_id = actor_user_id
        doc.updated_by_user_id = actor_user_id
        db.session.commit()
        return doc

    doc = run_with_retry(_op)
    current_app.logger.info(
        "Refunded %s %s amount=%s (org %s)", kind, doc.document_number, doc.refund_amount, org_id
    )
    emit(document_event(DOCUMENT_REFUNDED, doc, actor_user_id=actor_user_id, before=captured["before"]))
    return doc


def update_document_lines(
    org_id: int,
    kind: str,
    doc_id: int,
    raw_lines,
    *,
    tax_amount=None,
    discount_amount=None,
    actor_user_id: int | None = None,
) -> Document:
    """
    Replace an active document's line items and recompute its totals.

    tax_amount / discount_amount keep their stored values unless given.
    """
    ensure_document_kind(kind)
    lines = parse_line_items(raw_lines)
    tax = parse_money(tax_amount, "tax_amount", allow_none=True)
    discount = parse_money(discount_amount, "discount_amount", allow_none=True)
    captured: dict = {}

    def _op() -> Document:
        doc = _locked_document(org_id, kind, doc_id)
        if doc.status != STATUS_ACTIVE:
            raise _conflict(doc, f"Only active documents can be edited ({doc.document_number} is {doc.status})")

        totals = compute_totals(
            lines,
            tax_amount=Decimal(doc.tax_amount) if tax is None else tax,
            discount_amount=Decimal(doc.discount_amount) if discount is None else discount,
        )
        captured["before"] = doc.summary()
        doc.lines = build_document_lines(lines)
        apply_totals(doc, totals)
        doc.updated_by_user_id = actor_user_id
        db.session.commit()
        return doc

    doc = run_with_retry(_op)
    emit(
        document_event(
            DOCUMENT_UPDATED,
            doc,
            actor_user_id=actor_user_id,
            before=captured["before"],
            line_count=len(lines),
        )
    )
    return doc
