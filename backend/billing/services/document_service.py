# Overview: Document numbering, lookup, listing and e-mail requests.

from __future__ import annotations

import re
from datetime import datetime

from flask import current_app
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError

from ..events import DOCUMENT_EMAIL_REQUESTED, document_event, emit
from ..extensions import db
from ..models import Document, DocumentLine, DocumentSequence, EmailRecipient
from ..time_utils import utcnow
from ..validation import NotFoundError, ValidationError, ensure_document_kind
from .concurrency import run_with_retry
from .totals import LineItem, Totals, quantize


EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

PREFIX_CONFIG_KEYS = {
    "receipt": "RECEIPT_NUMBER_PREFIX",
    "invoice": "INVOICE_NUMBER_PREFIX",
}


def document_prefix(kind: str) -> str:
    return current_app.config[PREFIX_CONFIG_KEYS[ensure_document_kind(kind)]]


def format_document_number(prefix: str, year: int, number: int, pad: int = 4) -> str:
    return f"{prefix}-{year}-{number:0{pad}d}"


def parse_sequence_suffix(document_number: str | None) -> int | None:
    """REC-2026-0042 -> 42. Returns None for anything not ending in digits."""
    if not document_number:
        return None
    tail = document_number.rsplit("-", 1)[-1]
    return int(tail) if tail.isdigit() else None


def _existing_count(org_id: int, kind: str) -> int:
    return (
        db.session.query(func.count(Document.id))
        .filter(Document.org_id == org_id, Document.kind == kind)
        .scalar()
        or 0
    )


def next_document_number(
    org_id: int,
    kind: str,
    *,
    year: int | None = None,
    pad: int = 4,
) -> str:
    """
    Atomically allocate the next document number for an org/kind.

    The counter row is incremented in a single UPDATE so two requests never
    read the same value. A missing row is seeded from the number of
    documents already stored, which keeps suffixes increasing for tenants
    whose documents predate the counter.

    Flushes but does not commit: the allocation lands with the document.
    """
    prefix = document_prefix(kind)
    year = year or utcnow().year

    def _current() -> int:
        return (
            db.session.query(DocumentSequence.next_number)
            .filter_by(org_id=org_id, document_kind=kind)
            .scalar()
        )

    def _op() -> str:
        if not org_id:
            raise ValidationError("org_id is required", details={"field": "org_id"})

        stmt = (
            update(DocumentSequence)
            .where(
                DocumentSequence.org_id == org_id,
                DocumentSequence.document_kind == kind,
            )
            .values(next_number=DocumentSequence.next_number + 1)
        )

        result = db.session.execute(stmt)
        if result.rowcount:
            db.session.flush()
            next_num = _current() - 1
        else:
            seeded = _existing_count(org_id, kind) + 1
            seq = DocumentSequence(org_id=org_id, document_kind=kind, next_number=seeded + 1)
            db.session.add(seq)
            try:
                db.session.flush()
                next_num = seeded
            except IntegrityError:
                # Another request seeded the row first; take the next value from it.
                db.session.rollback()
                result = db.session.execute(stmt)
                if not result.rowcount:
                    raise
                db.session.flush()
                next_num = _current() - 1

        return format_document_number(prefix, year, next_num, pad)

    return run_with_retry(_op)


def resync_document_sequence(org_id: int, kind: str) -> int:
    """
    Re-seed the counter so the next allocation is past every stored number.

    Used after a uniqueness collision, and by the CLI after imports.
    Returns the next number that will be handed out.
    """
    ensure_document_kind(kind)
    numbers = (
        db.session.query(Document.document_number)
        .filter(Document.org_id == org_id, Document.kind == kind)
        .all()
    )
    highest = max((parse_sequence_suffix(n) or 0 for (n,) in numbers), default=0)
    next_number = max(highest, len(numbers)) + 1

    seq = db.session.query(DocumentSequence).filter_by(org_id=org_id, document_kind=kind).first()
    if seq is None:
        db.session.add(DocumentSequence(org_id=org_id, document_kind=kind, next_number=next_number))
    elif seq.next_number < next_number:
        seq.next_number = next_number
    else:
        next_number = seq.next_number
    db.session.commit()
    return next_number


def get_document(org_id: int, kind: str, doc_id: int) -> Document:
    ensure_document_kind(kind)
    doc = db.session.query(Document).filter_by(id=doc_id, org_id=org_id, kind=kind).first()
    if doc is None:
        raise NotFoundError(f"{kind.capitalize()} not found", details={"id": doc_id})
    return doc


def get_document_by_number(org_id: int, kind: str, document_number: str) -> Document:
    ensure_document_kind(kind)
    doc = (
        db.session.query(Document)
        .filter_by(org_id=org_id, kind=kind, document_number=document_number)
        .first()
    )
    if doc is None:
        raise NotFoundError(
            f"{kind.capitalize()} not found",
            details={"document_number": document_number},
        )
    return doc


def list_documents(
    org_id: int,
    kind: str,
    *,
    status: str | None = None,
    scenario: str | None = None,
    customer_email: str | None = None,
    store_id: int | None = None,
    from_date: datetime | None = None,
    to_date: datetime | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Document], int]:
    """
    List one tenant's documents of a kind, newest first.
    """
    ensure_document_kind(kind)
    query = db.session.query(Document).filter(Document.org_id == org_id, Document.kind == kind)

    if status:
        query = query.filter(Document.status == status)
    if scenario:
        query = query.filter(Document.scenario == scenario)
    if customer_email:
        query = query.filter(func.lower(Document.customer_email) == customer_email.strip().lower())
    if store_id:
        query = query.filter(Document.store_id == store_id)
    if from_date:
        query = query.filter(Document.created_at >= from_date)
    if to_date:
        query = query.filter(Document.created_at <= to_date)

    total = query.count()

    if offset < 0:
        offset = 0
    if limit < 1:
        limit = 1
    if limit > 500:
        limit = 500

    rows = (
        query.order_by(Document.created_at.desc(), Document.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return rows, total


def request_document_email(
    org_id: int,
    kind: str,
    doc_id: int,
    *,
    email: str | None = None,
    actor_user_id: int | None = None,
) -> EmailRecipient:
    """
    Append an e-mail dispatch request for a document.

    Defaults to the customer's e-mail. Delivery is the dispatch
    collaborator's job; this only records the request and emits an event.
    """
    doc = get_document(org_id, kind, doc_id)
    address = (email or doc.customer_email or "").strip()
    if not address:
        raise ValidationError("email is required: document has no customer email", details={"field": "email"})
    if not EMAIL_RE.match(address):
        raise ValidationError("email is not a valid address", details={"field": "email"})

    recipient = EmailRecipient(document_id=doc.id, email=address, requested_by_user_id=actor_user_id)
    db.session.add(recipient)
    db.session.commit()

    emit(document_event(DOCUMENT_EMAIL_REQUESTED, doc, actor_user_id=actor_user_id, email=address))
    return recipient


def build_document_lines(lines: list[LineItem]) -> list[DocumentLine]:
    return [
        DocumentLine(
            position=i,
            name=line.name,
            description=line.description or None,
            quantity=line.quantity,
            unit_price=quantize(line.unit_price),
            total_price=quantize(line.total_price),
            tax_rate=line.tax_rate,
        )
        for i, line in enumerate(lines)
    ]


def apply_totals(doc: Document, totals: Totals) -> None:
    """Store totals on a document, rounded to cents."""
    rounded = totals.quantized()
    doc.subtotal = rounded.subtotal
    doc.tax_amount = rounded.tax_amount
    doc.discount_amount = rounded.discount_amount
    # Derived from the rounded parts so the stored row reconciles exactly.
    doc.total_amount = rounded.subtotal + rounded.tax_amount - rounded.discount_amount
