from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..time_utils import to_utc_z


def _money(value: Decimal | None) -> float | None:
    return float(value) if value is not None else None


class Document(db.Model):
    """
    Generated financial document: a receipt or an invoice.

    Receipts and invoices share one table; `kind` selects the numbering
    space and the template. Invoice-only fields (due_date, notes, terms) are
    null on receipts.

    INVARIANTS:
    - total_amount == subtotal + tax_amount - discount_amount
    - document_number is unique per (org_id, kind)
    - company_info_json / template_*_json are snapshots taken at generation
      time and are never rewritten from tenant settings afterwards

    LIFECYCLE:
        active -> cancelled   (terminal)
        active -> refunded    (terminal)
    """
    __tablename__ = "documents"
    __table_args__ = (
        db.UniqueConstraint("org_id", "kind", "document_number", name="uq_documents_org_kind_number"),
        db.Index("ix_documents_org_kind_created", "org_id", "kind", "created_at"),
        db.Index("ix_documents_org_status", "org_id", "status"),
        db.Index("ix_documents_transaction_id", "transaction_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=True, index=True)

    kind = db.Column(db.String(16), nullable=False)  # receipt / invoice
    scenario = db.Column(db.String(16), nullable=False)  # order / subscription / manual

    # Human-readable document number (e.g., "REC-2026-0001")
    document_number = db.Column(db.String(64), nullable=False)

    # Source references
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    subscription_id = db.Column(db.Integer, db.ForeignKey("subscriptions.id"), nullable=True, index=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("subscription_payments.id"), nullable=True)

    # Customer snapshot (absent for subscription documents)
    customer_id = db.Column(db.Integer, nullable=True)
    customer_name = db.Column(db.String(255), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True, index=True)
    customer_address_json = db.Column(db.JSON, nullable=True)

    # Amounts, persisted at two decimal places
    subtotal = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    tax_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="USD")

    # Payment metadata
    payment_method = db.Column(db.String(128), nullable=True)
    transaction_id = db.Column(db.String(128), nullable=True)
    transaction_date = db.Column(db.DateTime(timezone=True), nullable=True)
    description = db.Column(db.Text, nullable=True)

    # Snapshots
    company_info_json = db.Column(db.JSON, nullable=False, default=dict)
    template_design_json = db.Column(db.JSON, nullable=True)
    template_layout_json = db.Column(db.JSON, nullable=True)

    # Invoice-only
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    terms = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default="active", index=True)

    # Refund trail
    refund_amount = db.Column(db.Numeric(14, 2), nullable=True)
    refund_date = db.Column(db.DateTime(timezone=True), nullable=True)
    refund_reason = db.Column(db.String(255), nullable=True)
    refunded_by_user_id = db.Column(db.Integer, nullable=True)

    # Cancellation trail
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    # User attribution
    created_by_user_id = db.Column(db.Integer, nullable=True)
    updated_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    version_id = db.Column(db.Integer, nullable=False, default=1)

    lines = db.relationship(
        "DocumentLine",
        backref="document",
        lazy=True,
        order_by="DocumentLine.position",
        cascade="all, delete-orphan",
    )
    store = db.relationship("Store", backref=db.backref("documents", lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Document id={self.id} kind={self.kind} number={self.document_number!r} status={self.status}>"

    @property
    def company_info(self) -> dict:
        return dict(self.company_info_json or {})

    def summary(self) -> dict:
        """Short state summary used in audit rows and conflict responses."""
        return {
            "id": self.id,
            "kind": self.kind,
            "document_number": self.document_number,
            "status": self.status,
            "total_amount": _money(self.total_amount),
            "refund_amount": _money(self.refund_amount),
            "refund_date": to_utc_z(self.refund_date),
        }

    def to_dict(self, include_lines: bool = True) -> dict:
        out = {
            "id": self.id,
            "org_id": self.org_id,
            "store_id": self.store_id,
            "kind": self.kind,
            "scenario": self.scenario,
            "document_number": self.document_number,
            "order_id": self.order_id,
            "subscription_id": self.subscription_id,
            "payment_id": self.payment_id,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "customer_address": self.customer_address_json,
            "subtotal": _money(self.subtotal),
            "tax_amount": _money(self.tax_amount),
            "discount_amount": _money(self.discount_amount),
            "total_amount": _money(self.total_amount),
            "currency": self.currency,
            "payment_method": self.payment_method,
            "transaction_id": self.transaction_id,
            "transaction_date": to_utc_z(self.transaction_date),
            "description": self.description,
            "company_info": self.company_info,
            "design": self.template_design_json,
            "layout": self.template_layout_json,
            "due_date": to_utc_z(self.due_date),
            "notes": self.notes,
            "terms": self.terms,
            "status": self.status,
            "refund_amount": _money(self.refund_amount),
            "refund_date": to_utc_z(self.refund_date),
            "refund_reason": self.refund_reason,
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "created_by_user_id": self.created_by_user_id,
            "updated_by_user_id": self.updated_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_lines:
            out["lines"] = [line.to_dict() for line in self.lines]
        return out


class DocumentLine(db.Model):
    """Individual line items on a document."""
    __tablename__ = "document_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(db.Integer, db.ForeignKey("documents.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(14, 2), nullable=False)
    total_price = db.Column(db.Numeric(14, 2), nullable=False)
    tax_rate = db.Column(db.Numeric(7, 4), nullable=False, default=0)  # Percent, e.g. 7.5

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "position": self.position,
            "name": self.name,
            "description": self.description,
            "quantity": self.quantity,
            "unit_price": _money(self.unit_price),
            "total_price": _money(self.total_price),
            "tax_rate": float(self.tax_rate) if self.tax_rate is not None else 0.0,
        }


class DocumentSequence(db.Model):
    """
    Atomic per-tenant document sequences.

    One counter per (org_id, document_kind). Allocation increments the row
    in a single UPDATE so concurrent generators never read the same value.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("org_id", "document_kind", name="uq_doc_sequences_org_kind"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    document_kind = db.Column(db.String(16), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "document_kind": self.document_kind,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }


class EmailRecipient(db.Model):
    """
    Append-only log of e-mail dispatch requests for a document.

    The dispatch collaborator flips status to sent/failed; the billing core
    only appends pending rows.
    """
    __tablename__ = "document_email_recipients"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(db.Integer, db.ForeignKey("documents.id"), nullable=False, index=True)
    email = db.Column(db.String(255), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="pending")  # pending / sent / failed
    requested_by_user_id = db.Column(db.Integer, nullable=True)
    requested_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)

    document = db.relationship(
        "Document",
        backref=db.backref("email_recipients", lazy=True, order_by="EmailRecipient.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "email": self.email,
            "status": self.status,
            "requested_by_user_id": self.requested_by_user_id,
            "requested_at": to_utc_z(self.requested_at),
            "sent_at": to_utc_z(self.sent_at),
        }
