# Overview: Generation orchestrator for receipts and invoices, single and bulk.

"""
Pipeline for one document:

    load source -> resolve template -> adapt -> totals -> number -> persist -> commit -> emit

Nothing is written before every validation has passed. The number is
allocated in the same transaction as the insert; if the insert still hits
the (org, kind, number) unique constraint the counter is re-synced and the
insert retried once with a fresh number. A second collision is a conflict.

Bulk generation runs the same pipeline per source reference and commits
each document on its own. Data errors skip the item; IntegrationError stops
the batch.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..events import DOCUMENT_CREATED, document_event, emit
from ..extensions import db
from ..models import Document, Organization, Store
from ..time_utils import days_after, utcnow
from ..validation import (
    ConflictError,
    DocumentError,
    IntegrationError,
    NotFoundError,
    ValidationError,
    ensure_document_kind,
)
from .document_service import (
    apply_totals,
    build_document_lines,
    next_document_number,
    resync_document_sequence,
)
from .scenario_service import DocumentDraft, adapt, load_source
from .template_service import RequestOverride, ResolvedTemplate, get_template, resolve_template
from .totals import compute_totals, totals_reconcile


MAX_BULK_ITEMS = 500


@dataclass
class BulkResult:
    requested: int
    documents: list[Document] = field(default_factory=list)
    results: list[dict] = field(default_factory=list)

    @property
    def generated(self) -> int:
        return len(self.documents)

    @property
    def failed(self) -> int:
        return self.requested - self.generated

    def to_dict(self) -> dict:
        return {
            "requested": self.requested,
            "generated": self.generated,
            "failed": self.failed,
            "documents": [doc.to_dict() for doc in self.documents],
            "results": list(self.results),
        }


def _require_org(org_id: int) -> Organization:
    try:
        org = db.session.query(Organization).filter_by(id=org_id).first()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise IntegrationError("Document storage is unavailable") from exc
    if org is None:
        raise NotFoundError("Organization not found", details={"org_id": org_id})
    return org


def _require_store(org_id: int, store_id: int) -> Store:
    store = db.session.query(Store).filter_by(id=store_id, org_id=org_id).first()
    if store is None:
        raise NotFoundError(f"Store {store_id} not found", details={"store_id": store_id})
    return store


def _coerce_override(company_override) -> RequestOverride | None:
    if company_override is None or isinstance(company_override, RequestOverride):
        return company_override
    return RequestOverride.from_payload(company_override)


def _build_document(
    *,
    org_id: int,
    kind: str,
    number: str,
    draft: DocumentDraft,
    store_id: int | None,
    template: ResolvedTemplate,
    totals,
    actor_user_id: int | None,
    notes: str | None,
    terms: str | None,
) -> Document:
    doc = Document(
        org_id=org_id,
        store_id=store_id,
        kind=kind,
        scenario=draft.scenario,
        document_number=number,
        order_id=draft.order_id,
        subscription_id=draft.subscription_id,
        payment_id=draft.payment_id,
        customer_id=draft.customer_id,
        customer_name=draft.customer_name,
        customer_email=draft.customer_email,
        customer_address_json=draft.customer_address,
        currency=draft.currency,
        payment_method=draft.payment_method,
        transaction_id=draft.transaction_id,
        transaction_date=draft.transaction_date or utcnow(),
        description=draft.description,
        company_info_json=template.company.to_dict(),
        template_design_json=template.design.to_dict(),
        template_layout_json=template.layout.to_dict(),
        status="active",
        created_by_user_id=actor_user_id,
        updated_by_user_id=actor_user_id,
    )
    doc.lines = build_document_lines(draft.lines)
    apply_totals(doc, totals)
    if kind == "invoice":
        default_due = days_after(utcnow(), current_app.config["INVOICE_DUE_DAYS"])
        doc.due_date = draft.extra.get("due_date") or default_due
        doc.notes = (notes or "").strip() or None
        doc.terms = (terms or "").strip() or None
    return doc


def _persist_with_number(org_id: int, kind: str, build) -> Document:
    for attempt in range(2):
        number = next_document_number(org_id, kind)
        doc = build(number)
        db.session.add(doc)
        try:
            db.session.commit()
            return doc
        except IntegrityError as exc:
            db.session.rollback()
            if attempt:
                current_app.logger.error(
                    "Document number collision persisted after resync: org=%s kind=%s number=%s",
                    org_id,
                    kind,
                    number,
                )
                raise ConflictError(
                    "Could not allocate a unique document number",
                    details={"document_number": number},
                ) from exc
            current_app.logger.warning(
                "Document number %s already taken for org %s, resyncing %s sequence",
                number,
                org_id,
                kind,
            )
            resync_document_sequence(org_id, kind)
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.error("Failed to persist %s for org %s: %s", kind, org_id, exc)
            raise IntegrationError("Document storage is unavailable") from exc


def generate_document(
    org_id: int,
    kind: str,
    source_ref: dict,
    *,
    actor_user_id: int | None = None,
    store_id: int | None = None,
    company_override=None,
    notes: str | None = None,
    terms: str | None = None,
    template_id: int | None = None,
) -> Document:
    """
    Generate, persist and announce one receipt or invoice.

    source_ref selects the source record, e.g. {"scenario": "order",
    "order_id": 7}. A manual source carries the document content itself.
    store_id overrides the store taken from the source. company_override
    is a `company_info` block applied on top of tenant settings for this
    document only. template_id picks a named template instead of the
    scenario preference or the kind's default.
    """
    ensure_document_kind(kind)
    if kind != "invoice" and (notes or terms):
        raise ValidationError(
            "notes and terms apply to invoices only",
            details={"fields": [name for name, value in (("notes", notes), ("terms", terms)) if value]},
        )
    _require_org(org_id)
    override = _coerce_override(company_override)

    source = load_source(org_id, source_ref, kind)
    if store_id:
        _require_store(org_id, store_id)
    effective_store_id = store_id or getattr(source, "store_id", None)

    template = resolve_template(
        org_id,
        kind,
        store_id=effective_store_id,
        override=override,
        scenario=source.scenario,
        template_id=template_id,
    )
    if template.company.is_empty():
        current_app.logger.debug(
            "No company information resolved for org %s %s; document header will be blank", org_id, kind
        )

    draft = adapt(source)
    totals = compute_totals(draft.lines, draft.tax_amount, draft.discount_amount)
    if draft.declared_total is not None and not totals_reconcile(
        totals.subtotal, totals.tax_amount, totals.discount_amount, draft.declared_total
    ):
        current_app.logger.warning(
            "Source %s total %s differs from computed total %s (org %s)",
            draft.scenario,
            draft.declared_total,
            totals.total_amount,
            org_id,
        )

    doc = _persist_with_number(
        org_id,
        kind,
        lambda number: _build_document(
            org_id=org_id,
            kind=kind,
            number=number,
            draft=draft,
            store_id=effective_store_id,
            template=template,
            totals=totals,
            actor_user_id=actor_user_id,
            notes=notes,
            terms=terms,
        ),
    )
    current_app.logger.info(
        "Generated %s %s for org %s (%s, total=%s %s)",
        kind,
        doc.document_number,
        org_id,
        draft.scenario,
        doc.total_amount,
        doc.currency,
    )
    emit(document_event(DOCUMENT_CREATED, doc, actor_user_id=actor_user_id, scenario=draft.scenario))
    return doc


def bulk_generate(
    org_id: int,
    kind: str,
    source_refs: list[dict],
    *,
    actor_user_id: int | None = None,
    company_override=None,
    template_id: int | None = None,
) -> BulkResult:
    """
    Generate one document per source reference, skipping bad items.

    Each item commits independently. NotFoundError, ValidationError and
    ConflictError are logged and reported per item; IntegrationError is
    raised and ends the batch.
    """
    ensure_document_kind(kind)
    if not isinstance(source_refs, list) or not source_refs:
        raise ValidationError("sources must be a non-empty list", details={"field": "sources"})
    if len(source_refs) > MAX_BULK_ITEMS:
        raise ValidationError(
            f"At most {MAX_BULK_ITEMS} sources per request",
            details={"field": "sources", "max": MAX_BULK_ITEMS},
        )
    _require_org(org_id)
    override = _coerce_override(company_override)
    if template_id is not None:
        get_template(org_id, kind, template_id)

    result = BulkResult(requested=len(source_refs))
    for index, ref in enumerate(source_refs):
        try:
            doc = generate_document(
                org_id,
                kind,
                ref,
                actor_user_id=actor_user_id,
                company_override=override,
                template_id=template_id,
            )
        except IntegrationError:
            raise
        except DocumentError as exc:
            db.session.rollback()
            current_app.logger.warning(
                "Bulk %s generation skipped item %d for org %s: %s (%s)",
                kind,
                index,
                org_id,
                exc,
                exc.code,
            )
            result.results.append({"index": index, "status": "skipped", **exc.to_dict()})
            continue
        result.documents.append(doc)
        result.results.append(
            {
                "index": index,
                "status": "generated",
                "id": doc.id,
                "document_number": doc.document_number,
            }
        )

    current_app.logger.info(
        "Bulk %s generation for org %s: %d of %d generated",
        kind,
        org_id,
        result.generated,
        result.requested,
    )
    return result
