# Overview: Flask API routes for receipts and invoices; parses input and returns JSON responses.

# backend/billing/routes/documents.py
"""Receipt and invoice API routes, scoped to the caller's tenant"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_tenant_context
from ..services import document_service, generation_service, lifecycle_service
from ..time_utils import parse_iso_datetime
from ..validation import DocumentError, IntegrationError, ValidationError


documents_bp = Blueprint("documents", __name__, url_prefix="/api/documents")

KINDS_PATTERN = "<any(receipt, invoice):kind>"


def _error_response(e: DocumentError):
    if isinstance(e, IntegrationError):
        current_app.logger.error("Integration failure on %s %s: %r", request.method, request.path, e.__cause__)
    return jsonify(e.to_dict()), e.http_status


def _optional_int(data: dict, key: str):
    value = data.get(key)
    if value is None or value == "":
        return None
    if isinstance(value, bool) or not str(value).strip().isdigit():
        raise ValidationError(f"{key} must be an integer", details={"field": key})
    return int(value)


def _date_arg(name: str):
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        return parse_iso_datetime(raw)
    except ValueError:
        raise ValidationError(f"Invalid {name}", details={"field": name})


@documents_bp.post(f"/{KINDS_PATTERN}/generate")
@require_tenant_context
def generate_document_route(kind: str):
    """
    Generate a receipt or invoice from an order or a subscription payment.

    Body:
        source:        {"scenario": "order", "order_id": 1}
                       or {"scenario": "subscription", "subscription_id": 1, "payment_id": 2}
        store_id:      optional, overrides the order's store
        company_info:  optional per-document company block
        template_id:   optional named template
        notes, terms:  invoices only
    """
    try:
        data = request.get_json() or {}
        source = data.get("source")
        if not source:
            return jsonify({"error": "source required", "code": "validation_error", "details": {"field": "source"}}), 400

        doc = generation_service.generate_document(
            g.org_id,
            kind,
            source,
            actor_user_id=g.user_id,
            store_id=_optional_int(data, "store_id"),
            company_override=data.get("company_info"),
            notes=data.get("notes"),
            terms=data.get("terms"),
            template_id=_optional_int(data, "template_id"),
        )
        return jsonify({kind: doc.to_dict()}), 201

    except DocumentError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to generate %s", kind)
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.post(f"/{KINDS_PATTERN}")
@require_tenant_context
def create_document_route(kind: str):
    """
    Create a receipt or invoice from details typed in by the caller.

    Body:
        customer_id, customer_name, customer_email, customer_address
        lines:         [{"name", "quantity", "unit_price", "total_price"?, "tax_rate"?}]
        total_amount, tax_amount, discount_amount, currency
        payment_method, transaction_id, transaction_date (receipts)
        store_id:      required for invoices, defaults to the first active store for receipts
        due_date:      invoices only, must be in the future
        company_info, notes, terms, template_id: as for /generate
    """
    try:
        data = dict(request.get_json() or {})
        company_info = data.pop("company_info", None)
        notes = data.pop("notes", None)
        terms = data.pop("terms", None)
        template_id = _optional_int(data, "template_id")
        data.pop("template_id", None)

        doc = generation_service.generate_document(
            g.org_id,
            kind,
            {**data, "scenario": "manual"},
            actor_user_id=g.user_id,
            company_override=company_info,
            notes=notes,
            terms=terms,
            template_id=template_id,
        )
        return jsonify({kind: doc.to_dict()}), 201

    except DocumentError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create %s", kind)
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.post(f"/{KINDS_PATTERN}/bulk")
@require_tenant_context
def bulk_generate_route(kind: str):
    """
    Generate one document per source, skipping sources that fail.

    Body: {"sources": [<source>, ...], "company_info": {...}, "template_id": 3}
    Returns 200 with per-item results even when some items were skipped.
    """
    try:
        data = request.get_json() or {}
        result = generation_service.bulk_generate(
            g.org_id,
            kind,
            data.get("sources"),
            actor_user_id=g.user_id,
            company_override=data.get("company_info"),
            template_id=_optional_int(data, "template_id"),
        )
        return jsonify(result.to_dict()), 200

    except DocumentError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to bulk generate %s", kind)
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.get(f"/{KINDS_PATTERN}")
@require_tenant_context
def list_documents_route(kind: str):
    """
    List documents for the tenant.

    Query params: status, scenario, customer_email, store_id, from_date,
    to_date, limit, offset
    """
    try:
        limit = request.args.get("limit", 50, type=int)
        offset = request.args.get("offset", 0, type=int)
        rows, total = document_service.list_documents(
            g.org_id,
            kind,
            status=request.args.get("status"),
            scenario=request.args.get("scenario"),
            customer_email=request.args.get("customer_email"),
            store_id=request.args.get("store_id", type=int),
            from_date=_date_arg("from_date"),
            to_date=_date_arg("to_date"),
            limit=limit,
            offset=offset,
        )
        return jsonify({
            "items": [doc.to_dict(include_lines=False) for doc in rows],
            "count": total,
            "limit": limit,
            "offset": offset,
        }), 200

    except DocumentError as e:
        return _error_response(e)


@documents_bp.get(f"/{KINDS_PATTERN}/<int:doc_id>")
@require_tenant_context
def get_document_route(kind: str, doc_id: int):
    try:
        doc = document_service.get_document(g.org_id, kind, doc_id)
        return jsonify({kind: doc.to_dict()}), 200
    except DocumentError as e:
        return _error_response(e)


@documents_bp.put(f"/{KINDS_PATTERN}/<int:doc_id>/lines")
@require_tenant_context
def update_lines_route(kind: str, doc_id: int):
    """
    Replace line items on an active document and recompute totals.

    Body: {"lines": [...], "tax_amount": optional, "discount_amount": optional}
    """
    try:
        data = request.get_json() or {}
        doc = lifecycle_service.update_document_lines(
            g.org_id,
            kind,
            doc_id,
            data.get("lines"),
            tax_amount=data.get("tax_amount"),
            discount_amount=data.get("discount_amount"),
            actor_user_id=g.user_id,
        )
        return jsonify({kind: doc.to_dict()}), 200

    except DocumentError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update %s lines", kind)
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.post(f"/{KINDS_PATTERN}/<int:doc_id>/cancel")
@require_tenant_context
def cancel_document_route(kind: str, doc_id: int):
    try:
        data = request.get_json(silent=True) or {}
        doc = lifecycle_service.cancel_document(
            g.org_id,
            kind,
            doc_id,
            actor_user_id=g.user_id,
            reason=data.get("reason"),
        )
        return jsonify({kind: doc.to_dict()}), 200

    except DocumentError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel %s", kind)
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.post(f"/{KINDS_PATTERN}/<int:doc_id>/refund")
@require_tenant_context
def refund_document_route(kind: str, doc_id: int):
    """
    Refund a document once.

    Body: {"amount": optional, defaults to the total; "reason": optional}
    409 with the document's current state if it is already refunded or cancelled.
    """
    try:
        data = request.get_json(silent=True) or {}
        doc = lifecycle_service.refund_document(
            g.org_id,
            kind,
            doc_id,
            amount=data.get("amount"),
            reason=data.get("reason"),
            actor_user_id=g.user_id,
        )
        return jsonify({kind: doc.to_dict()}), 200

    except DocumentError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to refund %s", kind)
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.post(f"/{KINDS_PATTERN}/<int:doc_id>/email")
@require_tenant_context
def email_document_route(kind: str, doc_id: int):
    """
    Queue the document for e-mail dispatch.

    Body: {"email": optional, defaults to the customer's e-mail}
    """
    try:
        data = request.get_json(silent=True) or {}
        recipient = document_service.request_document_email(
            g.org_id,
            kind,
            doc_id,
            email=data.get("email"),
            actor_user_id=g.user_id,
        )
        return jsonify({"recipient": recipient.to_dict()}), 202

    except DocumentError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to queue %s e-mail", kind)
        return jsonify({"error": "Internal server error"}), 500
