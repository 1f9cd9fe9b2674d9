"""
Scenario adapter.

Three source shapes feed document generation:

    order         synced e-commerce order with a billing block and line entries
    subscription  subscription + one gateway payment, no customer or store
    manual        customer block and line items typed in by a tenant user

Each shape is its own source type with its own required-field validator.
`adapt()` turns any of them into a DocumentDraft, the canonical input to
totals, numbering and persistence. Loaders read the source records from
the database; adapt() itself never touches it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Union

from flask import current_app

from ..extensions import db
from ..models import Order, Store, Subscription, SubscriptionPayment
from ..time_utils import parse_iso_datetime, utcnow
from ..validation import (
    MONEY_PLACES,
    NotFoundError,
    ValidationError,
    ensure_document_kind,
    normalize_currency,
    parse_money,
    parse_quantity,
)
from .totals import ZERO, LineItem, parse_line_items


SCENARIO_ORDER = "order"
SCENARIO_SUBSCRIPTION = "subscription"
SCENARIO_MANUAL = "manual"
SCENARIOS = (SCENARIO_ORDER, SCENARIO_SUBSCRIPTION, SCENARIO_MANUAL)


@dataclass(frozen=True)
class OrderSource:
    org_id: int
    order_id: int
    store_id: int | None
    customer_id: int | None
    first_name: str | None
    last_name: str | None
    email: str | None
    address: dict[str, str | None]
    lines: list[dict[str, Any]]
    total: Any
    total_tax: Any
    discount_total: Any
    currency: str | None
    payment_method_title: str | None
    transaction_id: str | None
    date_created: Any
    customer_note: str | None

    scenario = SCENARIO_ORDER

    @property
    def customer_name(self) -> str:
        return " ".join(p.strip() for p in (self.first_name, self.last_name) if p and p.strip())


@dataclass(frozen=True)
class SubscriptionSource:
    org_id: int
    user_id: int | None
    subscription_id: int | None
    payment_id: int | None
    plan_name: str | None
    plan_description: str | None
    billing_interval: str | None
    amount: Any
    currency: str | None
    gateway: str | None
    reference: str | None
    paid_at: Any

    scenario = SCENARIO_SUBSCRIPTION


@dataclass(frozen=True)
class ManualSource:
    """
    Document content supplied directly by the caller.

    Receipts require a payment method; invoices require a store and may
    carry their own due date.
    """
    org_id: int
    document_kind: str
    store_id: int | None
    customer_id: int | None
    customer_name: str | None
    customer_email: str | None
    customer_address: dict[str, Any]
    lines: Any
    tax_amount: Any
    discount_amount: Any
    total_amount: Any
    currency: str | None
    payment_method: str | None
    transaction_id: str | None
    transaction_date: Any
    description: str | None
    due_date: Any

    scenario = SCENARIO_MANUAL


Source = Union[OrderSource, SubscriptionSource, ManualSource]

CUSTOMER_ADDRESS_FIELDS = ("street", "city", "state", "zip_code", "country")


@dataclass
class DocumentDraft:
    """
    Canonical, not yet numbered document content.

    Money is carried unrounded. `declared_total` is the total the source
    itself claims; the stored total is always recomputed from the lines.
    """
    scenario: str
    org_id: int
    lines: list[LineItem]
    tax_amount: Decimal
    discount_amount: Decimal
    currency: str
    store_id: int | None = None
    order_id: int | None = None
    subscription_id: int | None = None
    payment_id: int | None = None
    user_id: int | None = None
    customer_id: int | None = None
    customer_name: str | None = None
    customer_email: str | None = None
    customer_address: dict[str, str] | None = None
    declared_total: Decimal | None = None
    payment_method: str | None = None
    transaction_id: str | None = None
    transaction_date: datetime | None = None
    description: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


# Loaders


def load_order_source(org_id: int, order_id: int) -> OrderSource:
    order = db.session.query(Order).filter_by(id=order_id, org_id=org_id).first()
    if order is None:
        raise NotFoundError(f"Order {order_id} not found", details={"order_id": order_id})
    return OrderSource(
        org_id=org_id,
        order_id=order.id,
        store_id=order.store_id,
        customer_id=order.customer_id,
        first_name=order.billing_first_name,
        last_name=order.billing_last_name,
        email=order.billing_email,
        address={
            "street": order.billing_address_1,
            "city": order.billing_city,
            "state": order.billing_state,
            "zip_code": order.billing_postcode,
            "country": order.billing_country,
        },
        lines=[
            {
                "name": line.name,
                "description": line.description,
                "quantity": line.quantity,
                "price": line.price,
                "total": line.total,
            }
            for line in order.lines
        ],
        total=order.total,
        total_tax=order.total_tax,
        discount_total=order.discount_total,
        currency=order.currency,
        payment_method_title=order.payment_method_title,
        transaction_id=order.transaction_id,
        date_created=order.date_created,
        customer_note=order.customer_note,
    )


def load_subscription_source(
    org_id: int,
    subscription_id: int,
    payment_id: int,
    user_id: int | None = None,
) -> SubscriptionSource:
    subscription = db.session.query(Subscription).filter_by(id=subscription_id, org_id=org_id).first()
    if subscription is None:
        raise NotFoundError(
            f"Subscription {subscription_id} not found",
            details={"subscription_id": subscription_id},
        )
    payment = (
        db.session.query(SubscriptionPayment)
        .filter_by(id=payment_id, subscription_id=subscription.id)
        .first()
    )
    if payment is None:
        raise NotFoundError(f"Payment {payment_id} not found", details={"payment_id": payment_id})

    plan = subscription.plan
    return SubscriptionSource(
        org_id=org_id,
        user_id=user_id if user_id is not None else subscription.user_id,
        subscription_id=subscription.id,
        payment_id=payment.id,
        plan_name=plan.name if plan else None,
        plan_description=plan.description if plan else None,
        billing_interval=subscription.billing_interval,
        amount=payment.amount,
        currency=payment.currency,
        gateway=payment.gateway,
        reference=payment.reference,
        paid_at=payment.created_at,
    )


def _manual_store_id(org_id: int, kind: str, store_id: int | None) -> int | None:
    if store_id is not None:
        store = db.session.query(Store).filter_by(id=store_id, org_id=org_id).first()
        if store is None:
            raise NotFoundError(f"Store {store_id} not found", details={"store_id": store_id})
        return store.id
    if kind != "receipt":
        return None
    store = (
        db.session.query(Store)
        .filter_by(org_id=org_id, is_active=True)
        .order_by(Store.id.asc())
        .first()
    )
    if store is None:
        raise NotFoundError("No active store found for this organization", details={"org_id": org_id})
    return store.id


def load_manual_source(org_id: int, kind: str, payload: dict) -> ManualSource:
    """
    Build a ManualSource from a request body.

    A receipt without a store_id is issued under the org's first active
    store. Invoices name their store explicitly.
    """
    address = payload.get("customer_address")
    if address is not None and not isinstance(address, dict):
        raise ValidationError("customer_address must be an object", details={"field": "customer_address"})
    address = {k: address.get(k) for k in CUSTOMER_ADDRESS_FIELDS} if address else {}

    return ManualSource(
        org_id=org_id,
        document_kind=kind,
        store_id=_manual_store_id(org_id, kind, _ref_int(payload, "store_id")),
        customer_id=_ref_int(payload, "customer_id"),
        customer_name=payload.get("customer_name"),
        customer_email=payload.get("customer_email"),
        customer_address=address,
        lines=payload.get("lines"),
        tax_amount=payload.get("tax_amount"),
        discount_amount=payload.get("discount_amount"),
        total_amount=payload.get("total_amount"),
        currency=payload.get("currency"),
        payment_method=payload.get("payment_method"),
        transaction_id=payload.get("transaction_id"),
        transaction_date=payload.get("transaction_date"),
        description=payload.get("description"),
        due_date=payload.get("due_date"),
    )


def _ref_int(ref: dict, key: str) -> int | None:
    value = ref.get(key)
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be an integer", details={"field": key})
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be an integer", details={"field": key})


def load_source(org_id: int, ref: dict, kind: str | None = None) -> Source:
    """
    Resolve a source reference into a loaded source.

    ref examples:
        {"scenario": "order", "order_id": 12}
        {"scenario": "subscription", "subscription_id": 3, "payment_id": 9, "user_id": 4}
        {"scenario": "manual", "customer_name": "...", "lines": [...], ...}

    Manual sources depend on the document kind being generated.
    """
    if not isinstance(ref, dict):
        raise ValidationError("Source reference must be an object", details={"field": "source"})
    scenario = ref.get("scenario") or (SCENARIO_ORDER if "order_id" in ref else None)
    if scenario not in SCENARIOS:
        raise ValidationError(
            f"scenario must be one of {list(SCENARIOS)}",
            details={"field": "scenario"},
        )

    if scenario == SCENARIO_ORDER:
        order_id = _ref_int(ref, "order_id")
        if order_id is None:
            raise ValidationError("order_id is required", details={"field": "order_id"})
        return load_order_source(org_id, order_id)

    if scenario == SCENARIO_MANUAL:
        return load_manual_source(org_id, ensure_document_kind(kind), ref)

    subscription_id = _ref_int(ref, "subscription_id")
    payment_id = _ref_int(ref, "payment_id")
    missing = [k for k, v in (("subscription_id", subscription_id), ("payment_id", payment_id)) if v is None]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}", details={"fields": missing})
    return load_subscription_source(org_id, subscription_id, payment_id, _ref_int(ref, "user_id"))


# Validators


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def validate_order_source(source: OrderSource) -> None:
    required = {
        "customer_id": source.customer_id,
        "customer_name": source.customer_name,
        "customer_email": source.email,
        "store_id": source.store_id,
        "total_amount": source.total,
        "payment_method": source.payment_method_title,
    }
    missing = [k for k, v in required.items() if _blank(v)]
    if not source.lines:
        missing.append("lines")
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            details={"scenario": SCENARIO_ORDER, "fields": missing},
        )


def validate_subscription_source(source: SubscriptionSource) -> None:
    required = {
        "subscription_id": source.subscription_id,
        "payment_id": source.payment_id,
        "org_id": source.org_id,
        "user_id": source.user_id,
        "amount": source.amount,
    }
    missing = [k for k, v in required.items() if _blank(v)]
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            details={"scenario": SCENARIO_SUBSCRIPTION, "fields": missing},
        )


def validate_manual_source(source: ManualSource) -> None:
    required = {
        "customer_id": source.customer_id,
        "customer_name": source.customer_name,
        "customer_email": source.customer_email,
        "total_amount": source.total_amount,
    }
    if source.document_kind == "receipt":
        required["payment_method"] = source.payment_method
    else:
        required["store_id"] = source.store_id
    missing = [k for k, v in required.items() if _blank(v)]
    if not source.lines:
        missing.append("lines")
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            details={"scenario": SCENARIO_MANUAL, "fields": missing},
        )
    if source.due_date is not None and source.document_kind != "invoice":
        raise ValidationError("due_date is only valid on invoices", details={"field": "due_date"})


# Adapters


def _order_lines(raw_lines: list[dict]) -> list[LineItem]:
    lines: list[LineItem] = []
    for i, raw in enumerate(raw_lines):
        prefix = f"lines[{i}]"
        name = (raw.get("name") or "").strip()
        if not name:
            raise ValidationError(f"{prefix}.name is required", details={"field": f"{prefix}.name"})
        lines.append(
            LineItem(
                name=name,
                description=(raw.get("description") or "").strip(),
                quantity=parse_quantity(raw.get("quantity"), f"{prefix}.quantity"),
                unit_price=parse_money(raw.get("price"), f"{prefix}.unit_price", places=MONEY_PLACES),
                total_price=parse_money(raw.get("total"), f"{prefix}.total_price", places=MONEY_PLACES),
            )
        )
    return lines


def _adapt_order(source: OrderSource, currency: str) -> DocumentDraft:
    validate_order_source(source)
    total = parse_money(source.total, "total_amount")
    tax = parse_money(source.total_tax, "tax_amount", allow_none=True) or ZERO
    discount = parse_money(source.discount_total, "discount_amount", allow_none=True) or ZERO
    address = {k: (v or "").strip() for k, v in source.address.items()}
    return DocumentDraft(
        scenario=SCENARIO_ORDER,
        org_id=source.org_id,
        store_id=source.store_id,
        order_id=source.order_id,
        customer_id=source.customer_id,
        customer_name=source.customer_name,
        customer_email=source.email.strip(),
        customer_address=address if any(address.values()) else None,
        lines=_order_lines(source.lines),
        tax_amount=tax,
        discount_amount=discount,
        declared_total=total,
        currency=currency,
        payment_method=source.payment_method_title.strip(),
        transaction_id=source.transaction_id,
        transaction_date=parse_iso_datetime(source.date_created),
        description=source.customer_note,
        extra={"declared_subtotal": total - tax},
    )


def _adapt_subscription(source: SubscriptionSource, currency: str) -> DocumentDraft:
    validate_subscription_source(source)
    amount = parse_money(source.amount, "amount", places=MONEY_PLACES)
    if amount <= ZERO:
        raise ValidationError("amount must be > 0", details={"field": "amount"})
    interval = (source.billing_interval or "monthly").strip()
    plan_name = (source.plan_name or "").strip() or f"{interval.capitalize()} subscription"
    line = LineItem(
        name=plan_name,
        description=(source.plan_description or "").strip(),
        quantity=1,
        unit_price=amount,
        total_price=amount,
    )
    return DocumentDraft(
        scenario=SCENARIO_SUBSCRIPTION,
        org_id=source.org_id,
        subscription_id=source.subscription_id,
        payment_id=source.payment_id,
        user_id=source.user_id,
        lines=[line],
        tax_amount=ZERO,
        discount_amount=ZERO,
        declared_total=amount,
        currency=currency,
        payment_method=source.gateway,
        transaction_id=source.reference,
        transaction_date=parse_iso_datetime(source.paid_at),
        description=f"Subscription payment for {interval} plan",
    )


def _manual_datetime(value: Any, field_name: str) -> datetime | None:
    try:
        return parse_iso_datetime(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be an ISO-8601 datetime", details={"field": field_name})


def _text(value: Any) -> str | None:
    if value is None:
        return None
    return str(value).strip() or None


def _adapt_manual(source: ManualSource, currency: str) -> DocumentDraft:
    validate_manual_source(source)
    total = parse_money(source.total_amount, "total_amount")
    tax = parse_money(source.tax_amount, "tax_amount", allow_none=True) or ZERO
    discount = parse_money(source.discount_amount, "discount_amount", allow_none=True) or ZERO
    lines = parse_line_items(source.lines)

    extra: dict[str, Any] = {}
    due_date = _manual_datetime(source.due_date, "due_date")
    if due_date is not None:
        if due_date <= utcnow():
            raise ValidationError("due_date must be in the future", details={"field": "due_date"})
        extra["due_date"] = due_date

    address = {k: (str(v).strip() if v is not None else "") for k, v in source.customer_address.items()}
    return DocumentDraft(
        scenario=SCENARIO_MANUAL,
        org_id=source.org_id,
        store_id=source.store_id,
        customer_id=source.customer_id,
        customer_name=str(source.customer_name).strip(),
        customer_email=str(source.customer_email).strip(),
        customer_address=address if any(address.values()) else None,
        lines=lines,
        tax_amount=tax,
        discount_amount=discount,
        declared_total=total,
        currency=currency,
        payment_method=_text(source.payment_method),
        transaction_id=_text(source.transaction_id),
        transaction_date=_manual_datetime(source.transaction_date, "transaction_date") or utcnow(),
        description=_text(source.description),
        extra=extra,
    )


_ADAPTERS = {
    OrderSource: _adapt_order,
    SubscriptionSource: _adapt_subscription,
    ManualSource: _adapt_manual,
}


def adapt(
    source: Source,
    *,
    allowed_currencies: frozenset[str] | None = None,
    default_currency: str | None = None,
) -> DocumentDraft:
    adapter = _ADAPTERS.get(type(source))
    if adapter is None:
        raise ValidationError(f"Unsupported source type: {type(source).__name__}", details={"field": "scenario"})
    if allowed_currencies is None:
        allowed_currencies = current_app.config["ALLOWED_CURRENCIES"]
    if default_currency is None:
        default_currency = current_app.config["DEFAULT_CURRENCY"]
    currency = normalize_currency(source.currency, allowed_currencies, default=default_currency)
    return adapter(source, currency)
