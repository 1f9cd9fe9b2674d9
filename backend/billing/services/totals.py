"""
Totals calculator for billing documents.

Pure functions over Decimal. Nothing here touches the database.

    subtotal     = sum(line.total_price)
    total_amount = subtotal + tax_amount - discount_amount

Values are carried at full precision through the calculation and rounded to
two places only by `Totals.quantized()`, right before persisting, so
repeated recomputation never accumulates rounding drift.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable

from ..validation import MONEY_PLACES, ValidationError, parse_money, parse_quantity


CENT = Decimal("0.01")
ZERO = Decimal("0")

# Allowed drift between quantity * unit_price and the stated line total,
# and between a stated total and subtotal + tax - discount.
TOLERANCE = Decimal("0.000001")


def quantize(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class LineItem:
    name: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    description: str = ""
    tax_rate: Decimal = ZERO


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal

    def quantized(self) -> "Totals":
        return Totals(
            subtotal=quantize(self.subtotal),
            tax_amount=quantize(self.tax_amount),
            discount_amount=quantize(self.discount_amount),
            total_amount=quantize(self.total_amount),
        )


def validate_line(line: LineItem, index: int = 0) -> None:
    """
    Reject a line whose total does not equal quantity * unit_price.

    Mismatches are never corrected silently: the caller's data is wrong and
    must be fixed at the source.
    """
    field = f"lines[{index}]"
    if not line.name or not str(line.name).strip():
        raise ValidationError(f"{field}.name is required", details={"field": f"{field}.name"})
    if line.quantity < 1:
        raise ValidationError(f"{field}.quantity must be >= 1", details={"field": f"{field}.quantity"})
    if line.unit_price < ZERO:
        raise ValidationError(f"{field}.unit_price must be >= 0", details={"field": f"{field}.unit_price"})
    if line.tax_rate < ZERO:
        raise ValidationError(f"{field}.tax_rate must be >= 0", details={"field": f"{field}.tax_rate"})
    expected = line.unit_price * line.quantity
    if abs(expected - line.total_price) > TOLERANCE:
        raise ValidationError(
            f"{field}.total_price {line.total_price} does not equal quantity * unit_price ({expected})",
            details={
                "field": f"{field}.total_price",
                "expected": str(expected),
                "actual": str(line.total_price),
            },
        )


def compute_totals(
    lines: Iterable[LineItem],
    tax_amount: Decimal = ZERO,
    discount_amount: Decimal = ZERO,
) -> Totals:
    lines = list(lines)
    if tax_amount < ZERO:
        raise ValidationError("tax_amount must be >= 0", details={"field": "tax_amount"})
    if discount_amount < ZERO:
        raise ValidationError("discount_amount must be >= 0", details={"field": "discount_amount"})

    for i, line in enumerate(lines):
        validate_line(line, i)

    subtotal = sum((line.total_price for line in lines), ZERO)
    total = subtotal + tax_amount - discount_amount
    if total < ZERO:
        raise ValidationError(
            "discount_amount exceeds subtotal plus tax",
            details={"field": "discount_amount"},
        )
    return Totals(
        subtotal=subtotal,
        tax_amount=tax_amount,
        discount_amount=discount_amount,
        total_amount=total,
    )


def totals_reconcile(subtotal, tax_amount, discount_amount, total_amount) -> bool:
    return abs((subtotal + tax_amount - discount_amount) - total_amount) <= TOLERANCE


def parse_line_items(raw_lines: Any) -> list[LineItem]:
    """
    Parse client-supplied line items.

    total_price may be omitted and is then quantity * unit_price; when given
    it must match, a mismatch is rejected by compute_totals. Prices and
    totals must be whole cents so the stored line stays exact.
    """
    if not isinstance(raw_lines, list) or not raw_lines:
        raise ValidationError("lines must be a non-empty list", details={"field": "lines"})
    items: list[LineItem] = []
    for i, raw in enumerate(raw_lines):
        path = f"lines[{i}]"
        if not isinstance(raw, dict):
            raise ValidationError(f"{path} must be an object", details={"field": path})
        name = str(raw.get("name") or "").strip()
        if not name:
            raise ValidationError(f"{path}.name is required", details={"field": f"{path}.name"})
        quantity = parse_quantity(raw.get("quantity"), f"{path}.quantity")
        unit_price = parse_money(raw.get("unit_price"), f"{path}.unit_price", places=MONEY_PLACES)
        total_price = parse_money(
            raw.get("total_price"), f"{path}.total_price", allow_none=True, places=MONEY_PLACES
        )
        tax_rate = parse_money(raw.get("tax_rate"), f"{path}.tax_rate", allow_none=True)
        items.append(
            LineItem(
                name=name,
                description=str(raw.get("description") or "").strip(),
                quantity=quantity,
                unit_price=unit_price,
                total_price=unit_price * quantity if total_price is None else total_price,
                tax_rate=tax_rate or ZERO,
            )
        )
    return items
