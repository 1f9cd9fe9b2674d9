from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta


# Largest amount accepted on a single document field: 9,999,999,999.99
MAX_MONEY = Decimal("9999999999.99")

# Line prices and totals are stored at this scale and must arrive at it.
MONEY_PLACES = 2


class DocumentError(Exception):
    """
    Base class for billing document errors.

    Carries a machine-readable code and structured details so routes and
    bulk results can report failures without parsing messages.
    """
    code = "document_error"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        out = {"error": str(self), "code": self.code}
        if self.details:
            out["details"] = self.details
        return out


class ValidationError(DocumentError):
    """400-level input problem: missing required field, bad arithmetic, malformed money."""
    code = "validation_error"


class NotFoundError(DocumentError):
    """404-level: referenced tenant, store, order, subscription, payment or document is absent."""
    code = "not_found"
    http_status = 404


class ConflictError(DocumentError):
    """409-level business rule conflict (already refunded, duplicate number)."""
    code = "conflict"
    http_status = 409


class IntegrationError(DocumentError):
    """
    Persistence layer or configuration source is unreachable.

    The only fatal, non-retryable category. Callers must not leak the
    underlying cause to clients.
    """
    code = "integration_error"
    http_status = 503


def parse_money(
    value: Any,
    field: str,
    *,
    allow_none: bool = False,
    places: int | None = None,
) -> Decimal | None:
    """
    Parse a monetary value into Decimal without rounding.

    Floats are routed through str() so 0.1 stays 0.1 instead of its binary
    expansion. Booleans and non-finite values are rejected. With `places`,
    a value carrying more significant decimals (0.335 for places=2) is
    malformed; trailing zeros (10.500) are fine.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        if allow_none:
            return None
        raise ValidationError(f"{field} is required", details={"field": field})
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", details={"field": field})
    try:
        if isinstance(value, Decimal):
            amount = value
        elif isinstance(value, float):
            amount = Decimal(str(value))
        else:
            amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number", details={"field": field})
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite number", details={"field": field})
    if abs(amount) > MAX_MONEY:
        raise ValidationError(f"{field} exceeds {MAX_MONEY}", details={"field": field})
    if places is not None and amount != amount.quantize(Decimal(1).scaleb(-places)):
        raise ValidationError(
            f"{field}: malformed monetary value, at most {places} decimal places",
            details={"field": field, "max_places": places},
        )
    return amount


def parse_quantity(value: Any, field: str) -> int:
    """Quantities are whole units, at least 1."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be an integer", details={"field": field})
    if isinstance(value, float):
        if not value.is_integer():
            raise ValidationError(f"{field} must be an integer", details={"field": field})
        value = int(value)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped.lstrip("-").isdigit():
            raise ValidationError(f"{field} must be an integer", details={"field": field})
        value = int(stripped)
    if not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer", details={"field": field})
    if value < 1:
        raise ValidationError(f"{field} must be >= 1", details={"field": field})
    return value


def normalize_currency(value: Any, allowed: frozenset[str] | set[str], *, default: str) -> str:
    code = (str(value).strip() if value is not None else "") or default
    code = code.upper()
    if len(code) != 3 or not code.isalpha():
        raise ValidationError("currency must be a 3-letter code", details={"field": "currency"})
    if allowed and code not in allowed:
        raise ValidationError(
            f"Invalid currency. Must be one of: {', '.join(sorted(allowed))}",
            details={"field": "currency"},
        )
    return code


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        raise ValidationError(f"{col.key} must be an integer", details={"field": col.key})

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{col.key} must be a boolean", details={"field": col.key})

    if isinstance(coltype, (String, Text)):
        if isinstance(value, (dict, list)):
            raise ValidationError(f"{col.key} must be a string", details={"field": col.key})
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                details={"fields": missing},
            )

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}", details={"field": k})
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}", details={"field": k})

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null", details={"field": k})
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}", details={"field": k})

        patch[k] = val

    return patch


DOCUMENT_KINDS = ("receipt", "invoice")


def ensure_document_kind(kind: str) -> str:
    if kind not in DOCUMENT_KINDS:
        raise ValidationError(
            f"Invalid document kind: {kind}. Must be one of {list(DOCUMENT_KINDS)}",
            details={"field": "kind"},
        )
    return kind
