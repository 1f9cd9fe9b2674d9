# backend/billing/config.py
from __future__ import annotations
import os


def _csv(value: str, *, upper: bool = True) -> frozenset[str]:
    parts = (part.strip() for part in value.split(","))
    return frozenset(part.upper() if upper else part for part in parts if part)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/billing.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///billing.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Document numbering: <PREFIX>-<YEAR>-<NNNN>
    RECEIPT_NUMBER_PREFIX = os.environ.get("RECEIPT_NUMBER_PREFIX", "REC")
    INVOICE_NUMBER_PREFIX = os.environ.get("INVOICE_NUMBER_PREFIX", "INV")

    DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "USD")
    ALLOWED_CURRENCIES = _csv(os.environ.get("ALLOWED_CURRENCIES", "USD,EUR,GBP,CAD,AUD,JPY,NGN"))

    # Invoices fall due this many days after issue
    INVOICE_DUE_DAYS = int(os.environ.get("INVOICE_DUE_DAYS", "30"))

    # Browser origins allowed to call the API, comma separated. Empty: no CORS headers.
    CORS_ALLOWED_ORIGINS = _csv(os.environ.get("CORS_ALLOWED_ORIGINS", ""), upper=False)


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    LOG_LEVEL = "DEBUG"
    CORS_ALLOWED_ORIGINS = frozenset({"https://admin.acme.test"})
