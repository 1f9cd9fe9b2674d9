"""
Pytest fixtures for billing backend tests.

Provides test database setup, tenant fixtures, source-record factories and
a test client.
"""

from datetime import datetime
from decimal import Decimal

import pytest
from billing import create_app
from billing.config import TestConfig
from billing.events import ALL_EVENTS, get_event_bus
from billing.extensions import db
from billing.models import (
    Order,
    OrderLine,
    Organization,
    Store,
    Subscription,
    SubscriptionPayment,
    SubscriptionPlan,
)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def org_a(db_session):
    """Create Organization A (first tenant)."""
    org = Organization(name="Org A - Acme Corp", code="ACME", email="billing@acme.test", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def org_b(db_session):
    """Create Organization B (second tenant)."""
    org = Organization(name="Org B - Beta Inc", code="BETA", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def store_a(db_session, org_a):
    """Create Store A in Organization A."""
    store = Store(
        org_id=org_a.id,
        name="Acme Online",
        url="https://shop.acme.test",
        logo_url="https://cdn.acme.test/store-logo.png",
    )
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def store_b(db_session, org_b):
    """Create Store B in Organization B."""
    store = Store(org_id=org_b.id, name="Beta Shop", url="https://beta.test")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def make_order(db_session, org_a, store_a):
    """
    Factory for synced orders.

    Defaults to two lines ($10 x 2, $5 x 1 = $25), tax $2.50, no discount.
    """
    counter = {"n": 0}

    def _make(
        *,
        org=None,
        store=None,
        lines=None,
        total="27.50",
        total_tax="2.50",
        discount_total="0",
        email="jane@example.test",
        first_name="Jane",
        last_name="Doe",
        customer_id=501,
        currency="USD",
        payment_method_title="Credit Card",
    ):
        counter["n"] += 1
        org = org or org_a
        store = store if store is not None else store_a
        order = Order(
            org_id=org.id,
            store_id=store.id if store else None,
            external_id=f"WC-{1000 + counter['n']}",
            customer_id=customer_id,
            billing_first_name=first_name,
            billing_last_name=last_name,
            billing_email=email,
            billing_address_1="1 Main St",
            billing_city="Springfield",
            billing_state="IL",
            billing_postcode="62701",
            billing_country="US",
            total=Decimal(total) if total is not None else None,
            total_tax=Decimal(total_tax) if total_tax is not None else None,
            discount_total=Decimal(discount_total) if discount_total is not None else None,
            currency=currency,
            payment_method_title=payment_method_title,
            transaction_id=f"txn_{counter['n']}",
            date_created=datetime(2026, 3, 1, 12, 0, 0),
            customer_note="Leave at the door",
        )
        if lines is None:
            lines = [("Widget", 2, "10.00", "20.00"), ("Gadget", 1, "5.00", "5.00")]
        for i, (name, qty, price, line_total) in enumerate(lines):
            order.lines.append(
                OrderLine(
                    position=i,
                    name=name,
                    quantity=qty,
                    price=Decimal(price),
                    total=Decimal(line_total),
                )
            )
        db_session.add(order)
        db_session.commit()
        return order

    return _make


@pytest.fixture(scope='function')
def subscription_payment(db_session, org_a):
    """Monthly Pro plan subscription with one $9.99 Flutterwave payment."""
    plan = SubscriptionPlan(name="Pro Plan", description="Unlimited receipts", price=Decimal("9.99"))
    db_session.add(plan)
    db_session.flush()

    subscription = Subscription(org_id=org_a.id, user_id=42, plan_id=plan.id, billing_interval="monthly")
    db_session.add(subscription)
    db_session.flush()

    payment = SubscriptionPayment(
        subscription_id=subscription.id,
        amount=Decimal("9.99"),
        currency="USD",
        gateway="Flutterwave",
        reference="FLW-REF-0001",
    )
    db_session.add(payment)
    db_session.commit()
    return subscription, payment


@pytest.fixture(scope='function')
def captured_events(app):
    """Record every domain event published during the test."""
    seen = []
    bus = get_event_bus()
    bus.subscribe(ALL_EVENTS, seen.append)
    yield seen
    bus.unsubscribe(ALL_EVENTS, seen.append)


def order_ref(order) -> dict:
    return {"scenario": "order", "order_id": order.id}


def subscription_ref(subscription, payment) -> dict:
    return {
        "scenario": "subscription",
        "subscription_id": subscription.id,
        "payment_id": payment.id,
    }


def tenant_headers(org, user_id: int = 7) -> dict:
    """Headers the upstream auth gateway forwards."""
    return {"X-Org-Id": str(org.id), "X-User-Id": str(user_id)}


def manual_ref(**overrides) -> dict:
    """Manual receipt body: one customer, two typed-in lines, $27.50 total."""
    ref = {
        "scenario": "manual",
        "customer_id": 900,
        "customer_name": "Walk-in Customer",
        "customer_email": "walkin@example.test",
        "customer_address": {"city": "Springfield", "country": "US"},
        "lines": [
            {"name": "Widget", "quantity": 2, "unit_price": "10.00"},
            {"name": "Gadget", "quantity": 1, "unit_price": "5.00"},
        ],
        "tax_amount": "2.50",
        "total_amount": "27.50",
        "payment_method": "Cash",
    }
    ref.update(overrides)
    return ref
