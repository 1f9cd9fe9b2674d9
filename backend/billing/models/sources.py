from __future__ import annotations

from ..extensions import db

# Source records are owned by the store-sync and subscription collaborators.
# The billing core only reads them; amounts are stored exactly as received.


class Order(db.Model):
    """E-commerce order synced from a connected store."""
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("store_id", "external_id", name="uq_orders_store_external"),
        db.Index("ix_orders_org_created", "org_id", "date_created"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=True, index=True)
    external_id = db.Column(db.String(64), nullable=True)  # Platform order id
    customer_id = db.Column(db.Integer, nullable=True)

    # Billing block
    billing_first_name = db.Column(db.String(128), nullable=True)
    billing_last_name = db.Column(db.String(128), nullable=True)
    billing_email = db.Column(db.String(255), nullable=True)
    billing_address_1 = db.Column(db.String(255), nullable=True)
    billing_city = db.Column(db.String(128), nullable=True)
    billing_state = db.Column(db.String(128), nullable=True)
    billing_postcode = db.Column(db.String(32), nullable=True)
    billing_country = db.Column(db.String(128), nullable=True)

    # Totals
    total = db.Column(db.Numeric(14, 2), nullable=True)
    total_tax = db.Column(db.Numeric(14, 2), nullable=True)
    discount_total = db.Column(db.Numeric(14, 2), nullable=True)
    currency = db.Column(db.String(3), nullable=True)

    payment_method_title = db.Column(db.String(128), nullable=True)
    transaction_id = db.Column(db.String(128), nullable=True)
    date_created = db.Column(db.DateTime(timezone=True), nullable=True)
    customer_note = db.Column(db.Text, nullable=True)

    store = db.relationship("Store", backref=db.backref("orders", lazy=True))
    lines = db.relationship(
        "OrderLine",
        backref="order",
        lazy=True,
        order_by="OrderLine.position",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Order id={self.id} org_id={self.org_id} external_id={self.external_id!r}>"


class OrderLine(db.Model):
    """Line entry on a synced order."""
    __tablename__ = "order_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)
    name = db.Column(db.String(255), nullable=True)
    description = db.Column(db.Text, nullable=True)
    quantity = db.Column(db.Integer, nullable=True)
    price = db.Column(db.Numeric(14, 2), nullable=True)
    total = db.Column(db.Numeric(14, 2), nullable=True)


class SubscriptionPlan(db.Model):
    """Platform plan a tenant can subscribe to."""
    __tablename__ = "subscription_plans"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    description = db.Column(db.Text, nullable=True)
    price = db.Column(db.Numeric(14, 2), nullable=True)


class Subscription(db.Model):
    """Recurring subscription held by a tenant user."""
    __tablename__ = "subscriptions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=False, index=True)
    plan_id = db.Column(db.Integer, db.ForeignKey("subscription_plans.id"), nullable=True)
    billing_interval = db.Column(db.String(16), nullable=False, default="monthly")  # monthly / yearly
    status = db.Column(db.String(16), nullable=False, default="active")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    plan = db.relationship("SubscriptionPlan")


class SubscriptionPayment(db.Model):
    """Gateway payment settling one subscription period."""
    __tablename__ = "subscription_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    subscription_id = db.Column(db.Integer, db.ForeignKey("subscriptions.id"), nullable=False, index=True)
    amount = db.Column(db.Numeric(14, 2), nullable=True)
    currency = db.Column(db.String(3), nullable=True)
    gateway = db.Column(db.String(64), nullable=True)  # e.g. Flutterwave, Paystack
    reference = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    subscription = db.relationship("Subscription", backref=db.backref("payments", lazy=True))
