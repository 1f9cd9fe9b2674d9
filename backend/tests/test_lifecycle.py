# Overview: Pytest coverage for document lifecycle transitions and line edits.

"""
Lifecycle Tests

Covers:
- Transition table: active -> cancelled | refunded, terminal states stay put
- Refund defaults and bounds, single refund with conflict on retry
- Cancellation keeps amounts
- Line edits recompute totals and are rejected on terminal documents
- Sub-cent line prices rejected so stored lines add up to the subtotal
"""

from decimal import Decimal

import pytest

from billing.events import DOCUMENT_CANCELLED, DOCUMENT_REFUNDED, DOCUMENT_UPDATED
from billing.services.generation_service import generate_document
from billing.services.lifecycle_service import (
    can_transition,
    cancel_document,
    refund_document,
    update_document_lines,
)
from billing.validation import ConflictError, NotFoundError, ValidationError
from conftest import order_ref


@pytest.fixture
def receipt(db_session, org_a, make_order):
    return generate_document(org_a.id, "receipt", order_ref(make_order()), actor_user_id=7)


class TestTransitions:

    @pytest.mark.parametrize(
        "current, target, allowed",
        [
            ("active", "cancelled", True),
            ("active", "refunded", True),
            ("cancelled", "refunded", False),
            ("refunded", "cancelled", False),
            ("refunded", "active", False),
            ("cancelled", "active", False),
        ],
    )
    def test_can_transition(self, current, target, allowed):
        assert can_transition(current, target) is allowed

    def test_unknown_status(self):
        with pytest.raises(ValidationError):
            can_transition("active", "archived")


class TestRefund:

    def test_refund_defaults_to_total(self, db_session, org_a, receipt):
        doc = refund_document(org_a.id, "receipt", receipt.id, actor_user_id=9, reason="Damaged")
        assert doc.status == "refunded"
        assert doc.refund_amount == Decimal("27.50")
        assert doc.refund_date is not None
        assert doc.refund_reason == "Damaged"
        assert doc.refunded_by_user_id == 9

    def test_second_refund_conflicts_without_mutation(self, db_session, org_a, receipt):
        first = refund_document(org_a.id, "receipt", receipt.id)
        db_session.refresh(first)
        snapshot = (first.summary(), first.version_id)

        with pytest.raises(ConflictError) as exc:
            refund_document(org_a.id, "receipt", receipt.id, amount="5")

        state = exc.value.details["document"]
        assert state["status"] == "refunded"
        assert state["refund_amount"] == 27.5
        db_session.expire_all()
        again = db_session.get(type(first), receipt.id)
        assert (again.summary(), again.version_id) == snapshot

    def test_partial_refund(self, db_session, org_a, receipt):
        doc = refund_document(org_a.id, "receipt", receipt.id, amount=10)
        assert doc.refund_amount == Decimal("10.00")
        assert doc.total_amount == Decimal("27.50")

    @pytest.mark.parametrize("amount", ["0", "-1", "27.51", "lots"])
    def test_refund_amount_bounds(self, db_session, org_a, receipt, amount):
        with pytest.raises(ValidationError):
            refund_document(org_a.id, "receipt", receipt.id, amount=amount)
        db_session.refresh(receipt)
        assert receipt.status == "active"

    def test_refund_of_cancelled_conflicts(self, db_session, org_a, receipt):
        cancel_document(org_a.id, "receipt", receipt.id)
        with pytest.raises(ConflictError) as exc:
            refund_document(org_a.id, "receipt", receipt.id)
        assert exc.value.details["document"]["status"] == "cancelled"

    def test_other_tenant_cannot_refund(self, db_session, org_b, receipt):
        with pytest.raises(NotFoundError):
            refund_document(org_b.id, "receipt", receipt.id)

    def test_kind_must_match(self, db_session, org_a, receipt):
        with pytest.raises(NotFoundError):
            refund_document(org_a.id, "invoice", receipt.id)

    def test_refund_emits_event_with_before_state(self, db_session, org_a, receipt, captured_events):
        refund_document(org_a.id, "receipt", receipt.id, actor_user_id=9)
        event = [e for e in captured_events if e.name == DOCUMENT_REFUNDED][0]
        assert event.before["status"] == "active"
        assert event.after["status"] == "refunded"
        assert event.actor_user_id == 9


class TestCancel:

    def test_cancel_keeps_amounts(self, db_session, org_a, receipt, captured_events):
        doc = cancel_document(org_a.id, "receipt", receipt.id, actor_user_id=5, reason="Duplicate")
        assert doc.status == "cancelled"
        assert doc.total_amount == Decimal("27.50")
        assert doc.cancelled_by_user_id == 5
        assert doc.cancelled_at is not None
        assert captured_events[-1].name == DOCUMENT_CANCELLED

    def test_cancel_twice_conflicts(self, db_session, org_a, receipt):
        cancel_document(org_a.id, "receipt", receipt.id)
        with pytest.raises(ConflictError):
            cancel_document(org_a.id, "receipt", receipt.id)

    def test_cancel_refunded_conflicts(self, db_session, org_a, receipt):
        refund_document(org_a.id, "receipt", receipt.id)
        with pytest.raises(ConflictError):
            cancel_document(org_a.id, "receipt", receipt.id)


class TestUpdateLines:

    def test_recomputes_totals(self, db_session, org_a, receipt, captured_events):
        doc = update_document_lines(
            org_a.id,
            "receipt",
            receipt.id,
            [
                {"name": "Widget", "quantity": 3, "unit_price": "10.00", "total_price": "30.00"},
                {"name": "Cable", "quantity": 2, "unit_price": 1.5},
            ],
            discount_amount="3",
            actor_user_id=8,
        )
        assert [line.name for line in doc.lines] == ["Widget", "Cable"]
        assert doc.subtotal == Decimal("33.00")
        assert doc.tax_amount == Decimal("2.50")
        assert doc.discount_amount == Decimal("3.00")
        assert doc.total_amount == Decimal("32.50")
        assert doc.total_amount == doc.subtotal + doc.tax_amount - doc.discount_amount
        assert doc.updated_by_user_id == 8
        assert captured_events[-1].name == DOCUMENT_UPDATED

    def test_mismatched_line_rejected_before_persist(self, db_session, org_a, receipt):
        with pytest.raises(ValidationError) as exc:
            update_document_lines(
                org_a.id,
                "receipt",
                receipt.id,
                [{"name": "Widget", "quantity": 2, "unit_price": "10", "total_price": "25"}],
            )
        assert exc.value.details["field"] == "lines[0].total_price"
        db_session.refresh(receipt)
        assert len(receipt.lines) == 2
        assert receipt.total_amount == Decimal("27.50")

    def test_empty_lines_rejected(self, db_session, org_a, receipt):
        with pytest.raises(ValidationError):
            update_document_lines(org_a.id, "receipt", receipt.id, [])

    def test_sub_cent_unit_price_rejected(self, db_session, org_a, receipt):
        # 3 x 0.335 would store 0.34 per unit next to a 1.01 line total
        with pytest.raises(ValidationError) as exc:
            update_document_lines(
                org_a.id,
                "receipt",
                receipt.id,
                [{"name": "Sticker", "quantity": 3, "unit_price": "0.335"}],
            )
        assert exc.value.details["field"] == "lines[0].unit_price"
        assert "malformed monetary value" in str(exc.value)
        db_session.refresh(receipt)
        assert receipt.subtotal == Decimal("25.00")

    def test_sub_cent_lines_rejected(self, db_session, org_a, receipt):
        # Two 0.005 lines would round to 0.01 each but sum to a 0.01 subtotal
        with pytest.raises(ValidationError) as exc:
            update_document_lines(
                org_a.id,
                "receipt",
                receipt.id,
                [
                    {"name": "Pin", "quantity": 1, "unit_price": "0.005"},
                    {"name": "Clip", "quantity": 1, "unit_price": "0.005"},
                ],
            )
        assert exc.value.details["field"] == "lines[0].unit_price"
        db_session.refresh(receipt)
        assert len(receipt.lines) == 2

    def test_stored_lines_match_subtotal(self, db_session, org_a, receipt):
        doc = update_document_lines(
            org_a.id,
            "receipt",
            receipt.id,
            [
                {"name": "Sticker", "quantity": 3, "unit_price": "0.33"},
                {"name": "Pin", "quantity": 7, "unit_price": "1.10"},
            ],
        )
        db_session.refresh(doc)
        for line in doc.lines:
            assert line.total_price == line.quantity * line.unit_price
        assert doc.subtotal == sum(line.total_price for line in doc.lines)
        assert doc.subtotal == Decimal("8.69")

    def test_terminal_document_is_read_only(self, db_session, org_a, receipt):
        refund_document(org_a.id, "receipt", receipt.id)
        with pytest.raises(ConflictError):
            update_document_lines(
                org_a.id,
                "receipt",
                receipt.id,
                [{"name": "Widget", "quantity": 1, "unit_price": "1"}],
            )
