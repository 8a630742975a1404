"""
Tests for OrderStateMachine.

Every (status, event) pair outside the transition table must be rejected
with InvalidTransitionError and leave the order untouched.
"""

import uuid

import pytest

from core.exceptions import StaleRecordError
from orders.exceptions import InvalidTransitionError, OrderNotFoundError
from orders.models import Order, OrderStatusHistory
from orders.services import OrderStateMachine
from orders.state_machines import ORDER_TRANSITIONS, OrderEvent, OrderStatus, PaymentStatus
from orders.tests.factories import OrderFactory
from payments.services import CallbackReconciler, RefundNotification
from payments.state_machines import RefundStatus
from payments.tests.factories import RefundRequestFactory, refund_resource

ALL_PAIRS = [(status, event) for status in OrderStatus.values for event in OrderEvent.values]
ILLEGAL_PAIRS = [pair for pair in ALL_PAIRS if pair not in ORDER_TRANSITIONS]


def order_in_status(status):
    """Create an order directly in ``status`` (payment SUCCESS unless PENDING)."""
    paid = status != OrderStatus.PENDING
    return OrderFactory(
        status=status,
        payment_status=PaymentStatus.SUCCESS if paid else PaymentStatus.UNPAID,
        paid_amount_cents=29900 if paid else 0,
        gateway_transaction_id=f"4200{uuid.uuid4().hex[:16]}" if paid else None,
        items=False,
    )


class TestTransition:
    """Tests for OrderStateMachine.transition."""

    def test_applies_event_and_writes_history(self, db, paid_order):
        new_status = OrderStateMachine.transition(
            paid_order.id,
            OrderEvent.SHIP,
            reason="dispatched",
            actor="admin:1",
        )

        assert new_status == OrderStatus.SHIPPED
        order = Order.objects.get(id=paid_order.id)
        assert order.status == OrderStatus.SHIPPED

        history = OrderStatusHistory.objects.filter(order=order).first()
        assert history.from_status == OrderStatus.PAID
        assert history.to_status == OrderStatus.SHIPPED
        assert history.event == OrderEvent.SHIP
        assert history.changed_by == "admin:1"

    def test_increments_version(self, db, paid_order):
        version = paid_order.version

        OrderStateMachine.transition(paid_order.id, OrderEvent.CANCEL)

        assert Order.objects.get(id=paid_order.id).version == version + 1

    def test_expected_version_matches(self, db, paid_order):
        new_status = OrderStateMachine.transition(
            paid_order.id,
            OrderEvent.CANCEL,
            expected_version=paid_order.version,
        )

        assert new_status == OrderStatus.CANCELLED

    def test_stale_version_raises(self, db, paid_order):
        with pytest.raises(StaleRecordError):
            OrderStateMachine.transition(
                paid_order.id,
                OrderEvent.SHIP,
                expected_version=paid_order.version + 5,
            )

        assert Order.objects.get(id=paid_order.id).status == OrderStatus.PAID

    def test_missing_order_raises(self, db):
        with pytest.raises(OrderNotFoundError):
            OrderStateMachine.transition(uuid.uuid4(), OrderEvent.SHIP)

    def test_unknown_event_raises(self, db, paid_order):
        with pytest.raises(InvalidTransitionError) as exc_info:
            OrderStateMachine.transition(paid_order.id, "teleport")

        assert exc_info.value.event == "teleport"

    def test_refund_without_coverage_raises(self, db, paid_order):
        """The refund event needs SUCCESS refunds covering the paid amount."""
        with pytest.raises(InvalidTransitionError) as exc_info:
            OrderStateMachine.transition(paid_order.id, OrderEvent.REFUND)

        assert exc_info.value.details["unmet_condition"] is True
        assert Order.objects.get(id=paid_order.id).status == OrderStatus.PAID

    def test_pay_without_payment_raises(self, db, pending_order):
        with pytest.raises(InvalidTransitionError):
            OrderStateMachine.transition(pending_order.id, OrderEvent.PAY)


class TestIllegalTransitions:
    """Every pair outside the table is rejected without mutation."""

    @pytest.mark.parametrize("status,event", ILLEGAL_PAIRS)
    def test_illegal_pair_rejected(self, db, status, event):
        order = order_in_status(status)
        version = order.version

        with pytest.raises(InvalidTransitionError) as exc_info:
            OrderStateMachine.transition(order.id, event)

        assert exc_info.value.from_status == status
        assert exc_info.value.event == event
        reloaded = Order.objects.get(id=order.id)
        assert reloaded.status == status
        assert reloaded.version == version
        assert not OrderStatusHistory.objects.filter(order=order).exists()


class TestAllowedEvents:
    def test_paid_allows_ship_cancel_refund(self):
        assert set(OrderStateMachine.allowed_events(OrderStatus.PAID)) == {
            OrderEvent.SHIP,
            OrderEvent.CANCEL,
            OrderEvent.REFUND,
        }

    def test_terminal_status_allows_nothing(self):
        assert OrderStateMachine.allowed_events(OrderStatus.REFUNDED) == []


class TestUnsettledRefundGuard:
    """SHIP and CANCEL wait until every refund of the order has settled."""

    @pytest.mark.parametrize("event", [OrderEvent.SHIP, OrderEvent.CANCEL])
    @pytest.mark.parametrize(
        "refund_status",
        [RefundStatus.PENDING, RefundStatus.PROCESSING, RefundStatus.ABNORMAL],
    )
    def test_blocked_by_unsettled_refund(self, db, paid_order, event, refund_status):
        RefundRequestFactory(order=paid_order, amount_cents=29900, status=refund_status)

        with pytest.raises(InvalidTransitionError) as exc_info:
            OrderStateMachine.transition(paid_order.id, event)

        assert exc_info.value.details["unmet_condition"] is True
        assert "has not settled" in exc_info.value.message
        assert Order.objects.get(id=paid_order.id).status == OrderStatus.PAID

    @pytest.mark.parametrize("refund_status", [RefundStatus.FAILED, RefundStatus.CANCELLED])
    def test_released_refunds_do_not_block(self, db, paid_order, refund_status):
        RefundRequestFactory(order=paid_order, amount_cents=29900, status=refund_status)

        assert OrderStateMachine.transition(paid_order.id, OrderEvent.SHIP) == OrderStatus.SHIPPED

    def test_settled_partial_refund_does_not_block(self, db, paid_order):
        RefundRequestFactory(order=paid_order, amount_cents=10000, status=RefundStatus.SUCCESS)

        assert OrderStateMachine.transition(paid_order.id, OrderEvent.CANCEL) == OrderStatus.CANCELLED

    @pytest.mark.parametrize("event", [OrderEvent.SHIP, OrderEvent.CANCEL])
    def test_full_refund_callback_after_blocked_event_refunds_order(self, db, paid_order, event):
        refund = RefundRequestFactory(order=paid_order, amount_cents=29900, status=RefundStatus.PROCESSING)

        with pytest.raises(InvalidTransitionError):
            OrderStateMachine.transition(paid_order.id, event)
        CallbackReconciler.reconcile(
            RefundNotification.from_resource(refund_resource(refund.refund_no, 29900))
        )

        order = Order.objects.get(id=paid_order.id)
        assert order.status == OrderStatus.REFUNDED
        assert order.successful_refund_total() == order.paid_amount_cents
