"""
Tests for CallbackReconciler.

Each gateway status is applied at most once; anything that contradicts a
settled refund is reported and never changes state.
"""

import pytest

from orders.models import Order
from orders.state_machines import OrderStatus
from payments.exceptions import RefundLookupPendingError
from payments.models import RefundRequest
from payments.services import CallbackReconciler, ReconcileOutcome, RefundNotification
from payments.state_machines import RefundStatus
from payments.tests.factories import RefundRequestFactory, refund_resource


def notify(refund_no, amount_cents, status="SUCCESS", **extra):
    resource = refund_resource(refund_no, amount_cents, status=status, **extra)
    return CallbackReconciler.reconcile(RefundNotification.from_resource(resource))


@pytest.fixture
def processing_refund(db, paid_order):
    return RefundRequestFactory(order=paid_order, amount_cents=20000, status=RefundStatus.PROCESSING)


class TestRefundNotification:
    def test_from_resource(self):
        notification = RefundNotification.from_resource(refund_resource("REF1", 20000))

        assert notification.refund_no == "REF1"
        assert notification.status == "SUCCESS"
        assert notification.amount_cents == 20000
        assert notification.success_time is not None
        assert notification.order_no == "ORD001"
        assert notification.is_final

    def test_processing_is_not_final(self):
        notification = RefundNotification.from_resource(refund_resource("REF1", 1, status="PROCESSING"))

        assert notification.is_final is False


class TestReconcile:
    """Tests for CallbackReconciler.reconcile."""

    def test_success_settles_refund(self, processing_refund):
        result = notify(processing_refund.refund_no, 20000)

        assert result.data == ReconcileOutcome.APPLIED
        refund = RefundRequest.objects.get(id=processing_refund.id)
        assert refund.status == RefundStatus.SUCCESS
        assert refund.settled_amount_cents == 20000
        assert refund.user_received_account == "Customer card 6222****1234"
        # Partial refund: order stays PAID
        assert Order.objects.get(id=processing_refund.order_id).status == OrderStatus.PAID

    def test_full_coverage_refunds_order(self, db, paid_order):
        RefundRequestFactory(order=paid_order, amount_cents=9900, status=RefundStatus.SUCCESS)
        refund = RefundRequestFactory(order=paid_order, amount_cents=20000, status=RefundStatus.PROCESSING)

        notify(refund.refund_no, 20000)

        order = Order.objects.get(id=paid_order.id)
        assert order.status == OrderStatus.REFUNDED
        history = order.status_history.first()
        assert history.changed_by == "gateway:callback"

    def test_replay_is_noop(self, processing_refund):
        notify(processing_refund.refund_no, 20000)
        version = RefundRequest.objects.get(id=processing_refund.id).version

        result = notify(processing_refund.refund_no, 20000)

        assert result.data == ReconcileOutcome.ALREADY_APPLIED
        assert RefundRequest.objects.get(id=processing_refund.id).version == version

    def test_amount_mismatch_escalates(self, processing_refund, mocker):
        alerts = mocker.patch("payments.services.callback_reconciler.alerts")

        result = notify(processing_refund.refund_no, 19999)

        assert result.data == ReconcileOutcome.ESCALATED
        refund = RefundRequest.objects.get(id=processing_refund.id)
        assert refund.status == RefundStatus.ABNORMAL
        assert refund.last_error_code == "AMOUNT_MISMATCH"
        assert refund.settled_amount_cents == 19999
        alerts.critical.assert_called_once()

    def test_closed_marks_failed(self, processing_refund):
        result = notify(processing_refund.refund_no, 20000, status="CLOSED")

        assert result.data == ReconcileOutcome.APPLIED
        refund = RefundRequest.objects.get(id=processing_refund.id)
        assert refund.status == RefundStatus.FAILED
        assert refund.last_error_code == "CLOSED"

    def test_abnormal_escalates(self, processing_refund):
        result = notify(processing_refund.refund_no, 20000, status="ABNORMAL")

        assert result.data == ReconcileOutcome.ESCALATED
        assert RefundRequest.objects.get(id=processing_refund.id).status == RefundStatus.ABNORMAL

    def test_processing_changes_nothing(self, processing_refund):
        result = notify(processing_refund.refund_no, 20000, status="PROCESSING")

        assert result.data == ReconcileOutcome.PENDING
        assert RefundRequest.objects.get(id=processing_refund.id).status == RefundStatus.PROCESSING

    def test_unknown_status_reported(self, processing_refund):
        result = notify(processing_refund.refund_no, 20000, status="MYSTERY")

        assert result.data == ReconcileOutcome.INTEGRITY_FAULT
        assert RefundRequest.objects.get(id=processing_refund.id).status == RefundStatus.PROCESSING

    def test_contradicting_settled_refund_is_integrity_fault(self, db, paid_order, mocker):
        refund = RefundRequestFactory(order=paid_order, amount_cents=20000, status=RefundStatus.SUCCESS)
        alerts = mocker.patch("payments.services.callback_reconciler.alerts")

        result = notify(refund.refund_no, 20000, status="CLOSED")

        assert result.data == ReconcileOutcome.INTEGRITY_FAULT
        assert RefundRequest.objects.get(id=refund.id).status == RefundStatus.SUCCESS
        assert "CLOSED for refund in SUCCESS" in alerts.critical.call_args.args[0]

    def test_success_for_cancelled_refund_is_integrity_fault(self, db, paid_order):
        refund = RefundRequestFactory(order=paid_order, status=RefundStatus.CANCELLED)

        result = notify(refund.refund_no, refund.amount_cents)

        assert result.data == ReconcileOutcome.INTEGRITY_FAULT
        assert RefundRequest.objects.get(id=refund.id).status == RefundStatus.CANCELLED

    def test_unknown_refund_number_raises_lookup_pending(self, db, mocker):
        sleep = mocker.patch("payments.services.callback_reconciler.time.sleep")

        with pytest.raises(RefundLookupPendingError):
            notify("REF404", 100)

        # RECONCILE_LOOKUP_ATTEMPTS is 2 under test: one wait between lookups
        assert sleep.call_count == 1
