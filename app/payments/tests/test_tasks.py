"""
Tests for payment Celery tasks.

Tasks are called synchronously; the scheduling they do is mocked by the
autouse scheduled_tasks fixture.
"""

from datetime import timedelta

import pytest
from django.utils import timezone

from orders.models import Order
from orders.state_machines import OrderStatus, PaymentStatus
from payments.models import GatewayNotification, RefundRequest
from payments.state_machines import NotificationEventType, NotificationStatus, RefundStatus
from payments.tasks import (
    cleanup_stuck_notifications,
    execute_refund_attempt,
    poll_refund_status,
    poll_stale_refunds,
    process_gateway_notification,
    resume_pending_refunds,
    retry_failed_notifications,
)
from payments.tests.factories import (
    GatewayNotificationFactory,
    RefundRequestFactory,
    accepted,
    refund_resource,
)


class TestProcessGatewayNotification:
    """Tests for process_gateway_notification."""

    def test_refund_success_applied(self, db, paid_order):
        refund = RefundRequestFactory(order=paid_order, amount_cents=29900, status=RefundStatus.PROCESSING)
        notification = GatewayNotificationFactory(payload=refund_resource(refund.refund_no, 29900))

        result = process_gateway_notification(str(notification.id))

        assert result["status"] == "processed"
        assert result["outcome"] == "applied"
        notification = GatewayNotification.objects.get(id=notification.id)
        assert notification.status == NotificationStatus.PROCESSED
        assert notification.retry_count == 1
        assert RefundRequest.objects.get(id=refund.id).status == RefundStatus.SUCCESS
        assert Order.objects.get(id=paid_order.id).status == OrderStatus.REFUNDED

    def test_already_processed_skipped(self, db):
        notification = GatewayNotificationFactory(status=NotificationStatus.PROCESSED)

        result = process_gateway_notification(str(notification.id))

        assert result["status"] == "already_processed"

    def test_missing_notification(self, db):
        result = process_gateway_notification("00000000-0000-0000-0000-000000000000")

        assert result["status"] == "not_found"

    def test_unknown_event_acknowledged(self, db):
        notification = GatewayNotificationFactory(event_type="REFUND.SOMETHING_NEW")

        result = process_gateway_notification(str(notification.id))

        assert result["status"] == "processed"

    def test_missing_refund_number_fails_handler(self, db):
        notification = GatewayNotificationFactory(payload={"refund_status": "SUCCESS"})

        result = process_gateway_notification(str(notification.id))

        assert result["status"] == "handler_failed"
        assert result["error_code"] == "INVALID_NOTIFICATION"
        assert GatewayNotification.objects.get(id=notification.id).status == NotificationStatus.FAILED

    def test_unknown_refund_retried(self, db):
        from payments.exceptions import RefundLookupPendingError

        notification = GatewayNotificationFactory(payload=refund_resource("REF404", 100))

        with pytest.raises(RefundLookupPendingError):
            process_gateway_notification(str(notification.id))

        assert GatewayNotification.objects.get(id=notification.id).status == NotificationStatus.FAILED

    def test_unknown_refund_alerts_when_retries_exhausted(self, db, mocker):
        mocker.patch.object(process_gateway_notification, "max_retries", 0)
        alerts = mocker.patch("payments.tasks.alerts")
        notification = GatewayNotificationFactory(payload=refund_resource("REF404", 100))

        result = process_gateway_notification(str(notification.id))

        assert result["status"] == "unknown_refund"
        assert result["refund_no"] == "REF404"
        alerts.critical.assert_called_once()
        assert GatewayNotification.objects.get(id=notification.id).status == NotificationStatus.FAILED

    def test_transaction_success_records_payment(self, db, pending_order):
        notification = GatewayNotificationFactory(
            event_type=NotificationEventType.TRANSACTION_SUCCESS,
            resource_type="transaction",
            payload={
                "out_trade_no": pending_order.order_no,
                "transaction_id": "4200000009",
                "trade_state": "SUCCESS",
                "success_time": "2025-06-15T10:00:00+08:00",
                "amount": {"total": 29900, "currency": "CNY"},
            },
        )

        result = process_gateway_notification(str(notification.id))

        assert result["status"] == "processed"
        order = Order.objects.get(id=pending_order.id)
        assert order.status == OrderStatus.PAID
        assert order.payment_status == PaymentStatus.SUCCESS
        assert order.gateway_transaction_id == "4200000009"

    def test_transaction_amount_mismatch_fails(self, db, pending_order):
        notification = GatewayNotificationFactory(
            event_type=NotificationEventType.TRANSACTION_SUCCESS,
            payload={
                "out_trade_no": pending_order.order_no,
                "transaction_id": "4200000009",
                "trade_state": "SUCCESS",
                "amount": {"total": 100},
            },
        )

        result = process_gateway_notification(str(notification.id))

        assert result["error_code"] == "PAYMENT_AMOUNT_MISMATCH"
        assert Order.objects.get(id=pending_order.id).status == OrderStatus.PENDING


class TestRefundTasks:
    def test_execute_refund_attempt(self, db, gateway):
        refund = RefundRequestFactory(status=RefundStatus.PROCESSING)
        gateway.refund.side_effect = accepted

        result = execute_refund_attempt(str(refund.id))

        assert result["status"] == RefundStatus.PROCESSING
        gateway.refund.assert_called_once()

    def test_execute_refund_attempt_missing(self, db, gateway):
        result = execute_refund_attempt("00000000-0000-0000-0000-000000000000")

        assert result["status"] == "skipped"
        assert result["error_code"] == "REFUND_NOT_FOUND"

    def test_poll_refund_status(self, db, gateway):
        refund = RefundRequestFactory(status=RefundStatus.FAILED)

        result = poll_refund_status(str(refund.id))

        assert result["status"] == RefundStatus.FAILED
        gateway.query_refund.assert_not_called()


class TestSweeps:
    """Tests for the periodic sweep tasks."""

    def test_poll_stale_refunds(self, db, scheduled_tasks, settings):
        settings.REFUND_CALLBACK_WINDOW_SECONDS = 600
        stale = RefundRequestFactory(status=RefundStatus.PROCESSING)
        RefundRequest.objects.filter(id=stale.id).update(updated_at=timezone.now() - timedelta(hours=1))
        RefundRequestFactory(status=RefundStatus.PROCESSING)
        old_pending = RefundRequestFactory(status=RefundStatus.PENDING)
        RefundRequest.objects.filter(id=old_pending.id).update(updated_at=timezone.now() - timedelta(hours=1))

        result = poll_stale_refunds()

        assert result == {"queued_count": 1}
        scheduled_tasks.poll_delay.assert_called_once_with(str(stale.id), reschedule=False)

    def test_poll_stale_refunds_skips_refund_waiting_on_backoff(self, db, scheduled_tasks, settings):
        settings.REFUND_CALLBACK_WINDOW_SECONDS = 600
        backing_off = RefundRequestFactory(status=RefundStatus.PROCESSING, retry_count=7)
        acknowledged = RefundRequestFactory(
            status=RefundStatus.PROCESSING,
            retry_count=2,
            submitted_at=timezone.now() - timedelta(hours=2),
        )
        RefundRequest.objects.filter(id__in=[backing_off.id, acknowledged.id]).update(
            updated_at=timezone.now() - timedelta(hours=1)
        )

        result = poll_stale_refunds()

        assert result == {"queued_count": 1}
        scheduled_tasks.poll_delay.assert_called_once_with(str(acknowledged.id), reschedule=False)

    def test_resume_pending_refunds_skips_requests_awaiting_approval(self, db, gateway):
        queued = RefundRequestFactory(awaiting_approval=True, requested_by="user:1")
        RefundRequest.objects.filter(id=queued.id).update(created_at=timezone.now() - timedelta(hours=1))

        result = resume_pending_refunds()

        assert result == {"resumed_count": 0, "refund_nos": []}
        assert RefundRequest.objects.get(id=queued.id).status == RefundStatus.PENDING
        gateway.refund.assert_not_called()

    def test_resume_pending_refunds(self, db, gateway):
        gateway.refund.side_effect = accepted
        refund = RefundRequestFactory()
        RefundRequest.objects.filter(id=refund.id).update(created_at=timezone.now() - timedelta(hours=1))

        result = resume_pending_refunds()

        assert result == {"resumed_count": 1, "refund_nos": [refund.refund_no]}

    def test_retry_failed_notifications(self, db, scheduled_tasks):
        failed = GatewayNotificationFactory(status=NotificationStatus.FAILED, retry_count=2)
        GatewayNotificationFactory(status=NotificationStatus.FAILED, retry_count=5)
        GatewayNotificationFactory(status=NotificationStatus.PROCESSED)

        result = retry_failed_notifications()

        assert result == {"queued_count": 1}
        scheduled_tasks.notification.assert_called_once_with(str(failed.id))

    def test_cleanup_stuck_notifications(self, db):
        stuck = GatewayNotificationFactory(status=NotificationStatus.PROCESSING)
        GatewayNotification.objects.filter(id=stuck.id).update(updated_at=timezone.now() - timedelta(hours=1))
        recent = GatewayNotificationFactory(status=NotificationStatus.PROCESSING)

        result = cleanup_stuck_notifications()

        assert result == {"reset_count": 1}
        assert GatewayNotification.objects.get(id=stuck.id).status == NotificationStatus.FAILED
        assert GatewayNotification.objects.get(id=recent.id).status == NotificationStatus.PROCESSING
