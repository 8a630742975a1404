"""
End-to-end refund journeys.

Order creation, the signed payment callback, an admin refund with
transient gateway failures and the signed refund callback, wired together
through the real endpoints and tasks. Only the gateway HTTP calls and the
Celery broker are replaced.
"""

from django.urls import reverse

from orders.models import Order, OrderStatusHistory
from orders.services import OrderLedger, OrderLine
from orders.state_machines import OrderStatus
from payments.models import GatewayNotification, RefundRequest
from payments.services import RefundOrchestrator
from payments.state_machines import NotificationStatus, RefundStatus
from payments.tasks import process_gateway_notification
from payments.tests.factories import accepted, refund_resource, scripted, signed_callback, transient


def deliver(client, gateway_keys, url_name, event_type, payload):
    """Post a signed callback and run the task it queued."""
    body, headers = signed_callback(gateway_keys, event_type, payload)
    response = client.post(
        reverse(f"payments:{url_name}"),
        data=body,
        content_type="application/json",
        **headers,
    )
    assert response.status_code == 200
    notification = GatewayNotification.objects.order_by("-created_at").first()
    return process_gateway_notification(str(notification.id))


class TestRefundJourney:
    def test_pay_refund_with_retries_and_callback(
        self, db, client, admin_client, user, gateway, gateway_keys, scheduled_tasks
    ):
        # Order ORD001 for 299.00
        order = OrderLedger.create_order(
            [OrderLine("room-101", "Deluxe Room", unit_price_cents=29900)],
            user=user,
            order_no="ORD001",
        ).data

        # Payment callback
        result = deliver(
            client,
            gateway_keys,
            "payment_notify",
            "TRANSACTION.SUCCESS",
            {
                "out_trade_no": "ORD001",
                "transaction_id": "4200000001",
                "trade_state": "SUCCESS",
                "amount": {"total": 29900, "currency": "CNY"},
            },
        )
        assert result["status"] == "processed"
        assert Order.objects.get(id=order.id).status == OrderStatus.PAID

        # Admin refund: two timeouts, then accepted
        gateway.refund.side_effect = scripted(transient, transient, accepted)
        response = admin_client.post(
            reverse("payments:order_refunds", args=[order.id]),
            {"amount": "299.00", "reason": "Customer cancelled"},
            format="json",
        )
        assert response.status_code == 201
        refund_id = response.data["id"]

        assert scheduled_tasks.attempt.call_args.kwargs["args"] == [refund_id]
        RefundOrchestrator.process_attempt(refund_id)
        RefundOrchestrator.process_attempt(refund_id)

        refund = RefundRequest.objects.get(id=refund_id)
        assert gateway.refund.call_count == 3
        assert {call.args[0] for call in gateway.refund.call_args_list} == {refund.refund_no}
        assert refund.status == RefundStatus.PROCESSING

        # Refund callback, delivered twice
        resource = refund_resource(refund.refund_no, 29900, order_no="ORD001")
        first = deliver(client, gateway_keys, "refund_notify", "REFUND.SUCCESS", resource)
        second = deliver(client, gateway_keys, "refund_notify", "REFUND.SUCCESS", resource)

        assert first["outcome"] == "applied"
        assert second["outcome"] == "already_applied"
        assert RefundRequest.objects.get(id=refund_id).status == RefundStatus.SUCCESS
        order = Order.objects.get(id=order.id)
        assert order.status == OrderStatus.REFUNDED
        assert list(
            OrderStatusHistory.objects.filter(order=order).order_by("created_at").values_list("to_status", flat=True)
        ) == [OrderStatus.PAID, OrderStatus.REFUNDED]
        assert GatewayNotification.objects.filter(status=NotificationStatus.PROCESSED).count() == 3

    def test_partial_refunds_then_overdraw_rejected(self, db, admin_client, paid_order, gateway):
        gateway.refund.side_effect = accepted
        url = reverse("payments:order_refunds", args=[paid_order.id])

        first = admin_client.post(url, {"amount": "200.00"}, format="json")
        second = admin_client.post(url, {"amount": "150.00"}, format="json")

        assert first.status_code == 201
        assert second.status_code == 400
        assert second.data["error_code"] == "AMOUNT_EXCEEDS_BALANCE"
        assert RefundRequest.objects.filter(order=paid_order).count() == 1
