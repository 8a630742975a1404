"""
Tests for the orders API views.
"""

from django.urls import reverse
from rest_framework import status

from orders.models import Order
from orders.state_machines import OrderStatus
from orders.tests.factories import OrderFactory


class TestOrderDetailView:
    """GET /api/v1/orders/{order_no}/"""

    def test_owner_sees_snapshot(self, db, customer_client, paid_order):
        response = customer_client.get(reverse("orders:order_detail", args=[paid_order.order_no]))

        assert response.status_code == status.HTTP_200_OK
        assert response.data["order_no"] == paid_order.order_no
        assert response.data["paid_amount"] == "299.00"
        assert set(response.data["allowed_events"]) == {"ship", "cancel", "refund"}

    def test_other_customer_gets_404(self, db, customer_client):
        other = OrderFactory()

        response = customer_client.get(reverse("orders:order_detail", args=[other.order_no]))

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_staff_sees_any_order(self, db, admin_client, paid_order):
        response = admin_client.get(reverse("orders:order_detail", args=[paid_order.order_no]))

        assert response.status_code == status.HTTP_200_OK

    def test_requires_authentication(self, db, api_client, paid_order):
        response = api_client.get(reverse("orders:order_detail", args=[paid_order.order_no]))

        assert response.status_code == status.HTTP_401_UNAUTHORIZED


class TestOrderTransitionView:
    """POST /api/v1/orders/{order_id}/transition/"""

    def test_admin_ships_order(self, db, admin_client, paid_order):
        response = admin_client.post(
            reverse("orders:order_transition", args=[paid_order.id]),
            {"event": "ship", "reason": "courier picked up"},
            format="json",
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["status"] == OrderStatus.SHIPPED
        assert response.data["status_history"][0]["to_status"] == OrderStatus.SHIPPED
        assert response.data["status_history"][0]["reason"] == "courier picked up"

    def test_illegal_event_returns_409(self, db, admin_client, pending_order):
        response = admin_client.post(
            reverse("orders:order_transition", args=[pending_order.id]),
            {"event": "ship"},
            format="json",
        )

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data["error_code"] == "INVALID_TRANSITION"
        assert Order.objects.get(id=pending_order.id).status == OrderStatus.PENDING

    def test_stale_version_returns_409(self, db, admin_client, paid_order):
        response = admin_client.post(
            reverse("orders:order_transition", args=[paid_order.id]),
            {"event": "cancel", "expected_version": paid_order.version + 1},
            format="json",
        )

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data["error_code"] == "STALE_RECORD"

    def test_customer_forbidden(self, db, customer_client, paid_order):
        response = customer_client.post(
            reverse("orders:order_transition", args=[paid_order.id]),
            {"event": "cancel"},
            format="json",
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN


class TestOrderStatsView:
    def test_counts_per_status(self, db, admin_client, paid_order, pending_order):
        response = admin_client.get(reverse("orders:order_stats"))

        assert response.status_code == status.HTTP_200_OK
        assert response.data["PAID"] == 1
        assert response.data["PENDING"] == 1
        assert response.data["total"] == 2
