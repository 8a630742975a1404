"""
API views for the orders app.

Endpoints:
    GET  /api/v1/orders/stats/                  - Order counts per status (admin)
    GET  /api/v1/orders/{order_no}/             - Order snapshot (owner or admin)
    POST /api/v1/orders/{order_id}/transition/  - Apply a status event (admin)
"""

from __future__ import annotations

import logging

from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import StaleRecordError

from orders.exceptions import InvalidTransitionError, OrderNotFoundError
from orders.serializers import OrderSnapshotSerializer, OrderTransitionSerializer
from orders.services import OrderLedger, OrderStateMachine

logger = logging.getLogger(__name__)


class OrderStatsView(APIView):
    """
    GET /api/v1/orders/stats/
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="get_order_stats",
        summary="Order counts per status",
        tags=["Orders"],
    )
    def get(self, request):
        return Response(OrderLedger.get_order_stats())


class OrderDetailView(APIView):
    """
    GET /api/v1/orders/{order_no}/

    Customers see their own orders; staff see all.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_order",
        summary="Get order snapshot",
        tags=["Orders"],
        responses={200: OrderSnapshotSerializer, 404: OpenApiResponse(description="Not found")},
    )
    def get(self, request, order_no: str):
        result = OrderLedger.get_order_by_no(order_no)
        order = result.data
        if not result.success or not (request.user.is_staff or order.user_id == request.user.id):
            return Response(
                {"error": "Order not found", "error_code": "ORDER_NOT_FOUND"},
                status=status.HTTP_404_NOT_FOUND,
            )
        return Response(OrderLedger.order_snapshot(order))


class OrderTransitionView(APIView):
    """
    POST /api/v1/orders/{order_id}/transition/

    Payload:
        event: pay | ship | complete | cancel | refund
        reason: Optional free text
        expected_version: Optional optimistic lock version
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="transition_order",
        summary="Apply an order status event",
        tags=["Orders"],
        request=OrderTransitionSerializer,
        responses={
            200: OrderSnapshotSerializer,
            404: OpenApiResponse(description="Order not found"),
            409: OpenApiResponse(description="Illegal transition or stale version"),
        },
    )
    def post(self, request, order_id):
        serializer = OrderTransitionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            OrderStateMachine.transition(
                order_id,
                serializer.validated_data["event"],
                reason=serializer.validated_data["reason"],
                actor=f"admin:{request.user.pk}",
                expected_version=serializer.validated_data.get("expected_version"),
            )
        except OrderNotFoundError as e:
            return Response(e.to_dict(), status=status.HTTP_404_NOT_FOUND)
        except (InvalidTransitionError, StaleRecordError) as e:
            return Response(e.to_dict(), status=status.HTTP_409_CONFLICT)

        order = OrderLedger.get_order(order_id).data
        return Response(OrderLedger.order_snapshot(order))
