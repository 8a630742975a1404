"""
API views for refunds.

Endpoints:
    GET  /api/v1/payments/orders/{order_id}/refunds/          - List an order's refunds (admin)
    POST /api/v1/payments/orders/{order_id}/refunds/          - Initiate a refund (admin)
    POST /api/v1/payments/orders/{order_no}/refund-request/   - Customer refund request
    GET  /api/v1/payments/refunds/stats/                      - Refund statistics (admin)
    GET  /api/v1/payments/refunds/{refund_id}/                - Refund detail (admin or order owner)
    POST /api/v1/payments/refunds/{refund_id}/retry/          - Retry FAILED / ABNORMAL (admin)
    POST /api/v1/payments/refunds/{refund_id}/cancel/         - Cancel a refund (admin)
    POST /api/v1/payments/refunds/{refund_id}/approve/        - Approve a queued customer request (admin)
    POST /api/v1/payments/refunds/{refund_id}/reject/         - Reject a queued customer request (admin)

Gateway callbacks live in payments.webhooks.views.
"""

from __future__ import annotations

import logging

from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from core.services import ServiceResult

from orders.services import OrderLedger

from payments.serializers import (
    CancelRefundSerializer,
    CustomerRefundRequestSerializer,
    InitiateRefundSerializer,
    RefundRequestSerializer,
    RejectRefundSerializer,
)
from payments.services import RefundOrchestrator, RefundQueryService

logger = logging.getLogger(__name__)

CONFLICT_ERROR_CODES = frozenset(
    {
        "REFUND_IN_FLIGHT",
        "NOT_RETRYABLE",
        "NOT_CANCELLABLE",
        "NOT_AWAITING_APPROVAL",
        "AWAITING_APPROVAL",
    }
)


def _error_response(result: ServiceResult) -> Response:
    """Map a failed ServiceResult to an HTTP response."""
    code = result.error_code or ""
    if code.endswith("NOT_FOUND"):
        http_status = status.HTTP_404_NOT_FOUND
    elif code in CONFLICT_ERROR_CODES:
        http_status = status.HTTP_409_CONFLICT
    else:
        http_status = status.HTTP_400_BAD_REQUEST
    return Response(result.to_response(), status=http_status)


def _refund_response(result: ServiceResult, success_status: int = status.HTTP_200_OK) -> Response:
    if not result.success:
        return _error_response(result)
    return Response(RefundRequestSerializer(result.data).data, status=success_status)


class OrderRefundsView(APIView):
    """
    GET  /api/v1/payments/orders/{order_id}/refunds/
    POST /api/v1/payments/orders/{order_id}/refunds/

    Payload (POST):
        amount: Decimal string ("200.00")
        reason: Reason sent to the gateway
        description: Optional note
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="list_order_refunds",
        summary="List refunds of an order",
        tags=["Refunds"],
        responses={200: RefundRequestSerializer(many=True)},
    )
    def get(self, request, order_id):
        result = OrderLedger.get_order(order_id)
        if not result.success:
            return _error_response(result)
        refunds = RefundQueryService.get_refunds_for_order(result.data).select_related("order")
        return Response(RefundRequestSerializer(refunds, many=True).data)

    @extend_schema(
        operation_id="initiate_refund",
        summary="Initiate a refund",
        tags=["Refunds"],
        request=InitiateRefundSerializer,
        responses={
            201: RefundRequestSerializer,
            400: OpenApiResponse(description="Not refundable, invalid amount or balance exceeded"),
            404: OpenApiResponse(description="Order not found"),
            409: OpenApiResponse(description="Refund already in flight"),
        },
    )
    def post(self, request, order_id):
        serializer = InitiateRefundSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = RefundOrchestrator.initiate_refund(
            order_id,
            serializer.validated_data["amount"],
            serializer.validated_data["reason"],
            description=serializer.validated_data["description"],
            actor=f"admin:{request.user.pk}",
        )
        return _refund_response(result, status.HTTP_201_CREATED)


class CustomerRefundRequestView(APIView):
    """
    POST /api/v1/payments/orders/{order_no}/refund-request/

    The order owner asks for a refund. Without ``amount`` the whole
    remaining balance is requested. The booking deadline is enforced and
    the request is queued PENDING until an operator approves or rejects it.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="request_refund",
        summary="Request a refund for your order",
        tags=["Refunds"],
        request=CustomerRefundRequestSerializer,
        responses={
            201: RefundRequestSerializer,
            400: OpenApiResponse(description="Not refundable, deadline passed or balance exceeded"),
            404: OpenApiResponse(description="Order not found"),
            409: OpenApiResponse(description="Refund already in flight"),
        },
    )
    def post(self, request, order_no: str):
        serializer = CustomerRefundRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = OrderLedger.get_order_by_no(order_no)
        order = result.data
        if not result.success or order.user_id != request.user.id:
            return Response(
                {"success": False, "error": "Order not found", "error_code": "ORDER_NOT_FOUND"},
                status=status.HTTP_404_NOT_FOUND,
            )

        amount_cents = serializer.validated_data.get("amount")
        if amount_cents is None:
            amount_cents = RefundQueryService.get_refundable_balance(order)

        result = RefundOrchestrator.initiate_refund(
            order.id,
            amount_cents,
            serializer.validated_data["reason"],
            description=serializer.validated_data["description"],
            actor=f"user:{request.user.pk}",
            enforce_deadline=True,
            awaiting_approval=True,
        )
        return _refund_response(result, status.HTTP_201_CREATED)


class RefundStatsView(APIView):
    """
    GET /api/v1/payments/refunds/stats/
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="get_refund_stats",
        summary="Refund counts per status and amount totals",
        tags=["Refunds"],
    )
    def get(self, request):
        return Response(RefundQueryService.get_refund_stats())


class RefundDetailView(APIView):
    """
    GET /api/v1/payments/refunds/{refund_id}/

    Staff see any refund; customers only refunds of their own orders.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_refund",
        summary="Get refund detail",
        tags=["Refunds"],
        responses={200: RefundRequestSerializer, 404: OpenApiResponse(description="Not found")},
    )
    def get(self, request, refund_id):
        result = RefundQueryService.get_refund(refund_id)
        if result.success and (request.user.is_staff or result.data.order.user_id == request.user.id):
            return Response(RefundRequestSerializer(result.data).data)
        return Response(
            {"success": False, "error": "Refund not found", "error_code": "REFUND_NOT_FOUND"},
            status=status.HTTP_404_NOT_FOUND,
        )


class RetryRefundView(APIView):
    """
    POST /api/v1/payments/refunds/{refund_id}/retry/

    Re-submits a FAILED or ABNORMAL refund with its original number.
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="retry_refund",
        summary="Retry a failed or abnormal refund",
        tags=["Refunds"],
        request=None,
        responses={
            200: RefundRequestSerializer,
            404: OpenApiResponse(description="Refund not found"),
            409: OpenApiResponse(description="Not retryable or already in flight"),
        },
    )
    def post(self, request, refund_id):
        result = RefundOrchestrator.retry_refund(refund_id, actor=f"admin:{request.user.pk}")
        return _refund_response(result)


class CancelRefundView(APIView):
    """
    POST /api/v1/payments/refunds/{refund_id}/cancel/
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="cancel_refund",
        summary="Cancel a refund",
        tags=["Refunds"],
        request=CancelRefundSerializer,
        responses={
            200: RefundRequestSerializer,
            404: OpenApiResponse(description="Refund not found"),
            409: OpenApiResponse(description="Not cancellable or in flight"),
        },
    )
    def post(self, request, refund_id):
        serializer = CancelRefundSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = RefundOrchestrator.cancel_refund(
            refund_id,
            reason=serializer.validated_data["reason"],
            actor=f"admin:{request.user.pk}",
        )
        return _refund_response(result)


class ApproveRefundView(APIView):
    """
    POST /api/v1/payments/refunds/{refund_id}/approve/

    Submits a customer request that is waiting for review.
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="approve_refund",
        summary="Approve a customer refund request",
        tags=["Refunds"],
        request=None,
        responses={
            200: RefundRequestSerializer,
            404: OpenApiResponse(description="Refund not found"),
            409: OpenApiResponse(description="Not waiting for approval or in flight"),
        },
    )
    def post(self, request, refund_id):
        result = RefundOrchestrator.approve_refund(refund_id, actor=f"admin:{request.user.pk}")
        return _refund_response(result)


class RejectRefundView(APIView):
    """
    POST /api/v1/payments/refunds/{refund_id}/reject/

    Payload:
        reason: Why the request was rejected (required)
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="reject_refund",
        summary="Reject a customer refund request",
        tags=["Refunds"],
        request=RejectRefundSerializer,
        responses={
            200: RefundRequestSerializer,
            400: OpenApiResponse(description="Missing rejection reason"),
            404: OpenApiResponse(description="Refund not found"),
            409: OpenApiResponse(description="Not waiting for approval or in flight"),
        },
    )
    def post(self, request, refund_id):
        serializer = RejectRefundSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = RefundOrchestrator.reject_refund(
            refund_id,
            reason=serializer.validated_data["reason"],
            actor=f"admin:{request.user.pk}",
        )
        return _refund_response(result)
