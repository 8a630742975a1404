"""
Read-side queries for refunds.

Balance arithmetic lives here so the orchestrator (writes) and the API
(reads) agree on what an order still has available to refund.

Usage:
    from payments.services import RefundQueryService

    available = RefundQueryService.get_refundable_balance(order)
    stats = RefundQueryService.get_refund_stats()
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from django.db.models import Count, Q, Sum

from core.helpers import format_minor_units
from core.services import BaseService, ServiceResult

from payments.models import RefundRequest
from payments.state_machines import (
    COMMITTED_REFUND_STATUSES,
    IN_FLIGHT_REFUND_STATUSES,
    RefundStatus,
)

if TYPE_CHECKING:
    from typing import Any

    from django.db.models import QuerySet

    from orders.models import Order


class RefundQueryService(BaseService):
    """
    Queries over RefundRequest rows.

    Methods:
        get_refund: Lookup by id
        get_refund_by_no: Lookup by merchant refund number
        get_refunds_for_order: All refunds of an order, newest first
        get_total_refunded: Sum of SUCCESS refunds
        get_committed_total: Sum of refunds counted against the balance
        get_refundable_balance: Paid amount minus committed refunds
        get_refund_stats: Counts per status and amount totals
    """

    @classmethod
    def get_refund(cls, refund_id: uuid.UUID | str) -> ServiceResult[RefundRequest]:
        refund = RefundRequest.objects.select_related("order").filter(id=refund_id).first()
        if refund is None:
            return ServiceResult.failure(f"Refund {refund_id} not found", "REFUND_NOT_FOUND")
        return ServiceResult.success(refund)

    @classmethod
    def get_refund_by_no(cls, refund_no: str) -> RefundRequest | None:
        return RefundRequest.objects.select_related("order").filter(refund_no=refund_no).first()

    @classmethod
    def get_refunds_for_order(cls, order: Order) -> QuerySet[RefundRequest]:
        return RefundRequest.objects.filter(order=order).order_by("-created_at")

    @classmethod
    def get_total_refunded(cls, order: Order) -> int:
        """Sum of SUCCESS refund amounts for the order."""
        return cls._sum(order, [RefundStatus.SUCCESS])

    @classmethod
    def get_committed_total(cls, order: Order, exclude_id: uuid.UUID | None = None) -> int:
        """
        Sum of refunds that hold part of the order's balance.

        PENDING, PROCESSING, SUCCESS and ABNORMAL all count: an ABNORMAL
        refund may still have been paid out by the gateway.
        """
        return cls._sum(order, COMMITTED_REFUND_STATUSES, exclude_id=exclude_id)

    @classmethod
    def get_refundable_balance(cls, order: Order, exclude_id: uuid.UUID | None = None) -> int:
        return max(order.paid_amount_cents - cls.get_committed_total(order, exclude_id), 0)

    @classmethod
    def has_in_flight_refund(cls, order: Order, exclude_id: uuid.UUID | None = None) -> bool:
        queryset = RefundRequest.objects.filter(order=order, status__in=IN_FLIGHT_REFUND_STATUSES)
        if exclude_id is not None:
            queryset = queryset.exclude(id=exclude_id)
        return queryset.exists()

    @classmethod
    def get_refund_stats(cls) -> dict[str, Any]:
        """
        Refund counts per status plus amount totals.

        Returns:
            Dict with one count per status, ``total``, ``total_amount``
            (SUCCESS, decimal string) and ``pending_amount``
            (PENDING + PROCESSING, decimal string)
        """
        counts = {status: 0 for status in RefundStatus.values}
        for row in RefundRequest.objects.values("status").annotate(count=Count("id")):
            counts[row["status"]] = row["count"]

        amounts = RefundRequest.objects.aggregate(
            success=Sum("amount_cents", filter=Q(status=RefundStatus.SUCCESS)),
            pending=Sum("amount_cents", filter=Q(status__in=IN_FLIGHT_REFUND_STATUSES)),
        )
        return {
            **counts,
            "total": sum(counts.values()),
            "total_amount": format_minor_units(amounts["success"] or 0),
            "pending_amount": format_minor_units(amounts["pending"] or 0),
        }

    @staticmethod
    def _sum(order: Order, statuses, exclude_id: uuid.UUID | None = None) -> int:
        queryset = RefundRequest.objects.filter(order=order, status__in=list(statuses))
        if exclude_id is not None:
            queryset = queryset.exclude(id=exclude_id)
        return queryset.aggregate(total=Sum("amount_cents"))["total"] or 0


__all__ = ["RefundQueryService"]
