"""
Callback reconciler for gateway refund notifications.

Correlates a gateway refund status (from a callback or an active poll) with
its RefundRequest by merchant refund number and finalizes it. When the
order's SUCCESS refunds cover its paid amount the order is moved to
REFUNDED through the order state machine in the same transaction.

Outcomes:
    applied          - the refund (and possibly the order) changed state
    already_applied  - replay of a status already recorded, nothing changed
    pending          - the gateway still reports PROCESSING
    escalated        - ABNORMAL or amount mismatch, parked for an operator
    integrity_fault  - the notification contradicts a settled row, alert only

Usage:
    from payments.services import CallbackReconciler, RefundNotification

    notification = RefundNotification.from_resource(decrypted_resource)
    result = CallbackReconciler.reconcile(notification)
    if result.data == ReconcileOutcome.ESCALATED:
        ...
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from django.conf import settings
from django.utils.dateparse import parse_datetime

from core.locks import lock_row
from core.services import BaseService, ServiceResult

from orders.services import OrderLedger, OrderStateMachine
from orders.state_machines import OrderEvent, OrderStatus

from payments.exceptions import RefundLookupPendingError
from payments.models import RefundRequest
from payments.services.refund_query import RefundQueryService
from payments.state_machines import GatewayRefundStatus, RefundStatus

if TYPE_CHECKING:
    from datetime import datetime
    from typing import Any

    from payments.adapters import GatewayCallResult


alerts = logging.getLogger("payments.alerts")

# Gateway status -> RefundRequest status it finalizes to
FINAL_STATUS_MAP = {
    GatewayRefundStatus.SUCCESS: RefundStatus.SUCCESS,
    GatewayRefundStatus.CLOSED: RefundStatus.FAILED,
    GatewayRefundStatus.ABNORMAL: RefundStatus.ABNORMAL,
}


class ReconcileOutcome(str, Enum):
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    PENDING = "pending"
    ESCALATED = "escalated"
    INTEGRITY_FAULT = "integrity_fault"


@dataclass
class RefundNotification:
    """
    A gateway-reported refund status, normalized.

    Attributes:
        refund_no: Merchant refund number (out_refund_no)
        status: Gateway refund status (SUCCESS, CLOSED, PROCESSING, ABNORMAL)
        amount_cents: Refunded amount reported by the gateway
        gateway_refund_id: Gateway refund id
        success_time: Settlement time for SUCCESS
        user_received_account: Account credited
        order_no: Merchant order number (out_trade_no)
    """

    refund_no: str
    status: str
    amount_cents: int | None = None
    gateway_refund_id: str | None = None
    success_time: datetime | None = None
    user_received_account: str = ""
    order_no: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_resource(cls, resource: dict[str, Any]) -> RefundNotification:
        """Build from a decrypted REFUND.* callback resource."""
        amount = resource.get("amount") or {}
        success_time = resource.get("success_time")
        return cls(
            refund_no=resource["out_refund_no"],
            status=resource.get("refund_status") or resource.get("status") or "",
            amount_cents=amount.get("refund"),
            gateway_refund_id=resource.get("refund_id"),
            success_time=parse_datetime(success_time) if success_time else None,
            user_received_account=resource.get("user_received_account") or "",
            order_no=resource.get("out_trade_no"),
            raw=resource,
        )

    @classmethod
    def from_call_result(cls, result: GatewayCallResult) -> RefundNotification:
        """Build from a successful refund or refund-query response."""
        return cls(
            refund_no=result.out_refund_no,
            status=result.status or "",
            amount_cents=result.amount_cents,
            gateway_refund_id=result.gateway_refund_id,
            success_time=result.success_time,
            user_received_account=result.user_received_account,
            order_no=result.raw_response.get("out_trade_no"),
            raw=result.raw_response,
        )

    @property
    def is_final(self) -> bool:
        return self.status in FINAL_STATUS_MAP


class CallbackReconciler(BaseService):
    """
    Applies gateway refund statuses to RefundRequests.

    Methods:
        reconcile: Finalize a RefundRequest from a gateway status (idempotent)
    """

    @classmethod
    def reconcile(
        cls,
        notification: RefundNotification,
        *,
        source: str = "callback",
    ) -> ServiceResult[ReconcileOutcome]:
        """
        Apply a gateway refund status.

        Args:
            notification: Normalized gateway status
            source: Where it came from (callback, poll, submission) for logs

        Returns:
            ServiceResult with the ReconcileOutcome

        Raises:
            RefundLookupPendingError: Refund number not found after the
                bounded lookup retries (transient)
        """
        logger = cls.get_logger()
        log_context = {
            "refund_no": notification.refund_no,
            "gateway_status": notification.status,
            "amount_cents": notification.amount_cents,
            "source": source,
        }

        refund = cls._find_refund(notification.refund_no)
        if refund is None:
            logger.warning("Refund not found for notification", extra=log_context)
            raise RefundLookupPendingError(
                f"Refund {notification.refund_no} not found",
                details={"refund_no": notification.refund_no},
            )
        log_context["refund_request_id"] = str(refund.id)
        log_context["order_id"] = str(refund.order_id)

        if notification.status == GatewayRefundStatus.PROCESSING:
            logger.info("Gateway reports refund still processing", extra=log_context)
            return ServiceResult.success(ReconcileOutcome.PENDING)

        target = FINAL_STATUS_MAP.get(notification.status)
        if target is None:
            alerts.critical(
                f"Unknown gateway refund status {notification.status!r}",
                extra=log_context,
            )
            return ServiceResult.success(ReconcileOutcome.INTEGRITY_FAULT)

        with cls.atomic():
            # Order first, then refund: same lock order as initiation
            order = OrderLedger.lock_order(refund.order_id)
            refund = lock_row(RefundRequest, refund.id)

            if refund.status == target:
                logger.info("Notification already applied", extra=log_context)
                return ServiceResult.success(ReconcileOutcome.ALREADY_APPLIED)

            if refund.status != RefundStatus.PROCESSING:
                alerts.critical(
                    f"Gateway reports {notification.status} for refund in {refund.status}",
                    extra={**log_context, "refund_status": refund.status},
                )
                return ServiceResult.success(ReconcileOutcome.INTEGRITY_FAULT)

            refund.gateway_status = notification.status
            if notification.gateway_refund_id:
                refund.gateway_refund_id = notification.gateway_refund_id

            if target == RefundStatus.SUCCESS:
                outcome = cls._apply_success(refund, order, notification, source, log_context)
            elif target == RefundStatus.ABNORMAL:
                refund.mark_abnormal("GATEWAY_ABNORMAL", "Gateway reported the refund abnormal")
                refund.save()
                alerts.critical("Gateway reported refund ABNORMAL", extra=log_context)
                outcome = ReconcileOutcome.ESCALATED
            else:
                refund.fail("CLOSED", "Refund closed by the gateway")
                refund.save()
                outcome = ReconcileOutcome.APPLIED

        logger.info(
            f"Reconciled refund {refund.refund_no}: {outcome.value}",
            extra={**log_context, "outcome": outcome.value, "refund_status": refund.status},
        )
        return ServiceResult.success(outcome)

    @classmethod
    def _apply_success(cls, refund, order, notification, source, log_context) -> ReconcileOutcome:
        if notification.amount_cents != refund.amount_cents:
            refund.settled_amount_cents = notification.amount_cents
            refund.mark_abnormal(
                "AMOUNT_MISMATCH",
                f"Gateway settled {notification.amount_cents}, requested {refund.amount_cents}",
            )
            refund.save()
            alerts.critical(
                "Refund settled amount does not match the requested amount",
                extra={**log_context, "requested_cents": refund.amount_cents},
            )
            return ReconcileOutcome.ESCALATED

        refund.succeed(
            settled_amount_cents=notification.amount_cents,
            success_time=notification.success_time,
            gateway_refund_id=notification.gateway_refund_id,
            user_received_account=notification.user_received_account,
        )
        refund.save()

        refunded = RefundQueryService.get_total_refunded(order)
        if order.status == OrderStatus.PAID and refunded >= order.paid_amount_cents:
            OrderStateMachine.apply(
                order,
                OrderEvent.REFUND,
                reason=f"refund {refund.refund_no}",
                actor=f"gateway:{source}",
            )
        return ReconcileOutcome.APPLIED

    @classmethod
    def _find_refund(cls, refund_no: str) -> RefundRequest | None:
        """Look up by refund number, waiting briefly for a racing commit."""
        attempts = max(settings.RECONCILE_LOOKUP_ATTEMPTS, 1)
        for attempt in range(attempts):
            refund = RefundRequest.objects.filter(refund_no=refund_no).first()
            if refund is not None:
                return refund
            if attempt < attempts - 1:
                time.sleep(settings.RECONCILE_LOOKUP_DELAY_SECONDS)
        return None


__all__ = [
    "CallbackReconciler",
    "ReconcileOutcome",
    "RefundNotification",
]
