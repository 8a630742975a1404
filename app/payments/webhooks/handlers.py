"""
Notification handlers for gateway callbacks.

This module provides a handler registry and implementations for
processing the different gateway notification event types.

The handler registry allows:
- Clean separation between event routing and handling
- Easy extension for new event types
- Centralized error handling

Usage:
    from payments.webhooks.handlers import dispatch_notification, register_handler

    @register_handler("REFUND.SUCCESS")
    def handle_refund(notification: GatewayNotification) -> ServiceResult:
        ...

    result = dispatch_notification(notification)
"""

from __future__ import annotations

import logging
from typing import Callable

from django.utils.dateparse import parse_datetime

from core.services import ServiceResult

from orders.services import OrderLedger

from payments.models import GatewayNotification
from payments.services import CallbackReconciler, RefundNotification
from payments.state_machines import NotificationEventType


logger = logging.getLogger(__name__)


# =============================================================================
# Handler Registry
# =============================================================================


# Maps event type strings to handler functions
NOTIFICATION_HANDLERS: dict[str, Callable[[GatewayNotification], ServiceResult]] = {}


def register_handler(*event_types: str) -> Callable:
    """
    Decorator to register a notification handler for one or more event types.

    Usage:
        @register_handler("REFUND.SUCCESS", "REFUND.CLOSED")
        def handle_refund(notification: GatewayNotification) -> ServiceResult:
            ...
    """

    def decorator(func: Callable[[GatewayNotification], ServiceResult]) -> Callable:
        for event_type in event_types:
            NOTIFICATION_HANDLERS[event_type] = func
            logger.debug(f"Registered notification handler for {event_type}")
        return func

    return decorator


def dispatch_notification(notification: GatewayNotification) -> ServiceResult:
    """
    Dispatch a notification to the handler registered for its event type.

    Unknown event types are logged and acknowledged as successful so the
    gateway stops re-delivering them.
    """
    handler = NOTIFICATION_HANDLERS.get(notification.event_type)

    if not handler:
        logger.info(
            f"No handler registered for event type: {notification.event_type}",
            extra={"notification_id": notification.notification_id},
        )
        return ServiceResult.success(None)

    logger.info(
        f"Dispatching {notification.event_type} to handler",
        extra={"notification_id": notification.notification_id},
    )
    return handler(notification)


# =============================================================================
# Refund Handlers
# =============================================================================


@register_handler(
    NotificationEventType.REFUND_SUCCESS,
    NotificationEventType.REFUND_ABNORMAL,
    NotificationEventType.REFUND_CLOSED,
)
def handle_refund_notification(notification: GatewayNotification) -> ServiceResult:
    """
    Apply a refund callback through the CallbackReconciler.

    RefundLookupPendingError propagates so the processing task retries it.
    """
    payload = notification.payload or {}
    if not payload.get("out_refund_no"):
        logger.error(
            "Refund notification without out_refund_no",
            extra={"notification_id": notification.notification_id},
        )
        return ServiceResult.failure("Missing out_refund_no", "INVALID_NOTIFICATION")

    return CallbackReconciler.reconcile(RefundNotification.from_resource(payload))


# =============================================================================
# Payment Handlers
# =============================================================================


@register_handler(NotificationEventType.TRANSACTION_SUCCESS)
def handle_transaction_notification(notification: GatewayNotification) -> ServiceResult:
    """
    Record the payment reported by a TRANSACTION.* callback.

    trade_state SUCCESS records the payment and moves the order to PAID;
    any other final trade state records a payment failure.
    """
    payload = notification.payload or {}
    order_no = payload.get("out_trade_no")
    if not order_no:
        logger.error(
            "Payment notification without out_trade_no",
            extra={"notification_id": notification.notification_id},
        )
        return ServiceResult.failure("Missing out_trade_no", "INVALID_NOTIFICATION")

    trade_state = payload.get("trade_state")
    if trade_state != "SUCCESS":
        return OrderLedger.record_payment_failure(
            order_no,
            payload.get("trade_state_desc") or trade_state or "",
        )

    amount = payload.get("amount") or {}
    success_time = payload.get("success_time")
    return OrderLedger.record_payment(
        order_no=order_no,
        transaction_id=payload.get("transaction_id", ""),
        amount_cents=amount.get("total", 0),
        paid_at=parse_datetime(success_time) if success_time else None,
    )
