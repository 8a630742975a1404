"""
State enums for payment models.

This module defines the state enums used by payment models with django-fsm.
These are Django TextChoices for database storage and admin integration.

State Machines Overview:

RefundRequest States:
    PENDING → PROCESSING → SUCCESS
    PROCESSING → FAILED → PROCESSING (retry)
    PROCESSING → ABNORMAL → PROCESSING (operator retry)
    PENDING/FAILED/ABNORMAL → CANCELLED

GatewayNotification Status:
    pending → processing → processed
    processing → failed → processing (retry)
"""

from django.db import models


class RefundStatus(models.TextChoices):
    """
    States for the RefundRequest lifecycle.

    Terminal states: SUCCESS, CANCELLED
    ABNORMAL only leaves through an explicit operator retry or cancel.

    State Flow:
        PENDING → PROCESSING → SUCCESS
        PROCESSING → FAILED (permanent gateway rejection, CLOSED callback)
        PROCESSING → ABNORMAL (retries exhausted, amount mismatch, ABNORMAL callback)

    Recovery Flow:
        FAILED → PROCESSING
        ABNORMAL → PROCESSING

    Cancellation Flow:
        PENDING/FAILED/ABNORMAL → CANCELLED
    """

    PENDING = "PENDING", "Pending"
    PROCESSING = "PROCESSING", "Processing"
    SUCCESS = "SUCCESS", "Success"
    FAILED = "FAILED", "Failed"
    ABNORMAL = "ABNORMAL", "Abnormal"
    CANCELLED = "CANCELLED", "Cancelled"


class GatewayRefundStatus(models.TextChoices):
    """Refund status strings reported by the gateway."""

    SUCCESS = "SUCCESS", "Success"
    CLOSED = "CLOSED", "Closed"
    PROCESSING = "PROCESSING", "Processing"
    ABNORMAL = "ABNORMAL", "Abnormal"


class NotificationStatus(models.TextChoices):
    """
    Processing status for inbound gateway notifications.

    State Flow:
        PENDING → PROCESSING → PROCESSED
        PROCESSING → FAILED (can retry)
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"


class NotificationEventType(models.TextChoices):
    """Callback event types the gateway sends."""

    REFUND_SUCCESS = "REFUND.SUCCESS", "Refund Success"
    REFUND_ABNORMAL = "REFUND.ABNORMAL", "Refund Abnormal"
    REFUND_CLOSED = "REFUND.CLOSED", "Refund Closed"
    TRANSACTION_SUCCESS = "TRANSACTION.SUCCESS", "Transaction Success"


# Refunds counted against an order's refundable balance
COMMITTED_REFUND_STATUSES = frozenset(
    {
        RefundStatus.PENDING,
        RefundStatus.PROCESSING,
        RefundStatus.SUCCESS,
        RefundStatus.ABNORMAL,
    }
)

# Refunds that block a new refund of the same order
IN_FLIGHT_REFUND_STATUSES = frozenset({RefundStatus.PENDING, RefundStatus.PROCESSING})

RETRYABLE_REFUND_STATUSES = frozenset({RefundStatus.FAILED, RefundStatus.ABNORMAL})

CANCELLABLE_REFUND_STATUSES = frozenset(
    {RefundStatus.PENDING, RefundStatus.FAILED, RefundStatus.ABNORMAL}
)


__all__ = [
    "RefundStatus",
    "GatewayRefundStatus",
    "NotificationStatus",
    "NotificationEventType",
    "COMMITTED_REFUND_STATUSES",
    "IN_FLIGHT_REFUND_STATUSES",
    "RETRYABLE_REFUND_STATUSES",
    "CANCELLABLE_REFUND_STATUSES",
]
