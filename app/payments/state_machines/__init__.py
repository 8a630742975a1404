"""
State machine enums and helpers for payment models.

This module defines the state enums used by payment models with django-fsm.
"""

from payments.state_machines.states import (
    CANCELLABLE_REFUND_STATUSES,
    COMMITTED_REFUND_STATUSES,
    IN_FLIGHT_REFUND_STATUSES,
    RETRYABLE_REFUND_STATUSES,
    GatewayRefundStatus,
    NotificationEventType,
    NotificationStatus,
    RefundStatus,
)

__all__ = [
    "CANCELLABLE_REFUND_STATUSES",
    "COMMITTED_REFUND_STATUSES",
    "IN_FLIGHT_REFUND_STATUSES",
    "RETRYABLE_REFUND_STATUSES",
    "GatewayRefundStatus",
    "NotificationEventType",
    "NotificationStatus",
    "RefundStatus",
]
