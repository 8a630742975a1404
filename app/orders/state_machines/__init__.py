"""
State machine enums and transition table for orders.
"""

from orders.state_machines.states import (
    ORDER_TRANSITIONS,
    REFUNDABLE_ORDER_STATUSES,
    TERMINAL_ORDER_STATUSES,
    OrderEvent,
    OrderStatus,
    PaymentStatus,
)

__all__ = [
    "ORDER_TRANSITIONS",
    "REFUNDABLE_ORDER_STATUSES",
    "TERMINAL_ORDER_STATUSES",
    "OrderEvent",
    "OrderStatus",
    "PaymentStatus",
]
