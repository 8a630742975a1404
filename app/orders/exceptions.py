"""
Order-specific exceptions.

Exception Hierarchy:
    OrderError (base for the order domain)
    ├── OrderNotFoundError - Order lookup failures
    ├── InvalidTransitionError - (from_status, event) pair not in the table
    ├── OrderItemsLockedError - Item change on a paid order
    ├── PaymentAmountMismatchError - Paid amount differs from order total
    └── OrderNumberCollisionError - Could not allocate a unique order number

Usage:
    from orders.exceptions import InvalidTransitionError

    try:
        OrderStateMachine.transition(order.id, OrderEvent.SHIP)
    except InvalidTransitionError as e:
        logger.warning(f"Rejected {e.event} from {e.from_status}")
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import (
    BaseApplicationError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)

if TYPE_CHECKING:
    from typing import Any


class OrderError(BaseApplicationError):
    """Base exception for the order domain."""

    default_error_code: str = "ORDER_ERROR"


class OrderNotFoundError(OrderError, NotFoundError):
    """Raised when an order cannot be found by id or order number."""

    default_error_code: str = "ORDER_NOT_FOUND"


class InvalidTransitionError(OrderError, InvalidStateTransitionError):
    """
    Raised for an order event that the transition table does not allow.

    Attributes:
        from_status: Order status when the event was applied
        event: The rejected event
    """

    default_error_code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        from_status: str,
        event: str,
        message: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.from_status = str(from_status)
        self.event = str(event)
        details = {"from_status": self.from_status, "event": self.event, **(details or {})}
        super().__init__(
            message or f"Cannot apply '{self.event}' to an order in {self.from_status}",
            details=details,
        )


class OrderItemsLockedError(OrderError, ValidationError):
    """Raised when an item of a paid order is created, changed or deleted."""

    default_error_code: str = "ORDER_ITEMS_LOCKED"


class PaymentAmountMismatchError(OrderError, ValidationError):
    """Raised when a payment notification amount differs from the order total."""

    default_error_code: str = "PAYMENT_AMOUNT_MISMATCH"


class OrderNumberCollisionError(OrderError):
    """Raised when no unique order number could be generated."""

    default_error_code: str = "ORDER_NUMBER_COLLISION"


__all__ = [
    "OrderError",
    "OrderNotFoundError",
    "InvalidTransitionError",
    "OrderItemsLockedError",
    "PaymentAmountMismatchError",
    "OrderNumberCollisionError",
]
