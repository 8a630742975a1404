"""
State enums for order models.

Order Status:
    PENDING → PAID → SHIPPED → COMPLETED
    PAID → CANCELLED
    PAID → REFUNDED (once SUCCESS refunds cover the paid amount)

Payment Status (parallel axis):
    UNPAID → SUCCESS
    UNPAID → FAILED → SUCCESS (a later successful payment)

The order status cannot leave PENDING until the payment status is SUCCESS.
"""

from django.db import models


class OrderStatus(models.TextChoices):
    """
    States for the Order lifecycle.

    Terminal states: COMPLETED, CANCELLED, REFUNDED
    """

    PENDING = "PENDING", "Pending"
    PAID = "PAID", "Paid"
    SHIPPED = "SHIPPED", "Shipped"
    COMPLETED = "COMPLETED", "Completed"
    CANCELLED = "CANCELLED", "Cancelled"
    REFUNDED = "REFUNDED", "Refunded"


class PaymentStatus(models.TextChoices):
    """States for the payment axis of an Order."""

    UNPAID = "UNPAID", "Unpaid"
    SUCCESS = "SUCCESS", "Success"
    FAILED = "FAILED", "Failed"


class OrderEvent(models.TextChoices):
    """Events accepted by the order state machine."""

    PAY = "pay", "Pay"
    SHIP = "ship", "Ship"
    COMPLETE = "complete", "Complete"
    CANCEL = "cancel", "Cancel"
    REFUND = "refund", "Refund"


# (from_status, event) -> to_status. Anything not listed is illegal.
ORDER_TRANSITIONS: dict[tuple[str, str], str] = {
    (OrderStatus.PENDING, OrderEvent.PAY): OrderStatus.PAID,
    (OrderStatus.PAID, OrderEvent.SHIP): OrderStatus.SHIPPED,
    (OrderStatus.SHIPPED, OrderEvent.COMPLETE): OrderStatus.COMPLETED,
    (OrderStatus.PAID, OrderEvent.CANCEL): OrderStatus.CANCELLED,
    (OrderStatus.PAID, OrderEvent.REFUND): OrderStatus.REFUNDED,
}

TERMINAL_ORDER_STATUSES = frozenset(
    {OrderStatus.COMPLETED, OrderStatus.CANCELLED, OrderStatus.REFUNDED}
)

# Statuses from which a refund may be initiated
REFUNDABLE_ORDER_STATUSES = frozenset({OrderStatus.PAID})
