"""
Order models.

Models:
    Order: Booking order with status and payment FSMs
    OrderItem: Line items with price snapshots
    OrderStatusHistory: Audit trail of status transitions
"""

from orders.models.order import Order
from orders.models.order_item import OrderItem
from orders.models.status_history import OrderStatusHistory

__all__ = [
    "Order",
    "OrderItem",
    "OrderStatusHistory",
]
