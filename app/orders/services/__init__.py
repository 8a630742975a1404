"""
Order services.

Services:
    OrderLedger: Order creation, payment recording and queries
    OrderStateMachine: Order status transitions
"""

from orders.services.order_state_machine import OrderStateMachine
from orders.services.order_ledger import OrderLedger, OrderLine

__all__ = [
    "OrderLedger",
    "OrderLine",
    "OrderStateMachine",
]
