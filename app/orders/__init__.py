"""
Orders app: the booking order ledger and its state machine.

This app handles:
- Order creation with price snapshots (OrderItem)
- Payment recording from gateway payment notifications
- Order status transitions (pay, ship, complete, cancel, refund)
- Status audit history

Related apps:
    - payments: Refund orchestration and gateway callbacks

Usage:
    from orders.services import OrderLedger, OrderStateMachine
    from orders.state_machines import OrderEvent

    order = OrderLedger.create_order(
        [{"product_id": "room-101", "product_name": "Deluxe Room",
          "unit_price_cents": 29900, "quantity": 1}],
    ).data
    OrderStateMachine.transition(order.id, OrderEvent.SHIP, actor="admin:7")
"""
