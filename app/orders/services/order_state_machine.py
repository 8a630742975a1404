"""
Order state machine service.

Applies order events (pay, ship, complete, cancel, refund) against the
transition table in orders.state_machines. Every transition runs inside one
transaction with the order row locked, optionally guarded by the caller's
expected version, and writes an OrderStatusHistory row.

Usage:
    from orders.services import OrderStateMachine
    from orders.state_machines import OrderEvent

    new_status = OrderStateMachine.transition(
        order.id,
        OrderEvent.SHIP,
        actor="admin:7",
        expected_version=order.version,
    )

    # Inside a transaction that already holds the order row lock
    OrderStateMachine.apply(order, OrderEvent.REFUND, actor="gateway")
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from django_fsm import TransitionNotAllowed, can_proceed

from core.exceptions import NotFoundError
from core.helpers import format_minor_units
from core.locks import check_version, lock_row
from core.services import BaseService

from orders.exceptions import InvalidTransitionError, OrderNotFoundError
from orders.models import Order, OrderStatusHistory
from orders.state_machines import ORDER_TRANSITIONS, OrderEvent

if TYPE_CHECKING:
    from typing import Any


class OrderStateMachine(BaseService):
    """
    Single entry point for order status changes.

    Methods:
        transition: Lock, validate and apply an event by order id
        apply: Apply an event to an order the caller already locked
        allowed_events: Events the transition table allows from a status
    """

    @classmethod
    def transition(
        cls,
        order_id: uuid.UUID | str,
        event: OrderEvent | str,
        *,
        reason: str = "",
        actor: str = "system",
        expected_version: int | None = None,
    ) -> str:
        """
        Apply an event to an order.

        Args:
            order_id: Order primary key
            event: One of OrderEvent
            reason: Free-text reason stored in the status history
            actor: Actor label stored in the status history
            expected_version: When given, the order's version must match

        Returns:
            The order's new status

        Raises:
            OrderNotFoundError: Order doesn't exist
            StaleRecordError: expected_version no longer matches
            InvalidTransitionError: (status, event) not allowed
        """
        with cls.atomic():
            order = cls._lock_order(order_id, expected_version)
            return cls.apply(order, event, reason=reason, actor=actor)

    @classmethod
    def apply(
        cls,
        order: Order,
        event: OrderEvent | str,
        *,
        reason: str = "",
        actor: str = "system",
    ) -> str:
        """
        Apply an event to a locked order and persist it.

        Must be called inside a transaction holding the order row lock
        (select_for_update); transition() does both.
        """
        from_status = order.status
        try:
            event = OrderEvent(event)
        except ValueError:
            raise InvalidTransitionError(from_status, event)

        if (from_status, event) not in ORDER_TRANSITIONS:
            raise InvalidTransitionError(from_status, event)

        method = getattr(order, event.value)
        if not can_proceed(method):
            raise InvalidTransitionError(
                from_status,
                event,
                message=cls._unmet_condition_message(order, event),
                details={"unmet_condition": True},
            )

        try:
            method()
        except TransitionNotAllowed:
            raise InvalidTransitionError(from_status, event)

        order.save()
        OrderStatusHistory.objects.create(
            order=order,
            from_status=from_status,
            to_status=order.status,
            event=event,
            reason=reason or "",
            changed_by=actor or "",
        )

        cls.get_logger().info(
            f"Order {order.order_no} {from_status} -> {order.status}",
            extra={
                "order_id": str(order.id),
                "order_no": order.order_no,
                "event": event.value,
                "from_status": from_status,
                "to_status": order.status,
                "actor": actor,
            },
        )
        return order.status

    @classmethod
    def allowed_events(cls, status: str) -> list[str]:
        """Events the transition table allows from ``status``."""
        return [event.value for (source, event) in ORDER_TRANSITIONS if source == status]

    @classmethod
    def _lock_order(cls, order_id: Any, expected_version: int | None) -> Order:
        try:
            if expected_version is not None:
                return check_version(Order, order_id, expected_version)
            return lock_row(Order, order_id)
        except NotFoundError as e:
            raise OrderNotFoundError(
                f"Order {order_id} not found",
                details={"order_id": str(order_id)},
            ) from e

    @staticmethod
    def _unmet_condition_message(order: Order, event: OrderEvent) -> str:
        if event == OrderEvent.PAY:
            return f"Order {order.order_no} cannot be paid while payment status is {order.payment_status}"
        if event == OrderEvent.REFUND:
            refunded = order.successful_refund_total()
            return (
                f"Order {order.order_no} refunds {format_minor_units(refunded)} "
                f"do not cover paid amount {format_minor_units(order.paid_amount_cents)}"
            )
        if event in (OrderEvent.SHIP, OrderEvent.CANCEL) and order.has_unsettled_refunds():
            return f"Order {order.order_no} has a refund that has not settled"
        return f"Cannot apply '{event.value}' to order {order.order_no}"


__all__ = ["OrderStateMachine"]
