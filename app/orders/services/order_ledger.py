"""
Order ledger service.

Owns order creation, payment recording and order read queries. Status
changes are delegated to OrderStateMachine.

Usage:
    from orders.services import OrderLedger, OrderLine

    result = OrderLedger.create_order(
        [OrderLine("room-101", "Deluxe Room", unit_price_cents=29900)],
        user=request.user,
        booking_date=date(2025, 7, 1),
    )

    # From the payment notification handler
    OrderLedger.record_payment(
        order_no="ORD2025061512345678",
        transaction_id="4200001234202506150000000001",
        amount_cents=29900,
    )
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from django.db import IntegrityError, transaction
from django.db.models import Count

from core.helpers import generate_reference_number
from core.locks import lock_row
from core.exceptions import NotFoundError
from core.services import BaseService, ServiceResult

from orders.exceptions import OrderNumberCollisionError
from orders.models import Order, OrderItem
from orders.services.order_state_machine import OrderStateMachine
from orders.state_machines import OrderEvent, OrderStatus, PaymentStatus

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import date, datetime
    from typing import Any

ORDER_NO_ATTEMPTS = 3


@dataclass
class OrderLine:
    """
    One product line at checkout.

    Attributes:
        product_id: Catalog reference
        product_name: Name shown to the customer
        unit_price_cents: Current catalog price in minor units
        quantity: Units booked
    """

    product_id: str
    product_name: str
    unit_price_cents: int
    quantity: int = 1

    @property
    def subtotal_cents(self) -> int:
        return self.unit_price_cents * self.quantity


class OrderLedger(BaseService):
    """
    Service for order creation, payment recording and order queries.

    Methods:
        create_order: Snapshot items and create a PENDING order
        record_payment: Apply a successful payment (idempotent)
        record_payment_failure: Record a failed payment attempt
        get_order / get_order_by_no: Lookups
        order_snapshot: Serialized order for display
        get_order_stats: Order counts per status
    """

    # ==========================================================================
    # Commands
    # ==========================================================================

    @classmethod
    def create_order(
        cls,
        items: Iterable[OrderLine | dict[str, Any]],
        *,
        user=None,
        booking_date: date | None = None,
        remark: str = "",
        currency: str = "CNY",
        order_no: str | None = None,
    ) -> ServiceResult[Order]:
        """
        Create a PENDING order with item price snapshots.

        Args:
            items: OrderLine instances or dicts with the same keys
            user: Customer placing the order
            booking_date: Date of the booked service
            remark: Customer remark
            currency: ISO 4217 currency code
            order_no: Explicit order number (generated when omitted)

        Returns:
            ServiceResult with the created Order, or VALIDATION_ERROR
        """
        lines = [item if isinstance(item, OrderLine) else OrderLine(**item) for item in items]

        errors: dict[str, list[str]] = {}
        if not lines:
            errors["items"] = ["An order needs at least one item."]
        for index, line in enumerate(lines):
            if line.quantity <= 0:
                errors.setdefault(f"items[{index}]", []).append("Quantity must be positive.")
            if line.unit_price_cents < 0:
                errors.setdefault(f"items[{index}]", []).append("Price cannot be negative.")
        total = sum(line.subtotal_cents for line in lines)
        if lines and total <= 0:
            errors["total_amount_cents"] = ["Order total must be positive."]
        if errors:
            return ServiceResult.failure(
                "Invalid order items",
                error_code="VALIDATION_ERROR",
                errors=errors,
            )

        try:
            order = cls._create_with_unique_number(
                lines,
                total=total,
                user=user,
                booking_date=booking_date,
                remark=remark,
                currency=currency,
                order_no=order_no,
            )
        except OrderNumberCollisionError as e:
            return cls.handle_exception(e, "Order creation failed")

        cls.get_logger().info(
            f"Created order {order.order_no}",
            extra={
                "order_id": str(order.id),
                "order_no": order.order_no,
                "total_amount_cents": total,
                "item_count": len(lines),
            },
        )
        return ServiceResult.success(order)

    @classmethod
    def _create_with_unique_number(cls, lines, *, total, order_no, **fields) -> Order:
        attempts = 1 if order_no else ORDER_NO_ATTEMPTS
        for attempt in range(attempts):
            candidate = order_no or generate_reference_number("ORD", digits=8)
            try:
                with transaction.atomic():
                    order = Order.objects.create(
                        order_no=candidate,
                        total_amount_cents=total,
                        **fields,
                    )
                    for position, line in enumerate(lines):
                        OrderItem.objects.create(
                            order=order,
                            product_id=line.product_id,
                            product_name=line.product_name,
                            unit_price_cents=line.unit_price_cents,
                            quantity=line.quantity,
                            position=position,
                        )
                    return order
            except IntegrityError:
                cls.get_logger().warning(
                    "Order number collision",
                    extra={"order_no": candidate, "attempt": attempt + 1},
                )

        raise OrderNumberCollisionError(
            "Could not allocate a unique order number",
            details={"attempts": attempts, "order_no": order_no},
        )

    @classmethod
    def record_payment(
        cls,
        order_no: str,
        transaction_id: str,
        amount_cents: int,
        paid_at: datetime | None = None,
        *,
        actor: str = "gateway",
    ) -> ServiceResult[Order]:
        """
        Record a successful gateway payment and move the order to PAID.

        Idempotent: a repeated notification for an order already paid with
        the same transaction id returns the order unchanged.

        Returns:
            ServiceResult with the Order, or ORDER_NOT_FOUND /
            PAYMENT_AMOUNT_MISMATCH / DUPLICATE_PAYMENT failures
        """
        logger = cls.get_logger()
        log_context = {
            "order_no": order_no,
            "transaction_id": transaction_id,
            "amount_cents": amount_cents,
        }

        with cls.atomic():
            order = Order.objects.select_for_update().filter(order_no=order_no).first()
            if order is None:
                logger.warning("Payment for unknown order", extra=log_context)
                return ServiceResult.failure(f"Order {order_no} not found", "ORDER_NOT_FOUND")

            if order.payment_status == PaymentStatus.SUCCESS:
                if order.gateway_transaction_id == transaction_id:
                    logger.info("Payment already recorded", extra=log_context)
                    return ServiceResult.success(order)
                logger.error(
                    "Second payment reported for a paid order",
                    extra={**log_context, "recorded_transaction_id": order.gateway_transaction_id},
                )
                return ServiceResult.failure(
                    f"Order {order_no} was already paid by another transaction",
                    "DUPLICATE_PAYMENT",
                )

            if amount_cents != order.total_amount_cents:
                logger.error(
                    "Payment amount does not match order total",
                    extra={**log_context, "total_amount_cents": order.total_amount_cents},
                )
                return ServiceResult.failure(
                    f"Paid amount {amount_cents} does not match order total "
                    f"{order.total_amount_cents}",
                    "PAYMENT_AMOUNT_MISMATCH",
                )

            order.record_payment_success(transaction_id, amount_cents, paid_at)
            OrderStateMachine.apply(
                order,
                OrderEvent.PAY,
                reason=f"payment {transaction_id}",
                actor=actor,
            )

        logger.info("Payment recorded", extra={**log_context, "order_id": str(order.id)})
        return ServiceResult.success(order)

    @classmethod
    def record_payment_failure(cls, order_no: str, reason: str = "") -> ServiceResult[Order]:
        """
        Record a failed payment attempt for an unpaid order.

        Orders whose payment already succeeded or failed are left unchanged.
        """
        with cls.atomic():
            order = Order.objects.select_for_update().filter(order_no=order_no).first()
            if order is None:
                return ServiceResult.failure(f"Order {order_no} not found", "ORDER_NOT_FOUND")
            if order.payment_status != PaymentStatus.UNPAID:
                return ServiceResult.success(order)
            order.record_payment_failure(reason)
            order.save()

        cls.get_logger().info(
            "Payment failure recorded",
            extra={"order_no": order_no, "reason": reason},
        )
        return ServiceResult.success(order)

    # ==========================================================================
    # Queries
    # ==========================================================================

    @classmethod
    def get_order(cls, order_id: uuid.UUID | str) -> ServiceResult[Order]:
        order = Order.objects.filter(id=order_id).first()
        if order is None:
            return ServiceResult.failure(f"Order {order_id} not found", "ORDER_NOT_FOUND")
        return ServiceResult.success(order)

    @classmethod
    def get_order_by_no(cls, order_no: str) -> ServiceResult[Order]:
        order = Order.objects.prefetch_related("items").filter(order_no=order_no).first()
        if order is None:
            return ServiceResult.failure(f"Order {order_no} not found", "ORDER_NOT_FOUND")
        return ServiceResult.success(order)

    @classmethod
    def lock_order(cls, order_id: uuid.UUID | str) -> Order:
        """
        Lock an order row inside the caller's transaction.

        Raises:
            NotFoundError: with error_code ORDER_NOT_FOUND
        """
        try:
            return lock_row(Order, order_id)
        except NotFoundError as e:
            e.details = {"order_id": str(order_id)}
            raise

    @classmethod
    def order_snapshot(cls, order: Order) -> dict[str, Any]:
        """Serialized order with amounts as decimal strings."""
        from orders.serializers import OrderSnapshotSerializer

        return OrderSnapshotSerializer(order).data

    @classmethod
    def get_order_stats(cls) -> dict[str, int]:
        """Order counts per status, with every status present."""
        counts = {status: 0 for status in OrderStatus.values}
        for row in Order.objects.values("status").annotate(count=Count("id")):
            counts[row["status"]] = row["count"]
        counts["total"] = sum(counts.values())
        return counts


__all__ = ["OrderLedger", "OrderLine"]
