"""
Order line items with price snapshots.

Prices are copied from the catalog at checkout and never re-read, so a later
catalog price change does not alter what the customer paid for.
"""

from __future__ import annotations

from django.db import models

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from orders.exceptions import OrderItemsLockedError
from orders.state_machines import PaymentStatus


class OrderItem(UUIDPrimaryKeyMixin, BaseModel):
    """
    One product line of an order.

    Fields:
        order: Owning order
        product_id: Catalog reference of the booked product
        product_name: Product name at checkout
        unit_price_cents: Unit price at checkout in minor units
        quantity: Units booked
        subtotal_cents: unit_price_cents * quantity, computed on save

    Note:
        Items cannot be created, changed or deleted once the order's
        payment succeeded.
    """

    order = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="items",
        help_text="Owning order",
    )

    product_id = models.CharField(
        max_length=64,
        help_text="Catalog reference of the booked product",
    )

    product_name = models.CharField(
        max_length=200,
        help_text="Product name snapshot",
    )

    unit_price_cents = models.PositiveBigIntegerField(
        help_text="Unit price snapshot in minor units",
    )

    quantity = models.PositiveIntegerField(
        default=1,
        help_text="Units booked",
    )

    subtotal_cents = models.PositiveBigIntegerField(
        editable=False,
        help_text="unit_price_cents * quantity",
    )

    position = models.PositiveSmallIntegerField(
        default=0,
        help_text="Display order within the order",
    )

    class Meta:
        ordering = ["order", "position"]
        verbose_name = "Order Item"
        verbose_name_plural = "Order Items"
        constraints = [
            models.CheckConstraint(
                condition=models.Q(quantity__gt=0),
                name="order_item_quantity_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"OrderItem({self.product_name} x{self.quantity})"

    def _ensure_mutable(self) -> None:
        if self.order.payment_status == PaymentStatus.SUCCESS:
            raise OrderItemsLockedError(
                f"Items of paid order {self.order.order_no} cannot be modified",
                details={"order_no": self.order.order_no},
            )

    def save(self, *args, **kwargs):
        self._ensure_mutable()
        self.subtotal_cents = self.unit_price_cents * self.quantity
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        self._ensure_mutable()
        return super().delete(*args, **kwargs)
