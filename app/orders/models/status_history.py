"""
Append-only audit trail of order status changes.
"""

from __future__ import annotations

from django.db import models

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from orders.state_machines import OrderEvent, OrderStatus


class OrderStatusHistory(UUIDPrimaryKeyMixin, BaseModel):
    """
    One applied order transition.

    Written by OrderStateMachine in the same transaction as the status
    change. Rows are never updated or deleted.
    """

    order = models.ForeignKey(
        "orders.Order",
        on_delete=models.PROTECT,
        related_name="status_history",
    )
    from_status = models.CharField(max_length=20, choices=OrderStatus.choices)
    to_status = models.CharField(max_length=20, choices=OrderStatus.choices)
    event = models.CharField(max_length=20, choices=OrderEvent.choices)
    reason = models.CharField(max_length=500, blank=True, default="")
    changed_by = models.CharField(
        max_length=100,
        blank=True,
        default="",
        help_text="Actor label, e.g. 'admin:7', 'gateway', 'system'",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Order Status History"
        verbose_name_plural = "Order Status History"

    def __str__(self) -> str:
        return f"{self.from_status} -> {self.to_status} ({self.event})"
