"""
DRF serializers for the orders app.

Amounts are exposed as decimal strings ("299.00"); the integer minor-unit
fields stay internal.
"""

from __future__ import annotations

from rest_framework import serializers

from core.helpers import format_minor_units

from orders.models import Order, OrderItem, OrderStatusHistory
from orders.services import OrderStateMachine
from orders.state_machines import OrderEvent


class OrderItemSerializer(serializers.ModelSerializer):
    unit_price = serializers.SerializerMethodField()
    subtotal = serializers.SerializerMethodField()

    class Meta:
        model = OrderItem
        fields = ["product_id", "product_name", "unit_price", "quantity", "subtotal"]
        read_only_fields = fields

    def get_unit_price(self, obj: OrderItem) -> str:
        return format_minor_units(obj.unit_price_cents)

    def get_subtotal(self, obj: OrderItem) -> str:
        return format_minor_units(obj.subtotal_cents)


class OrderStatusHistorySerializer(serializers.ModelSerializer):
    class Meta:
        model = OrderStatusHistory
        fields = ["from_status", "to_status", "event", "reason", "changed_by", "created_at"]
        read_only_fields = fields


class OrderSnapshotSerializer(serializers.ModelSerializer):
    """
    Read-only order snapshot for reporting and customer display.

    Fields:
        total_amount / paid_amount / refunded_amount / refundable_amount:
            Decimal strings
        allowed_events: Events the state machine accepts from the current status
        status_history: Transitions, newest first
    """

    total_amount = serializers.SerializerMethodField()
    paid_amount = serializers.SerializerMethodField()
    refunded_amount = serializers.SerializerMethodField()
    allowed_events = serializers.SerializerMethodField()
    items = OrderItemSerializer(many=True, read_only=True)
    status_history = OrderStatusHistorySerializer(many=True, read_only=True)

    class Meta:
        model = Order
        fields = [
            "id",
            "order_no",
            "status",
            "payment_status",
            "currency",
            "total_amount",
            "paid_amount",
            "refunded_amount",
            "booking_date",
            "remark",
            "items",
            "allowed_events",
            "status_history",
            "version",
            "paid_at",
            "shipped_at",
            "completed_at",
            "cancelled_at",
            "refunded_at",
            "created_at",
        ]
        read_only_fields = fields

    def get_total_amount(self, obj: Order) -> str:
        return format_minor_units(obj.total_amount_cents)

    def get_paid_amount(self, obj: Order) -> str:
        return format_minor_units(obj.paid_amount_cents)

    def get_refunded_amount(self, obj: Order) -> str:
        return format_minor_units(obj.successful_refund_total())

    def get_allowed_events(self, obj: Order) -> list[str]:
        return OrderStateMachine.allowed_events(obj.status)


class OrderTransitionSerializer(serializers.Serializer):
    """Request body for an admin status event."""

    event = serializers.ChoiceField(choices=OrderEvent.choices)
    reason = serializers.CharField(max_length=500, required=False, allow_blank=True, default="")
    expected_version = serializers.IntegerField(required=False, min_value=1)
