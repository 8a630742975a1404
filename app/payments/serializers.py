"""
DRF serializers for the payments app.

Amounts are accepted and rendered as decimal strings ("299.00"); services
work in integer minor units.
"""

from __future__ import annotations

from decimal import Decimal

from rest_framework import serializers

from core.helpers import format_minor_units, to_minor_units

from payments.models import RefundRequest


class RefundRequestSerializer(serializers.ModelSerializer):
    """Read-only refund representation for admin and customer views."""

    order_no = serializers.CharField(source="order.order_no", read_only=True)
    amount = serializers.SerializerMethodField()
    settled_amount = serializers.SerializerMethodField()

    class Meta:
        model = RefundRequest
        fields = [
            "id",
            "refund_no",
            "order_no",
            "amount",
            "settled_amount",
            "currency",
            "reason",
            "description",
            "status",
            "gateway_refund_id",
            "gateway_status",
            "retry_count",
            "last_error_code",
            "failure_reason",
            "user_received_account",
            "requested_by",
            "admin_note",
            "awaiting_approval",
            "reviewed_by",
            "reviewed_at",
            "requested_at",
            "submitted_at",
            "processed_at",
            "version",
        ]
        read_only_fields = fields

    def get_amount(self, obj: RefundRequest) -> str:
        return format_minor_units(obj.amount_cents)

    def get_settled_amount(self, obj: RefundRequest) -> str | None:
        if obj.settled_amount_cents is None:
            return None
        return format_minor_units(obj.settled_amount_cents)


class RefundAmountField(serializers.DecimalField):
    """Decimal amount in major units, validated into integer minor units."""

    def __init__(self, **kwargs):
        kwargs.setdefault("max_digits", 12)
        kwargs.setdefault("decimal_places", 2)
        kwargs.setdefault("min_value", Decimal("0.01"))
        super().__init__(**kwargs)

    def to_internal_value(self, data) -> int:
        return to_minor_units(super().to_internal_value(data))


class InitiateRefundSerializer(serializers.Serializer):
    """
    Request body for an admin refund.

    Fields:
        amount: Decimal string in major units ("200.00")
        reason: Reason sent to the gateway (max 80 characters)
        description: Optional longer note
    """

    amount = RefundAmountField()
    reason = serializers.CharField(max_length=80, required=False, allow_blank=True, default="")
    description = serializers.CharField(required=False, allow_blank=True, default="")


class CustomerRefundRequestSerializer(serializers.Serializer):
    """Customer refund request. Omitting ``amount`` requests the full remaining balance."""

    amount = RefundAmountField(required=False)
    reason = serializers.CharField(max_length=80)
    description = serializers.CharField(required=False, allow_blank=True, default="")


class CancelRefundSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=500, required=False, allow_blank=True, default="")


class RejectRefundSerializer(serializers.Serializer):
    """Rejection of a queued customer request. The reason is shown to the customer."""

    reason = serializers.CharField(max_length=500)
