"""
Payment admin configuration.

Refunds and gateway notifications are read-only here: refund actions go
through the refund API so they are locked and logged.
"""

from django.contrib import admin

from core.helpers import format_minor_units

from payments.models import GatewayNotification, RefundRequest

__all__ = [
    "GatewayNotificationAdmin",
    "RefundRequestAdmin",
]


@admin.register(RefundRequest)
class RefundRequestAdmin(admin.ModelAdmin):
    """
    Admin configuration for RefundRequest.

    Provides visibility into refund lifecycle and gateway state.
    """

    list_display = [
        "refund_no",
        "order",
        "display_amount",
        "status",
        "awaiting_approval",
        "retry_count",
        "last_error_code",
        "requested_at",
        "processed_at",
    ]
    list_filter = ["status", "awaiting_approval", "requested_at"]
    search_fields = ["refund_no", "gateway_refund_id", "order__order_no"]
    readonly_fields = [
        "id",
        "order",
        "refund_no",
        "amount_cents",
        "currency",
        "status",
        "retry_count",
        "poll_count",
        "last_error_code",
        "failure_reason",
        "gateway_refund_id",
        "gateway_status",
        "settled_amount_cents",
        "user_received_account",
        "requested_by",
        "awaiting_approval",
        "reviewed_by",
        "reviewed_at",
        "requested_at",
        "submitted_at",
        "processed_at",
        "version",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "requested_at"
    ordering = ["-requested_at"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "order", "refund_no", "amount_cents", "currency", "status"),
            },
        ),
        (
            "Request",
            {
                "fields": ("reason", "description", "requested_by", "admin_note"),
            },
        ),
        (
            "Review",
            {
                "fields": ("awaiting_approval", "reviewed_by", "reviewed_at"),
            },
        ),
        (
            "Gateway",
            {
                "fields": (
                    "gateway_refund_id",
                    "gateway_status",
                    "settled_amount_cents",
                    "user_received_account",
                    "retry_count",
                    "poll_count",
                ),
            },
        ),
        (
            "Error Info",
            {
                "fields": ("last_error_code", "failure_reason"),
                "classes": ("collapse",),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("requested_at", "submitted_at", "processed_at", "created_at", "updated_at", "version"),
            },
        ),
    )

    @admin.display(description="Amount")
    def display_amount(self, obj: RefundRequest) -> str:
        return f"{format_minor_units(obj.amount_cents)} {obj.currency}"

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(GatewayNotification)
class GatewayNotificationAdmin(admin.ModelAdmin):
    """
    Admin configuration for GatewayNotification.

    Notifications are immutable once received.
    """

    list_display = [
        "notification_id",
        "event_type",
        "reference_no",
        "status",
        "retry_count",
        "processed_at",
        "created_at",
    ]
    list_filter = ["status", "event_type", "created_at"]
    search_fields = ["notification_id", "reference_no"]
    readonly_fields = [
        "id",
        "notification_id",
        "event_type",
        "resource_type",
        "reference_no",
        "payload",
        "status",
        "processed_at",
        "error_message",
        "retry_count",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete (audit trail)."""
        return False
