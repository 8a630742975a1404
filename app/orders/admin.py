"""
Order admin configuration.

Orders are read-only in the admin: status changes go through the
transition API so they are version checked and audited.
"""

from django.contrib import admin

from orders.models import Order, OrderItem, OrderStatusHistory


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    can_delete = False
    readonly_fields = ["product_id", "product_name", "unit_price_cents", "quantity", "subtotal_cents"]


class OrderStatusHistoryInline(admin.TabularInline):
    model = OrderStatusHistory
    extra = 0
    can_delete = False
    readonly_fields = ["from_status", "to_status", "event", "reason", "changed_by", "created_at"]


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = [
        "order_no",
        "user",
        "status",
        "payment_status",
        "total_amount_cents",
        "paid_amount_cents",
        "booking_date",
        "created_at",
    ]
    list_filter = ["status", "payment_status"]
    search_fields = ["order_no", "gateway_transaction_id"]
    readonly_fields = [
        "id",
        "order_no",
        "status",
        "payment_status",
        "total_amount_cents",
        "paid_amount_cents",
        "gateway_transaction_id",
        "paid_at",
        "shipped_at",
        "completed_at",
        "cancelled_at",
        "refunded_at",
        "version",
        "created_at",
        "updated_at",
    ]
    inlines = [OrderItemInline, OrderStatusHistoryInline]
    ordering = ["-created_at"]

    def has_delete_permission(self, request, obj=None):
        return False
