"""
Initial order schema.

Creates:
    - Order with status and payment_status FSM fields and a version column
    - OrderItem with price snapshots
    - OrderStatusHistory audit trail
"""

import uuid

import django.db.models.deletion
import django_fsm
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Order",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "version",
                    models.PositiveIntegerField(default=1, help_text="Optimistic locking version"),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "order_no",
                    models.CharField(
                        editable=False,
                        help_text="Merchant order number (ORD + YYYYMMDD + 8 digits)",
                        max_length=32,
                        unique=True,
                    ),
                ),
                (
                    "total_amount_cents",
                    models.PositiveBigIntegerField(
                        help_text="Order total in minor units (sum of item subtotals)"
                    ),
                ),
                (
                    "paid_amount_cents",
                    models.PositiveBigIntegerField(
                        default=0, help_text="Amount actually paid in minor units"
                    ),
                ),
                (
                    "currency",
                    models.CharField(default="CNY", help_text="ISO 4217 currency code", max_length=3),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("PENDING", "Pending"),
                            ("PAID", "Paid"),
                            ("SHIPPED", "Shipped"),
                            ("COMPLETED", "Completed"),
                            ("CANCELLED", "Cancelled"),
                            ("REFUNDED", "Refunded"),
                        ],
                        db_index=True,
                        default="PENDING",
                        help_text="Order status (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "payment_status",
                    django_fsm.FSMField(
                        choices=[
                            ("UNPAID", "Unpaid"),
                            ("SUCCESS", "Success"),
                            ("FAILED", "Failed"),
                        ],
                        db_index=True,
                        default="UNPAID",
                        help_text="Payment status (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "booking_date",
                    models.DateField(blank=True, help_text="Date of the booked service", null=True),
                ),
                (
                    "remark",
                    models.CharField(blank=True, default="", help_text="Customer remark", max_length=500),
                ),
                (
                    "gateway_transaction_id",
                    models.CharField(
                        blank=True,
                        help_text="Gateway transaction id of the successful payment",
                        max_length=64,
                        null=True,
                        unique=True,
                    ),
                ),
                (
                    "payment_failure_reason",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="Reason reported for the last failed payment",
                    ),
                ),
                ("paid_at", models.DateTimeField(blank=True, help_text="When payment succeeded", null=True)),
                ("shipped_at", models.DateTimeField(blank=True, help_text="When the order shipped", null=True)),
                (
                    "completed_at",
                    models.DateTimeField(blank=True, help_text="When fulfilment completed", null=True),
                ),
                (
                    "cancelled_at",
                    models.DateTimeField(blank=True, help_text="When the order was cancelled", null=True),
                ),
                (
                    "refunded_at",
                    models.DateTimeField(blank=True, help_text="When the order was fully refunded", null=True),
                ),
                (
                    "user",
                    models.ForeignKey(
                        blank=True,
                        help_text="Customer who placed the order",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="orders",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Order",
                "verbose_name_plural": "Orders",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["user", "status"], name="order_user_status_idx"),
                    models.Index(fields=["status", "created_at"], name="order_status_created_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("paid_amount_cents__lte", models.F("total_amount_cents"))),
                        name="order_paid_not_above_total",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="OrderItem",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "product_id",
                    models.CharField(help_text="Catalog reference of the booked product", max_length=64),
                ),
                ("product_name", models.CharField(help_text="Product name snapshot", max_length=200)),
                (
                    "unit_price_cents",
                    models.PositiveBigIntegerField(help_text="Unit price snapshot in minor units"),
                ),
                ("quantity", models.PositiveIntegerField(default=1, help_text="Units booked")),
                (
                    "subtotal_cents",
                    models.PositiveBigIntegerField(editable=False, help_text="unit_price_cents * quantity"),
                ),
                (
                    "position",
                    models.PositiveSmallIntegerField(default=0, help_text="Display order within the order"),
                ),
                (
                    "order",
                    models.ForeignKey(
                        help_text="Owning order",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="items",
                        to="orders.order",
                    ),
                ),
            ],
            options={
                "verbose_name": "Order Item",
                "verbose_name_plural": "Order Items",
                "ordering": ["order", "position"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("quantity__gt", 0)),
                        name="order_item_quantity_positive",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="OrderStatusHistory",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "from_status",
                    models.CharField(
                        choices=[
                            ("PENDING", "Pending"),
                            ("PAID", "Paid"),
                            ("SHIPPED", "Shipped"),
                            ("COMPLETED", "Completed"),
                            ("CANCELLED", "Cancelled"),
                            ("REFUNDED", "Refunded"),
                        ],
                        max_length=20,
                    ),
                ),
                (
                    "to_status",
                    models.CharField(
                        choices=[
                            ("PENDING", "Pending"),
                            ("PAID", "Paid"),
                            ("SHIPPED", "Shipped"),
                            ("COMPLETED", "Completed"),
                            ("CANCELLED", "Cancelled"),
                            ("REFUNDED", "Refunded"),
                        ],
                        max_length=20,
                    ),
                ),
                (
                    "event",
                    models.CharField(
                        choices=[
                            ("pay", "Pay"),
                            ("ship", "Ship"),
                            ("complete", "Complete"),
                            ("cancel", "Cancel"),
                            ("refund", "Refund"),
                        ],
                        max_length=20,
                    ),
                ),
                ("reason", models.CharField(blank=True, default="", max_length=500)),
                (
                    "changed_by",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Actor label, e.g. 'admin:7', 'gateway', 'system'",
                        max_length=100,
                    ),
                ),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="status_history",
                        to="orders.order",
                    ),
                ),
            ],
            options={
                "verbose_name": "Order Status History",
                "verbose_name_plural": "Order Status History",
                "ordering": ["-created_at"],
            },
        ),
    ]
