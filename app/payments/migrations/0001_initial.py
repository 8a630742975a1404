"""
Initial payments schema.

Creates:
    - RefundRequest with an FSM status, version column and refund_no idempotency key
    - GatewayNotification for idempotent callback processing
"""

import uuid

import django.db.models.deletion
import django.utils.timezone
import django_fsm
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("orders", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="RefundRequest",
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
                    "refund_no",
                    models.CharField(
                        editable=False,
                        help_text="Merchant refund number, reused on every gateway attempt",
                        max_length=64,
                        unique=True,
                    ),
                ),
                (
                    "amount_cents",
                    models.PositiveBigIntegerField(help_text="Requested refund amount in minor units"),
                ),
                (
                    "currency",
                    models.CharField(default="CNY", help_text="ISO 4217 currency code", max_length=3),
                ),
                (
                    "reason",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Refund reason sent to the gateway (shown to the customer)",
                        max_length=80,
                    ),
                ),
                (
                    "description",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="Customer's longer description of the request",
                    ),
                ),
                (
                    "requested_by",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Actor label of whoever initiated the refund",
                        max_length=100,
                    ),
                ),
                (
                    "admin_note",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="Operator note (retry or cancellation reason)",
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("PENDING", "Pending"),
                            ("PROCESSING", "Processing"),
                            ("SUCCESS", "Success"),
                            ("FAILED", "Failed"),
                            ("ABNORMAL", "Abnormal"),
                            ("CANCELLED", "Cancelled"),
                        ],
                        db_index=True,
                        default="PENDING",
                        help_text="Current state of the refund (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "retry_count",
                    models.PositiveSmallIntegerField(
                        default=0,
                        help_text="Transient gateway failures since the last submission",
                    ),
                ),
                (
                    "poll_count",
                    models.PositiveSmallIntegerField(
                        default=0,
                        help_text="Status queries issued while waiting for the callback",
                    ),
                ),
                (
                    "last_error_code",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Normalized error code of the last failed attempt",
                        max_length=64,
                    ),
                ),
                (
                    "failure_reason",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="Detailed reason of the last failure",
                    ),
                ),
                (
                    "gateway_refund_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="Gateway refund id (set once the gateway acknowledges)",
                        max_length=64,
                        null=True,
                    ),
                ),
                (
                    "gateway_status",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Last raw refund status reported by the gateway",
                        max_length=32,
                    ),
                ),
                (
                    "settled_amount_cents",
                    models.PositiveBigIntegerField(
                        blank=True,
                        help_text="Amount the gateway reported as refunded",
                        null=True,
                    ),
                ),
                (
                    "user_received_account",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Account the refund was credited to",
                        max_length=128,
                    ),
                ),
                (
                    "requested_at",
                    models.DateTimeField(
                        default=django.utils.timezone.now,
                        help_text="When the refund was requested",
                    ),
                ),
                (
                    "submitted_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the gateway acknowledged the request",
                        null=True,
                    ),
                ),
                (
                    "processed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the refund reached SUCCESS, FAILED, ABNORMAL or CANCELLED",
                        null=True,
                    ),
                ),
                (
                    "order",
                    models.ForeignKey(
                        help_text="Order being refunded",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="refund_requests",
                        to="orders.order",
                    ),
                ),
            ],
            options={
                "verbose_name": "Refund Request",
                "verbose_name_plural": "Refund Requests",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["order", "status"], name="refund_order_status_idx"),
                    models.Index(fields=["status", "updated_at"], name="refund_status_updated_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount_cents__gt", 0)),
                        name="refund_request_amount_positive",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="GatewayNotification",
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
                    "notification_id",
                    models.CharField(
                        help_text="Gateway notification id - unique constraint for idempotency",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "event_type",
                    models.CharField(
                        db_index=True,
                        help_text="Gateway event type (e.g. 'REFUND.SUCCESS')",
                        max_length=64,
                    ),
                ),
                (
                    "resource_type",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Original type of the encrypted resource",
                        max_length=64,
                    ),
                ),
                (
                    "reference_no",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        default="",
                        help_text="Merchant refund or order number the notification is about",
                        max_length=64,
                    ),
                ),
                ("payload", models.JSONField(help_text="Decrypted notification resource (JSON)")),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("processed", "Processed"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current processing status",
                        max_length=20,
                    ),
                ),
                (
                    "processed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the notification was successfully processed",
                        null=True,
                    ),
                ),
                (
                    "error_message",
                    models.TextField(
                        blank=True,
                        help_text="Error message if processing failed",
                        null=True,
                    ),
                ),
                (
                    "retry_count",
                    models.PositiveSmallIntegerField(default=0, help_text="Number of processing attempts"),
                ),
            ],
            options={
                "verbose_name": "Gateway Notification",
                "verbose_name_plural": "Gateway Notifications",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status", "created_at"], name="notif_status_created_idx"),
                    models.Index(fields=["status", "retry_count"], name="notif_status_retry_idx"),
                ],
            },
        ),
    ]
