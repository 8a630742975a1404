"""
GatewayNotification model for inbound gateway callback tracking.

Stores every verified callback received from the gateway for idempotent
processing and audit trails. The unique notification_id constraint ensures
duplicate deliveries are detected and handled correctly.

Usage:
    from payments.models import GatewayNotification
    from payments.state_machines import NotificationStatus

    notification, created = GatewayNotification.objects.get_or_create(
        notification_id=body["id"],
        defaults={
            "event_type": body["event_type"],
            "resource_type": body["resource"]["original_type"],
            "payload": decrypted_resource,
        },
    )

    if not created and notification.status == NotificationStatus.PROCESSED:
        # Duplicate delivery - already processed
        return JsonResponse({"code": "SUCCESS", "message": "OK"})
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from payments.state_machines import NotificationStatus


class GatewayNotification(UUIDPrimaryKeyMixin, BaseModel):
    """
    Tracks gateway callbacks for idempotent processing.

    Processing Flow:
        1. Callback arrives, verify signature and decrypt the resource
        2. Insert/get GatewayNotification with notification_id
        3. If exists and PROCESSED -> acknowledge (duplicate)
        4. Queue process_gateway_notification
        5. Set status to PROCESSING, route to the handler
        6. Set status to PROCESSED or FAILED
        7. If FAILED, retry_failed_notifications picks it up later

    Fields:
        notification_id: Gateway notification id (unique)
        event_type: e.g. REFUND.SUCCESS, TRANSACTION.SUCCESS
        resource_type: Original resource type (refund, transaction)
        reference_no: out_refund_no or out_trade_no from the resource
        payload: Decrypted resource
        status: Processing status
        retry_count: Number of processing attempts

    Note:
        No version field needed - idempotency is enforced via the
        notification_id unique constraint.
    """

    MAX_RETRIES = 5

    notification_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Gateway notification id - unique constraint for idempotency",
    )

    event_type = models.CharField(
        max_length=64,
        db_index=True,
        help_text="Gateway event type (e.g. 'REFUND.SUCCESS')",
    )

    resource_type = models.CharField(
        max_length=64,
        blank=True,
        default="",
        help_text="Original type of the encrypted resource",
    )

    reference_no = models.CharField(
        max_length=64,
        blank=True,
        default="",
        db_index=True,
        help_text="Merchant refund or order number the notification is about",
    )

    payload = models.JSONField(
        help_text="Decrypted notification resource (JSON)",
    )

    status = models.CharField(
        max_length=20,
        choices=NotificationStatus.choices,
        default=NotificationStatus.PENDING,
        db_index=True,
        help_text="Current processing status",
    )

    processed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the notification was successfully processed",
    )

    error_message = models.TextField(
        null=True,
        blank=True,
        help_text="Error message if processing failed",
    )

    retry_count = models.PositiveSmallIntegerField(
        default=0,
        help_text="Number of processing attempts",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Gateway Notification"
        verbose_name_plural = "Gateway Notifications"
        indexes = [
            models.Index(fields=["status", "created_at"], name="notif_status_created_idx"),
            models.Index(fields=["status", "retry_count"], name="notif_status_retry_idx"),
        ]

    def __str__(self) -> str:
        return f"GatewayNotification({self.notification_id}, {self.event_type})"

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_processed(self) -> bool:
        return self.status == NotificationStatus.PROCESSED

    @property
    def can_retry(self) -> bool:
        """Failed with attempts left."""
        return self.status == NotificationStatus.FAILED and self.retry_count < self.MAX_RETRIES

    # ==========================================================================
    # Helper Methods
    # ==========================================================================

    def mark_processing(self) -> None:
        """
        Mark notification as being processed.

        Note: Does not save - caller must save after calling.
        """
        self.status = NotificationStatus.PROCESSING
        self.retry_count += 1

    def mark_processed(self) -> None:
        """Note: Does not save - caller must save after calling."""
        self.status = NotificationStatus.PROCESSED
        self.processed_at = timezone.now()
        self.error_message = None

    def mark_failed(self, error_message: str) -> None:
        """Note: Does not save - caller must save after calling."""
        self.status = NotificationStatus.FAILED
        self.error_message = error_message
