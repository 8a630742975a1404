"""
Celery tasks for refund processing.

This module provides async tasks for:
- Processing gateway notifications (callbacks)
- Deferred refund attempts after transient gateway failures
- Refund status polling when a callback is late
- Periodic sweeps: stale PROCESSING refunds, unsent PENDING refunds,
  failed and stuck notifications

Usage:
    from payments.tasks import process_gateway_notification

    # Queue a stored notification for async processing
    process_gateway_notification.delay(str(notification.id))

    # Periodic sweeps are scheduled through django-celery-beat
    from payments.tasks import poll_stale_refunds
    poll_stale_refunds.delay()
"""

from __future__ import annotations

import logging
from datetime import timedelta
from uuid import UUID

from celery import shared_task
from django.conf import settings
from django.utils import timezone

from payments.exceptions import RefundLookupPendingError
from payments.models import GatewayNotification, RefundRequest
from payments.state_machines import NotificationStatus, RefundStatus

logger = logging.getLogger(__name__)
alerts = logging.getLogger("payments.alerts")


# =============================================================================
# Constants
# =============================================================================

MAX_NOTIFICATION_RETRIES = GatewayNotification.MAX_RETRIES
STUCK_PROCESSING_THRESHOLD_MINUTES = 30
SWEEP_BATCH_SIZE = 100


# =============================================================================
# Notification Processing Tasks
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=300,
    max_retries=MAX_NOTIFICATION_RETRIES,
    acks_late=True,
)
def process_gateway_notification(self, notification_id: str) -> dict:
    """
    Process a stored gateway notification asynchronously.

    This task:
    1. Loads the GatewayNotification by ID
    2. Checks if already processed (idempotency)
    3. Marks as processing
    4. Dispatches to the handler for its event type
    5. Marks as processed or failed

    A callback that names a refund number not yet visible locally is
    retried; once retries are exhausted it is escalated as an integrity
    alert and left FAILED.

    Returns:
        Dict with processing result status

    Raises:
        Exception: Re-raised to trigger Celery retry mechanism
    """
    # Import here to avoid circular imports
    from payments.webhooks.handlers import dispatch_notification

    if isinstance(notification_id, str):
        notification_id = UUID(notification_id)

    logger.info(
        "Processing gateway notification",
        extra={"gateway_notification_id": str(notification_id)},
    )

    notification = GatewayNotification.objects.filter(id=notification_id).first()
    if notification is None:
        logger.error(
            "GatewayNotification not found",
            extra={"gateway_notification_id": str(notification_id)},
        )
        return {"status": "not_found", "gateway_notification_id": str(notification_id)}

    if notification.status == NotificationStatus.PROCESSED:
        logger.info(
            "GatewayNotification already processed, skipping",
            extra={
                "gateway_notification_id": str(notification_id),
                "notification_id": notification.notification_id,
            },
        )
        return {"status": "already_processed", "gateway_notification_id": str(notification_id)}

    notification.mark_processing()
    notification.save()

    log_context = {
        "gateway_notification_id": str(notification_id),
        "notification_id": notification.notification_id,
        "event_type": notification.event_type,
        "reference_no": notification.reference_no,
        "retry_count": notification.retry_count,
    }
    logger.info(f"Dispatching notification: {notification.event_type}", extra=log_context)

    try:
        result = dispatch_notification(notification)

    except RefundLookupPendingError as e:
        notification.mark_failed(e.message)
        notification.save()
        if self.request.retries >= self.max_retries:
            alerts.critical(
                f"Callback for unknown refund number {notification.reference_no}",
                extra=log_context,
            )
            return {
                "status": "unknown_refund",
                "gateway_notification_id": str(notification_id),
                "refund_no": notification.reference_no,
            }
        logger.warning("Refund not visible yet, notification will be retried", extra=log_context)
        raise

    except Exception as e:
        error_msg = f"{type(e).__name__}: {str(e)}"
        notification.mark_failed(error_msg)
        notification.save()
        logger.exception(
            "Notification processing failed with exception",
            extra={**log_context, "error": error_msg},
        )
        # Re-raise to trigger Celery retry
        raise

    if result.success:
        notification.mark_processed()
        notification.save()
        outcome = getattr(result.data, "value", None)
        logger.info("Notification processed successfully", extra={**log_context, "outcome": outcome})
        return {
            "status": "processed",
            "gateway_notification_id": str(notification_id),
            "outcome": outcome,
        }

    error_msg = result.error or "Handler returned failure"
    notification.mark_failed(error_msg)
    notification.save()
    logger.warning(
        f"Notification handler failed: {error_msg}",
        extra={**log_context, "error": error_msg, "error_code": result.error_code},
    )
    return {
        "status": "handler_failed",
        "gateway_notification_id": str(notification_id),
        "error": error_msg,
        "error_code": result.error_code,
    }


@shared_task
def retry_failed_notifications() -> dict:
    """
    Periodic task to retry failed notifications.

    Finds failed notifications that haven't exceeded max retries and
    re-queues them for processing.

    Returns:
        Dict with count of notifications queued for retry
    """
    failed = GatewayNotification.objects.filter(
        status=NotificationStatus.FAILED,
        retry_count__lt=MAX_NOTIFICATION_RETRIES,
    ).order_by("created_at")[:SWEEP_BATCH_SIZE]

    queued_count = 0
    for notification in failed:
        process_gateway_notification.delay(str(notification.id))
        queued_count += 1
        logger.info(
            "Queued failed notification for retry",
            extra={
                "gateway_notification_id": str(notification.id),
                "notification_id": notification.notification_id,
                "retry_count": notification.retry_count,
            },
        )

    if queued_count:
        logger.info(
            f"Queued {queued_count} failed notifications for retry",
            extra={"queued_count": queued_count},
        )
    return {"queued_count": queued_count}


@shared_task
def cleanup_stuck_notifications() -> dict:
    """
    Periodic task to reset stuck notifications.

    Finds notifications that have been PROCESSING for too long (worker
    crash) and resets them to FAILED so they can be retried.

    Returns:
        Dict with count of notifications reset
    """
    threshold = timezone.now() - timedelta(minutes=STUCK_PROCESSING_THRESHOLD_MINUTES)
    stuck = GatewayNotification.objects.filter(
        status=NotificationStatus.PROCESSING,
        updated_at__lt=threshold,
    )

    reset_count = 0
    for notification in stuck:
        notification.mark_failed("Processing timed out - reset for retry")
        notification.save()
        reset_count += 1
        logger.warning(
            "Reset stuck notification",
            extra={
                "gateway_notification_id": str(notification.id),
                "notification_id": notification.notification_id,
                "stuck_since": notification.updated_at.isoformat(),
            },
        )

    if reset_count:
        logger.info(f"Reset {reset_count} stuck notifications", extra={"reset_count": reset_count})
    return {"reset_count": reset_count}


# =============================================================================
# Refund Tasks
# =============================================================================


@shared_task(acks_late=True)
def execute_refund_attempt(refund_id: str) -> dict:
    """
    Deferred gateway attempt for a refund after a transient failure.

    Returns:
        Dict with the refund's status after the attempt
    """
    from payments.services import RefundOrchestrator

    result = RefundOrchestrator.process_attempt(refund_id)
    if not result.success:
        return {"status": "skipped", "refund_id": refund_id, "error_code": result.error_code}
    return {"status": result.data.status, "refund_id": refund_id, "retry_count": result.data.retry_count}


@shared_task(acks_late=True)
def poll_refund_status(refund_id: str, reschedule: bool = True) -> dict:
    """Query the gateway for a refund still waiting on its callback."""
    from payments.services import RefundOrchestrator

    result = RefundOrchestrator.poll_refund(refund_id, reschedule=reschedule)
    if not result.success:
        return {"status": "skipped", "refund_id": refund_id, "error_code": result.error_code}
    return {"status": result.data.status, "refund_id": refund_id}


@shared_task
def poll_stale_refunds() -> dict:
    """
    Periodic task to poll PROCESSING refunds whose callback is overdue.

    Picks refunds untouched for longer than REFUND_CALLBACK_WINDOW_SECONDS,
    including those that used up their scheduled polls. Refunds waiting on a
    backoff attempt after a transient failure are left to that attempt.

    Returns:
        Dict with count of polls queued
    """
    threshold = timezone.now() - timedelta(seconds=settings.REFUND_CALLBACK_WINDOW_SECONDS)
    stale_ids = RefundRequest.objects.filter(
        status=RefundStatus.PROCESSING,
        updated_at__lt=threshold,
    ).exclude(
        retry_count__gt=0,
        submitted_at__isnull=True,
    ).order_by("updated_at").values_list("id", flat=True)[:SWEEP_BATCH_SIZE]

    queued_count = 0
    for refund_id in stale_ids:
        poll_refund_status.delay(str(refund_id), reschedule=False)
        queued_count += 1

    if queued_count:
        logger.info(f"Queued {queued_count} stale refund polls", extra={"queued_count": queued_count})
    return {"queued_count": queued_count}


@shared_task
def resume_pending_refunds() -> dict:
    """
    Periodic task to submit PENDING refunds that were never sent.

    Returns:
        Dict with the refund numbers submitted
    """
    from payments.services import RefundOrchestrator

    result = RefundOrchestrator.resume_pending()
    return {"resumed_count": len(result.data), "refund_nos": result.data}
