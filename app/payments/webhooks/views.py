"""
Callback endpoint views for the gateway.

Both endpoints:
1. Verify the callback signature and decrypt the resource
2. Create/retrieve the GatewayNotification record (idempotent)
3. Queue the notification for async processing
4. Return immediately

The gateway treats any non-2xx answer as a failed delivery and re-sends,
so a failure to queue is reported as 500 rather than acknowledged.

Usage:
    # In urls.py
    from payments.webhooks.views import payment_notify, refund_notify

    urlpatterns = [
        path("notify/refund/", refund_notify, name="refund_notify"),
        path("notify/payment/", payment_notify, name="payment_notify"),
    ]
"""

from __future__ import annotations

import logging

from django.http import HttpRequest, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from core.helpers import get_client_ip

from payments.adapters import WeChatPayAdapter
from payments.exceptions import WeChatPayConfigurationError, WeChatPaySignatureError
from payments.models import GatewayNotification
from payments.state_machines import NotificationStatus


logger = logging.getLogger(__name__)


def _reply(code: str, message: str, status: int) -> JsonResponse:
    return JsonResponse({"code": code, "message": message}, status=status)


def _accept_notification(request: HttpRequest, expected_prefix: str) -> JsonResponse:
    # Step 1: Verify signature and decrypt
    try:
        envelope = WeChatPayAdapter.verify_notification(request.headers, request.body)
        resource = envelope.get("resource")
        if not isinstance(resource, dict):
            return _reply("FAIL", "Missing resource", 400)
        payload = WeChatPayAdapter.decrypt_resource(resource)
    except WeChatPaySignatureError as e:
        logger.warning(
            "Notification verification failed",
            extra={"error": e.message, "path": request.path, "remote_ip": get_client_ip(request)},
        )
        return _reply("FAIL", "Invalid signature", 401)
    except WeChatPayConfigurationError as e:
        logger.critical("Cannot verify notifications", extra={"error": e.message})
        return _reply("FAIL", "Gateway not configured", 500)

    notification_id = envelope.get("id")
    event_type = envelope.get("event_type") or ""

    if not notification_id or not event_type.startswith(expected_prefix):
        logger.warning(
            "Notification missing id or unexpected event type",
            extra={"notification_id": notification_id, "event_type": event_type},
        )
        return _reply("FAIL", "Invalid notification", 400)

    logger.info(
        f"Received gateway notification: {event_type}",
        extra={"notification_id": notification_id, "event_type": event_type},
    )

    # Step 2: Create/get GatewayNotification (idempotent)
    notification, created = GatewayNotification.objects.get_or_create(
        notification_id=notification_id,
        defaults={
            "event_type": event_type,
            "resource_type": resource.get("original_type") or "",
            "reference_no": payload.get("out_refund_no") or payload.get("out_trade_no") or "",
            "payload": payload,
            "status": NotificationStatus.PENDING,
        },
    )

    # Step 3: If already processed, acknowledge
    if not created:
        if notification.status == NotificationStatus.PROCESSED:
            logger.info(
                "Notification already processed, returning success",
                extra={"notification_id": notification_id},
            )
            return _reply("SUCCESS", "OK", 200)

        logger.info(
            f"Notification already exists with status: {notification.status}",
            extra={"notification_id": notification_id},
        )

    # Step 4: Queue for async processing
    from payments.tasks import process_gateway_notification

    try:
        process_gateway_notification.delay(str(notification.id))
    except Exception:
        logger.error(
            "Failed to queue notification",
            extra={"notification_id": notification_id},
            exc_info=True,
        )
        return _reply("FAIL", "Temporarily unavailable", 500)

    logger.info(
        "Notification queued for processing",
        extra={"notification_id": notification_id, "gateway_notification_id": str(notification.id)},
    )
    return _reply("SUCCESS", "OK", 200)


@csrf_exempt
@require_POST
def refund_notify(request: HttpRequest) -> JsonResponse:
    """
    Receive REFUND.* callbacks.

    Returns:
        200 {"code": "SUCCESS"}: accepted (new or duplicate)
        400 {"code": "FAIL"}: malformed envelope
        401 {"code": "FAIL"}: signature or decryption failure, nothing stored
        500 {"code": "FAIL"}: could not queue; the gateway re-delivers
    """
    return _accept_notification(request, "REFUND.")


@csrf_exempt
@require_POST
def payment_notify(request: HttpRequest) -> JsonResponse:
    """Receive TRANSACTION.* callbacks. Same responses as refund_notify."""
    return _accept_notification(request, "TRANSACTION.")
