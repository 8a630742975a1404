"""
Callback handling for gateway notifications.

Callbacks are verified, stored idempotently, and processed asynchronously
via Celery tasks.

Usage:
    # In urls.py
    from payments.webhooks.views import refund_notify

    urlpatterns = [
        path("notify/refund/", refund_notify, name="refund_notify"),
    ]
"""
