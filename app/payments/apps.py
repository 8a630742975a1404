"""
Payments app configuration.

This app provides refund processing on top of the orders app:
- WeChat Pay v3 gateway adapter
- Refund orchestration with retries and polling
- Gateway callback intake and reconciliation
"""

from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    """Configuration for the payments application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"
    verbose_name = "Payments"

    def ready(self):
        # Registers the notification handlers
        from payments.webhooks import handlers  # noqa: F401
