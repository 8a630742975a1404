"""
Payment domain models.

This module contains the payment-related models:
- RefundRequest: Money returned to a customer through the gateway
- GatewayNotification: Inbound gateway callback tracking for idempotent processing
"""

from payments.models.gateway_notification import GatewayNotification
from payments.models.refund_request import RefundRequest

__all__ = [
    "GatewayNotification",
    "RefundRequest",
]
