"""
Payment adapters for external services.

All gateway calls go through these adapters to ensure consistent error
handling, timeouts, idempotency, and observability.

Usage:
    from payments.adapters import WeChatPayAdapter

    result = WeChatPayAdapter.refund(refund_no, order_no, 29900, "Cancelled")
    result = WeChatPayAdapter.query_refund(refund_no)
"""

from payments.adapters.wechatpay_adapter import (
    GatewayCallResult,
    WeChatPayAdapter,
    WeChatPayConfig,
    backoff_delay,
)

__all__ = [
    "GatewayCallResult",
    "WeChatPayAdapter",
    "WeChatPayConfig",
    "backoff_delay",
]
