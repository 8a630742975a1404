"""
Payment services for coordinating refund operations.

This module provides:
- RefundOrchestrator: Refund initiation, retry, cancellation and submission
- CallbackReconciler: Applies gateway refund statuses (callbacks and polls)
- RefundQueryService: Refund lookups, balances and statistics

Usage:
    from payments.services import RefundOrchestrator

    result = RefundOrchestrator.initiate_refund(
        order_id=order.id,
        amount_cents=20000,
        reason="Customer cancelled",
    )

    # Apply a decrypted callback resource
    from payments.services import CallbackReconciler, RefundNotification

    CallbackReconciler.reconcile(RefundNotification.from_resource(resource))
"""

from payments.services.callback_reconciler import (
    CallbackReconciler,
    ReconcileOutcome,
    RefundNotification,
)
from payments.services.refund_orchestrator import RefundOrchestrator
from payments.services.refund_query import RefundQueryService

__all__ = [
    "CallbackReconciler",
    "ReconcileOutcome",
    "RefundNotification",
    "RefundOrchestrator",
    "RefundQueryService",
]
