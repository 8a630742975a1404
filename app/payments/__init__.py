"""
Payments app for WeChat Pay refunds.

This app handles:
- Refund initiation, retry and cancellation
- Gateway submission with idempotent refund numbers
- Callback verification, decryption and reconciliation
- Periodic polling and recovery of stuck refunds

Related apps:
    - orders: Order ledger and order state machine

Usage:
    from payments.services import RefundOrchestrator

    result = RefundOrchestrator.initiate_refund(order.id, 20000, "Customer cancelled")
"""
