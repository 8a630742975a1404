"""
Tests for payments app.

This package contains test modules for:
- test_models.py: RefundRequest and GatewayNotification model tests
- test_adapters.py: WeChat Pay adapter (signing, classification, callbacks)
- test_refund_orchestrator.py: Refund initiation, retries, polling
- test_callback_reconciler.py: Applying gateway refund statuses
- test_webhooks.py: Callback endpoint tests
- test_tasks.py: Celery task tests
- test_views.py: API endpoint tests
- test_integration.py: Payment-to-refund journeys

Usage:
    pytest payments/tests/
    pytest payments/tests/test_refund_orchestrator.py
"""
