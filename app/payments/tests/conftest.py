"""
Pytest fixtures for payment tests.

Every payment test runs with:
- Redis locks backed by the mock_redis MagicMock (every lock free)
- Celery scheduling mocked (tests drive deferred attempts and polls by
  calling the orchestrator directly)
- A throwaway RSA key pair and APIv3 key configured as the gateway keys

Usage:
    def test_refund(paid_order, gateway):
        gateway.refund.side_effect = accepted
        RefundOrchestrator.initiate_refund(paid_order.id, 29900)
"""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from orders.tests.factories import OrderFactory, StaffUserFactory, UserFactory, make_paid
from payments.services import RefundOrchestrator


APIV3_KEY = "0123456789abcdef0123456789abcdef"


# =============================================================================
# Infrastructure Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def lookup_settings(settings):
    """No waiting between refund lookups in the reconciler."""
    settings.RECONCILE_LOOKUP_ATTEMPTS = 2
    settings.RECONCILE_LOOKUP_DELAY_SECONDS = 0


@pytest.fixture(autouse=True)
def scheduled_tasks(mocker, mock_redis):
    """
    Mock Celery scheduling for refund attempts, polls and notifications.

    Returns:
        Namespace with ``attempt``, ``poll`` and ``notification`` mocks
    """
    return SimpleNamespace(
        attempt=mocker.patch("payments.tasks.execute_refund_attempt.apply_async"),
        poll=mocker.patch("payments.tasks.poll_refund_status.apply_async"),
        poll_delay=mocker.patch("payments.tasks.poll_refund_status.delay"),
        notification=mocker.patch("payments.tasks.process_gateway_notification.delay"),
    )


@pytest.fixture
def gateway():
    """
    Inject a mock gateway adapter into the orchestrator.

    Configure ``gateway.refund.side_effect`` / ``gateway.query_refund``
    with the builders from payments.tests.factories.
    """
    adapter = MagicMock()
    RefundOrchestrator.set_gateway_adapter(adapter)
    yield adapter
    RefundOrchestrator.set_gateway_adapter(None)


@pytest.fixture(scope="session")
def gateway_keys(tmp_path_factory):
    """
    RSA key pair and APIv3 key used as both merchant and platform keys.

    Attributes:
        private_key: Key object for signing test callbacks
        private_key_path: PEM file (merchant key for request signing)
        public_key_path: PEM file (platform key for callback verification)
        apiv3_key: 32-byte AES key
    """
    key_dir = tmp_path_factory.mktemp("wechatpay")
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)

    private_key_path = key_dir / "apiclient_key.pem"
    private_key_path.write_bytes(
        private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    public_key_path = key_dir / "platform_public_key.pem"
    public_key_path.write_bytes(
        private_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
    )
    return SimpleNamespace(
        private_key=private_key,
        private_key_path=str(private_key_path),
        public_key_path=str(public_key_path),
        apiv3_key=APIV3_KEY,
    )


@pytest.fixture(autouse=True)
def wechatpay_settings(settings, gateway_keys):
    settings.WECHAT_PAY_BASE_URL = "https://api.mch.weixin.qq.com"
    settings.WECHAT_PAY_MCHID = "1900000100"
    settings.WECHAT_PAY_APPID = "wx8888888888888888"
    settings.WECHAT_PAY_SERIAL_NO = "MERCHANT_SERIAL"
    settings.WECHAT_PAY_PRIVATE_KEY_PATH = gateway_keys.private_key_path
    settings.WECHAT_PAY_PLATFORM_PUBLIC_KEY_PATH = gateway_keys.public_key_path
    settings.WECHAT_PAY_APIV3_KEY = gateway_keys.apiv3_key
    settings.WECHAT_PAY_NOTIFY_URL = "https://shop.example.com/api/v1/payments/notify"
    return settings


# =============================================================================
# User and Order Fixtures
# =============================================================================


@pytest.fixture
def user(db):
    return UserFactory()


@pytest.fixture
def staff_user(db):
    return StaffUserFactory()


@pytest.fixture
def paid_order(db, user):
    """ORD001: paid 299.00."""
    return make_paid(OrderFactory(order_no="ORD001", user=user, total_amount_cents=29900))


@pytest.fixture
def pending_order(db, user):
    return OrderFactory(order_no="ORD002", user=user, total_amount_cents=29900)


# =============================================================================
# API Client Fixtures
# =============================================================================


@pytest.fixture
def api_client():
    from rest_framework.test import APIClient

    return APIClient()


@pytest.fixture
def customer_client(api_client, user):
    api_client.force_authenticate(user=user)
    return api_client


@pytest.fixture
def admin_client(api_client, staff_user):
    api_client.force_authenticate(user=staff_user)
    return api_client
