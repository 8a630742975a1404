"""
Factory Boy factories and gateway builders for payment test data.

Usage:
    from payments.tests.factories import (
        RefundRequestFactory,
        GatewayNotificationFactory,
        accepted,
        transient,
        signed_callback,
    )

    # A PENDING refund of a paid order
    refund = RefundRequestFactory(order=paid_order, amount_cents=20000)

    # Gateway mock answering "accepted, still processing"
    gateway.refund.side_effect = accepted

    # Signed and encrypted callback body plus headers
    body, headers = signed_callback(keys, "REFUND.SUCCESS", resource)
"""

import base64
import json
import secrets
import time
import uuid

import factory
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from orders.state_machines import OrderStatus, PaymentStatus
from orders.tests.factories import OrderFactory
from payments.adapters import GatewayCallResult
from payments.exceptions import (
    WeChatPayRejectedError,
    WeChatPayTimeoutError,
)
from payments.models import GatewayNotification, RefundRequest
from payments.state_machines import NotificationEventType


# =============================================================================
# Model Factories
# =============================================================================


class RefundRequestFactory(factory.django.DjangoModelFactory):
    """
    Factory for creating RefundRequest instances.

    The default order is created directly as PAID for 299.00.
    """

    class Meta:
        model = RefundRequest

    order = factory.SubFactory(
        OrderFactory,
        status=OrderStatus.PAID,
        payment_status=PaymentStatus.SUCCESS,
        paid_amount_cents=29900,
        gateway_transaction_id=factory.LazyFunction(lambda: f"4200{uuid.uuid4().hex[:20]}"),
    )
    refund_no = factory.Sequence(lambda n: f"REF20250615{n:012d}")
    amount_cents = 10000
    currency = "CNY"
    reason = "Customer cancelled"
    requested_by = "admin:1"


class GatewayNotificationFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = GatewayNotification

    notification_id = factory.LazyFunction(lambda: str(uuid.uuid4()))
    event_type = NotificationEventType.REFUND_SUCCESS
    resource_type = "refund"
    reference_no = factory.LazyAttribute(lambda o: o.payload.get("out_refund_no", ""))
    payload = factory.LazyFunction(dict)


# =============================================================================
# Gateway Results
# =============================================================================


def refund_resource(refund_no, amount_cents, status="SUCCESS", order_no="ORD001", **extra):
    """A decrypted REFUND.* resource as the gateway sends it."""
    resource = {
        "mchid": "1900000100",
        "out_trade_no": order_no,
        "transaction_id": "4200000000000000000000000001",
        "out_refund_no": refund_no,
        "refund_id": f"503000{refund_no[-10:]}",
        "refund_status": status,
        "success_time": "2025-06-15T12:00:00+08:00" if status == "SUCCESS" else None,
        "user_received_account": "Customer card 6222****1234",
        "amount": {"total": 29900, "refund": amount_cents, "payer_total": 29900, "payer_refund": amount_cents},
    }
    resource.update(extra)
    return resource


def accepted(refund_no, order_no, amount_minor_units, reason="", *, total_minor_units=None):
    """Gateway accepted the refund and is processing it."""
    return GatewayCallResult(
        success=True,
        gateway_refund_id=f"503000{refund_no[-10:]}",
        out_refund_no=refund_no,
        status="PROCESSING",
        amount_cents=amount_minor_units,
        raw_response={"out_trade_no": order_no, "out_refund_no": refund_no, "status": "PROCESSING"},
    )


def settled(refund_no, order_no, amount_minor_units, reason="", *, total_minor_units=None):
    """Gateway settled the refund synchronously."""
    return GatewayCallResult.from_refund_resource(
        refund_resource(refund_no, amount_minor_units, status="SUCCESS", order_no=order_no)
    )


def transient(refund_no, *args, **kwargs):
    """Gateway timed out."""
    return GatewayCallResult.from_error(
        WeChatPayTimeoutError("WeChat Pay request timed out. Please retry."),
        out_refund_no=refund_no,
    )


def rejected(refund_no, *args, **kwargs):
    """Gateway rejected the refund (insufficient merchant balance)."""
    return GatewayCallResult.from_error(
        WeChatPayRejectedError("Insufficient balance", gateway_code="NOT_ENOUGH", http_status=403),
        out_refund_no=refund_no,
    )


def scripted(*responses):
    """side_effect that answers successive calls with the given builders."""
    remaining = list(responses)

    def respond(*args, **kwargs):
        builder = remaining.pop(0) if len(remaining) > 1 else remaining[0]
        return builder(*args, **kwargs)

    return respond


# =============================================================================
# Signed Callbacks
# =============================================================================


def encrypt_resource(apiv3_key, payload, associated_data="refund"):
    nonce = secrets.token_hex(6)
    ciphertext = AESGCM(apiv3_key.encode("utf-8")).encrypt(
        nonce.encode("utf-8"),
        json.dumps(payload).encode("utf-8"),
        associated_data.encode("utf-8"),
    )
    return {
        "algorithm": "AEAD_AES_256_GCM",
        "ciphertext": base64.b64encode(ciphertext).decode("ascii"),
        "associated_data": associated_data,
        "original_type": associated_data,
        "nonce": nonce,
    }


def sign(private_key, timestamp, nonce, body):
    message = f"{timestamp}\n{nonce}\n".encode("utf-8") + body + b"\n"
    signature = private_key.sign(message, padding.PKCS1v15(), hashes.SHA256())
    return base64.b64encode(signature).decode("ascii")


def signed_callback(keys, event_type, payload, notification_id=None, timestamp=None):
    """
    Build a callback body and its WSGI signature headers.

    Args:
        keys: The ``gateway_keys`` fixture
        event_type: e.g. "REFUND.SUCCESS"
        payload: Resource to encrypt
    """
    original_type = "transaction" if event_type.startswith("TRANSACTION.") else "refund"
    envelope = {
        "id": notification_id or str(uuid.uuid4()),
        "create_time": "2025-06-15T12:00:01+08:00",
        "resource_type": "encrypt-resource",
        "event_type": event_type,
        "summary": "notification",
        "resource": encrypt_resource(keys.apiv3_key, payload, associated_data=original_type),
    }
    body = json.dumps(envelope).encode("utf-8")
    timestamp = str(timestamp if timestamp is not None else int(time.time()))
    nonce = secrets.token_hex(16)
    headers = {
        "HTTP_WECHATPAY_TIMESTAMP": timestamp,
        "HTTP_WECHATPAY_NONCE": nonce,
        "HTTP_WECHATPAY_SIGNATURE": sign(keys.private_key, timestamp, nonce, body),
        "HTTP_WECHATPAY_SERIAL": "PLATFORM_SERIAL",
    }
    return body, headers
