"""
WeChat Pay v3 adapter for gateway refund operations.

This module wraps the WeChat Pay v3 HTTP API with:
- Configurable timeouts on every request
- Error translation to domain exceptions (transient vs permanent)
- Request signing (WECHATPAY2-SHA256-RSA2048)
- Callback signature verification and resource decryption
- Structured logging with timing metrics

Design Principles:
- Stateless: only configuration (settings), no per-call state
- Explicit: refund numbers are passed in, never generated here
- Observable: every call logs the refund number, operation and duration

Usage:
    from payments.adapters import WeChatPayAdapter

    result = WeChatPayAdapter.refund(
        refund_no="REF20250615123456781234",
        order_no="ORD2025061512345678",
        amount_minor_units=29900,
        reason="Customer cancelled",
    )
    if result.success:
        store_acknowledgement(result.gateway_refund_id)
    elif result.retryable:
        schedule_retry()
"""

from __future__ import annotations

import base64
import functools
import json
import logging
import random
import secrets
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import requests
from cryptography.exceptions import InvalidSignature, InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from django.conf import settings
from django.utils.dateparse import parse_datetime

from payments.exceptions import (
    WeChatPayAmountLimitError,
    WeChatPayConfigurationError,
    WeChatPayError,
    WeChatPayRateLimitError,
    WeChatPayRejectedError,
    WeChatPaySignatureError,
    WeChatPayTimeoutError,
    WeChatPayUnavailableError,
)

if TYPE_CHECKING:
    from collections.abc import Mapping
    from datetime import datetime
    from typing import Any


REFUND_PATH = "/v3/refund/domestic/refunds"
AUTH_SCHEMA = "WECHATPAY2-SHA256-RSA2048"
RESOURCE_ALGORITHM = "AEAD_AES_256_GCM"

# Gateway error codes that are safe to retry with the same refund number
TRANSIENT_GATEWAY_CODES = frozenset({"SYSTEM_ERROR", "BANK_ERROR", "FREQUENCY_LIMITED"})


# =============================================================================
# Data Types
# =============================================================================


@dataclass(frozen=True)
class WeChatPayConfig:
    """Gateway configuration read from the WECHAT_PAY_* settings."""

    base_url: str
    mch_id: str
    app_id: str
    serial_no: str
    private_key_path: str
    platform_public_key_path: str
    apiv3_key: str
    notify_url: str
    timeout: float
    max_refund_amount_cents: int
    notify_max_skew_seconds: int

    @classmethod
    def from_settings(cls) -> WeChatPayConfig:
        return cls(
            base_url=settings.WECHAT_PAY_BASE_URL.rstrip("/"),
            mch_id=settings.WECHAT_PAY_MCHID,
            app_id=settings.WECHAT_PAY_APPID,
            serial_no=settings.WECHAT_PAY_SERIAL_NO,
            private_key_path=settings.WECHAT_PAY_PRIVATE_KEY_PATH,
            platform_public_key_path=settings.WECHAT_PAY_PLATFORM_PUBLIC_KEY_PATH,
            apiv3_key=settings.WECHAT_PAY_APIV3_KEY,
            notify_url=settings.WECHAT_PAY_NOTIFY_URL.rstrip("/"),
            timeout=settings.WECHAT_PAY_TIMEOUT_SECONDS,
            max_refund_amount_cents=settings.WECHAT_PAY_MAX_REFUND_AMOUNT_CENTS,
            notify_max_skew_seconds=settings.WECHAT_PAY_NOTIFY_MAX_SKEW_SECONDS,
        )

    @property
    def refund_notify_url(self) -> str:
        return f"{self.notify_url}/refund/"


@dataclass
class GatewayCallResult:
    """
    Normalized result of a refund or refund-query call.

    Attributes:
        success: The gateway accepted the call and returned a refund resource
        retryable: For failures, whether the same call may be retried
        gateway_refund_id: Gateway refund id (refund_id)
        out_refund_no: Merchant refund number echoed back
        status: Gateway refund status (SUCCESS, CLOSED, PROCESSING, ABNORMAL)
        error_code: Normalized error code for failures
        error_message: Human-readable failure description
        amount_cents: Refunded amount reported by the gateway
        raw_response: Response body (or error details) for audit
    """

    success: bool
    retryable: bool = False
    gateway_refund_id: str | None = None
    out_refund_no: str | None = None
    status: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    amount_cents: int | None = None
    success_time: datetime | None = None
    user_received_account: str = ""
    raw_response: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_refund_resource(cls, data: dict[str, Any]) -> GatewayCallResult:
        amount = data.get("amount") or {}
        success_time = data.get("success_time")
        return cls(
            success=True,
            gateway_refund_id=data.get("refund_id"),
            out_refund_no=data.get("out_refund_no"),
            status=data.get("status") or data.get("refund_status"),
            amount_cents=amount.get("refund"),
            success_time=parse_datetime(success_time) if success_time else None,
            user_received_account=data.get("user_received_account") or "",
            raw_response=data,
        )

    @classmethod
    def from_error(cls, error: WeChatPayError, out_refund_no: str | None = None) -> GatewayCallResult:
        return cls(
            success=False,
            retryable=error.is_retryable,
            out_refund_no=out_refund_no,
            error_code=error.error_code,
            error_message=error.message,
            raw_response=error.details,
        )


def backoff_delay(attempt: int, base: float = 30.0, max_delay: float = 1800.0) -> float:
    """
    Calculate exponential backoff delay with jitter.

    Jitter prevents thundering herd when multiple workers retry simultaneously.

    Args:
        attempt: Current attempt number (1-indexed)
        base: Base delay in seconds
        max_delay: Maximum delay in seconds

    Returns:
        Delay in seconds with jitter (0-25% of calculated delay)

    Example:
        # Attempt 1: 30 - 37.5 seconds
        # Attempt 2: 60 - 75 seconds
        # Attempt 3: 120 - 150 seconds
        delay = backoff_delay(attempt=3)
    """
    delay = min(base * (2 ** max(attempt - 1, 0)), max_delay)
    jitter = delay * random.uniform(0, 0.25)
    return delay + jitter


# =============================================================================
# Key Loading
# =============================================================================


@functools.lru_cache(maxsize=4)
def _load_private_key(path: str):
    with open(path, "rb") as f:
        return serialization.load_pem_private_key(f.read(), password=None)


@functools.lru_cache(maxsize=4)
def _load_public_key(path: str):
    with open(path, "rb") as f:
        data = f.read()
    if b"BEGIN CERTIFICATE" in data:
        from cryptography import x509

        return x509.load_pem_x509_certificate(data).public_key()
    return serialization.load_pem_public_key(data)


# =============================================================================
# WeChat Pay Adapter
# =============================================================================


class WeChatPayAdapter:
    """
    Adapter for WeChat Pay v3 refund operations.

    All methods are classmethods - no instance state is maintained.
    Thread-safe for use from Celery workers.

    Configuration (via settings):
    - WECHAT_PAY_BASE_URL, WECHAT_PAY_MCHID, WECHAT_PAY_APPID
    - WECHAT_PAY_SERIAL_NO, WECHAT_PAY_PRIVATE_KEY_PATH
    - WECHAT_PAY_PLATFORM_PUBLIC_KEY_PATH, WECHAT_PAY_APIV3_KEY
    - WECHAT_PAY_NOTIFY_URL, WECHAT_PAY_TIMEOUT_SECONDS
    - WECHAT_PAY_MAX_REFUND_AMOUNT_CENTS

    Usage:
        result = WeChatPayAdapter.refund(refund_no, order_no, 29900, "Cancelled")
        result = WeChatPayAdapter.query_refund(refund_no)
        event = WeChatPayAdapter.verify_notification(request.headers, request.body)
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Get logger for this adapter."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @staticmethod
    def get_config() -> WeChatPayConfig:
        return WeChatPayConfig.from_settings()

    # =========================================================================
    # Core Operations
    # =========================================================================

    @classmethod
    def refund(
        cls,
        refund_no: str,
        order_no: str,
        amount_minor_units: int,
        reason: str = "",
        *,
        total_minor_units: int | None = None,
    ) -> GatewayCallResult:
        """
        Submit a refund for an order.

        The gateway deduplicates on out_refund_no, so calling this again with
        the same refund number and amount never refunds twice.

        Args:
            refund_no: Merchant refund number (idempotency key)
            order_no: Merchant order number of the original payment
            amount_minor_units: Amount to refund in cents
            reason: Reason shown to the customer
            total_minor_units: Original order total (defaults to the amount)

        Returns:
            GatewayCallResult; failures carry error_code and retryable
        """
        config = cls.get_config()
        log_context = {
            "operation": "refund",
            "refund_no": refund_no,
            "order_no": order_no,
            "amount_cents": amount_minor_units,
        }

        if amount_minor_units <= 0:
            return GatewayCallResult(
                success=False,
                out_refund_no=refund_no,
                error_code="INVALID_AMOUNT",
                error_message="Refund amount must be positive",
            )
        if amount_minor_units > config.max_refund_amount_cents:
            error = WeChatPayAmountLimitError(
                f"Refund amount {amount_minor_units} exceeds the per-call ceiling "
                f"{config.max_refund_amount_cents}",
                details={"max_refund_amount_cents": config.max_refund_amount_cents},
            )
            cls.get_logger().warning("Refund rejected before gateway call", extra=log_context)
            return GatewayCallResult.from_error(error, out_refund_no=refund_no)

        payload: dict[str, Any] = {
            "out_trade_no": order_no,
            "out_refund_no": refund_no,
            "notify_url": config.refund_notify_url,
            "amount": {
                "refund": amount_minor_units,
                "total": total_minor_units or amount_minor_units,
                "currency": "CNY",
            },
        }
        if reason:
            payload["reason"] = reason[:80]

        try:
            data = cls._request("POST", REFUND_PATH, payload, log_context, config=config)
        except WeChatPayError as e:
            return GatewayCallResult.from_error(e, out_refund_no=refund_no)
        return GatewayCallResult.from_refund_resource(data)

    @classmethod
    def query_refund(cls, refund_no: str) -> GatewayCallResult:
        """
        Query a refund by merchant refund number.

        A refund the gateway never received fails with error_code
        RESOURCE_NOT_EXISTS (permanent).
        """
        log_context = {"operation": "query_refund", "refund_no": refund_no}
        try:
            data = cls._request("GET", f"{REFUND_PATH}/{refund_no}", None, log_context)
        except WeChatPayError as e:
            return GatewayCallResult.from_error(e, out_refund_no=refund_no)
        return GatewayCallResult.from_refund_resource(data)

    # =========================================================================
    # Callbacks
    # =========================================================================

    @classmethod
    def verify_notification(cls, headers: Mapping[str, str], body: bytes | str) -> dict[str, Any]:
        """
        Verify a callback signature and parse the notification envelope.

        Args:
            headers: Request headers (Wechatpay-Timestamp, -Nonce, -Signature)
            body: Raw request body

        Returns:
            Parsed notification envelope (id, event_type, resource, ...)

        Raises:
            WeChatPaySignatureError: Missing headers, stale timestamp,
                bad signature, or a body that is not JSON
        """
        config = cls.get_config()
        lowered = {key.lower(): value for key, value in headers.items()}
        timestamp = lowered.get("wechatpay-timestamp")
        nonce = lowered.get("wechatpay-nonce")
        signature = lowered.get("wechatpay-signature")
        if not (timestamp and nonce and signature):
            raise WeChatPaySignatureError("Missing notification signature headers")

        try:
            skew = abs(time.time() - int(timestamp))
        except ValueError:
            raise WeChatPaySignatureError("Invalid notification timestamp")
        if skew > config.notify_max_skew_seconds:
            raise WeChatPaySignatureError(
                "Notification timestamp outside the allowed window",
                details={"skew_seconds": int(skew)},
            )

        if isinstance(body, str):
            body = body.encode("utf-8")
        message = b"\n".join([timestamp.encode(), nonce.encode(), body]) + b"\n"

        public_key = cls._platform_public_key(config)
        try:
            public_key.verify(
                base64.b64decode(signature),
                message,
                padding.PKCS1v15(),
                hashes.SHA256(),
            )
        except (InvalidSignature, ValueError):
            cls.get_logger().warning(
                "Notification signature verification failed",
                extra={"serial": lowered.get("wechatpay-serial")},
            )
            raise WeChatPaySignatureError("Invalid notification signature")

        try:
            return json.loads(body)
        except ValueError:
            raise WeChatPaySignatureError("Notification body is not valid JSON")

    @classmethod
    def decrypt_resource(cls, resource: dict[str, Any]) -> dict[str, Any]:
        """
        Decrypt an AEAD_AES_256_GCM notification resource with the APIv3 key.

        Raises:
            WeChatPaySignatureError: Unknown algorithm or authentication failure
        """
        config = cls.get_config()
        if resource.get("algorithm") != RESOURCE_ALGORITHM:
            raise WeChatPaySignatureError(
                f"Unsupported resource algorithm {resource.get('algorithm')!r}"
            )

        key = config.apiv3_key.encode("utf-8")
        if len(key) != 32:
            raise WeChatPayConfigurationError("WECHAT_PAY_APIV3_KEY must be 32 bytes")

        associated_data = resource.get("associated_data")
        try:
            plaintext = AESGCM(key).decrypt(
                resource["nonce"].encode("utf-8"),
                base64.b64decode(resource["ciphertext"]),
                associated_data.encode("utf-8") if associated_data else None,
            )
            return json.loads(plaintext)
        except (InvalidTag, KeyError, ValueError):
            raise WeChatPaySignatureError("Notification resource could not be decrypted")

    # =========================================================================
    # HTTP
    # =========================================================================

    @classmethod
    def _request(
        cls,
        method: str,
        path: str,
        payload: dict[str, Any] | None,
        log_context: dict[str, Any],
        config: WeChatPayConfig | None = None,
    ) -> dict[str, Any]:
        """
        Send a signed request and return the decoded JSON body.

        Raises:
            WeChatPayError subclass for every failure
        """
        config = config or cls.get_config()
        logger = cls.get_logger()
        body = json.dumps(payload, separators=(",", ":")) if payload is not None else ""

        start_time = time.time()
        logger.info("Starting WeChat Pay operation", extra=log_context)

        try:
            headers = {
                "Authorization": cls._authorization(config, method, path, body),
                "Accept": "application/json",
                "Content-Type": "application/json",
            }
            response = requests.request(
                method,
                f"{config.base_url}{path}",
                data=body.encode("utf-8") if body else None,
                headers=headers,
                timeout=config.timeout,
            )
            if response.status_code >= 300:
                raise cls._error_from_response(response)

            data = response.json() if response.content else {}
            duration_ms = (time.time() - start_time) * 1000
            logger.info(
                "WeChat Pay operation completed",
                extra={
                    **log_context,
                    "refund_id": data.get("refund_id"),
                    "status": data.get("status"),
                    "duration_ms": duration_ms,
                },
            )
            return data

        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            cls._handle_gateway_error(e, log_context, duration_ms)
            raise

    @classmethod
    def _authorization(cls, config: WeChatPayConfig, method: str, path: str, body: str) -> str:
        if not (config.mch_id and config.serial_no and config.private_key_path):
            raise WeChatPayConfigurationError(
                "WECHAT_PAY_MCHID, WECHAT_PAY_SERIAL_NO and WECHAT_PAY_PRIVATE_KEY_PATH are required"
            )
        timestamp = str(int(time.time()))
        nonce = secrets.token_hex(16)
        message = f"{method}\n{path}\n{timestamp}\n{nonce}\n{body}\n"
        signature = base64.b64encode(
            _load_private_key(config.private_key_path).sign(
                message.encode("utf-8"),
                padding.PKCS1v15(),
                hashes.SHA256(),
            )
        ).decode("ascii")
        return (
            f'{AUTH_SCHEMA} mchid="{config.mch_id}",nonce_str="{nonce}",'
            f'signature="{signature}",timestamp="{timestamp}",serial_no="{config.serial_no}"'
        )

    @staticmethod
    def _platform_public_key(config: WeChatPayConfig):
        if not config.platform_public_key_path:
            raise WeChatPayConfigurationError("WECHAT_PAY_PLATFORM_PUBLIC_KEY_PATH is required")
        return _load_public_key(config.platform_public_key_path)

    @staticmethod
    def _error_from_response(response: requests.Response) -> WeChatPayError:
        """Map a non-2xx response to a domain exception (not raised here)."""
        try:
            body = response.json()
        except ValueError:
            body = {}
        gateway_code = body.get("code") or f"HTTP_{response.status_code}"
        message = body.get("message") or response.reason or "WeChat Pay request failed"
        details = {"response": body} if body else {}

        if response.status_code == 429 or gateway_code == "FREQUENCY_LIMITED":
            error_class = WeChatPayRateLimitError
        elif response.status_code >= 500 or gateway_code in TRANSIENT_GATEWAY_CODES:
            error_class = WeChatPayUnavailableError
        else:
            error_class = WeChatPayRejectedError
        return error_class(
            message,
            gateway_code=gateway_code,
            http_status=response.status_code,
            details=details,
        )

    # =========================================================================
    # Error Handling
    # =========================================================================

    @classmethod
    def _handle_gateway_error(
        cls,
        error: Exception,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate transport errors to domain exceptions.

        Domain exceptions raised by response mapping are logged and left for
        the caller's bare ``raise``.

        Raises:
            WeChatPayTimeoutError: Request timed out
            WeChatPayUnavailableError: Connection or unexpected error
        """
        logger = cls.get_logger()
        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, WeChatPayConfigurationError):
            logger.critical("WeChat Pay is not configured", extra=log_context)

        elif isinstance(error, WeChatPayError):
            level = logging.WARNING if error.is_retryable else logging.ERROR
            logger.log(
                level,
                f"WeChat Pay returned {error.error_code}",
                extra={**log_context, "error_code": error.error_code, "http_status": error.http_status},
            )

        elif isinstance(error, requests.Timeout):
            logger.warning("WeChat Pay request timed out", extra=log_context)
            raise WeChatPayTimeoutError(
                "WeChat Pay request timed out. Please retry.",
                details={"error": str(error)},
            ) from error

        elif isinstance(error, requests.ConnectionError):
            logger.error("Connection error to WeChat Pay", extra=log_context, exc_info=True)
            raise WeChatPayUnavailableError(
                "Could not connect to WeChat Pay. Please retry.",
                details={"error": str(error)},
            ) from error

        else:
            logger.error(
                f"Unexpected error from WeChat Pay: {type(error).__name__}",
                extra=log_context,
                exc_info=True,
            )
            raise WeChatPayUnavailableError(
                f"Unexpected WeChat Pay error: {error}",
                error_code="UNKNOWN_ERROR",
            ) from error


__all__ = [
    "GatewayCallResult",
    "WeChatPayAdapter",
    "WeChatPayConfig",
    "backoff_delay",
]
