"""
Payment-specific exceptions for refund and gateway operations.

Exception Hierarchy:
    PaymentError (base for payment domain)
    ├── RefundError - Refund orchestration failures
    │   ├── RefundNotFoundError - RefundRequest lookup failures
    │   ├── OrderNotRefundableError - Order not PAID with payment SUCCESS
    │   ├── AmountExceedsBalanceError - Amount above remaining refundable balance
    │   ├── InvalidRefundAmountError - Non-positive or above the gateway ceiling
    │   ├── RefundDeadlinePassedError - Customer request too close to booking
    │   ├── RefundInFlightError - Another refund of the order/number is active
    │   ├── NotRetryableError - Retry of a refund not FAILED/ABNORMAL
    │   ├── NotCancellableError - Cancel of a refund not PENDING/FAILED/ABNORMAL
    │   ├── RefundNumberCollisionError - No unique refund number available
    │   └── RefundLookupPendingError - Callback arrived before its refund row (transient)
    └── WeChatPayError - Base for all gateway errors
        ├── WeChatPayTimeoutError - Request timeout (transient)
        ├── WeChatPayUnavailableError - Network error / 5xx / SYSTEM_ERROR (transient)
        ├── WeChatPayRateLimitError - FREQUENCY_LIMITED / 429 (transient)
        ├── WeChatPayRejectedError - Business rejection (permanent)
        ├── WeChatPayAmountLimitError - Above the configured ceiling (permanent)
        ├── WeChatPaySignatureError - Callback signature or decryption failure
        └── WeChatPayConfigurationError - Missing keys or credentials

Usage:
    from payments.exceptions import AmountExceedsBalanceError, WeChatPayError

    raise AmountExceedsBalanceError(
        "Refund amount exceeds remaining balance",
        details={"requested_cents": 15000, "available_cents": 9900},
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Payment Domain Exceptions
# =============================================================================


class PaymentError(BaseApplicationError):
    """Base exception for all payment operations."""

    default_error_code: str = "PAYMENT_ERROR"


class RefundError(PaymentError):
    """
    Base exception for refund orchestration.

    Subclasses map one-to-one to the error codes returned by
    RefundOrchestrator in ServiceResult failures.
    """

    default_error_code: str = "REFUND_ERROR"
    is_retryable: bool = False


class RefundNotFoundError(RefundError, NotFoundError):
    default_error_code: str = "REFUND_NOT_FOUND"


class OrderNotRefundableError(RefundError):
    """
    Raised when the order is not in a refundable state.

    An order is refundable only when its status is PAID and its payment
    status is SUCCESS.
    """

    default_error_code: str = "ORDER_NOT_REFUNDABLE"


class AmountExceedsBalanceError(RefundError):
    """
    Raised when a refund would exceed the order's remaining balance.

    The balance is the paid amount minus every refund that is PENDING,
    PROCESSING, SUCCESS or ABNORMAL.
    """

    default_error_code: str = "AMOUNT_EXCEEDS_BALANCE"


class InvalidRefundAmountError(RefundError, ValidationError):
    default_error_code: str = "INVALID_AMOUNT"


class RefundDeadlinePassedError(RefundError):
    """Raised when a customer asks for a refund inside the booking deadline."""

    default_error_code: str = "REFUND_DEADLINE_PASSED"


class RefundInFlightError(RefundError, ConflictError):
    """
    Raised when a refund is already being processed.

    Covers a second initiation while another refund of the same order is
    PENDING/PROCESSING, and a second trigger of the same RefundRequest
    while it is PROCESSING or its submission lock is held.
    """

    default_error_code: str = "REFUND_IN_FLIGHT"


class NotRetryableError(RefundError, ConflictError):
    default_error_code: str = "NOT_RETRYABLE"


class NotCancellableError(RefundError, ConflictError):
    default_error_code: str = "NOT_CANCELLABLE"


class NotAwaitingApprovalError(RefundError, ConflictError):
    """Raised when approving or rejecting a refund that is not queued for review."""

    default_error_code: str = "NOT_AWAITING_APPROVAL"


class RefundAwaitingApprovalError(RefundError, ConflictError):
    """Raised when something other than an approval tries to submit a queued refund."""

    default_error_code: str = "AWAITING_APPROVAL"


class RejectionReasonRequiredError(RefundError, ValidationError):
    default_error_code: str = "REJECTION_REASON_REQUIRED"


class RefundNumberCollisionError(RefundError):
    default_error_code: str = "REFUND_NUMBER_COLLISION"


class RefundLookupPendingError(RefundError):
    """
    Raised when a callback names a refund number not yet visible locally.

    Transient: the notification task retries it. When retries run out the
    unknown refund number is escalated as an integrity alert.
    """

    default_error_code: str = "REFUND_LOOKUP_PENDING"
    is_retryable: bool = True


# =============================================================================
# WeChat Pay Gateway Exceptions
# =============================================================================


class WeChatPayError(PaymentError, ExternalServiceError):
    """
    Base exception for all WeChat Pay gateway errors.

    Attributes:
        gateway_code: Error code from the gateway response body (e.g. NOT_ENOUGH)
        http_status: HTTP status of the failed response, if any
        is_retryable: Whether the call may be retried with the same refund number

    Example:
        try:
            WeChatPayAdapter._request("POST", path, body, log_context)
        except WeChatPayError as e:
            if e.is_retryable:
                schedule_retry()
            else:
                mark_failed(e.error_code)
    """

    default_error_code: str = "WECHATPAY_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        gateway_code: str | None = None,
        http_status: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if gateway_code:
            details["gateway_code"] = gateway_code
        if http_status:
            details["http_status"] = http_status
        super().__init__(message, error_code=error_code or gateway_code, details=details)
        self.gateway_code = gateway_code
        self.http_status = http_status


# -----------------------------------------------------------------------------
# Transient Errors (safe to retry with the same refund number)
# -----------------------------------------------------------------------------


class WeChatPayTimeoutError(WeChatPayError):
    """
    Gateway call timed out.

    The refund may have been accepted on the gateway side. Retrying with the
    same out_refund_no is safe because the gateway deduplicates on it.
    """

    default_error_code: str = "GATEWAY_TIMEOUT"
    is_retryable: bool = True


class WeChatPayUnavailableError(WeChatPayError):
    """Connection failure, HTTP 5xx, or SYSTEM_ERROR from the gateway."""

    default_error_code: str = "GATEWAY_UNAVAILABLE"
    is_retryable: bool = True


class WeChatPayRateLimitError(WeChatPayError):
    default_error_code: str = "FREQUENCY_LIMITED"
    is_retryable: bool = True


# -----------------------------------------------------------------------------
# Permanent Errors (do not retry)
# -----------------------------------------------------------------------------


class WeChatPayRejectedError(WeChatPayError):
    """
    Business rejection from the gateway.

    Common codes: NOT_ENOUGH (merchant balance), INVALID_REQUEST (e.g. a
    reused refund number with a different amount), PARAM_ERROR,
    USER_ACCOUNT_ABNORMAL, NO_AUTH, SIGN_ERROR.
    """

    default_error_code: str = "GATEWAY_REJECTED"
    is_retryable: bool = False


class WeChatPayAmountLimitError(WeChatPayError):
    default_error_code: str = "AMOUNT_LIMIT_EXCEEDED"
    is_retryable: bool = False


class WeChatPaySignatureError(WeChatPayError):
    default_error_code: str = "INVALID_SIGNATURE"
    is_retryable: bool = False


class WeChatPayConfigurationError(WeChatPayError):
    default_error_code: str = "GATEWAY_MISCONFIGURED"
    is_retryable: bool = False


__all__ = [
    # Payment domain
    "PaymentError",
    "RefundError",
    "RefundNotFoundError",
    "OrderNotRefundableError",
    "AmountExceedsBalanceError",
    "InvalidRefundAmountError",
    "RefundDeadlinePassedError",
    "RefundInFlightError",
    "NotRetryableError",
    "NotCancellableError",
    "NotAwaitingApprovalError",
    "RefundAwaitingApprovalError",
    "RejectionReasonRequiredError",
    "RefundNumberCollisionError",
    "RefundLookupPendingError",
    # Gateway
    "WeChatPayError",
    "WeChatPayTimeoutError",
    "WeChatPayUnavailableError",
    "WeChatPayRateLimitError",
    "WeChatPayRejectedError",
    "WeChatPayAmountLimitError",
    "WeChatPaySignatureError",
    "WeChatPayConfigurationError",
]
