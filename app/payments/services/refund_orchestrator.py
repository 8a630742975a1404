"""
Refund orchestrator for driving refunds to a terminal state.

This module provides the RefundOrchestrator class which takes a refund
intent (order, amount, reason) through validation, a durable PENDING row,
gateway submission, retries and polling without double-refunding.

Submission Protocol:
    1. Validate the order and amount (typed, non-retryable errors)
    2. Commit a PENDING RefundRequest before any external call
    3. Under a per-refund lock, move to PROCESSING in its own transaction,
       then call the gateway outside any transaction
    4. Acknowledged: stay PROCESSING, schedule a status poll as a fallback
       for the callback
    5. Transient failure: count it, schedule a backoff retry with the same
       refund number, escalate to ABNORMAL after REFUND_MAX_RETRIES
    6. Permanent failure: FAILED, no automatic retry

Usage:
    from payments.services import RefundOrchestrator

    result = RefundOrchestrator.initiate_refund(
        order_id=order.id,
        amount_cents=20000,
        reason="Customer cancelled",
        actor="admin:7",
    )
    if not result.success:
        print(result.error_code)  # e.g. AMOUNT_EXCEEDS_BALANCE

    # Operator retry of a FAILED / ABNORMAL refund
    RefundOrchestrator.retry_refund(refund.id, actor="admin:7")
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, time as dt_time, timedelta
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from core.exceptions import LockAcquisitionError, NotFoundError
from core.helpers import generate_reference_number, last_digits
from core.locks import DistributedLock, lock_row
from core.services import BaseService, ServiceResult

from orders.services import OrderLedger
from orders.state_machines import OrderStatus, PaymentStatus

from payments.adapters import WeChatPayAdapter, backoff_delay
from payments.exceptions import (
    AmountExceedsBalanceError,
    InvalidRefundAmountError,
    NotAwaitingApprovalError,
    NotCancellableError,
    NotRetryableError,
    OrderNotRefundableError,
    RefundAwaitingApprovalError,
    RefundDeadlinePassedError,
    RefundError,
    RefundInFlightError,
    RefundNotFoundError,
    RefundNumberCollisionError,
    RejectionReasonRequiredError,
)
from payments.models import RefundRequest
from payments.services.callback_reconciler import CallbackReconciler, RefundNotification
from payments.services.refund_query import RefundQueryService
from payments.state_machines import (
    CANCELLABLE_REFUND_STATUSES,
    RETRYABLE_REFUND_STATUSES,
    RefundStatus,
)

if TYPE_CHECKING:
    from payments.adapters import GatewayCallResult

    from orders.models import Order


alerts = logging.getLogger("payments.alerts")

REFUND_NO_ATTEMPTS = 3

# Per-order lock held while validating and creating a refund (seconds)
ORDER_LOCK_TTL = 30
ORDER_LOCK_TIMEOUT = 5.0

# First poll delay after the poll that found the refund still PROCESSING
POLL_BASE_DELAY_SECONDS = 60

# Submission modes
MODE_INITIAL = "initial"
MODE_RETRY = "retry"
MODE_ATTEMPT = "attempt"
MODE_APPROVE = "approve"


class RefundOrchestrator(BaseService):
    """
    Service that owns the RefundRequest write path.

    Methods:
        initiate_refund: Validate, persist PENDING and submit a new refund
        retry_refund: Operator re-submission of a FAILED / ABNORMAL refund
        cancel_refund: Operator cancellation of PENDING / FAILED / ABNORMAL
        approve_refund: Submit a customer request queued for review
        reject_refund: Cancel a customer request queued for review
        process_attempt: Deferred retry entry point (Celery)
        poll_refund: Query the gateway when the callback is late (Celery)
        resume_pending: Re-submit PENDING refunds left by a crash

    Safety Guarantees:
        - The refund number is generated once and reused on every attempt
        - The gateway is never called inside a database transaction
        - A non-blocking per-refund lock rejects concurrent submissions
        - Balance checks count every refund that is not FAILED or CANCELLED
    """

    # Gateway adapter - can be injected for testing
    _gateway_adapter: type | None = None

    @classmethod
    def get_gateway_adapter(cls) -> type:
        return cls._gateway_adapter or WeChatPayAdapter

    @classmethod
    def set_gateway_adapter(cls, adapter: type | None) -> None:
        """Set the gateway adapter class (for testing)."""
        cls._gateway_adapter = adapter

    # =========================================================================
    # Commands
    # =========================================================================

    @classmethod
    def initiate_refund(
        cls,
        order_id: uuid.UUID | str,
        amount_cents: int,
        reason: str = "",
        *,
        description: str = "",
        actor: str = "system",
        enforce_deadline: bool = False,
        submit: bool = True,
        awaiting_approval: bool = False,
    ) -> ServiceResult[RefundRequest]:
        """
        Create a refund for an order and submit it to the gateway.

        Args:
            order_id: Order to refund
            amount_cents: Amount in minor units
            reason: Reason sent to the gateway
            description: Longer customer description
            actor: Actor label stored on the refund
            enforce_deadline: Require the booking to be REFUND_DEADLINE_HOURS away
            submit: Submit immediately (False leaves it PENDING for the resume sweep)
            awaiting_approval: Queue it PENDING for approve_refund / reject_refund;
                implies no submission and keeps it out of the resume sweep

        Returns:
            ServiceResult with the RefundRequest (PROCESSING, FAILED or
            ABNORMAL after submission), or a failure with one of
            ORDER_NOT_FOUND, ORDER_NOT_REFUNDABLE, INVALID_AMOUNT,
            AMOUNT_EXCEEDS_BALANCE, REFUND_IN_FLIGHT, REFUND_DEADLINE_PASSED,
            BOOKING_DATE_MISSING
        """
        log_context = {
            "order_id": str(order_id),
            "amount_cents": amount_cents,
            "actor": actor,
        }
        cls.get_logger().info("Starting refund initiation", extra=log_context)

        try:
            cls._validate_amount(amount_cents)
            with DistributedLock(
                f"refund:order:{order_id}",
                ttl=ORDER_LOCK_TTL,
                timeout=ORDER_LOCK_TIMEOUT,
            ):
                with cls.atomic():
                    order = OrderLedger.lock_order(order_id)
                    cls._validate_refundable(order, enforce_deadline)
                    cls._validate_balance(order, amount_cents)
                    if RefundQueryService.has_in_flight_refund(order):
                        raise RefundInFlightError(
                            f"Order {order.order_no} already has a refund in progress",
                            details={"order_id": str(order.id)},
                        )
                    refund = cls._create_with_unique_number(
                        order,
                        amount_cents=amount_cents,
                        currency=order.currency,
                        reason=reason or "",
                        description=description or "",
                        requested_by=actor or "",
                        awaiting_approval=awaiting_approval,
                    )
        except LockAcquisitionError as e:
            return cls.handle_exception(
                RefundInFlightError("Another refund of this order is being created"),
                "Refund initiation rejected",
                log_level=logging.WARNING,
                extra={**log_context, "lock_error": str(e)},
            )
        except (RefundError, NotFoundError) as e:
            return cls.handle_exception(
                e, "Refund initiation rejected", log_level=logging.WARNING, extra=log_context
            )

        cls.get_logger().info(
            f"Refund {refund.refund_no} created",
            extra={**log_context, "refund_no": refund.refund_no, "refund_request_id": str(refund.id)},
        )

        if awaiting_approval or not submit:
            return ServiceResult.success(refund)

        try:
            refund = cls._submit(refund.id, MODE_INITIAL)
        except RefundInFlightError:
            # Someone else is submitting it; the row is durable either way
            refund = RefundRequest.objects.get(id=refund.id)
        return ServiceResult.success(refund)

    @classmethod
    def retry_refund(
        cls,
        refund_id: uuid.UUID | str,
        *,
        actor: str = "system",
        note: str = "",
    ) -> ServiceResult[RefundRequest]:
        """
        Re-submit a FAILED or ABNORMAL refund with its original amount and number.

        Returns:
            ServiceResult with the RefundRequest, or a failure with one of
            REFUND_NOT_FOUND, NOT_RETRYABLE, REFUND_IN_FLIGHT,
            ORDER_NOT_REFUNDABLE, AMOUNT_EXCEEDS_BALANCE
        """
        log_context = {"refund_request_id": str(refund_id), "actor": actor}
        try:
            refund = cls._submit(refund_id, MODE_RETRY, note=note or f"retried by {actor}")
        except RefundError as e:
            return cls.handle_exception(
                e, "Refund retry rejected", log_level=logging.WARNING, extra=log_context
            )
        cls.get_logger().info("Refund retried", extra={**log_context, "refund_no": refund.refund_no})
        return ServiceResult.success(refund)

    @classmethod
    def cancel_refund(
        cls,
        refund_id: uuid.UUID | str,
        *,
        reason: str = "",
        actor: str = "system",
    ) -> ServiceResult[RefundRequest]:
        """
        Cancel a refund that holds no in-flight gateway call.

        Returns:
            ServiceResult with the CANCELLED RefundRequest, or a failure with
            REFUND_NOT_FOUND, NOT_CANCELLABLE or REFUND_IN_FLIGHT
        """
        log_context = {"refund_request_id": str(refund_id), "actor": actor}
        try:
            refund = cls._get_refund(refund_id)
            with cls._submission_lock(refund):
                with cls.atomic():
                    refund = lock_row(RefundRequest, refund.id)
                    if refund.status not in CANCELLABLE_REFUND_STATUSES:
                        raise NotCancellableError(
                            f"Refund {refund.refund_no} is {refund.status} and cannot be cancelled",
                            details={"status": refund.status},
                        )
                    refund.cancel(reason=reason or f"cancelled by {actor}")
                    refund.save()
        except RefundError as e:
            return cls.handle_exception(
                e, "Refund cancellation rejected", log_level=logging.WARNING, extra=log_context
            )

        cls.get_logger().info(
            "Refund cancelled",
            extra={**log_context, "refund_no": refund.refund_no, "reason": reason},
        )
        return ServiceResult.success(refund)

    @classmethod
    def approve_refund(
        cls,
        refund_id: uuid.UUID | str,
        *,
        actor: str = "system",
        note: str = "",
    ) -> ServiceResult[RefundRequest]:
        """
        Approve a customer request queued for review and submit it.

        Returns:
            ServiceResult with the submitted RefundRequest, or a failure with
            REFUND_NOT_FOUND, NOT_AWAITING_APPROVAL or REFUND_IN_FLIGHT
        """
        log_context = {"refund_request_id": str(refund_id), "actor": actor}
        try:
            refund = cls._submit(refund_id, MODE_APPROVE, note=note, actor=actor)
        except RefundError as e:
            return cls.handle_exception(
                e, "Refund approval rejected", log_level=logging.WARNING, extra=log_context
            )
        cls.get_logger().info(
            "Refund request approved",
            extra={**log_context, "refund_no": refund.refund_no, "status": refund.status},
        )
        return ServiceResult.success(refund)

    @classmethod
    def reject_refund(
        cls,
        refund_id: uuid.UUID | str,
        *,
        reason: str,
        actor: str = "system",
    ) -> ServiceResult[RefundRequest]:
        """
        Reject a customer request queued for review. The gateway is never called.

        Args:
            refund_id: RefundRequest to reject
            reason: Why the request was rejected (required, shown to the customer)
            actor: Actor label stored as the reviewer

        Returns:
            ServiceResult with the CANCELLED RefundRequest, or a failure with
            REJECTION_REASON_REQUIRED, REFUND_NOT_FOUND, NOT_AWAITING_APPROVAL
            or REFUND_IN_FLIGHT
        """
        log_context = {"refund_request_id": str(refund_id), "actor": actor}
        try:
            if not (reason or "").strip():
                raise RejectionReasonRequiredError("A rejection reason is required")
            refund = cls._get_refund(refund_id)
            with cls._submission_lock(refund):
                with cls.atomic():
                    refund = lock_row(RefundRequest, refund.id)
                    cls._validate_awaiting_approval(refund)
                    refund.record_review(actor)
                    refund.cancel(reason=reason.strip())
                    refund.save()
        except RefundError as e:
            return cls.handle_exception(
                e, "Refund rejection refused", log_level=logging.WARNING, extra=log_context
            )

        cls.get_logger().info(
            "Refund request rejected",
            extra={**log_context, "refund_no": refund.refund_no, "reason": reason},
        )
        return ServiceResult.success(refund)

    @classmethod
    def process_attempt(cls, refund_id: uuid.UUID | str) -> ServiceResult[RefundRequest]:
        """
        Deferred gateway attempt for a PROCESSING refund.

        Scheduled after a transient failure. Rows that left PROCESSING in the
        meantime (callback, cancellation) are returned unchanged.
        """
        try:
            refund = cls._submit(refund_id, MODE_ATTEMPT)
        except RefundError as e:
            return cls.handle_exception(
                e,
                "Refund attempt skipped",
                log_level=logging.WARNING,
                extra={"refund_request_id": str(refund_id)},
            )
        return ServiceResult.success(refund)

    @classmethod
    def poll_refund(
        cls,
        refund_id: uuid.UUID | str,
        *,
        reschedule: bool = True,
    ) -> ServiceResult[RefundRequest]:
        """
        Query the gateway for a PROCESSING refund whose callback is late.

        A final status is applied through the CallbackReconciler; PROCESSING
        schedules another poll (up to REFUND_MAX_POLLS when ``reschedule``);
        RESOURCE_NOT_EXISTS means the submission never reached the gateway
        and it is submitted again with the same refund number, unless a
        backoff attempt is already scheduled for it.
        """
        logger = cls.get_logger()
        try:
            refund = cls._get_refund(refund_id)
        except RefundNotFoundError as e:
            return cls.handle_exception(e, "Poll skipped", log_level=logging.WARNING)

        log_context = {
            "refund_no": refund.refund_no,
            "refund_request_id": str(refund.id),
            "poll_count": refund.poll_count,
        }
        if refund.status != RefundStatus.PROCESSING:
            logger.info("Refund no longer processing, poll skipped", extra=log_context)
            return ServiceResult.success(refund)

        result = cls.get_gateway_adapter().query_refund(refund.refund_no)

        if result.success:
            notification = RefundNotification.from_call_result(result)
            if notification.is_final:
                CallbackReconciler.reconcile(notification, source="poll")
            else:
                cls._record_poll(refund.id, log_context, reschedule)

        elif result.error_code == "RESOURCE_NOT_EXISTS":
            current = RefundRequest.objects.get(id=refund.id)
            if current.has_deferred_attempt:
                logger.info("Gateway has no record of refund, deferred attempt pending", extra=log_context)
                return ServiceResult.success(current)
            logger.warning("Gateway has no record of refund, resubmitting", extra=log_context)
            try:
                cls._submit(refund.id, MODE_ATTEMPT)
            except RefundInFlightError:
                logger.info("Resubmission already in progress", extra=log_context)

        elif result.retryable:
            logger.warning(
                "Refund status query failed transiently",
                extra={**log_context, "error_code": result.error_code},
            )
            cls._record_poll(refund.id, log_context, reschedule)

        else:
            with cls.atomic():
                refund = lock_row(RefundRequest, refund.id)
                if refund.status == RefundStatus.PROCESSING:
                    refund.mark_abnormal(result.error_code or "QUERY_FAILED", result.error_message or "")
                    refund.save()
                    alerts.critical(
                        "Refund status query rejected, refund parked as ABNORMAL",
                        extra={**log_context, "error_code": result.error_code},
                    )

        return ServiceResult.success(RefundRequest.objects.get(id=refund.id))

    @classmethod
    def resume_pending(cls, older_than: timedelta | None = None) -> ServiceResult[list[str]]:
        """
        Submit PENDING refunds that were never sent (crash after commit).

        Customer requests waiting for operator approval are left alone.

        Args:
            older_than: Minimum age (default REFUND_PENDING_RESUME_MINUTES)

        Returns:
            ServiceResult with the refund numbers submitted
        """
        if older_than is None:
            older_than = timedelta(minutes=settings.REFUND_PENDING_RESUME_MINUTES)
        cutoff = timezone.now() - older_than

        submitted = []
        stale_ids = RefundRequest.objects.filter(
            status=RefundStatus.PENDING,
            created_at__lt=cutoff,
            awaiting_approval=False,
        ).values_list("id", flat=True)

        for refund_id in list(stale_ids):
            try:
                refund = cls._submit(refund_id, MODE_INITIAL)
            except RefundError as e:
                cls.get_logger().info(
                    "Pending refund not resumed",
                    extra={"refund_request_id": str(refund_id), "error_code": e.error_code},
                )
                continue
            submitted.append(refund.refund_no)

        if submitted:
            cls.get_logger().info(
                f"Resumed {len(submitted)} pending refunds",
                extra={"refund_nos": submitted},
            )
        return ServiceResult.success(submitted)

    # =========================================================================
    # Submission
    # =========================================================================

    @classmethod
    def _submit(
        cls,
        refund_id: uuid.UUID | str,
        mode: str,
        note: str = "",
        actor: str = "",
    ) -> RefundRequest:
        """
        Move a refund to PROCESSING and call the gateway once.

        Raises:
            RefundNotFoundError, RefundInFlightError, NotRetryableError,
            OrderNotRefundableError, AmountExceedsBalanceError,
            NotAwaitingApprovalError, RefundAwaitingApprovalError
        """
        refund = cls._get_refund(refund_id)
        with cls._submission_lock(refund):
            with cls.atomic():
                if mode == MODE_RETRY:
                    # Order first, then refund: same lock order as initiation
                    order = OrderLedger.lock_order(refund.order_id)
                refund = lock_row(RefundRequest, refund.id)

                if mode == MODE_INITIAL:
                    if refund.status != RefundStatus.PENDING:
                        raise RefundInFlightError(
                            f"Refund {refund.refund_no} was already submitted",
                            details={"status": refund.status},
                        )
                    if refund.awaiting_approval:
                        raise RefundAwaitingApprovalError(
                            f"Refund {refund.refund_no} is waiting for operator approval",
                            details={"refund_no": refund.refund_no},
                        )
                    refund.start_processing()
                elif mode == MODE_RETRY:
                    cls._validate_retry(refund, order)
                    refund.reprocess(note=note)
                elif mode == MODE_APPROVE:
                    cls._validate_awaiting_approval(refund)
                    refund.record_review(actor)
                    if note:
                        refund.admin_note = note
                    refund.start_processing()
                elif refund.status != RefundStatus.PROCESSING:
                    cls.get_logger().info(
                        "Refund left PROCESSING before the attempt",
                        extra={"refund_no": refund.refund_no, "status": refund.status},
                    )
                    return refund
                refund.save()
                order_no = refund.order.order_no
                paid_amount = refund.order.paid_amount_cents

            # Outside any transaction: the row above is committed
            result = cls.get_gateway_adapter().refund(
                refund.refund_no,
                order_no,
                refund.amount_cents,
                refund.reason,
                total_minor_units=paid_amount,
            )
            return cls._apply_call_result(refund.id, result)

    @classmethod
    def _apply_call_result(cls, refund_id: uuid.UUID, result: GatewayCallResult) -> RefundRequest:
        logger = cls.get_logger()
        schedule_attempt_in = None

        with cls.atomic():
            refund = lock_row(RefundRequest, refund_id)
            log_context = {
                "refund_no": refund.refund_no,
                "refund_request_id": str(refund.id),
                "order_id": str(refund.order_id),
                "retry_count": refund.retry_count,
                "error_code": result.error_code,
            }

            if refund.status != RefundStatus.PROCESSING:
                # A callback settled it while the call was in flight
                logger.info("Refund settled during the gateway call", extra=log_context)
                return refund

            if result.success:
                refund.record_acknowledgement(result.gateway_refund_id, result.status or "")
                refund.save()
                logger.info(
                    "Refund acknowledged by gateway",
                    extra={**log_context, "gateway_refund_id": result.gateway_refund_id},
                )

            elif result.retryable:
                refund.record_transient_failure(result.error_code or "", result.error_message or "")
                if refund.retry_count > settings.REFUND_MAX_RETRIES:
                    refund.mark_abnormal(
                        "RETRIES_EXHAUSTED",
                        f"{refund.retry_count} transient failures, last: {result.error_code}",
                    )
                    alerts.critical(
                        f"Refund {refund.refund_no} escalated to ABNORMAL after retries",
                        extra={**log_context, "retry_count": refund.retry_count},
                    )
                else:
                    schedule_attempt_in = backoff_delay(
                        refund.retry_count,
                        base=settings.REFUND_RETRY_BASE_DELAY_SECONDS,
                        max_delay=settings.REFUND_RETRY_MAX_DELAY_SECONDS,
                    )
                    logger.warning(
                        "Transient gateway failure, retry scheduled",
                        extra={**log_context, "retry_count": refund.retry_count, "countdown": schedule_attempt_in},
                    )
                refund.save()

            else:
                refund.fail(result.error_code or "", result.error_message or "")
                refund.save()
                logger.error("Refund rejected by gateway", extra=log_context)

        if result.success:
            notification = RefundNotification.from_call_result(result)
            if notification.is_final:
                CallbackReconciler.reconcile(notification, source="submission")
                refund = RefundRequest.objects.get(id=refund.id)
            else:
                cls._schedule_poll(refund, settings.REFUND_CALLBACK_WINDOW_SECONDS)
        elif schedule_attempt_in is not None:
            cls._schedule_attempt(refund, schedule_attempt_in)
        return refund

    @classmethod
    def _record_poll(cls, refund_id: uuid.UUID, log_context: dict, reschedule: bool) -> None:
        with cls.atomic():
            refund = lock_row(RefundRequest, refund_id)
            refund.poll_count += 1
            refund.save(update_fields=["poll_count", "updated_at"])

        if not reschedule:
            return
        if refund.poll_count >= settings.REFUND_MAX_POLLS:
            cls.get_logger().warning(
                "Poll limit reached, refund left to the stale sweep",
                extra={**log_context, "poll_count": refund.poll_count},
            )
            return
        cls._schedule_poll(
            refund,
            backoff_delay(
                refund.poll_count,
                base=POLL_BASE_DELAY_SECONDS,
                max_delay=settings.REFUND_CALLBACK_WINDOW_SECONDS,
            ),
        )

    @staticmethod
    def _schedule_attempt(refund: RefundRequest, countdown: float) -> None:
        from payments.tasks import execute_refund_attempt

        execute_refund_attempt.apply_async(args=[str(refund.id)], countdown=countdown)

    @staticmethod
    def _schedule_poll(refund: RefundRequest, countdown: float) -> None:
        from payments.tasks import poll_refund_status

        poll_refund_status.apply_async(args=[str(refund.id)], countdown=countdown)

    @classmethod
    def _submission_lock(cls, refund: RefundRequest) -> DistributedLock:
        """Non-blocking per-refund lock; a held lock means a call is in flight."""
        return _RefundLock(refund.refund_no)

    # =========================================================================
    # Validation
    # =========================================================================

    @staticmethod
    def _validate_amount(amount_cents: int) -> None:
        if not isinstance(amount_cents, int) or isinstance(amount_cents, bool) or amount_cents <= 0:
            raise InvalidRefundAmountError(
                "Refund amount must be a positive number of cents",
                details={"amount_cents": amount_cents},
            )
        ceiling = settings.WECHAT_PAY_MAX_REFUND_AMOUNT_CENTS
        if amount_cents > ceiling:
            raise InvalidRefundAmountError(
                f"Refund amount exceeds the per-refund ceiling {ceiling}",
                details={"amount_cents": amount_cents, "max_refund_amount_cents": ceiling},
            )

    @staticmethod
    def _validate_refundable(order: Order, enforce_deadline: bool = False) -> None:
        if order.status != OrderStatus.PAID or order.payment_status != PaymentStatus.SUCCESS:
            raise OrderNotRefundableError(
                f"Order {order.order_no} is {order.status} with payment {order.payment_status}",
                details={"status": order.status, "payment_status": order.payment_status},
            )
        if not enforce_deadline:
            return
        if order.booking_date is None:
            raise OrderNotRefundableError(
                f"Order {order.order_no} has no booking date to check the refund deadline against",
                error_code="BOOKING_DATE_MISSING",
                details={"order_no": order.order_no},
            )
        booking_start = timezone.make_aware(datetime.combine(order.booking_date, dt_time.min))
        deadline = booking_start - timedelta(hours=settings.REFUND_DEADLINE_HOURS)
        if timezone.now() > deadline:
            raise RefundDeadlinePassedError(
                f"Refunds must be requested {settings.REFUND_DEADLINE_HOURS} hours before the booking",
                details={"booking_date": order.booking_date.isoformat()},
            )

    @staticmethod
    def _validate_balance(order: Order, amount_cents: int, exclude_id: uuid.UUID | None = None) -> None:
        available = RefundQueryService.get_refundable_balance(order, exclude_id=exclude_id)
        if amount_cents > available:
            raise AmountExceedsBalanceError(
                f"Refund amount {amount_cents} exceeds remaining balance {available}",
                details={"requested_cents": amount_cents, "available_cents": available},
            )

    @staticmethod
    def _validate_awaiting_approval(refund: RefundRequest) -> None:
        if refund.status != RefundStatus.PENDING or not refund.awaiting_approval:
            raise NotAwaitingApprovalError(
                f"Refund {refund.refund_no} is not waiting for approval",
                details={"status": refund.status, "awaiting_approval": refund.awaiting_approval},
            )

    @classmethod
    def _validate_retry(cls, refund: RefundRequest, order: Order) -> None:
        if refund.status == RefundStatus.PROCESSING:
            raise RefundInFlightError(
                f"Refund {refund.refund_no} is already processing",
                details={"status": refund.status},
            )
        if refund.status not in RETRYABLE_REFUND_STATUSES:
            raise NotRetryableError(
                f"Refund {refund.refund_no} is {refund.status} and cannot be retried",
                details={"status": refund.status},
            )
        if RefundQueryService.has_in_flight_refund(order, exclude_id=refund.id):
            raise RefundInFlightError(
                f"Order {order.order_no} already has a refund in progress",
                details={"order_id": str(order.id)},
            )
        if refund.status == RefundStatus.FAILED:
            # FAILED released its share of the balance; ABNORMAL never did
            cls._validate_refundable(order)
            cls._validate_balance(order, refund.amount_cents, exclude_id=refund.id)

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _get_refund(refund_id: uuid.UUID | str) -> RefundRequest:
        refund = RefundRequest.objects.filter(id=refund_id).first()
        if refund is None:
            raise RefundNotFoundError(
                f"Refund {refund_id} not found",
                details={"refund_id": str(refund_id)},
            )
        return refund

    @classmethod
    def _create_with_unique_number(cls, order: Order, **fields) -> RefundRequest:
        user_part = last_digits(order.user_id or 0)
        order_part = last_digits(order.order_no)
        for attempt in range(REFUND_NO_ATTEMPTS):
            candidate = generate_reference_number("REF", user_part, order_part)
            try:
                with transaction.atomic():
                    return RefundRequest.objects.create(order=order, refund_no=candidate, **fields)
            except IntegrityError:
                cls.get_logger().warning(
                    "Refund number collision",
                    extra={"refund_no": candidate, "attempt": attempt + 1},
                )
        raise RefundNumberCollisionError(
            "Could not allocate a unique refund number",
            details={"order_id": str(order.id), "attempts": REFUND_NO_ATTEMPTS},
        )


class _RefundLock(DistributedLock):
    """Per-refund submission lock that reports a held lock as RefundInFlight."""

    def __init__(self, refund_no: str) -> None:
        super().__init__(
            f"refund:{refund_no}",
            ttl=settings.REFUND_LOCK_TTL_SECONDS,
            blocking=False,
        )
        self.refund_no = refund_no

    def __enter__(self) -> _RefundLock:
        try:
            self.acquire()
        except LockAcquisitionError as e:
            raise RefundInFlightError(
                f"Refund {self.refund_no} is being submitted",
                details={"refund_no": self.refund_no},
            ) from e
        return self


__all__ = ["RefundOrchestrator"]
