"""
RefundRequest model for tracking money returned to customers.

A RefundRequest represents one logical refund of an order. Its refund_no is
the idempotency key sent to the gateway on every attempt and is never
regenerated. One Order can have multiple RefundRequests for partial refunds.
Rows are never deleted.

Usage:
    from payments.models import RefundRequest
    from payments.state_machines import RefundStatus

    refund = RefundRequest.objects.create(
        order=order,
        refund_no="REF2025061512345678ABCD",
        amount_cents=20000,
        reason="Customer cancelled the booking",
    )

    # State transitions using django-fsm
    refund.start_processing()  # PENDING -> PROCESSING
    refund.save()

    # After the gateway settles the refund
    refund.succeed(settled_amount_cents=20000)  # PROCESSING -> SUCCESS
    refund.save()
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone

from django_fsm import FSMField, transition

from core.helpers import format_minor_units
from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin

from payments.state_machines import (
    CANCELLABLE_REFUND_STATUSES,
    RETRYABLE_REFUND_STATUSES,
    RefundStatus,
)


class RefundRequest(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    Represents money returned to a customer through the gateway.

    State Flow:
        PENDING -> PROCESSING -> SUCCESS
        PENDING -> PROCESSING -> FAILED / ABNORMAL
        FAILED / ABNORMAL -> PROCESSING (retry)
        PENDING / FAILED / ABNORMAL -> CANCELLED

    Customer requests start PENDING with awaiting_approval set; an operator
    approval submits them, a rejection cancels them.

    Fields:
        order: Order being refunded
        refund_no: Merchant refund number (gateway idempotency key)
        amount_cents: Requested refund amount in minor units
        status: Current FSM state
        gateway_refund_id: Gateway refund id, set once acknowledged
        gateway_status: Last raw status string reported by the gateway
        awaiting_approval: Queued for operator review, never auto-submitted
        retry_count: Transient failures since the last (re)submission
        settled_amount_cents: Amount the gateway reported as refunded
        version: Optimistic locking version

    Note:
        The status field is protected. Never call refresh_from_db() without
        a field list on a loaded instance; re-fetch with objects.get().
    """

    # ==========================================================================
    # Relationships & Identity
    # ==========================================================================

    order = models.ForeignKey(
        "orders.Order",
        on_delete=models.PROTECT,
        related_name="refund_requests",
        help_text="Order being refunded",
    )

    refund_no = models.CharField(
        max_length=64,
        unique=True,
        editable=False,
        help_text="Merchant refund number, reused on every gateway attempt",
    )

    # ==========================================================================
    # Amount & Reason
    # ==========================================================================

    amount_cents = models.PositiveBigIntegerField(
        help_text="Requested refund amount in minor units",
    )

    currency = models.CharField(
        max_length=3,
        default="CNY",
        help_text="ISO 4217 currency code",
    )

    reason = models.CharField(
        max_length=80,
        blank=True,
        default="",
        help_text="Refund reason sent to the gateway (shown to the customer)",
    )

    description = models.TextField(
        blank=True,
        default="",
        help_text="Customer's longer description of the request",
    )

    requested_by = models.CharField(
        max_length=100,
        blank=True,
        default="",
        help_text="Actor label of whoever initiated the refund",
    )

    admin_note = models.TextField(
        blank=True,
        default="",
        help_text="Operator note (retry or cancellation reason)",
    )

    # ==========================================================================
    # Review
    # ==========================================================================

    awaiting_approval = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Customer request queued for an operator to approve or reject",
    )

    reviewed_by = models.CharField(
        max_length=100,
        blank=True,
        default="",
        help_text="Actor label of the operator who approved or rejected the request",
    )

    reviewed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the request was approved or rejected",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=RefundStatus.PENDING,
        choices=RefundStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the refund (managed by FSM)",
    )

    retry_count = models.PositiveSmallIntegerField(
        default=0,
        help_text="Transient gateway failures since the last submission",
    )

    poll_count = models.PositiveSmallIntegerField(
        default=0,
        help_text="Status queries issued while waiting for the callback",
    )

    last_error_code = models.CharField(
        max_length=64,
        blank=True,
        default="",
        help_text="Normalized error code of the last failed attempt",
    )

    failure_reason = models.TextField(
        blank=True,
        default="",
        help_text="Detailed reason of the last failure",
    )

    # ==========================================================================
    # Gateway Integration
    # ==========================================================================

    gateway_refund_id = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        db_index=True,
        help_text="Gateway refund id (set once the gateway acknowledges)",
    )

    gateway_status = models.CharField(
        max_length=32,
        blank=True,
        default="",
        help_text="Last raw refund status reported by the gateway",
    )

    settled_amount_cents = models.PositiveBigIntegerField(
        null=True,
        blank=True,
        help_text="Amount the gateway reported as refunded",
    )

    user_received_account = models.CharField(
        max_length=128,
        blank=True,
        default="",
        help_text="Account the refund was credited to",
    )

    # ==========================================================================
    # Timestamps
    # ==========================================================================

    requested_at = models.DateTimeField(
        default=timezone.now,
        help_text="When the refund was requested",
    )

    submitted_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the gateway acknowledged the request",
    )

    processed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the refund reached SUCCESS, FAILED, ABNORMAL or CANCELLED",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Refund Request"
        verbose_name_plural = "Refund Requests"
        indexes = [
            models.Index(fields=["order", "status"], name="refund_order_status_idx"),
            models.Index(fields=["status", "updated_at"], name="refund_status_updated_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount_cents__gt=0),
                name="refund_request_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"RefundRequest({self.refund_no}, {self.status}, {format_minor_units(self.amount_cents)} {self.currency})"

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=RefundStatus.PENDING,
        target=RefundStatus.PROCESSING,
    )
    def start_processing(self):
        """
        Begin the first gateway submission.

        Transition: PENDING -> PROCESSING
        """

    @transition(
        field=status,
        source=list(RETRYABLE_REFUND_STATUSES),
        target=RefundStatus.PROCESSING,
    )
    def reprocess(self, note: str = ""):
        """
        Re-submit a failed or abnormal refund with the same refund number.

        Transition: FAILED/ABNORMAL -> PROCESSING

        Resets the retry counter; the amount and refund number never change.
        """
        self.retry_count = 0
        self.poll_count = 0
        self.last_error_code = ""
        self.failure_reason = ""
        self.processed_at = None
        self.submitted_at = None
        if note:
            self.admin_note = note

    @transition(
        field=status,
        source=RefundStatus.PROCESSING,
        target=RefundStatus.SUCCESS,
    )
    def succeed(
        self,
        settled_amount_cents: int,
        success_time=None,
        gateway_refund_id: str | None = None,
        user_received_account: str = "",
    ):
        """
        Mark the refund settled.

        Transition: PROCESSING -> SUCCESS
        """
        self.settled_amount_cents = settled_amount_cents
        self.processed_at = success_time or timezone.now()
        self.gateway_status = RefundStatus.SUCCESS
        if gateway_refund_id:
            self.gateway_refund_id = gateway_refund_id
        if user_received_account:
            self.user_received_account = user_received_account

    @transition(
        field=status,
        source=RefundStatus.PROCESSING,
        target=RefundStatus.FAILED,
    )
    def fail(self, error_code: str = "", reason: str = ""):
        """
        Mark the refund failed. Transition: PROCESSING -> FAILED

        Args:
            error_code: Normalized error code (e.g. NOT_ENOUGH, CLOSED)
            reason: Detailed failure description
        """
        self.last_error_code = error_code or ""
        self.failure_reason = reason or ""
        self.processed_at = timezone.now()

    @transition(
        field=status,
        source=RefundStatus.PROCESSING,
        target=RefundStatus.ABNORMAL,
    )
    def mark_abnormal(self, error_code: str = "", reason: str = ""):
        """
        Park the refund for operator attention.

        Transition: PROCESSING -> ABNORMAL
        """
        self.last_error_code = error_code or ""
        self.failure_reason = reason or ""
        self.processed_at = timezone.now()

    @transition(
        field=status,
        source=list(CANCELLABLE_REFUND_STATUSES),
        target=RefundStatus.CANCELLED,
    )
    def cancel(self, reason: str = ""):
        """Transition: PENDING/FAILED/ABNORMAL -> CANCELLED"""
        self.admin_note = reason or ""
        self.processed_at = timezone.now()

    # ==========================================================================
    # Helper Methods
    # ==========================================================================

    def record_acknowledgement(
        self,
        gateway_refund_id: str | None,
        gateway_status: str = "",
    ) -> None:
        """
        Store the gateway's acceptance of a submission. Status stays PROCESSING.

        Note: Does not save - caller must save after calling.
        """
        if gateway_refund_id:
            self.gateway_refund_id = gateway_refund_id
        self.gateway_status = gateway_status or ""
        self.submitted_at = timezone.now()
        self.last_error_code = ""
        self.failure_reason = ""

    def record_review(self, actor: str) -> None:
        """
        Close the operator review of a queued customer request.

        Note: Does not save - caller must save after calling.
        """
        self.awaiting_approval = False
        self.reviewed_by = actor or ""
        self.reviewed_at = timezone.now()

    def record_transient_failure(self, error_code: str, reason: str = "") -> None:
        """
        Count a transient failure. Status stays PROCESSING.

        The failed call was not acknowledged, so submitted_at is cleared
        until the scheduled attempt gets through.

        Note: Does not save - caller must save after calling.
        """
        self.retry_count += 1
        self.submitted_at = None
        self.last_error_code = error_code or ""
        self.failure_reason = reason or ""

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_terminal(self) -> bool:
        return self.status in (RefundStatus.SUCCESS, RefundStatus.CANCELLED)

    @property
    def is_in_flight(self) -> bool:
        return self.status in (RefundStatus.PENDING, RefundStatus.PROCESSING)

    @property
    def has_deferred_attempt(self) -> bool:
        """A transient failure scheduled a backoff attempt that has not reached the gateway yet."""
        return (
            self.status == RefundStatus.PROCESSING
            and self.retry_count > 0
            and self.submitted_at is None
        )
