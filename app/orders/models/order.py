"""
Order model for booking checkouts.

An Order is created at checkout in PENDING with a snapshot of its items,
becomes PAID when the gateway reports a successful payment, and then moves
either through fulfilment (SHIPPED → COMPLETED) or out through CANCELLED or
REFUNDED.

Usage:
    from orders.models import Order
    from orders.services import OrderStateMachine
    from orders.state_machines import OrderEvent

    # Status changes go through the state machine, never direct assignment
    OrderStateMachine.transition(order.id, OrderEvent.SHIP, actor="admin:7")
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import Sum
from django.utils import timezone

from django_fsm import FSMField, transition

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin

from orders.state_machines import OrderStatus, PaymentStatus


class Order(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    A customer's booking order.

    State Flow:
        PENDING -> PAID -> SHIPPED -> COMPLETED
        PAID -> CANCELLED
        PAID -> REFUNDED

    Fields:
        order_no: Merchant order number sent to the gateway
        user: Customer who placed the order (nullable for guest checkouts)
        total_amount_cents: Sum of item subtotals at checkout
        paid_amount_cents: Amount actually paid (0 until paid)
        status: Order status (FSM)
        payment_status: Payment axis (FSM)
        booking_date: Date of the booked service, used for refund deadlines
        gateway_transaction_id: Gateway transaction id of the payment
        version: Optimistic locking version

    Note:
        Both FSM fields are protected, so the only way to change them is a
        transition method. Do not call refresh_from_db() without a field
        list on a loaded instance; re-fetch with Order.objects.get() instead.
    """

    # ==========================================================================
    # Identity & Ownership
    # ==========================================================================

    order_no = models.CharField(
        max_length=32,
        unique=True,
        editable=False,
        help_text="Merchant order number (ORD + YYYYMMDD + 8 digits)",
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="orders",
        help_text="Customer who placed the order",
    )

    # ==========================================================================
    # Amounts
    # ==========================================================================

    total_amount_cents = models.PositiveBigIntegerField(
        help_text="Order total in minor units (sum of item subtotals)",
    )

    paid_amount_cents = models.PositiveBigIntegerField(
        default=0,
        help_text="Amount actually paid in minor units",
    )

    currency = models.CharField(
        max_length=3,
        default="CNY",
        help_text="ISO 4217 currency code",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=OrderStatus.PENDING,
        choices=OrderStatus.choices,
        db_index=True,
        protected=True,
        help_text="Order status (managed by FSM)",
    )

    payment_status = FSMField(
        default=PaymentStatus.UNPAID,
        choices=PaymentStatus.choices,
        db_index=True,
        protected=True,
        help_text="Payment status (managed by FSM)",
    )

    # ==========================================================================
    # Booking & Gateway
    # ==========================================================================

    booking_date = models.DateField(
        null=True,
        blank=True,
        help_text="Date of the booked service",
    )

    remark = models.CharField(
        max_length=500,
        blank=True,
        default="",
        help_text="Customer remark",
    )

    gateway_transaction_id = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        unique=True,
        help_text="Gateway transaction id of the successful payment",
    )

    payment_failure_reason = models.TextField(
        blank=True,
        default="",
        help_text="Reason reported for the last failed payment",
    )

    # ==========================================================================
    # State Timestamps
    # ==========================================================================

    paid_at = models.DateTimeField(null=True, blank=True, help_text="When payment succeeded")
    shipped_at = models.DateTimeField(null=True, blank=True, help_text="When the order shipped")
    completed_at = models.DateTimeField(null=True, blank=True, help_text="When fulfilment completed")
    cancelled_at = models.DateTimeField(null=True, blank=True, help_text="When the order was cancelled")
    refunded_at = models.DateTimeField(null=True, blank=True, help_text="When the order was fully refunded")

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Order"
        verbose_name_plural = "Orders"
        indexes = [
            models.Index(fields=["user", "status"], name="order_user_status_idx"),
            models.Index(fields=["status", "created_at"], name="order_status_created_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(paid_amount_cents__lte=models.F("total_amount_cents")),
                name="order_paid_not_above_total",
            ),
        ]

    def __str__(self) -> str:
        return f"Order({self.order_no}, {self.status}, {self.total_amount_cents} {self.currency})"

    # ==========================================================================
    # Derived Amounts
    # ==========================================================================

    def successful_refund_total(self) -> int:
        """Sum of SUCCESS refund amounts recorded against this order."""
        from payments.state_machines import RefundStatus

        total = self.refund_requests.filter(status=RefundStatus.SUCCESS).aggregate(
            total=Sum("amount_cents")
        )["total"]
        return total or 0

    def refunds_cover_paid_amount(self) -> bool:
        """Transition condition for REFUND."""
        return self.paid_amount_cents > 0 and self.successful_refund_total() >= self.paid_amount_cents

    def has_unsettled_refunds(self) -> bool:
        """True while a refund holds part of the paid amount without having settled."""
        from payments.state_machines import COMMITTED_REFUND_STATUSES, RefundStatus

        return self.refund_requests.filter(
            status__in=COMMITTED_REFUND_STATUSES - {RefundStatus.SUCCESS}
        ).exists()

    def no_unsettled_refunds(self) -> bool:
        """Transition condition for SHIP and CANCEL."""
        return not self.has_unsettled_refunds()

    def payment_succeeded(self) -> bool:
        """Transition condition for PAY."""
        return self.payment_status == PaymentStatus.SUCCESS

    # ==========================================================================
    # Payment Axis Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=payment_status,
        source=[PaymentStatus.UNPAID, PaymentStatus.FAILED],
        target=PaymentStatus.SUCCESS,
    )
    def record_payment_success(self, transaction_id: str, amount_cents: int, paid_at=None):
        """
        Record a successful payment.

        Transition: UNPAID/FAILED -> SUCCESS
        """
        self.gateway_transaction_id = transaction_id
        self.paid_amount_cents = amount_cents
        self.paid_at = paid_at or timezone.now()
        self.payment_failure_reason = ""

    @transition(
        field=payment_status,
        source=PaymentStatus.UNPAID,
        target=PaymentStatus.FAILED,
    )
    def record_payment_failure(self, reason: str = ""):
        """
        Record a failed payment attempt.

        Transition: UNPAID -> FAILED
        """
        self.payment_failure_reason = reason or ""

    # ==========================================================================
    # Status Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=OrderStatus.PENDING,
        target=OrderStatus.PAID,
        conditions=[payment_succeeded],
    )
    def pay(self):
        """Transition: PENDING -> PAID (requires payment SUCCESS)."""
        if self.paid_at is None:
            self.paid_at = timezone.now()

    @transition(
        field=status,
        source=OrderStatus.PAID,
        target=OrderStatus.SHIPPED,
        conditions=[no_unsettled_refunds],
    )
    def ship(self):
        """Transition: PAID -> SHIPPED (blocked while a refund is unsettled)"""
        self.shipped_at = timezone.now()

    @transition(field=status, source=OrderStatus.SHIPPED, target=OrderStatus.COMPLETED)
    def complete(self):
        """Transition: SHIPPED -> COMPLETED"""
        self.completed_at = timezone.now()

    @transition(
        field=status,
        source=OrderStatus.PAID,
        target=OrderStatus.CANCELLED,
        conditions=[no_unsettled_refunds],
    )
    def cancel(self):
        """Transition: PAID -> CANCELLED (blocked while a refund is unsettled)"""
        self.cancelled_at = timezone.now()

    @transition(
        field=status,
        source=OrderStatus.PAID,
        target=OrderStatus.REFUNDED,
        conditions=[refunds_cover_paid_amount],
    )
    def refund(self):
        """
        Mark the order fully refunded.

        Transition: PAID -> REFUNDED (requires SUCCESS refunds >= paid amount)
        """
        self.refunded_at = timezone.now()
