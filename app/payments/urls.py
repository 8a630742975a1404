"""
URL configuration for the payments app.

All routes are prefixed with /api/v1/payments/ when included in the main URLconf.
"""

from django.urls import path

from payments.views import (
    ApproveRefundView,
    CancelRefundView,
    CustomerRefundRequestView,
    OrderRefundsView,
    RefundDetailView,
    RefundStatsView,
    RejectRefundView,
    RetryRefundView,
)
from payments.webhooks.views import payment_notify, refund_notify

app_name = "payments"

urlpatterns = [
    # Refunds
    path("orders/<uuid:order_id>/refunds/", OrderRefundsView.as_view(), name="order_refunds"),
    path(
        "orders/<str:order_no>/refund-request/",
        CustomerRefundRequestView.as_view(),
        name="refund_request",
    ),
    path("refunds/stats/", RefundStatsView.as_view(), name="refund_stats"),
    path("refunds/<uuid:refund_id>/", RefundDetailView.as_view(), name="refund_detail"),
    path("refunds/<uuid:refund_id>/retry/", RetryRefundView.as_view(), name="refund_retry"),
    path("refunds/<uuid:refund_id>/cancel/", CancelRefundView.as_view(), name="refund_cancel"),
    path("refunds/<uuid:refund_id>/approve/", ApproveRefundView.as_view(), name="refund_approve"),
    path("refunds/<uuid:refund_id>/reject/", RejectRefundView.as_view(), name="refund_reject"),
    # Gateway callbacks
    path("notify/refund/", refund_notify, name="refund_notify"),
    path("notify/payment/", payment_notify, name="payment_notify"),
]
