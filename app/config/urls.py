"""
URL configuration for the Django application.

URL Structure:
    /                              - ReDoc API documentation
    /admin/                        - Django admin interface
    /health/                       - Health check endpoint
    /schema/                       - OpenAPI schema (YAML)
    /api/v1/orders/                - Order endpoints
        stats/                     - Order counts per status (admin)
        {order_no}/                - Order snapshot
        {order_id}/transition/     - Apply a status event (admin)
    /api/v1/payments/              - Refund and gateway endpoints
        orders/{order_id}/refunds/ - Initiate refund / list refunds (admin)
        orders/{order_no}/refund-request/ - Customer refund request
        refunds/stats/             - Refund statistics (admin)
        refunds/{id}/              - Refund detail (admin or order owner)
        refunds/{id}/retry/        - Retry a FAILED/ABNORMAL refund (admin)
        refunds/{id}/cancel/       - Cancel a refund (admin)
        refunds/{id}/approve/      - Approve a queued customer request (admin)
        refunds/{id}/reject/       - Reject a queued customer request (admin)
        notify/refund/             - Gateway refund callback (POST)
        notify/payment/            - Gateway payment callback (POST)
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView

from core.views import health_check

# =============================================================================
# API v1 Routes
# =============================================================================
api_v1_patterns = [
    path("orders/", include("orders.urls")),
    path("payments/", include("payments.urls")),
]

urlpatterns = [
    # Documentation
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    # Admin
    path("admin/", admin.site.urls),
    # Health check (Docker, Kubernetes, load balancers)
    path("health/", health_check, name="health_check"),
    # API v1
    path("api/v1/", include(api_v1_patterns)),
]

admin.site.site_header = "Booking Orders Admin"
admin.site.site_title = "Orders Admin"
admin.site.index_title = "Orders, refunds and gateway notifications"
