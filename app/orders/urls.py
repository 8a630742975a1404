"""
URL configuration for the orders app.

All routes are prefixed with /api/v1/orders/ when included in the main URLconf.
"""

from django.urls import path

from orders.views import OrderDetailView, OrderStatsView, OrderTransitionView

app_name = "orders"

urlpatterns = [
    path("stats/", OrderStatsView.as_view(), name="order_stats"),
    path("<uuid:order_id>/transition/", OrderTransitionView.as_view(), name="order_transition"),
    path("<str:order_no>/", OrderDetailView.as_view(), name="order_detail"),
]
