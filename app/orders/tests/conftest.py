"""
Pytest fixtures for order tests.

State fixtures walk the real FSM transitions so each order carries the
timestamps and version a production order would have.

Usage:
    def test_ship(paid_order):
        paid_order.ship()
        paid_order.save()
"""

import pytest

from orders.tests.factories import OrderFactory, StaffUserFactory, UserFactory, make_paid


# =============================================================================
# User Fixtures
# =============================================================================


@pytest.fixture
def user(db):
    """Create a customer."""
    return UserFactory()


@pytest.fixture
def staff_user(db):
    """Create a staff (admin) user."""
    return StaffUserFactory()


# =============================================================================
# Order State Fixtures
# =============================================================================


@pytest.fixture
def pending_order(db, user):
    """Create an unpaid order of 299.00."""
    return OrderFactory(user=user, total_amount_cents=29900)


@pytest.fixture
def paid_order(db, user):
    """Create a paid order of 299.00."""
    return make_paid(OrderFactory(user=user, total_amount_cents=29900))


@pytest.fixture
def shipped_order(db, paid_order):
    paid_order.ship()
    paid_order.save()
    return paid_order


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
