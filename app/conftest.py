"""
Root pytest configuration for the Django project.

This module configures pytest-django and provides the fixtures shared by
every app: parties, a store and product, and orders driven through each
lifecycle stage. Only payments/adapters/tests/conftest.py adds its own
(Stripe SDK mocks).

Project-wide fixtures:
    mock_redis_lock (autouse): settlement locks never touch a real Redis
    mock_gateway: MagicMock standing in for StripeAdapter
    fixed_clock: Controllable service clock
    api_client: DRF test client
"""

import os
from unittest.mock import MagicMock, patch

import django
import pytest
from django.utils import timezone

# Ensure Django settings are configured before any tests run
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")


def pytest_configure():
    """Configure Django settings before tests run."""
    django.setup()

    from django.conf import settings

    # Use fast password hasher for tests (PBKDF2 is too slow with 870K iterations)
    settings.PASSWORD_HASHERS = [
        "django.contrib.auth.hashers.MD5PasswordHasher",
    ]
    settings.CELERY_TASK_ALWAYS_EAGER = True
    # Throttling state stays in-process instead of Redis
    settings.CACHES = {
        "default": {"BACKEND": "django.core.cache.backends.locmem.LocMemCache"},
    }


def pytest_collection_modifyitems(items):
    """
    Auto-mark tests based on filename patterns.

    Mapping:
    - test_integration.py → e2e (full settlement scenarios)
    - test_views.py, test_services.py, test_webhooks.py, etc. → integration
    - test_models.py, test_capabilities.py, test_locks.py, etc. → unit
    - Unmatched files → integration (safe default for Django)

    Explicit markers on test functions/classes take precedence.
    """
    e2e_patterns = ["test_integration.py"]

    integration_patterns = [
        "test_views.py",
        "test_services.py",
        "test_tasks.py",
        "test_webhooks.py",
        "test_release_scheduler.py",
    ]

    unit_patterns = [
        "test_models.py",
        "test_serializers.py",
        "test_managers.py",
        "test_capabilities.py",
        "test_locks.py",
        "test_stripe_adapter.py",
    ]

    for item in items:
        existing_markers = {m.name for m in item.iter_markers()}
        if existing_markers & {"unit", "integration", "e2e"}:
            continue

        filename = str(item.fspath).split("/")[-1]

        if any(pattern in filename for pattern in e2e_patterns):
            item.add_marker(pytest.mark.e2e)
        elif any(pattern in filename for pattern in integration_patterns):
            item.add_marker(pytest.mark.integration)
        elif any(pattern in filename for pattern in unit_patterns):
            item.add_marker(pytest.mark.unit)
        else:
            item.add_marker(pytest.mark.integration)


# =============================================================================
# Settlement infrastructure
# =============================================================================


@pytest.fixture(autouse=True)
def mock_redis_lock():
    """
    Mock Redis for the per-order settlement lock.

    Every acquire succeeds and every release reports ownership. Tests that
    exercise contention override set.return_value or swap in a real
    SET NX store through set.side_effect.
    """
    mock_redis = MagicMock()
    mock_redis.set.return_value = True
    mock_redis.get.return_value = None
    mock_redis.delete.return_value = 1
    mock_redis.eval.return_value = 1

    with patch("payments.locks.get_redis_connection", return_value=mock_redis):
        yield mock_redis


@pytest.fixture
def mock_gateway():
    """
    Replace StripeAdapter for every settlement service.

    Defaults: transfers return tr_test_1, refunds return re_test_1.
    """
    from payments.adapters import RefundResult, TransferResult
    from payments.services import SettlementService

    gateway = MagicMock()
    gateway.transfer.return_value = TransferResult(
        id="tr_test_1",
        amount_cents=0,
        currency="ghs",
        recipient_code="acct_seller",
        reference="",
    )
    gateway.refund.return_value = RefundResult(
        id="re_test_1",
        amount_cents=0,
        currency="ghs",
        status="succeeded",
        payment_reference="pi_test",
    )

    SettlementService.set_stripe_adapter(gateway)
    yield gateway
    SettlementService.set_stripe_adapter(None)


@pytest.fixture
def fixed_clock():
    """Service clock frozen at the current time; advance() moves it."""
    from core.protocols import FixedClock
    from core.services import BaseService

    clock = FixedClock(timezone.now())
    BaseService.set_clock(clock)
    yield clock
    BaseService.set_clock(None)


@pytest.fixture
def api_client():
    from rest_framework.test import APIClient

    return APIClient()


# =============================================================================
# Marketplace parties
# =============================================================================


@pytest.fixture
def buyer(db):
    from authentication.tests.factories import UserFactory

    return UserFactory(display_name="Ama Buyer")


@pytest.fixture
def seller(db):
    from authentication.tests.factories import UserFactory

    return UserFactory(display_name="Kofi Seller")


@pytest.fixture
def admin_user(db):
    from authentication.tests.factories import AdminUserFactory

    return AdminUserFactory()


@pytest.fixture
def outsider(db):
    """Authenticated user with no role on any test order."""
    from authentication.tests.factories import UserFactory

    return UserFactory()


def _client_for(user):
    from rest_framework.test import APIClient

    client = APIClient()
    client.force_authenticate(user=user)
    return client


@pytest.fixture
def buyer_client(buyer):
    return _client_for(buyer)


@pytest.fixture
def seller_client(seller):
    return _client_for(seller)


@pytest.fixture
def staff_client(admin_user):
    return _client_for(admin_user)


@pytest.fixture
def outsider_client(outsider):
    return _client_for(outsider)


@pytest.fixture
def store(db, seller):
    from orders.tests.factories import StoreFactory

    return StoreFactory(owner=seller, recipient_code="acct_seller")


@pytest.fixture
def product(db, store):
    from orders.tests.factories import ProductFactory

    return ProductFactory(store=store, price_cents=5000, stock=10)


# =============================================================================
# Order lifecycle
# =============================================================================
#
# Each fixture drives the order through OrderService, so escrow, history
# and stock are exactly what production code would leave behind.


@pytest.fixture
def placed_order(db, fixed_clock, buyer, store, product):
    """Two units at 50.00 GHS: total 10000, unpaid."""
    from orders.services import OrderService

    result = OrderService.create_order(
        buyer, store.id, [{"product_id": product.id, "quantity": 2}]
    )
    assert result.success, result.error
    return result.data


@pytest.fixture
def paid_order(placed_order):
    """Payment succeeded; PENDING escrow holds 10000."""
    from orders.models import Order
    from orders.services import OrderService

    result = OrderService.record_payment_success(placed_order.id, "pi_test_123")
    assert result.success, result.error
    return Order.objects.get(id=placed_order.id)


@pytest.fixture
def confirmed_order(paid_order, seller):
    from orders.services import OrderService

    result = OrderService.confirm(paid_order.id, seller)
    assert result.success, result.error
    return result.data


@pytest.fixture
def delivered_order(confirmed_order, seller):
    """Delivered; escrow release scheduled ESCROW_RELEASE_WINDOW_DAYS out."""
    from orders.models import Order
    from orders.services import OrderService
    from orders.states import OrderStatus

    for status in (OrderStatus.SHIPPED, OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED):
        result = OrderService.advance_delivery(confirmed_order.id, status, seller)
        assert result.success, result.error
    return Order.objects.get(id=confirmed_order.id)


@pytest.fixture
def escrow(delivered_order):
    from payments.models import Escrow

    return Escrow.objects.get(order_id=delivered_order.id)
