"""
Pytest fixtures and configuration for the Multistore backend tests

Tests never touch a real database: repositories are mocked and API tests
swap services through app.dependency_overrides.
"""
import os

# Must be set before app settings are imported
os.environ.setdefault("AUTH_SECRET", "test-secret-key-for-jwt-signing")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("JOB_QUEUE_AUTO_START", "false")

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from app.core.auth import Role, create_access_token
from app.core.rate_limit import rate_limiter
from app.domain.order import Order, OrderItem
from app.domain.product import Product
from app.domain.store import Store
from app.main import app


@pytest.fixture
def client():
    """
    Provides a TestClient for the API

    Dependency overrides and rate limit windows are reset after each test
    """
    rate_limiter.reset()
    test_client = TestClient(app, raise_server_exceptions=False)
    yield test_client
    app.dependency_overrides.clear()
    rate_limiter.reset()


@pytest.fixture
def override():
    """Register a dependency override: override(get_x_service, mock)"""
    def _override(provider, instance):
        app.dependency_overrides[provider] = lambda: instance
        return instance
    return _override


def make_token(user_id: int = 1, role: str = Role.STORE_ADMIN, email: str = "owner@acmestore.com") -> str:
    return create_access_token(user_id, email, role, name="Test User")


@pytest.fixture
def super_admin_headers():
    return {"Authorization": f"Bearer {make_token(1, Role.SUPER_ADMIN, 'admin@platform-admin.com')}",
            "X-Store-Id": "1"}


@pytest.fixture
def store_admin_headers():
    return {"Authorization": f"Bearer {make_token(2, Role.STORE_ADMIN)}", "X-Store-Id": "1"}


@pytest.fixture
def customer_headers():
    return {"Authorization": f"Bearer {make_token(3, Role.CUSTOMER, 'shopper@shopmail.com')}"}


@pytest.fixture
def mock_cursor():
    """MagicMock connection/cursor pair for repository tests"""
    conn = MagicMock()
    cursor = MagicMock()
    conn.cursor.return_value = cursor
    cursor.connection = conn
    return cursor


@pytest.fixture
def sample_store():
    return Store(
        id=1,
        name="Acme Outfitters",
        slug="acme",
        email="hello@acme-outfitters.com",
        currency="USD",
        subscription_plan="FREE",
        subscription_status="ACTIVE",
        product_limit=10,
        order_limit=100,
    )


@pytest.fixture
def sample_product():
    return Product(
        id=10,
        store_id=1,
        name="Classic Cotton Tee",
        slug="classic-cotton-tee",
        sku="TEE-001",
        price=Decimal("19.99"),
        compare_at_price=Decimal("24.99"),
        cost_price=Decimal("8.50"),
        inventory_qty=25,
        status="PUBLISHED",
        created_at=datetime(2025, 11, 20, tzinfo=timezone.utc),
    )


@pytest.fixture
def sample_order():
    return Order(
        id=100,
        store_id=1,
        order_number="ORD-00042",
        status="PROCESSING",
        payment_status="PAID",
        subtotal=Decimal("39.98"),
        tax_amount=Decimal("2.90"),
        shipping_amount=Decimal("5.99"),
        total_amount=Decimal("48.87"),
        customer_email="shopper@shopmail.com",
        customer_name="Sam Shopper",
        shipping_address={"address1": "1 Main St", "city": "Austin", "country": "US"},
        items=[
            OrderItem(
                id=1, order_id=100, product_id=10, product_name="Classic Cotton Tee",
                sku="TEE-001", price=Decimal("19.99"), quantity=2,
                subtotal=Decimal("39.98"), total_amount=Decimal("42.88"),
            )
        ],
    )
