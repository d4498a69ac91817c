"""
Unit tests for cart validation, shipping, tax and order creation
"""
from decimal import Decimal
from unittest.mock import Mock

import pytest

from app.core.errors import SubscriptionLimitError, ValidationError
from app.domain.checkout import Address, CartItem, CheckoutRequest
from app.domain.product import ProductVariant
from app.services.checkout_service import (
    CheckoutService, calculate_tax, get_shipping_options, get_tax_rate,
)


def address(**overrides):
    values = {"first_name": "Sam", "last_name": "Shopper", "address1": "1 Main St",
              "city": "Austin", "state": "TX", "postal_code": "73301", "country": "US"}
    values.update(overrides)
    return Address(**values)


@pytest.fixture
def checkout(sample_product, sample_store, sample_order):
    product_repo = Mock()
    product_repo.find_by_ids.return_value = {sample_product.id: sample_product}
    product_repo.find_variants_by_ids.return_value = {}
    order_repo = Mock()
    order_repo.create_with_items.return_value = sample_order
    store_repo = Mock()
    store_repo.find_by_id.return_value = sample_store
    return CheckoutService(product_repo=product_repo, order_repo=order_repo, store_repo=store_repo,
                           subscriptions=Mock(), audit=Mock())


class TestShippingAndTax:

    def test_domestic_options_below_threshold(self):
        options = get_shipping_options(Decimal("49.99"), "US")

        assert [option.id for option in options] == ["standard", "express"]

    def test_free_shipping_at_threshold(self):
        options = get_shipping_options(Decimal("50.00"), "us")

        assert options[0].id == "free"
        assert options[0].cost == Decimal("0.00")

    def test_international_options(self):
        options = get_shipping_options(Decimal("500"), "CA")

        assert [option.cost for option in options] == [Decimal("15.99"), Decimal("29.99")]

    def test_tax_rate_by_state(self):
        assert get_tax_rate(address(state="CA")) == Decimal("0.0725")
        assert get_tax_rate(address(state="OR")) == Decimal("0")
        assert get_tax_rate(address(country="GB", state="CA")) == Decimal("0")

    def test_tax_is_rounded_half_up(self):
        assert calculate_tax(Decimal("39.98"), address(state="TX")) == Decimal("2.50")


class TestValidateCart:

    def test_valid_cart(self, checkout):
        result = checkout.validate_cart(1, [CartItem(product_id=10, quantity=2)])

        assert result.is_valid is True
        assert result.subtotal == Decimal("39.98")
        assert result.items[0].available_stock == 25

    def test_unknown_product(self, checkout):
        result = checkout.validate_cart(1, [CartItem(product_id=99, quantity=1)])

        assert result.is_valid is False
        assert result.errors[0].message == "Product is not available"

    def test_draft_product_is_unavailable(self, checkout, sample_product):
        sample_product.status = "DRAFT"

        result = checkout.validate_cart(1, [CartItem(product_id=10, quantity=1)])

        assert result.is_valid is False

    def test_zero_quantity(self, checkout):
        result = checkout.validate_cart(1, [CartItem(product_id=10, quantity=0)])

        assert result.errors[0].message == "Quantity must be greater than 0"

    def test_stock_shared_across_lines(self, checkout):
        result = checkout.validate_cart(1, [
            CartItem(product_id=10, quantity=20),
            CartItem(product_id=10, quantity=10),
        ])

        assert result.is_valid is False
        assert "Only 25 units" in result.errors[0].message

    def test_untracked_inventory_skips_stock_check(self, checkout, sample_product):
        sample_product.track_inventory = False

        result = checkout.validate_cart(1, [CartItem(product_id=10, quantity=500)])

        assert result.is_valid is True
        assert result.items[0].available_stock is None

    def test_variant_from_other_product(self, checkout):
        checkout.product_repo.find_variants_by_ids.return_value = {
            5: ProductVariant(id=5, product_id=77, name="XL", sku="OTHER-XL", inventory_qty=5)
        }

        result = checkout.validate_cart(1, [CartItem(product_id=10, variant_id=5, quantity=1)])

        assert result.errors[0].message == "Variant does not belong to this product"

    def test_variant_price_overrides_product_price(self, checkout):
        checkout.product_repo.find_variants_by_ids.return_value = {
            5: ProductVariant(id=5, product_id=10, name="XL", sku="TEE-001-XL",
                              price=Decimal("21.99"), inventory_qty=5)
        }

        result = checkout.validate_cart(1, [CartItem(product_id=10, variant_id=5, quantity=2)])

        assert result.items[0].sku == "TEE-001-XL"
        assert result.subtotal == Decimal("43.98")


class TestCreateOrder:

    def _request(self, **overrides):
        values = {
            "customer_email": "shopper@shopmail.com",
            "customer_first_name": "Sam",
            "customer_last_name": "Shopper",
            "items": [CartItem(product_id=10, quantity=2)],
            "shipping_address": address(),
            "shipping_method": "standard",
        }
        values.update(overrides)
        return CheckoutRequest(**values)

    def test_totals_include_tax_and_shipping(self, checkout):
        checkout.create_order(1, self._request())

        kwargs = checkout.order_repo.create_with_items.call_args[1]
        order = kwargs["order"]
        assert order["subtotal"] == Decimal("39.98")
        assert order["tax_amount"] == Decimal("2.50")
        assert order["shipping_amount"] == Decimal("5.99")
        assert order["total_amount"] == Decimal("48.47")
        assert order["billing_address"] == order["shipping_address"]
        assert kwargs["items"][0]["sku"] == "TEE-001"
        checkout.subscriptions.ensure_can_create_order.assert_called_once_with(1)

    def test_invalid_cart_is_rejected(self, checkout):
        with pytest.raises(ValidationError) as exc_info:
            checkout.create_order(1, self._request(items=[CartItem(product_id=99, quantity=1)]))

        assert exc_info.value.details["errors"][0]["product_id"] == 99
        checkout.order_repo.create_with_items.assert_not_called()

    def test_unavailable_shipping_method(self, checkout):
        with pytest.raises(ValidationError) as exc_info:
            checkout.create_order(1, self._request(shipping_method="free"))

        assert exc_info.value.details["available"] == ["standard", "express"]

    def test_order_limit_blocks_checkout(self, checkout):
        checkout.subscriptions.ensure_can_create_order.side_effect = SubscriptionLimitError("limit")

        with pytest.raises(SubscriptionLimitError):
            checkout.create_order(1, self._request())

        checkout.order_repo.create_with_items.assert_not_called()
