"""
Checkout Service
Cart validation, shipping options, tax and order creation for the storefront

Author: Platform Team
Date: 2025-11-20
"""
import logging
from collections import Counter
from decimal import Decimal
from typing import Dict, List, Optional

from app.core.errors import NotFoundError, ValidationError
from app.domain.base import round_money
from app.domain.checkout import (
    Address, CartError, CartItem, CartValidationResult, CheckoutRequest,
    ShippingOption, ValidatedCartItem,
)
from app.domain.order import Order
from app.domain.product import ProductStatus
from app.repositories.order_repository import OrderRepository
from app.repositories.product_repository import ProductRepository
from app.repositories.store_repository import StoreRepository
from app.services.audit_service import AuditAction, AuditService
from app.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

FREE_SHIPPING_THRESHOLD = Decimal("50.00")

DOMESTIC_RATES = {
    "standard": Decimal("5.99"),
    "express": Decimal("12.99"),
}

INTERNATIONAL_RATES = {
    "standard": Decimal("15.99"),
    "express": Decimal("29.99"),
}

# US state sales tax, applied to the item subtotal
TAX_RATES = {
    "CA": Decimal("0.0725"),
    "NY": Decimal("0.08"),
    "TX": Decimal("0.0625"),
    "FL": Decimal("0.06"),
}


def get_shipping_options(subtotal: Decimal, country: str) -> List[ShippingOption]:
    if (country or "").upper() == "US":
        options = [
            ShippingOption(id="standard", name="Standard Shipping", description="Delivered in 5-7 business days",
                           cost=DOMESTIC_RATES["standard"], estimated_days="5-7"),
            ShippingOption(id="express", name="Express Shipping", description="Delivered in 2-3 business days",
                           cost=DOMESTIC_RATES["express"], estimated_days="2-3"),
        ]
        if subtotal >= FREE_SHIPPING_THRESHOLD:
            options.insert(0, ShippingOption(
                id="free", name="Free Shipping", description="Free standard shipping on orders over $50",
                cost=Decimal("0.00"), estimated_days="5-7",
            ))
        return options

    return [
        ShippingOption(id="standard", name="International Standard", description="Delivered in 10-15 business days",
                       cost=INTERNATIONAL_RATES["standard"], estimated_days="10-15"),
        ShippingOption(id="express", name="International Express", description="Delivered in 5-7 business days",
                       cost=INTERNATIONAL_RATES["express"], estimated_days="5-7"),
    ]


def get_tax_rate(address: Address) -> Decimal:
    if (address.country or "").upper() != "US" or not address.state:
        return Decimal("0")
    return TAX_RATES.get(address.state.strip().upper(), Decimal("0"))


def calculate_tax(subtotal: Decimal, address: Address) -> Decimal:
    return round_money(subtotal * get_tax_rate(address))


class CheckoutService:

    def __init__(self, product_repo: Optional[ProductRepository] = None,
                 order_repo: Optional[OrderRepository] = None,
                 store_repo: Optional[StoreRepository] = None,
                 subscriptions: Optional[SubscriptionService] = None,
                 audit: Optional[AuditService] = None):
        self.product_repo = product_repo or ProductRepository()
        self.order_repo = order_repo or OrderRepository()
        self.store_repo = store_repo or StoreRepository()
        self.subscriptions = subscriptions or SubscriptionService(self.store_repo)
        self.audit = audit or AuditService()

    def validate_cart(self, store_id: int, items: List[CartItem]) -> CartValidationResult:
        """
        Check every line against the live catalog.

        A line is rejected when the product is missing, unpublished or from
        another store, the variant does not belong to it, the quantity is
        not positive, or tracked stock is short.
        """
        products = self.product_repo.find_by_ids(store_id, [item.product_id for item in items])
        variants = self.product_repo.find_variants_by_ids(
            [item.variant_id for item in items if item.variant_id]
        )

        # Same product/variant on several lines competes for the same stock
        requested = Counter()
        for item in items:
            requested[(item.product_id, item.variant_id)] += max(item.quantity, 0)

        validated = []
        errors = []

        for item in items:
            def reject(message: str):
                errors.append(CartError(product_id=item.product_id, variant_id=item.variant_id, message=message))

            if item.quantity <= 0:
                reject("Quantity must be greater than 0")
                continue

            product = products.get(item.product_id)
            if product is None or product.status != ProductStatus.PUBLISHED:
                reject("Product is not available")
                continue

            variant = None
            if item.variant_id:
                variant = variants.get(item.variant_id)
                if variant is None or variant.product_id != product.id:
                    reject("Variant does not belong to this product")
                    continue

            available = variant.inventory_qty if variant else product.inventory_qty
            if product.track_inventory and requested[(item.product_id, item.variant_id)] > available:
                reject(f"Only {available} units of {product.name} available")
                continue

            price = variant.price if variant and variant.price is not None else product.price
            validated.append(ValidatedCartItem(
                product_id=product.id,
                variant_id=variant.id if variant else None,
                product_name=product.name,
                variant_name=variant.name if variant else None,
                sku=variant.sku if variant else product.sku,
                price=round_money(price),
                quantity=item.quantity,
                subtotal=round_money(price * item.quantity),
                track_inventory=product.track_inventory,
                available_stock=available if product.track_inventory else None,
            ))

        subtotal = round_money(sum((line.subtotal for line in validated), Decimal("0")))
        return CartValidationResult(
            is_valid=not errors and bool(validated),
            items=validated,
            errors=errors,
            subtotal=subtotal,
        )

    def shipping_options(self, store_id: int, items: List[CartItem], address: Address) -> Dict:
        cart = self.validate_cart(store_id, items)
        return {
            "subtotal": cart.subtotal,
            "taxRate": get_tax_rate(address),
            "estimatedTax": calculate_tax(cart.subtotal, address),
            "options": get_shipping_options(cart.subtotal, address.country),
        }

    def create_order(self, store_id: int, request: CheckoutRequest) -> Order:
        """
        Validate again, enforce the monthly order limit, then write the
        customer, order, items and stock decrement in one transaction.
        """
        store = self.store_repo.find_by_id(store_id)
        if store is None or not store.is_active:
            raise NotFoundError("Store")

        cart = self.validate_cart(store_id, request.items)
        if not cart.is_valid:
            raise ValidationError(
                "Cart validation failed",
                details={"errors": [error.model_dump() for error in cart.errors]}
            )

        self.subscriptions.ensure_can_create_order(store_id)

        options = {option.id: option for option in get_shipping_options(cart.subtotal, request.shipping_address.country)}
        shipping = options.get(request.shipping_method)
        if shipping is None:
            raise ValidationError(
                f"Shipping method '{request.shipping_method}' is not available",
                details={"available": list(options)}
            )

        tax_rate = get_tax_rate(request.shipping_address)
        tax_amount = calculate_tax(cart.subtotal, request.shipping_address)
        total = round_money(cart.subtotal + tax_amount + shipping.cost)

        customer_name = f"{request.customer_first_name} {request.customer_last_name}".strip()
        billing = request.billing_address or request.shipping_address

        order = self.order_repo.create_with_items(
            store_id,
            order={
                "subtotal": cart.subtotal,
                "tax_amount": tax_amount,
                "shipping_amount": shipping.cost,
                "discount_amount": Decimal("0"),
                "total_amount": total,
                "currency": store.currency,
                "customer_email": request.customer_email,
                "customer_name": customer_name,
                "customer_phone": request.customer_phone,
                "shipping_address": request.shipping_address.model_dump(),
                "billing_address": billing.model_dump(),
                "shipping_method": shipping.id,
                "customer_note": request.customer_note,
            },
            items=[
                {
                    "product_id": line.product_id,
                    "variant_id": line.variant_id,
                    "product_name": line.product_name,
                    "variant_name": line.variant_name,
                    "sku": line.sku,
                    "price": line.price,
                    "quantity": line.quantity,
                    "subtotal": line.subtotal,
                    "tax_amount": round_money(line.subtotal * tax_rate),
                    "total_amount": round_money(line.subtotal + line.subtotal * tax_rate),
                    "track_inventory": line.track_inventory,
                }
                for line in cart.items
            ],
            customer={
                "email": request.customer_email,
                "first_name": request.customer_first_name,
                "last_name": request.customer_last_name,
                "phone": request.customer_phone,
            },
        )

        logger.info(f"Created order {order.order_number} in store {store_id} total {total} {store.currency}")
        self.audit.log(AuditAction.CREATE, "order", order.id, store_id=store_id,
                       changes={"orderNumber": order.order_number, "total": total},
                       metadata={"customerEmail": request.customer_email})
        return order
