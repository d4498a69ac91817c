"""
Storefront API Endpoints
Public, unauthenticated catalog and checkout for one store, addressed by slug
"""
from decimal import Decimal
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import EmailStr

from app.api.deps import get_checkout_service, get_payment_service, get_storefront_service
from app.core.responses import Pagination, paginated, pagination_params, success
from app.domain.checkout import CartValidationRequest, CheckoutRequest, ShippingOptionsRequest
from app.domain.product import Product
from app.services.checkout_service import CheckoutService
from app.services.payment_service import PaymentService
from app.services.storefront_service import StorefrontService

router = APIRouter()

# Internal fields never shown to shoppers
PRIVATE_PRODUCT_FIELDS = ("cost_price",)


def public_product(product: Product) -> dict:
    data = product.to_dict()
    for field in PRIVATE_PRODUCT_FIELDS:
        data.pop(field, None)
    return data


@router.get("/{store_slug}/products")
async def list_products(
    store_slug: str,
    category: Optional[str] = Query(None, description="Category slug"),
    search: Optional[str] = Query(None),
    min_price: Optional[Decimal] = Query(None, alias="minPrice", ge=0),
    max_price: Optional[Decimal] = Query(None, alias="maxPrice", ge=0),
    sort_by: Literal["createdAt", "name", "price"] = Query("createdAt", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
    pagination: Pagination = Depends(pagination_params),
    service: StorefrontService = Depends(get_storefront_service)
):
    store = service.get_store(store_slug)
    products, total = service.list_products(
        store.id,
        category_slug=category,
        search=search,
        min_price=min_price,
        max_price=max_price,
        sort_by=sort_by,
        sort_order=sort_order,
        limit=pagination.limit,
        offset=pagination.offset,
    )
    return paginated([public_product(product) for product in products], total, pagination)


@router.get("/{store_slug}/products/{slug}")
async def get_product(
    store_slug: str,
    slug: str,
    service: StorefrontService = Depends(get_storefront_service)
):
    store = service.get_store(store_slug)
    return success(public_product(service.get_product(store.id, slug)))


@router.get("/{store_slug}/products/{slug}/related")
async def related_products(
    store_slug: str,
    slug: str,
    limit: int = Query(4, ge=1, le=12),
    service: StorefrontService = Depends(get_storefront_service)
):
    store = service.get_store(store_slug)
    return success([public_product(product) for product in service.related_products(store.id, slug, limit)])


@router.get("/{store_slug}/featured")
async def featured_products(
    store_slug: str,
    limit: int = Query(8, ge=1, le=24),
    service: StorefrontService = Depends(get_storefront_service)
):
    store = service.get_store(store_slug)
    return success([public_product(product) for product in service.featured_products(store.id, limit)])


@router.get("/{store_slug}/categories")
async def category_tree(
    store_slug: str,
    service: StorefrontService = Depends(get_storefront_service)
):
    store = service.get_store(store_slug)
    return success([node.to_dict() for node in service.category_tree(store.id)])


@router.get("/{store_slug}/categories/{slug}")
async def get_category(
    store_slug: str,
    slug: str,
    service: StorefrontService = Depends(get_storefront_service)
):
    store = service.get_store(store_slug)
    return success(service.get_category(store.id, slug).to_dict())


@router.post("/{store_slug}/cart/validate")
async def validate_cart(
    store_slug: str,
    body: CartValidationRequest,
    storefront: StorefrontService = Depends(get_storefront_service),
    checkout: CheckoutService = Depends(get_checkout_service)
):
    store = storefront.get_store(store_slug)
    return success(checkout.validate_cart(store.id, body.items).model_dump())


@router.post("/{store_slug}/checkout/shipping-options")
async def shipping_options(
    store_slug: str,
    body: ShippingOptionsRequest,
    storefront: StorefrontService = Depends(get_storefront_service),
    checkout: CheckoutService = Depends(get_checkout_service)
):
    store = storefront.get_store(store_slug)
    return success(checkout.shipping_options(store.id, body.items, body.shipping_address))


@router.post("/{store_slug}/checkout", status_code=201)
async def create_checkout(
    store_slug: str,
    body: CheckoutRequest,
    request: Request,
    storefront: StorefrontService = Depends(get_storefront_service),
    checkout: CheckoutService = Depends(get_checkout_service),
    payments: PaymentService = Depends(get_payment_service)
):
    """
    Place an order and start its payment.

    Returns:
        {"data": {"order": {...}, "payment": {"gateway": "STRIPE", "clientSecret": "..."}}}
    """
    store = storefront.get_store(store_slug)
    order = checkout.create_order(store.id, body)

    base_url = request.headers.get("origin") or str(request.base_url).rstrip("/")
    ipn_url = str(request.base_url).rstrip("/") + "/api/v1/webhooks/sslcommerz/ipn"
    payment = await payments.start_payment(order, body.payment_gateway, base_url=base_url, ipn_url=ipn_url)

    return success({"order": order.to_dict(), "payment": payment}, message="Order placed")


@router.get("/{store_slug}/orders/{order_number}/confirmation")
async def order_confirmation(
    store_slug: str,
    order_number: str,
    email: EmailStr = Query(..., description="Email used at checkout"),
    service: StorefrontService = Depends(get_storefront_service)
):
    store = service.get_store(store_slug)
    order = service.order_confirmation(store.id, order_number, email)
    data = order.to_dict()
    data.pop("admin_note", None)
    return success(data)
