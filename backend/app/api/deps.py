"""
Shared API dependencies

Service providers are plain functions so tests can swap them through
app.dependency_overrides.
"""
import logging
from typing import Any, Awaitable, Callable, Optional

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from app.core.auth import StoreContext
from app.services.attribute_service import AttributeService
from app.services.audit_service import AuditService
from app.services.auth_service import AuthService
from app.services.brand_service import BrandService
from app.services.bulk_import_service import BulkImportService
from app.services.category_service import CategoryService
from app.services.checkout_service import CheckoutService
from app.services.export_service import ExportService
from app.services.idempotency_service import RequestIdempotencyService, WebhookIdempotencyService
from app.services.order_service import OrderService
from app.services.payment_service import PaymentService
from app.services.product_service import ProductService
from app.services.store_service import StoreService
from app.services.storefront_service import StorefrontService
from app.services.subscription_service import SubscriptionService
from app.services.user_store_service import UserStoreService

logger = logging.getLogger(__name__)

IDEMPOTENCY_HEADERS = ("Idempotency-Key", "X-Idempotency-Key")


def get_auth_service() -> AuthService:
    return AuthService()


def get_store_service() -> StoreService:
    return StoreService()


def get_user_store_service() -> UserStoreService:
    return UserStoreService()


def get_product_service() -> ProductService:
    return ProductService()


def get_category_service() -> CategoryService:
    return CategoryService()


def get_brand_service() -> BrandService:
    return BrandService()


def get_attribute_service() -> AttributeService:
    return AttributeService()


def get_order_service() -> OrderService:
    return OrderService()


def get_payment_service() -> PaymentService:
    return PaymentService()


def get_checkout_service() -> CheckoutService:
    return CheckoutService()


def get_export_service() -> ExportService:
    return ExportService()


def get_bulk_import_service() -> BulkImportService:
    return BulkImportService()


def get_audit_service() -> AuditService:
    return AuditService()


def get_subscription_service() -> SubscriptionService:
    return SubscriptionService()


def get_storefront_service() -> StorefrontService:
    return StorefrontService()


def get_webhook_idempotency() -> WebhookIdempotencyService:
    return WebhookIdempotencyService()


def get_request_idempotency() -> RequestIdempotencyService:
    return RequestIdempotencyService()


def idempotency_key(request: Request) -> Optional[str]:
    for header in IDEMPOTENCY_HEADERS:
        value = request.headers.get(header)
        if value:
            return value
    return None


async def run_idempotent(
    request: Request,
    ctx: StoreContext,
    scope: str,
    body: Any,
    handler: Callable[[], Awaitable[Any]],
    guard: RequestIdempotencyService,
):
    """
    Run a mutating handler at most once per Idempotency-Key.

    Without the header the handler simply runs. A repeated key with the
    same body replays the stored response; a different body is a 409.
    """
    key = idempotency_key(request)
    if not key:
        return await handler()

    body_hash = guard.request_hash(jsonable_encoder(body))
    stored_key, cached = guard.begin(key, f"{ctx.store_id}|{ctx.user.id}|{scope}", body_hash)
    if cached is not None:
        return JSONResponse(
            status_code=cached["statusCode"],
            content=cached["body"],
            headers={"Idempotent-Replayed": "true"},
        )

    try:
        result = await handler()
    except Exception:
        guard.release(stored_key)
        raise

    guard.complete(stored_key, body_hash, 200, jsonable_encoder(result))
    return result
