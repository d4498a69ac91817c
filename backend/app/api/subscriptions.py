"""
Subscription API Endpoints
Plans, usage against plan limits, Stripe checkout and cancellation
"""
from fastapi import APIRouter, Depends

from app.api.deps import get_audit_service, get_subscription_service
from app.api.stores import store_path_context
from app.core.auth import (
    Permission, Role, StoreContext, TokenUser, get_current_user, require_role, resolve_store_context,
)
from app.core.errors import ErrorCode, ForbiddenError
from app.core.responses import success
from app.domain.subscription import SubscriptionCancelRequest, SubscriptionCheckoutRequest
from app.services.audit_service import AuditAction, AuditService
from app.services.subscription_service import SubscriptionService, get_all_plans, get_plan_details

router = APIRouter()


def _require(ctx: StoreContext, permission: str):
    if not ctx.can(permission):
        raise ForbiddenError(f"Missing permission: {permission}", code=ErrorCode.INSUFFICIENT_PERMISSIONS)


@router.get("/plans")
async def list_plans():
    return success(get_all_plans())


@router.get("/{store_id}")
async def get_subscription(
    store_id: int,
    ctx: StoreContext = Depends(store_path_context),
    service: SubscriptionService = Depends(get_subscription_service)
):
    """Current plan, usage against its limits and an upgrade/downgrade hint"""
    _require(ctx, Permission.SETTINGS_VIEW)
    usage = service.get_usage_stats(store_id)
    recommendation = service.get_recommendation(store_id)
    return success({
        "plan": get_plan_details(usage.plan).to_dict(),
        "usage": usage.model_dump(),
        "recommendation": recommendation.model_dump() if recommendation else None,
    })


@router.post("")
async def create_subscription_checkout(
    body: SubscriptionCheckoutRequest,
    user: TokenUser = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service)
):
    """
    Start a Stripe Checkout session for a paid plan.

    Returns:
        {"data": {"sessionId": "cs_...", "url": "https://checkout.stripe.com/..."}}
    """
    ctx = resolve_store_context(user, body.store_id)
    _require(ctx, Permission.SETTINGS_UPDATE)

    session = await service.create_checkout_session(
        body.store_id,
        body.plan,
        success_url=body.success_url,
        cancel_url=body.cancel_url,
        customer_email=user.email,
        trial_days=body.trial_days,
    )
    return success(session)


@router.post("/{store_id}/cancel")
async def cancel_subscription(
    store_id: int,
    body: SubscriptionCancelRequest,
    ctx: StoreContext = Depends(store_path_context),
    service: SubscriptionService = Depends(get_subscription_service),
    audit: AuditService = Depends(get_audit_service)
):
    _require(ctx, Permission.SETTINGS_UPDATE)
    store = await service.cancel_with_provider(store_id, immediately=body.immediately)
    audit.log(AuditAction.SUBSCRIPTION_CHANGE, "store", store_id, store_id=store_id, user=ctx.user,
              changes={"subscriptionStatus": store.subscription_status},
              metadata={"reason": body.reason, "immediately": body.immediately})
    return success(store.to_dict(), message="Subscription canceled")


@router.post("/downgrade-expired")
async def downgrade_expired_stores(
    user: TokenUser = Depends(require_role(Role.SUPER_ADMIN)),
    service: SubscriptionService = Depends(get_subscription_service)
):
    """Move expired trials, ended cancellations and long past-due stores to FREE now"""
    downgraded = service.downgrade_expired_stores()
    return success({"downgraded": downgraded}, message=f"{downgraded} stores moved to the FREE plan")
