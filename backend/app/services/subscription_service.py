"""
Subscription Service
Plan assignment, limit enforcement, usage tracking and Stripe billing

Plans:
    FREE        10 products / 100 orders per month      $0
    BASIC      100 products / 1,000 orders per month   $29
    PRO      1,000 products / 10,000 orders per month  $99
    ENTERPRISE  unlimited                             $299

Author: Platform Team
Date: 2025-11-20
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from app.connectors.stripe_connector import StripeConnector
from app.core.config import settings
from app.core.errors import NotFoundError, ValidationError, SubscriptionLimitError
from app.domain.store import Store
from app.domain.subscription import (
    PlanDetails, PlanRecommendation, SubscriptionPlan, SubscriptionStatus,
    UsageStats, DowngradeCandidate, UNLIMITED,
)
from app.repositories.store_repository import StoreRepository

logger = logging.getLogger(__name__)

TRIAL_DAYS = 14
PAST_DUE_GRACE_DAYS = 7
PAST_DUE_DOWNGRADE_DAYS = 30

UPGRADE_THRESHOLD = 80
HIGH_URGENCY_THRESHOLD = 90
DOWNGRADE_THRESHOLD = 25

SUBSCRIPTION_PLANS: Dict[str, PlanDetails] = {
    SubscriptionPlan.FREE: PlanDetails(
        plan=SubscriptionPlan.FREE, name="Free", price=0, max_products=10, max_orders=100,
        features=("10 products", "100 orders per month", "Basic storefront", "Email support"),
    ),
    SubscriptionPlan.BASIC: PlanDetails(
        plan=SubscriptionPlan.BASIC, name="Basic", price=29, max_products=100, max_orders=1000,
        features=("100 products", "1,000 orders per month", "Custom themes",
                  "Analytics dashboard", "Priority email support"),
    ),
    SubscriptionPlan.PRO: PlanDetails(
        plan=SubscriptionPlan.PRO, name="Pro", price=99, max_products=1000, max_orders=10000,
        features=("1,000 products", "10,000 orders per month", "Advanced analytics",
                  "Marketing automation", "Phone support"),
    ),
    SubscriptionPlan.ENTERPRISE: PlanDetails(
        plan=SubscriptionPlan.ENTERPRISE, name="Enterprise", price=299,
        max_products=UNLIMITED, max_orders=UNLIMITED,
        features=("Unlimited products", "Unlimited orders", "Custom integrations",
                  "Dedicated account manager", "24/7 priority support"),
    ),
}

PLAN_ORDER = [SubscriptionPlan.FREE, SubscriptionPlan.BASIC, SubscriptionPlan.PRO, SubscriptionPlan.ENTERPRISE]

# Stripe subscription.status -> our status
STRIPE_STATUS_MAP = {
    "trialing": SubscriptionStatus.TRIAL,
    "active": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "incomplete": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "incomplete_expired": SubscriptionStatus.CANCELED,
    "paused": SubscriptionStatus.PAUSED,
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def start_of_month(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def get_plan_details(plan: str) -> PlanDetails:
    if plan not in SUBSCRIPTION_PLANS:
        raise ValidationError(f"Unknown subscription plan: {plan}", code="INVALID_PLAN")
    return SUBSCRIPTION_PLANS[plan]


def get_all_plans() -> List[dict]:
    return [SUBSCRIPTION_PLANS[plan].to_dict() for plan in PLAN_ORDER]


def get_price_id(plan: str) -> Optional[str]:
    return {
        SubscriptionPlan.BASIC: settings.STRIPE_BASIC_PRICE_ID,
        SubscriptionPlan.PRO: settings.STRIPE_PRO_PRICE_ID,
        SubscriptionPlan.ENTERPRISE: settings.STRIPE_ENTERPRISE_PRICE_ID,
    }.get(plan) or None


def plan_for_price_id(price_id: Optional[str]) -> Optional[str]:
    if not price_id:
        return None
    for plan in PLAN_ORDER[1:]:
        if get_price_id(plan) == price_id:
            return plan
    return None


def usage_percent(count: int, limit: int) -> float:
    if limit == UNLIMITED or limit <= 0:
        return 0.0
    return round(count / limit * 100, 2)


def is_subscription_active(store: Store, now: Optional[datetime] = None) -> bool:
    """
    TRIAL until trial end, ACTIVE always, PAST_DUE within the grace
    period, CANCELED until the paid period ends, PAUSED never
    """
    now = now or _now()
    status = store.subscription_status

    if status == SubscriptionStatus.ACTIVE:
        return True
    if status == SubscriptionStatus.TRIAL:
        return store.trial_ends_at is None or _aware(store.trial_ends_at) > now
    if status == SubscriptionStatus.PAST_DUE:
        since = _aware(store.past_due_since)
        return since is None or now - since <= timedelta(days=PAST_DUE_GRACE_DAYS)
    if status == SubscriptionStatus.CANCELED:
        return store.subscription_ends_at is not None and _aware(store.subscription_ends_at) > now
    return False


def recommend_plan(plan: str, products_percent: float, orders_percent: float) -> Optional[PlanRecommendation]:
    """
    Upgrade when either limit is above 80% used (high urgency above 90%).
    Downgrade a paid plan when both are below 25%.
    """
    index = PLAN_ORDER.index(plan) if plan in PLAN_ORDER else 0
    peak = max(products_percent, orders_percent)

    if peak > UPGRADE_THRESHOLD and index < len(PLAN_ORDER) - 1:
        limited = "product" if products_percent >= orders_percent else "order"
        return PlanRecommendation(
            type="upgrade",
            recommended_plan=PLAN_ORDER[index + 1],
            reason=f"You are using {peak:.0f}% of your {limited} limit",
            urgency="high" if peak > HIGH_URGENCY_THRESHOLD else "medium",
        )

    if (index > 0 and products_percent < DOWNGRADE_THRESHOLD
            and orders_percent < DOWNGRADE_THRESHOLD):
        return PlanRecommendation(
            type="downgrade",
            recommended_plan=PLAN_ORDER[index - 1],
            reason="Your usage is well below your current plan limits",
            urgency="low",
        )

    return None


class SubscriptionService:

    def __init__(self, store_repo: Optional[StoreRepository] = None):
        self.store_repo = store_repo or StoreRepository()

    def _get_store(self, store_id: int) -> Store:
        store = self.store_repo.find_by_id(store_id)
        if store is None:
            raise NotFoundError("Store")
        return store

    # ------------------------------------------------------------------
    # Limits
    # ------------------------------------------------------------------

    def can_create_product(self, store_id: int) -> dict:
        store = self._get_store(store_id)
        if store.subscription_plan == SubscriptionPlan.ENTERPRISE:
            return {"allowed": True}

        current = self.store_repo.count_products(store_id)
        allowed = current < store.product_limit
        return {
            "allowed": allowed,
            "reason": None if allowed else "Product limit exceeded. Upgrade to increase limit.",
            "limit": store.product_limit,
            "current": current,
            "plan": store.subscription_plan,
        }

    def can_create_order(self, store_id: int) -> dict:
        store = self._get_store(store_id)
        if store.subscription_plan == SubscriptionPlan.ENTERPRISE:
            return {"allowed": True}

        current = self.store_repo.count_orders_since(store_id, start_of_month(_now()))
        allowed = current < store.order_limit
        return {
            "allowed": allowed,
            "reason": None if allowed else "Monthly order limit exceeded. Upgrade to increase limit.",
            "limit": store.order_limit,
            "current": current,
            "plan": store.subscription_plan,
        }

    def ensure_can_create_product(self, store_id: int):
        result = self.can_create_product(store_id)
        if not result["allowed"]:
            raise SubscriptionLimitError(result["reason"], details={
                "limit": result["limit"], "current": result["current"], "plan": result["plan"],
            })

    def ensure_can_create_order(self, store_id: int):
        result = self.can_create_order(store_id)
        if not result["allowed"]:
            raise SubscriptionLimitError(result["reason"], details={
                "limit": result["limit"], "current": result["current"], "plan": result["plan"],
            })

    def get_usage_stats(self, store_id: int) -> UsageStats:
        store = self._get_store(store_id)
        plan = get_plan_details(store.subscription_plan)
        product_count = self.store_repo.count_products(store_id)
        order_count = self.store_repo.count_orders_since(store_id, start_of_month(_now()))

        return UsageStats(
            plan=store.subscription_plan,
            status=store.subscription_status,
            product_count=product_count,
            product_limit=plan.max_products,
            order_count=order_count,
            order_limit=plan.max_orders,
            products_usage_percent=usage_percent(product_count, plan.max_products),
            orders_usage_percent=usage_percent(order_count, plan.max_orders),
            trial_ends_at=store.trial_ends_at,
            subscription_ends_at=store.subscription_ends_at,
            is_active=is_subscription_active(store),
        )

    def get_recommendation(self, store_id: int) -> Optional[PlanRecommendation]:
        usage = self.get_usage_stats(store_id)
        return recommend_plan(usage.plan, usage.products_usage_percent, usage.orders_usage_percent)

    # ------------------------------------------------------------------
    # Plan changes
    # ------------------------------------------------------------------

    def assign_plan(self, store_id: int, plan: str, status: Optional[str] = None,
                    trial_ends_at: Optional[datetime] = None,
                    subscription_ends_at: Optional[datetime] = None,
                    extra: Optional[dict] = None) -> Store:
        """
        Move a store to a plan and reset its limits.
        FREE becomes ACTIVE; paid plans start a 14-day trial unless a status is given.
        """
        details = get_plan_details(plan)
        current = self._get_store(store_id)

        if status is None:
            status = SubscriptionStatus.ACTIVE if plan == SubscriptionPlan.FREE else SubscriptionStatus.TRIAL
        if status == SubscriptionStatus.TRIAL and trial_ends_at is None:
            trial_ends_at = _now() + timedelta(days=TRIAL_DAYS)

        fields = {
            "subscription_plan": plan,
            "subscription_status": status,
            "product_limit": details.stored_product_limit,
            "order_limit": details.stored_order_limit,
            "trial_ends_at": trial_ends_at if status == SubscriptionStatus.TRIAL else None,
            "subscription_ends_at": subscription_ends_at,
            "past_due_since": (current.past_due_since or _now()) if status == SubscriptionStatus.PAST_DUE else None,
        }
        if extra:
            fields.update(extra)

        store = self.store_repo.update_subscription(store_id, fields)
        logger.info(f"Store {store_id} assigned plan {plan} ({status})")
        return store

    def update_subscription_status(self, store_id: int, status: str,
                                   subscription_ends_at: Optional[datetime] = None) -> Store:
        if status not in SubscriptionStatus.ALL:
            raise ValidationError(f"Unknown subscription status: {status}")

        store = self._get_store(store_id)
        fields = {"subscription_status": status}
        if subscription_ends_at is not None:
            fields["subscription_ends_at"] = subscription_ends_at

        if status == SubscriptionStatus.PAST_DUE:
            # Keep the first failure date so the grace period does not restart
            if store.subscription_status != SubscriptionStatus.PAST_DUE or store.past_due_since is None:
                fields["past_due_since"] = _now()
        else:
            fields["past_due_since"] = None

        return self.store_repo.update_subscription(store_id, fields)

    def cancel_subscription(self, store_id: int, immediately: bool = False) -> Store:
        store = self._get_store(store_id)
        if store.subscription_plan == SubscriptionPlan.FREE:
            raise ValidationError("Free plan has no subscription to cancel", code="NO_SUBSCRIPTION")

        ends_at = _now()
        if not immediately and store.subscription_ends_at and _aware(store.subscription_ends_at) > ends_at:
            ends_at = store.subscription_ends_at

        logger.info(f"Store {store_id} subscription canceled, ends at {ends_at}")
        return self.store_repo.update_subscription(store_id, {
            "subscription_status": SubscriptionStatus.CANCELED,
            "subscription_ends_at": ends_at,
        })

    async def cancel_with_provider(self, store_id: int, immediately: bool = False, connector=None) -> Store:
        """Cancel at Stripe (when linked), then locally"""
        store = self._get_store(store_id)
        if store.stripe_subscription_id:
            connector = connector or StripeConnector()
            await connector.cancel_subscription(store.stripe_subscription_id, at_period_end=not immediately)
        return self.cancel_subscription(store_id, immediately=immediately)

    def get_stores_for_downgrade(self, now: Optional[datetime] = None) -> List[DowngradeCandidate]:
        now = now or _now()
        stores = self.store_repo.find_downgrade_candidates(
            now, now - timedelta(days=PAST_DUE_DOWNGRADE_DAYS)
        )

        candidates = []
        for store in stores:
            reasons = []
            if store.subscription_status == SubscriptionStatus.TRIAL:
                reasons.append("trial_expired")
            elif store.subscription_status == SubscriptionStatus.CANCELED:
                reasons.append("subscription_ended")
            elif store.subscription_status == SubscriptionStatus.PAST_DUE:
                reasons.append("payment_overdue")
            candidates.append(DowngradeCandidate(
                store_id=store.id,
                name=store.name,
                subscription_plan=store.subscription_plan,
                subscription_status=store.subscription_status,
                reasons=reasons,
            ))
        return candidates

    def downgrade_expired_stores(self, now: Optional[datetime] = None) -> int:
        downgraded = 0
        for candidate in self.get_stores_for_downgrade(now):
            try:
                self.assign_plan(candidate.store_id, SubscriptionPlan.FREE)
                downgraded += 1
                logger.info(f"Downgraded store {candidate.store_id} to FREE ({', '.join(candidate.reasons)})")
            except Exception as e:
                logger.error(f"Failed to downgrade store {candidate.store_id}: {e}")
        return downgraded

    # ------------------------------------------------------------------
    # Stripe billing
    # ------------------------------------------------------------------

    async def create_checkout_session(self, store_id: int, plan: str, success_url: str,
                                      cancel_url: str, customer_email: Optional[str] = None,
                                      trial_days: int = TRIAL_DAYS, connector=None) -> dict:
        if plan == SubscriptionPlan.FREE:
            raise ValidationError("The free plan does not need a checkout", code="INVALID_PLAN")
        get_plan_details(plan)

        store = self._get_store(store_id)
        if store.subscription_plan == plan and is_subscription_active(store):
            raise ValidationError(f"Store is already subscribed to {plan}", code="ALREADY_SUBSCRIBED")

        price_id = get_price_id(plan)
        if not price_id:
            raise ValidationError(f"No Stripe price configured for {plan}", code="INVALID_PLAN")

        connector = connector or StripeConnector()
        session = await connector.create_checkout_session(
            price_id=price_id,
            success_url=success_url,
            cancel_url=cancel_url,
            metadata={"storeId": store_id, "plan": plan},
            customer_id=store.stripe_customer_id,
            customer_email=None if store.stripe_customer_id else (customer_email or store.email),
            trial_days=trial_days,
        )
        return {"sessionId": session.get("id"), "url": session.get("url")}

    def _store_for_stripe_object(self, obj: dict) -> Optional[Store]:
        store_id = (obj.get("metadata") or {}).get("storeId")
        if store_id:
            try:
                return self.store_repo.find_by_id(int(store_id))
            except (TypeError, ValueError):
                pass

        subscription_id = obj.get("subscription") if obj.get("object") != "subscription" else obj.get("id")
        if subscription_id:
            store = self.store_repo.find_by_stripe_subscription_id(subscription_id)
            if store:
                return store

        if obj.get("customer"):
            return self.store_repo.find_by_stripe_customer_id(obj["customer"])
        return None

    def handle_stripe_event(self, event: dict) -> Optional[str]:
        """
        Apply a subscription webhook event.

        Returns:
            Short description of what changed, or None when ignored
        """
        event_type = event.get("type")
        obj = (event.get("data") or {}).get("object") or {}
        store = self._store_for_stripe_object(obj)

        if store is None:
            logger.warning(f"Stripe event {event.get('id')} ({event_type}) has no matching store")
            return None

        if event_type == "checkout.session.completed":
            self.store_repo.update_subscription(store.id, {
                "stripe_customer_id": obj.get("customer"),
                "stripe_subscription_id": obj.get("subscription"),
            })
            return "linked"

        if event_type in ("customer.subscription.created", "customer.subscription.updated"):
            items = ((obj.get("items") or {}).get("data") or [])
            price_id = (items[0].get("price") or {}).get("id") if items else None
            plan = plan_for_price_id(price_id) or (obj.get("metadata") or {}).get("plan") or store.subscription_plan
            status = STRIPE_STATUS_MAP.get(obj.get("status"), SubscriptionStatus.ACTIVE)
            period_end = obj.get("current_period_end")
            trial_end = obj.get("trial_end")

            self.assign_plan(
                store.id,
                plan,
                status=status,
                trial_ends_at=datetime.fromtimestamp(trial_end, tz=timezone.utc) if trial_end else None,
                subscription_ends_at=datetime.fromtimestamp(period_end, tz=timezone.utc) if period_end else None,
                extra={
                    "stripe_subscription_id": obj.get("id"),
                    "stripe_customer_id": obj.get("customer") or store.stripe_customer_id,
                },
            )
            return f"plan:{plan}:{status}"

        if event_type == "customer.subscription.deleted":
            self.assign_plan(store.id, SubscriptionPlan.FREE, extra={"stripe_subscription_id": None})
            return "downgraded"

        if event_type == "invoice.payment_succeeded":
            self.update_subscription_status(store.id, SubscriptionStatus.ACTIVE)
            return "active"

        if event_type == "invoice.payment_failed":
            self.update_subscription_status(store.id, SubscriptionStatus.PAST_DUE)
            return "past_due"

        logger.info(f"Ignoring Stripe subscription event type {event_type}")
        return None
