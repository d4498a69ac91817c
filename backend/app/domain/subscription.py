"""
Subscription plan domain models
"""
from dataclasses import dataclass
from pydantic import BaseModel, Field
from typing import Optional, Literal, List
from datetime import datetime

UNLIMITED = -1
UNLIMITED_STORED = 999999


class SubscriptionPlan:
    FREE = "FREE"
    BASIC = "BASIC"
    PRO = "PRO"
    ENTERPRISE = "ENTERPRISE"

    ALL = (FREE, BASIC, PRO, ENTERPRISE)


class SubscriptionStatus:
    TRIAL = "TRIAL"
    ACTIVE = "ACTIVE"
    PAST_DUE = "PAST_DUE"
    CANCELED = "CANCELED"
    PAUSED = "PAUSED"

    ALL = (TRIAL, ACTIVE, PAST_DUE, CANCELED, PAUSED)


@dataclass(frozen=True)
class PlanDetails:
    plan: str
    name: str
    price: int               # USD per month
    max_products: int        # -1 = unlimited
    max_orders: int          # per calendar month, -1 = unlimited
    features: tuple

    @property
    def stored_product_limit(self) -> int:
        return UNLIMITED_STORED if self.max_products == UNLIMITED else self.max_products

    @property
    def stored_order_limit(self) -> int:
        return UNLIMITED_STORED if self.max_orders == UNLIMITED else self.max_orders

    def to_dict(self) -> dict:
        return {
            "plan": self.plan,
            "name": self.name,
            "price": self.price,
            "maxProducts": self.max_products,
            "maxOrders": self.max_orders,
            "features": list(self.features),
        }


class UsageStats(BaseModel):
    plan: str
    status: str
    product_count: int
    product_limit: int
    order_count: int
    order_limit: int
    products_usage_percent: float
    orders_usage_percent: float
    trial_ends_at: Optional[datetime] = None
    subscription_ends_at: Optional[datetime] = None
    is_active: bool


class PlanRecommendation(BaseModel):
    type: Literal["upgrade", "downgrade"]
    recommended_plan: str
    reason: str
    urgency: Literal["low", "medium", "high"]


class SubscriptionCheckoutRequest(BaseModel):
    plan: Literal["FREE", "BASIC", "PRO", "ENTERPRISE"]
    store_id: int
    success_url: str = Field(..., min_length=1)
    cancel_url: str = Field(..., min_length=1)
    trial_days: int = Field(14, ge=0, le=30)


class SubscriptionCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)
    immediately: bool = False


class DowngradeCandidate(BaseModel):
    store_id: int
    name: str
    subscription_plan: str
    subscription_status: str
    reasons: List[str] = []
