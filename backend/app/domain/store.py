"""
Store and membership domain models

Author: Platform Team
Date: 2025-11-20
"""
import re
from pydantic import BaseModel, Field, EmailStr, field_validator
from typing import Optional, List
from datetime import datetime

from app.domain.base import DomainModel

SLUG_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")


class Store(DomainModel):
    """
    Store domain model - a tenant of the platform

    Fields:
        id: Internal store ID
        name / slug: Display name and unique URL handle
        subscription_plan: FREE, BASIC, PRO, ENTERPRISE
        subscription_status: TRIAL, ACTIVE, PAST_DUE, CANCELED, PAUSED
        product_limit / order_limit: Plan limits (999999 = unlimited)
    """

    id: int
    name: str
    slug: str
    email: str
    phone: Optional[str] = None
    website: Optional[str] = None
    description: Optional[str] = None
    logo_url: Optional[str] = None
    currency: str = "USD"
    timezone: str = "UTC"
    address: Optional[str] = None
    country: Optional[str] = "US"
    is_active: bool = True

    subscription_plan: str = "FREE"
    subscription_status: str = "ACTIVE"
    trial_ends_at: Optional[datetime] = None
    subscription_ends_at: Optional[datetime] = None
    past_due_since: Optional[datetime] = None
    product_limit: int = 10
    order_limit: int = 100
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class StoreCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    slug: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    phone: Optional[str] = None
    website: Optional[str] = None
    description: Optional[str] = None
    currency: str = Field("USD", min_length=3, max_length=3)
    timezone: str = "UTC"
    country: str = Field("US", min_length=2, max_length=2)
    owner_id: Optional[int] = Field(None, description="User who becomes STORE_ADMIN of the store")

    @field_validator("slug")
    @classmethod
    def validate_slug(cls, value: str) -> str:
        value = value.lower()
        if not SLUG_PATTERN.match(value):
            raise ValueError("Slug may contain lowercase letters, numbers and single hyphens only")
        return value


class StoreUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    description: Optional[str] = None
    logo_url: Optional[str] = None
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    timezone: Optional[str] = None
    address: Optional[str] = None
    country: Optional[str] = Field(None, min_length=2, max_length=2)
    is_active: Optional[bool] = None


class Membership(DomainModel):
    """A user's role in one store (UserStore row joined with its role)"""

    id: int
    user_id: int
    store_id: int
    role_id: int
    role_name: Optional[str] = None
    permissions: List[str] = []
    is_active: bool = True
    user_email: Optional[str] = None
    user_name: Optional[str] = None
    store_name: Optional[str] = None
    created_at: Optional[datetime] = None


class MemberAdd(BaseModel):
    user_id: int
    role_id: int


class MemberUpdate(BaseModel):
    role_id: Optional[int] = None
    is_active: Optional[bool] = None
