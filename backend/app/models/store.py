"""
Store (tenant) model
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.core.database import Base


class Store(Base):
    """
    A tenant. Owns its catalog, customers, orders and memberships.
    """
    __tablename__ = "stores"

    id = Column(Integer, primary_key=True, index=True)

    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False, unique=True, index=True)
    email = Column(String(255), nullable=False)
    phone = Column(String(50))
    website = Column(String(255))
    description = Column(Text)
    logo_url = Column(String(500))
    currency = Column(String(3), nullable=False, default="USD")
    timezone = Column(String(64), nullable=False, default="UTC")
    address = Column(Text)
    country = Column(String(2), default="US")
    is_active = Column(Boolean, default=True)

    # Subscription
    subscription_plan = Column(String(20), nullable=False, default="FREE", index=True)
    subscription_status = Column(String(20), nullable=False, default="ACTIVE", index=True)
    trial_ends_at = Column(DateTime(timezone=True))
    subscription_ends_at = Column(DateTime(timezone=True))
    past_due_since = Column(DateTime(timezone=True))
    product_limit = Column(Integer, nullable=False, default=10)
    order_limit = Column(Integer, nullable=False, default=100)
    stripe_customer_id = Column(String(255))
    stripe_subscription_id = Column(String(255))

    # Metadata
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    deleted_at = Column(DateTime(timezone=True), index=True)

    members = relationship("UserStore", back_populates="store", cascade="all, delete-orphan")
