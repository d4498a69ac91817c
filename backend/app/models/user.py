"""
Users, roles and store memberships
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.core.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    name = Column(String(255))
    password_hash = Column(String(255), nullable=False)
    # SUPER_ADMIN, STORE_ADMIN, STAFF, CUSTOMER
    role = Column(String(20), nullable=False, default="CUSTOMER")
    is_active = Column(Boolean, default=True)
    last_login_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    deleted_at = Column(DateTime(timezone=True))

    memberships = relationship("UserStore", back_populates="user", cascade="all, delete-orphan")


class Role(Base):
    """
    Named set of store permissions, e.g. ["products.*", "orders.view"]
    """
    __tablename__ = "roles"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False, unique=True)
    description = Column(String(255))
    permissions = Column(JSONB, nullable=False, default=list)
    is_system = Column(Boolean, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())


class UserStore(Base):
    """
    Membership of a user in a store with a role
    """
    __tablename__ = "user_stores"
    __table_args__ = (
        UniqueConstraint("user_id", "store_id", name="uq_user_stores_user_store"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    store_id = Column(Integer, ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True)
    role_id = Column(Integer, ForeignKey("roles.id"), nullable=False)
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="memberships")
    store = relationship("Store", back_populates="members")
    role = relationship("Role")
