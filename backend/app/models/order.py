"""
Customers, orders, order items and payments
"""
from sqlalchemy import (
    Column, Integer, String, DateTime, Text, DECIMAL, ForeignKey, UniqueConstraint
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.core.database import Base


class Customer(Base):
    __tablename__ = "customers"
    __table_args__ = (
        UniqueConstraint("store_id", "email", name="uq_customers_store_email"),
    )

    id = Column(Integer, primary_key=True, index=True)
    store_id = Column(Integer, ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"))
    email = Column(String(255), nullable=False)
    first_name = Column(String(100))
    last_name = Column(String(100))
    phone = Column(String(50))

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    deleted_at = Column(DateTime(timezone=True))

    orders = relationship("Order", back_populates="customer")


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        UniqueConstraint("store_id", "order_number", name="uq_orders_store_order_number"),
    )

    id = Column(Integer, primary_key=True, index=True)
    store_id = Column(Integer, ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), index=True)
    order_number = Column(String(50), nullable=False, index=True)

    # PENDING, PAYMENT_FAILED, PAID, PROCESSING, SHIPPED, DELIVERED, CANCELED, REFUNDED
    status = Column(String(20), nullable=False, default="PENDING", index=True)
    # PENDING, AUTHORIZED, PAID, FAILED, REFUNDED
    payment_status = Column(String(20), nullable=False, default="PENDING")
    # PENDING, IN_TRANSIT, DELIVERED
    shipping_status = Column(String(20), nullable=False, default="PENDING")

    # Amounts
    subtotal = Column(DECIMAL(10, 2), nullable=False)
    tax_amount = Column(DECIMAL(10, 2), nullable=False, default=0)
    shipping_amount = Column(DECIMAL(10, 2), nullable=False, default=0)
    discount_amount = Column(DECIMAL(10, 2), nullable=False, default=0)
    total_amount = Column(DECIMAL(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")

    # Customer snapshot
    customer_email = Column(String(255), nullable=False)
    customer_name = Column(String(255))
    customer_phone = Column(String(50))
    shipping_address = Column(JSONB)
    billing_address = Column(JSONB)

    # Fulfillment
    shipping_method = Column(String(50))
    tracking_number = Column(String(100))
    tracking_url = Column(String(500))
    customer_note = Column(Text)
    admin_note = Column(Text)
    cancel_reason = Column(Text)
    fulfilled_at = Column(DateTime(timezone=True))
    canceled_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    deleted_at = Column(DateTime(timezone=True), index=True)

    customer = relationship("Customer", back_populates="orders")
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")
    payments = relationship("Payment", back_populates="order")


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), index=True)
    variant_id = Column(Integer, ForeignKey("product_variants.id"))

    product_name = Column(String(255), nullable=False)
    variant_name = Column(String(255))
    sku = Column(String(100), nullable=False)
    price = Column(DECIMAL(10, 2), nullable=False)
    quantity = Column(Integer, nullable=False)
    subtotal = Column(DECIMAL(10, 2), nullable=False)
    tax_amount = Column(DECIMAL(10, 2), nullable=False, default=0)
    discount_amount = Column(DECIMAL(10, 2), nullable=False, default=0)
    total_amount = Column(DECIMAL(10, 2), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    order = relationship("Order", back_populates="items")


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    store_id = Column(Integer, ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)

    amount = Column(DECIMAL(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    # STRIPE, SSLCOMMERZ, CASH_ON_DELIVERY
    gateway = Column(String(20), nullable=False)
    method = Column(String(30))
    # PENDING, AUTHORIZED, PAID, FAILED, REFUNDED
    status = Column(String(20), nullable=False, default="PENDING", index=True)

    gateway_payment_id = Column(String(255), unique=True)
    gateway_charge_id = Column(String(255))
    refunded_amount = Column(DECIMAL(10, 2), default=0)
    failure_code = Column(String(100))
    failure_message = Column(Text)
    metadata_ = Column("metadata", JSONB)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    order = relationship("Order", back_populates="payments")
