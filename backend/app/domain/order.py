"""
Order Domain Models

Represents orders, their line items and status transitions.

Author: Platform Team
Date: 2025-11-20
"""
from pydantic import BaseModel, Field
from typing import Optional, List, Literal
from datetime import datetime
from decimal import Decimal

from app.domain.base import DomainModel


class OrderStatus:
    PENDING = "PENDING"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    PAID = "PAID"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELED = "CANCELED"
    REFUNDED = "REFUNDED"

    ALL = (PENDING, PAYMENT_FAILED, PAID, PROCESSING, SHIPPED, DELIVERED, CANCELED, REFUNDED)


class PaymentStatus:
    PENDING = "PENDING"
    AUTHORIZED = "AUTHORIZED"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class ShippingStatus:
    PENDING = "PENDING"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"


OrderStatusLiteral = Literal[
    "PENDING", "PAYMENT_FAILED", "PAID", "PROCESSING", "SHIPPED", "DELIVERED", "CANCELED", "REFUNDED"
]


class OrderItem(DomainModel):
    """
    Line item snapshot: name, sku and price are copied at order time
    """

    id: int
    order_id: int
    product_id: Optional[int] = None
    variant_id: Optional[int] = None
    product_name: str
    variant_name: Optional[str] = None
    sku: str
    price: Decimal = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    subtotal: Decimal
    tax_amount: Decimal = Decimal("0")
    discount_amount: Decimal = Decimal("0")
    total_amount: Decimal


class OrderPayment(DomainModel):
    id: int
    amount: Decimal
    currency: str = "USD"
    gateway: str
    method: Optional[str] = None
    status: str
    gateway_payment_id: Optional[str] = None
    refunded_amount: Optional[Decimal] = None
    created_at: Optional[datetime] = None


class Order(DomainModel):
    """
    Order domain model

    Fields:
        order_number: ORD-00001 style, unique per store
        status: see OrderStatus and ORDER_STATUS_TRANSITIONS in order_service
        payment_status / shipping_status: tracked separately from status
        subtotal, tax_amount, shipping_amount, discount_amount, total_amount: money
        shipping_address / billing_address: JSON address snapshots
    """

    id: int
    store_id: int
    customer_id: Optional[int] = None
    order_number: str
    status: str = OrderStatus.PENDING
    payment_status: str = PaymentStatus.PENDING
    shipping_status: str = ShippingStatus.PENDING

    subtotal: Decimal
    tax_amount: Decimal = Decimal("0")
    shipping_amount: Decimal = Decimal("0")
    discount_amount: Decimal = Decimal("0")
    total_amount: Decimal
    currency: str = "USD"

    customer_email: str
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    shipping_address: Optional[dict] = None
    billing_address: Optional[dict] = None

    shipping_method: Optional[str] = None
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    customer_note: Optional[str] = None
    admin_note: Optional[str] = None
    cancel_reason: Optional[str] = None
    fulfilled_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    items_count: Optional[int] = None
    items: List[OrderItem] = []
    payments: List[OrderPayment] = []

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID


class OrderStatusUpdate(BaseModel):
    status: OrderStatusLiteral
    tracking_number: Optional[str] = Field(None, max_length=100)
    tracking_url: Optional[str] = Field(None, max_length=500)
    admin_note: Optional[str] = Field(None, max_length=2000)
    cancel_reason: Optional[str] = Field(None, max_length=500)


class OrderFilters(BaseModel):
    store_id: Optional[int] = None
    status: Optional[OrderStatusLiteral] = None
    search: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    sort_by: Literal["createdAt", "totalAmount", "orderNumber"] = "createdAt"
    sort_order: Literal["asc", "desc"] = "desc"
