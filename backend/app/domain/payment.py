"""
Payment domain models
"""
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from decimal import Decimal

from app.domain.base import DomainModel


class PaymentGateway:
    STRIPE = "STRIPE"
    SSLCOMMERZ = "SSLCOMMERZ"
    CASH_ON_DELIVERY = "CASH_ON_DELIVERY"


class Payment(DomainModel):
    id: int
    store_id: int
    order_id: int
    amount: Decimal
    currency: str = "USD"
    gateway: str
    method: Optional[str] = None
    status: str
    gateway_payment_id: Optional[str] = None
    gateway_charge_id: Optional[str] = None
    refunded_amount: Optional[Decimal] = None
    failure_code: Optional[str] = None
    failure_message: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class RefundRequest(BaseModel):
    amount: Optional[Decimal] = Field(None, gt=0, description="Partial amount; defaults to the full payment")
    reason: Optional[str] = Field(None, max_length=500)
