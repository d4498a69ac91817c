"""
Cart and checkout domain models
"""
from pydantic import BaseModel, Field, EmailStr
from typing import Optional, List, Literal
from decimal import Decimal


class Address(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    address1: str = Field(..., min_length=1, max_length=255)
    address2: Optional[str] = Field(None, max_length=255)
    city: str = Field(..., min_length=1, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    postal_code: str = Field(..., min_length=1, max_length=20)
    country: str = Field("US", min_length=2, max_length=2)
    phone: Optional[str] = Field(None, max_length=50)


class CartItem(BaseModel):
    product_id: int
    variant_id: Optional[int] = None
    quantity: int


class CartValidationRequest(BaseModel):
    items: List[CartItem] = Field(..., min_length=1)


class ValidatedCartItem(BaseModel):
    product_id: int
    variant_id: Optional[int] = None
    product_name: str
    variant_name: Optional[str] = None
    sku: str
    price: Decimal
    quantity: int
    subtotal: Decimal
    track_inventory: bool = True
    available_stock: Optional[int] = None


class CartError(BaseModel):
    product_id: int
    variant_id: Optional[int] = None
    message: str


class CartValidationResult(BaseModel):
    is_valid: bool
    items: List[ValidatedCartItem] = []
    errors: List[CartError] = []
    subtotal: Decimal = Decimal("0")


class ShippingOption(BaseModel):
    id: str
    name: str
    description: str
    cost: Decimal
    estimated_days: str


class ShippingOptionsRequest(BaseModel):
    items: List[CartItem] = Field(..., min_length=1)
    shipping_address: Address


class CheckoutRequest(BaseModel):
    customer_email: EmailStr
    customer_first_name: str = Field(..., min_length=1, max_length=100)
    customer_last_name: str = Field(..., min_length=1, max_length=100)
    customer_phone: Optional[str] = Field(None, max_length=50)
    items: List[CartItem] = Field(..., min_length=1)
    shipping_address: Address
    billing_address: Optional[Address] = None
    shipping_method: str = Field("standard", max_length=50)
    payment_gateway: Literal["STRIPE", "SSLCOMMERZ", "CASH_ON_DELIVERY"] = "STRIPE"
    customer_note: Optional[str] = Field(None, max_length=1000)
