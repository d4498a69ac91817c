"""
Product Domain Model

Represents a sellable product in a store's catalog.

Author: Platform Team
Date: 2025-11-20
"""
from pydantic import BaseModel, Field, model_validator
from typing import Optional, List, Literal
from datetime import datetime
from decimal import Decimal

from app.domain.base import DomainModel


class ProductStatus:
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    ARCHIVED = "ARCHIVED"

    ALL = (DRAFT, PUBLISHED, ARCHIVED)


ProductStatusLiteral = Literal["DRAFT", "PUBLISHED", "ARCHIVED"]


class ProductVariant(DomainModel):
    id: int
    product_id: int
    name: str
    sku: str
    price: Optional[Decimal] = None
    inventory_qty: int = 0
    options: dict = {}


class ProductAttributeValue(DomainModel):
    attribute_id: int
    name: str
    value: str


class Product(DomainModel):
    """
    Product domain model - represents a product in a store catalog

    Fields:
        id: Internal product ID
        store_id: Owning store (tenant)
        name / slug / sku: slug and sku are unique per store
        price: Selling price
        compare_at_price: Original price shown struck through (must exceed price)
        cost_price: Purchase cost
        track_inventory: When False stock is never checked or decremented
        inventory_qty: Units on hand
        low_stock_threshold: Alert threshold
        status: DRAFT, PUBLISHED or ARCHIVED
        category_id / brand_id: Optional catalog references
    """

    id: int = Field(..., description="Internal product ID")
    store_id: int = Field(..., description="Owning store")
    name: str
    slug: str
    sku: str
    description: Optional[str] = None
    short_description: Optional[str] = None

    price: Decimal = Field(..., ge=0)
    compare_at_price: Optional[Decimal] = None
    cost_price: Optional[Decimal] = None

    track_inventory: bool = True
    inventory_qty: int = 0
    low_stock_threshold: int = 5
    weight: Optional[Decimal] = None

    status: str = ProductStatus.DRAFT
    is_featured: bool = False
    tags: List[str] = []
    images: List[str] = []
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None

    category_id: Optional[int] = None
    category_name: Optional[str] = None
    brand_id: Optional[int] = None
    brand_name: Optional[str] = None

    published_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    variants: List[ProductVariant] = []
    attributes: List[ProductAttributeValue] = []

    @property
    def is_low_stock(self) -> bool:
        return self.track_inventory and self.inventory_qty <= self.low_stock_threshold

    @property
    def is_published(self) -> bool:
        return self.status == ProductStatus.PUBLISHED

    def to_dict(self) -> dict:
        data = super().to_dict()
        data['is_low_stock'] = self.is_low_stock
        return data


def _check_compare_at(price, compare_at_price):
    if price is not None and compare_at_price is not None and compare_at_price <= price:
        raise ValueError("compare_at_price must be greater than price")


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    slug: Optional[str] = Field(None, max_length=255)
    sku: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    short_description: Optional[str] = Field(None, max_length=500)
    price: Decimal = Field(..., ge=0)
    compare_at_price: Optional[Decimal] = Field(None, ge=0)
    cost_price: Optional[Decimal] = Field(None, ge=0)
    track_inventory: bool = True
    inventory_qty: int = Field(0, ge=0)
    low_stock_threshold: int = Field(5, ge=0)
    weight: Optional[Decimal] = Field(None, ge=0)
    status: ProductStatusLiteral = "DRAFT"
    is_featured: bool = False
    tags: List[str] = []
    images: List[str] = []
    meta_title: Optional[str] = Field(None, max_length=255)
    meta_description: Optional[str] = Field(None, max_length=500)
    category_id: Optional[int] = None
    brand_id: Optional[int] = None

    @model_validator(mode="after")
    def validate_prices(self):
        _check_compare_at(self.price, self.compare_at_price)
        return self


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    slug: Optional[str] = Field(None, max_length=255)
    sku: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    short_description: Optional[str] = Field(None, max_length=500)
    price: Optional[Decimal] = Field(None, ge=0)
    compare_at_price: Optional[Decimal] = Field(None, ge=0)
    cost_price: Optional[Decimal] = Field(None, ge=0)
    track_inventory: Optional[bool] = None
    inventory_qty: Optional[int] = Field(None, ge=0)
    low_stock_threshold: Optional[int] = Field(None, ge=0)
    weight: Optional[Decimal] = Field(None, ge=0)
    status: Optional[ProductStatusLiteral] = None
    is_featured: Optional[bool] = None
    tags: Optional[List[str]] = None
    images: Optional[List[str]] = None
    meta_title: Optional[str] = Field(None, max_length=255)
    meta_description: Optional[str] = Field(None, max_length=500)
    category_id: Optional[int] = None
    brand_id: Optional[int] = None

    @model_validator(mode="after")
    def validate_prices(self):
        _check_compare_at(self.price, self.compare_at_price)
        return self


class InventoryAdjustment(BaseModel):
    """Relative stock change; negative values remove stock"""
    quantity: int = Field(..., description="Units to add (positive) or remove (negative)")
    reason: Optional[str] = Field(None, max_length=255)
