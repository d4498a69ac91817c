"""
Category domain models
"""
from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime

from app.domain.base import DomainModel


class Category(DomainModel):
    id: int
    store_id: int
    parent_id: Optional[int] = None
    name: str
    slug: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    sort_order: int = 0
    is_published: bool = True
    product_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CategoryNode(DomainModel):
    """Category with nested children, for tree rendering"""
    id: int
    name: str
    slug: str
    parent_id: Optional[int] = None
    sort_order: int = 0
    product_count: int = 0
    children: List["CategoryNode"] = []


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    slug: Optional[str] = Field(None, max_length=255)
    parent_id: Optional[int] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    sort_order: int = 0
    is_published: bool = True


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    slug: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    image_url: Optional[str] = None
    sort_order: Optional[int] = None
    is_published: Optional[bool] = None


class CategoryMove(BaseModel):
    parent_id: Optional[int] = Field(None, description="New parent; null moves to the root")
