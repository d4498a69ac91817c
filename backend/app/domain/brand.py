"""
Brand domain models
"""
from pydantic import BaseModel, Field, field_validator
from typing import Optional
from datetime import datetime
from urllib.parse import urlparse

from app.domain.base import DomainModel


def validate_url(value: Optional[str]) -> Optional[str]:
    if value is None or value == "":
        return None
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError("Must be a valid http(s) URL")
    return value


class Brand(DomainModel):
    id: int
    store_id: int
    name: str
    slug: str
    description: Optional[str] = None
    logo_url: Optional[str] = None
    website_url: Optional[str] = None
    is_published: bool = True
    product_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class BrandCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    slug: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    logo_url: Optional[str] = None
    website_url: Optional[str] = None
    is_published: bool = True

    @field_validator("logo_url", "website_url")
    @classmethod
    def check_urls(cls, value):
        return validate_url(value)


class BrandUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    slug: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    logo_url: Optional[str] = None
    website_url: Optional[str] = None
    is_published: Optional[bool] = None

    @field_validator("logo_url", "website_url")
    @classmethod
    def check_urls(cls, value):
        return validate_url(value)
