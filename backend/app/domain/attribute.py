"""
Attribute domain models
"""
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from datetime import datetime

from app.domain.base import DomainModel


def _clean_values(values: List[str]) -> List[str]:
    cleaned = []
    for value in values:
        value = value.strip()
        if value and value not in cleaned:
            cleaned.append(value)
    return cleaned


class Attribute(DomainModel):
    id: int
    store_id: int
    name: str
    values: List[str] = []
    product_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AttributeCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    values: List[str] = Field(..., min_length=1)

    @field_validator("values")
    @classmethod
    def validate_values(cls, values: List[str]) -> List[str]:
        cleaned = _clean_values(values)
        if not cleaned:
            raise ValueError("At least one value is required")
        return cleaned


class AttributeUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    values: Optional[List[str]] = None

    @field_validator("values")
    @classmethod
    def validate_values(cls, values: Optional[List[str]]) -> Optional[List[str]]:
        if values is None:
            return None
        cleaned = _clean_values(values)
        if not cleaned:
            raise ValueError("At least one value is required")
        return cleaned


class AttributeValuesChange(BaseModel):
    values: List[str] = Field(..., min_length=1)

    @field_validator("values")
    @classmethod
    def validate_values(cls, values: List[str]) -> List[str]:
        return _clean_values(values)


class ProductAttributeAssign(BaseModel):
    product_id: int
    value: str = Field(..., min_length=1)
