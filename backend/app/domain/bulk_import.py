"""
Bulk product import domain models
"""
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Literal
from decimal import Decimal


class ImportConfig(BaseModel):
    update_existing: bool = False
    skip_duplicates: bool = True
    validate_only: bool = False
    batch_size: int = Field(100, ge=1, le=1000)
    create_categories: bool = True
    create_brands: bool = True
    rollback_on_error: bool = True


class ImportRow(BaseModel):
    """One spreadsheet row after column normalization"""

    name: str = Field(..., min_length=1, max_length=255)
    sku: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = None
    short_description: Optional[str] = Field(None, max_length=500)
    price: Decimal = Field(..., ge=0)
    sale_price: Optional[Decimal] = Field(None, ge=0)
    compare_at_price: Optional[Decimal] = Field(None, ge=0)
    cost_price: Optional[Decimal] = Field(None, ge=0)
    category_name: Optional[str] = None
    category_path: Optional[str] = None
    brand_name: Optional[str] = None
    track_quantity: bool = True
    quantity: int = Field(0, ge=0)
    low_stock_threshold: int = Field(5, ge=0)
    weight: Optional[Decimal] = Field(None, ge=0)
    tags: List[str] = []
    meta_title: Optional[str] = Field(None, max_length=255)
    meta_description: Optional[str] = Field(None, max_length=500)
    is_visible: bool = True
    status: Literal["DRAFT", "PUBLISHED", "ARCHIVED"] = "DRAFT"

    @field_validator("tags", mode="before")
    @classmethod
    def split_tags(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return [tag.strip() for tag in value.split(",") if tag.strip()]
        return value

    @field_validator("status", mode="before")
    @classmethod
    def upper_status(cls, value):
        if value is None or value == "":
            return "DRAFT"
        return str(value).strip().upper()

    @property
    def category_segments(self) -> List[str]:
        """'Apparel > Shirts > Tees' -> ['Apparel', 'Shirts', 'Tees']"""
        source = self.category_path or self.category_name
        if not source:
            return []
        return [segment.strip() for segment in source.split(">") if segment.strip()]


class ImportIssue(BaseModel):
    row: int
    field: Optional[str] = None
    message: str
    severity: Literal["error", "warning"] = "error"


class ImportResult(BaseModel):
    job_id: str
    total_rows: int = 0
    processed_rows: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    validate_only: bool = False
    errors: List[ImportIssue] = []
    warnings: List[ImportIssue] = []

    @property
    def success(self) -> bool:
        return self.failed == 0 and not self.errors
