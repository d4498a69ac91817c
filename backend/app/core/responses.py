"""
Success envelope and pagination helpers

    {"data": ..., "message": "...", "meta": {"page": 1, "perPage": 10, ...}}
"""
import math
from dataclasses import dataclass
from typing import Any, Optional

from fastapi import Query

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


@dataclass
class Pagination:
    page: int = 1
    per_page: int = DEFAULT_PAGE_SIZE

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page

    @property
    def limit(self) -> int:
        return self.per_page


def clamp_pagination(page: Optional[int], per_page: Optional[int]) -> Pagination:
    """Normalize page >= 1 and 1 <= perPage <= 100"""
    page = page if page and page > 0 else 1
    if per_page is None:
        per_page = DEFAULT_PAGE_SIZE
    per_page = max(1, min(MAX_PAGE_SIZE, per_page))
    return Pagination(page=page, per_page=per_page)


def pagination_params(
    page: Optional[int] = Query(1, description="Page number (1-based)"),
    per_page: Optional[int] = Query(DEFAULT_PAGE_SIZE, alias="perPage", description="Items per page (1-100)"),
) -> Pagination:
    """FastAPI dependency: out-of-range values are clamped, not rejected"""
    return clamp_pagination(page, per_page)


def pagination_meta(pagination: Pagination, total: int) -> dict:
    total_pages = math.ceil(total / pagination.per_page) if total else 0
    return {
        "page": pagination.page,
        "perPage": pagination.per_page,
        "total": total,
        "totalPages": total_pages,
        "hasNextPage": pagination.page < total_pages,
        "hasPreviousPage": pagination.page > 1,
    }


def success(data: Any = None, message: Optional[str] = None, meta: Optional[dict] = None) -> dict:
    body = {"data": data}
    if message:
        body["message"] = message
    if meta is not None:
        body["meta"] = meta
    return body


def paginated(items: list, total: int, pagination: Pagination, message: Optional[str] = None) -> dict:
    return success(items, message=message, meta=pagination_meta(pagination, total))
