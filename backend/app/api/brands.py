"""
Brands API Endpoints
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.api.deps import get_brand_service
from app.core.auth import Permission, StoreContext, require_permission
from app.core.responses import Pagination, paginated, pagination_params, success
from app.domain.brand import BrandCreate, BrandUpdate
from app.services.brand_service import BrandService

router = APIRouter()


@router.get("")
async def list_brands(
    search: Optional[str] = Query(None),
    is_published: Optional[bool] = Query(None, alias="isPublished"),
    pagination: Pagination = Depends(pagination_params),
    ctx: StoreContext = Depends(require_permission(Permission.PRODUCTS_VIEW, Permission.BRANDS_MANAGE)),
    service: BrandService = Depends(get_brand_service)
):
    brands, total = service.list(ctx.require_store(), search=search, is_published=is_published,
                                 limit=pagination.limit, offset=pagination.offset)
    return paginated([brand.to_dict() for brand in brands], total, pagination)


@router.post("", status_code=201)
async def create_brand(
    body: BrandCreate,
    ctx: StoreContext = Depends(require_permission(Permission.BRANDS_MANAGE)),
    service: BrandService = Depends(get_brand_service)
):
    brand = service.create(ctx.require_store(), body, user=ctx.user)
    return success(brand.to_dict(), message="Brand created")


@router.get("/{brand_id}")
async def get_brand(
    brand_id: int,
    ctx: StoreContext = Depends(require_permission(Permission.PRODUCTS_VIEW, Permission.BRANDS_MANAGE)),
    service: BrandService = Depends(get_brand_service)
):
    return success(service.get(ctx.require_store(), brand_id).to_dict())


@router.put("/{brand_id}")
async def update_brand(
    brand_id: int,
    body: BrandUpdate,
    ctx: StoreContext = Depends(require_permission(Permission.BRANDS_MANAGE)),
    service: BrandService = Depends(get_brand_service)
):
    brand = service.update(ctx.require_store(), brand_id, body, user=ctx.user)
    return success(brand.to_dict(), message="Brand updated")


@router.delete("/{brand_id}")
async def delete_brand(
    brand_id: int,
    ctx: StoreContext = Depends(require_permission(Permission.BRANDS_MANAGE)),
    service: BrandService = Depends(get_brand_service)
):
    service.delete(ctx.require_store(), brand_id, user=ctx.user)
    return success(None, message="Brand deleted")
