"""
Categories API Endpoints
Hierarchical categories for the current store
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.api.deps import get_category_service
from app.core.auth import Permission, StoreContext, require_permission
from app.core.responses import success
from app.domain.category import CategoryCreate, CategoryMove, CategoryUpdate
from app.services.category_service import CategoryService

router = APIRouter()


@router.get("")
async def list_categories(
    search: Optional[str] = Query(None),
    ctx: StoreContext = Depends(require_permission(Permission.PRODUCTS_VIEW, Permission.CATEGORIES_MANAGE)),
    service: CategoryService = Depends(get_category_service)
):
    categories = service.list(ctx.require_store(), search=search)
    return success([category.to_dict() for category in categories])


@router.get("/tree")
async def category_tree(
    ctx: StoreContext = Depends(require_permission(Permission.PRODUCTS_VIEW, Permission.CATEGORIES_MANAGE)),
    service: CategoryService = Depends(get_category_service)
):
    return success([node.to_dict() for node in service.tree(ctx.require_store())])


@router.post("", status_code=201)
async def create_category(
    body: CategoryCreate,
    ctx: StoreContext = Depends(require_permission(Permission.CATEGORIES_MANAGE)),
    service: CategoryService = Depends(get_category_service)
):
    category = service.create(ctx.require_store(), body, user=ctx.user)
    return success(category.to_dict(), message="Category created")


@router.get("/{category_id}")
async def get_category(
    category_id: int,
    ctx: StoreContext = Depends(require_permission(Permission.PRODUCTS_VIEW, Permission.CATEGORIES_MANAGE)),
    service: CategoryService = Depends(get_category_service)
):
    return success(service.get(ctx.require_store(), category_id).to_dict())


@router.put("/{category_id}")
async def update_category(
    category_id: int,
    body: CategoryUpdate,
    ctx: StoreContext = Depends(require_permission(Permission.CATEGORIES_MANAGE)),
    service: CategoryService = Depends(get_category_service)
):
    category = service.update(ctx.require_store(), category_id, body, user=ctx.user)
    return success(category.to_dict(), message="Category updated")


@router.post("/{category_id}/move")
async def move_category(
    category_id: int,
    body: CategoryMove,
    ctx: StoreContext = Depends(require_permission(Permission.CATEGORIES_MANAGE)),
    service: CategoryService = Depends(get_category_service)
):
    category = service.move(ctx.require_store(), category_id, body.parent_id, user=ctx.user)
    return success(category.to_dict(), message="Category moved")


@router.delete("/{category_id}")
async def delete_category(
    category_id: int,
    ctx: StoreContext = Depends(require_permission(Permission.CATEGORIES_MANAGE)),
    service: CategoryService = Depends(get_category_service)
):
    service.delete(ctx.require_store(), category_id, user=ctx.user)
    return success(None, message="Category deleted")
