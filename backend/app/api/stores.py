"""
Stores API Endpoints
Store CRUD (super admin creates and deletes) and store membership management
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.api.deps import get_store_service, get_user_store_service
from app.core.auth import (
    Permission, Role, StoreContext, TokenUser, get_current_user, require_role,
    resolve_store_context,
)
from app.core.errors import ErrorCode, ForbiddenError
from app.core.responses import Pagination, paginated, pagination_params, success
from app.domain.store import MemberAdd, MemberUpdate, StoreCreate, StoreUpdate
from app.services.store_service import StoreService
from app.services.user_store_service import UserStoreService

router = APIRouter()


def _ensure_permission(ctx: StoreContext, permission: str):
    if not ctx.can(permission):
        raise ForbiddenError(f"Missing permission: {permission}", code=ErrorCode.INSUFFICIENT_PERMISSIONS)


async def store_path_context(store_id: int, user: TokenUser = Depends(get_current_user)) -> StoreContext:
    """Store context for /stores/{store_id} routes: the path names the store"""
    return resolve_store_context(user, store_id)


@router.get("")
async def list_stores(
    search: Optional[str] = Query(None, description="Search name, slug or email"),
    plan: Optional[str] = Query(None, description="Filter by subscription plan"),
    pagination: Pagination = Depends(pagination_params),
    user: TokenUser = Depends(get_current_user),
    service: StoreService = Depends(get_store_service)
):
    stores, total = service.list(user, search=search, plan=plan,
                                 limit=pagination.limit, offset=pagination.offset)
    return paginated([store.to_dict() for store in stores], total, pagination)


@router.post("", status_code=201)
async def create_store(
    body: StoreCreate,
    user: TokenUser = Depends(require_role(Role.SUPER_ADMIN)),
    service: StoreService = Depends(get_store_service)
):
    store = service.create(body, user)
    return success(store.to_dict(), message="Store created")


@router.get("/{store_id}")
async def get_store(
    store_id: int,
    ctx: StoreContext = Depends(store_path_context),
    service: StoreService = Depends(get_store_service)
):
    return success(service.get(store_id).to_dict())


@router.put("/{store_id}")
async def update_store(
    store_id: int,
    body: StoreUpdate,
    ctx: StoreContext = Depends(store_path_context),
    service: StoreService = Depends(get_store_service)
):
    _ensure_permission(ctx, Permission.SETTINGS_UPDATE)
    return success(service.update(store_id, body, ctx.user).to_dict(), message="Store updated")


@router.delete("/{store_id}")
async def delete_store(
    store_id: int,
    user: TokenUser = Depends(require_role(Role.SUPER_ADMIN)),
    service: StoreService = Depends(get_store_service)
):
    service.delete(store_id, user)
    return success(None, message="Store deleted")


# ============================================================================
# Members
# ============================================================================

@router.get("/{store_id}/members")
async def list_members(
    store_id: int,
    ctx: StoreContext = Depends(store_path_context),
    service: UserStoreService = Depends(get_user_store_service)
):
    _ensure_permission(ctx, Permission.STAFF_VIEW)
    return success([member.to_dict() for member in service.list_members(store_id)])


@router.post("/{store_id}/members", status_code=201)
async def add_member(
    store_id: int,
    body: MemberAdd,
    ctx: StoreContext = Depends(store_path_context),
    service: UserStoreService = Depends(get_user_store_service)
):
    _ensure_permission(ctx, Permission.STAFF_MANAGE)
    membership = service.add(store_id, body.user_id, body.role_id, actor=ctx.user)
    return success(membership.to_dict() if membership else None, message="Member added")


@router.put("/{store_id}/members/{user_id}")
async def update_member(
    store_id: int,
    user_id: int,
    body: MemberUpdate,
    ctx: StoreContext = Depends(store_path_context),
    service: UserStoreService = Depends(get_user_store_service)
):
    _ensure_permission(ctx, Permission.STAFF_MANAGE)
    membership = service.update_role(store_id, user_id, role_id=body.role_id,
                                     is_active=body.is_active, actor=ctx.user)
    return success(membership.to_dict() if membership else None, message="Member updated")


@router.delete("/{store_id}/members/{user_id}")
async def remove_member(
    store_id: int,
    user_id: int,
    ctx: StoreContext = Depends(store_path_context),
    service: UserStoreService = Depends(get_user_store_service)
):
    _ensure_permission(ctx, Permission.STAFF_MANAGE)
    service.remove(store_id, user_id, actor=ctx.user)
    return success(None, message="Member removed")


@router.get("/users/{user_id}/memberships")
async def list_user_memberships(
    user_id: int,
    user: TokenUser = Depends(get_current_user),
    service: UserStoreService = Depends(get_user_store_service)
):
    """Stores a user belongs to; users may list their own, super admins anyone's"""
    if user.id != user_id and not user.is_super_admin:
        raise ForbiddenError("You can only list your own store memberships",
                             code=ErrorCode.INSUFFICIENT_PERMISSIONS)
    return success([membership.to_dict() for membership in service.list_user_stores(user_id)])
