"""
Audit log API
Who changed what, filtered by entity, user, action and date range
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.api.deps import get_audit_service
from app.core.auth import Permission, StoreContext, require_permission
from app.core.responses import clamp_pagination, paginated
from app.services.audit_service import AuditService

router = APIRouter()


@router.get("")
async def list_audit_logs(
    entity_type: Optional[str] = Query(None, alias="entityType"),
    entity_id: Optional[str] = Query(None, alias="entityId"),
    user_id: Optional[int] = Query(None, alias="userId"),
    action: Optional[str] = Query(None),
    date_from: Optional[datetime] = Query(None, alias="dateFrom"),
    date_to: Optional[datetime] = Query(None, alias="dateTo"),
    page: Optional[int] = Query(1),
    per_page: Optional[int] = Query(50, alias="perPage"),
    ctx: StoreContext = Depends(require_permission(Permission.AUDIT_VIEW)),
    service: AuditService = Depends(get_audit_service)
):
    pagination = clamp_pagination(page, per_page)
    store_id = ctx.store_id if ctx.is_super_admin else ctx.require_store()

    logs, total = service.list(
        store_id=store_id,
        entity_type=entity_type,
        entity_id=entity_id,
        user_id=user_id,
        action=action.upper() if action else None,
        date_from=date_from,
        date_to=date_to,
        limit=pagination.limit,
        offset=pagination.offset,
    )
    return paginated([log.to_dict() for log in logs], total, pagination)
