"""
Orders API Endpoints
Order management for the current store: listing, status workflow,
invoices, refunds and CSV export

Status and refund changes accept an Idempotency-Key header; a retried
request with the same key and body replays the first response.
"""
from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, Request

from app.api.deps import (
    get_export_service, get_order_service, get_payment_service, get_request_idempotency,
    run_idempotent,
)
from app.api.exports import csv_export_response, export_context
from app.core.auth import Permission, StoreContext, require_permission
from app.core.responses import Pagination, paginated, pagination_params, success
from app.domain.order import OrderFilters, OrderStatusLiteral, OrderStatusUpdate
from app.domain.payment import RefundRequest
from app.services.export_service import ExportService
from app.services.idempotency_service import RequestIdempotencyService
from app.services.order_service import OrderService
from app.services.payment_service import PaymentService

router = APIRouter()


def _scope_store(ctx: StoreContext) -> Optional[int]:
    """Super admins without a selected store see every store"""
    return ctx.store_id if ctx.is_super_admin else ctx.require_store()


@router.get("")
async def list_orders(
    status: Optional[OrderStatusLiteral] = Query(None),
    search: Optional[str] = Query(None, description="Order number, customer email or name"),
    date_from: Optional[datetime] = Query(None, alias="dateFrom"),
    date_to: Optional[datetime] = Query(None, alias="dateTo"),
    sort_by: Literal["createdAt", "totalAmount", "orderNumber"] = Query("createdAt", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
    pagination: Pagination = Depends(pagination_params),
    ctx: StoreContext = Depends(require_permission(Permission.ORDERS_VIEW)),
    service: OrderService = Depends(get_order_service)
):
    filters = OrderFilters(
        store_id=_scope_store(ctx),
        status=status,
        search=search,
        date_from=date_from,
        date_to=date_to,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    orders, total = service.list(filters, limit=pagination.limit, offset=pagination.offset)
    return paginated([order.to_dict() for order in orders], total, pagination)


@router.get("/export")
async def export_orders(
    status: Optional[OrderStatusLiteral] = Query(None),
    search: Optional[str] = Query(None),
    date_from: Optional[datetime] = Query(None, alias="dateFrom"),
    date_to: Optional[datetime] = Query(None, alias="dateTo"),
    ctx: StoreContext = Depends(export_context),
    service: ExportService = Depends(get_export_service)
):
    """
    Export orders as CSV.

    Returns text/csv for up to EXPORT_STREAMING_THRESHOLD rows, otherwise
    202 with {jobId, status, estimatedRows, message}.
    """
    filters = OrderFilters(status=status, search=search, date_from=date_from, date_to=date_to)
    result = service.export_orders(ctx.store_id, ctx.user.id, filters)
    return csv_export_response(result)


@router.get("/{order_id}")
async def get_order(
    order_id: int,
    ctx: StoreContext = Depends(require_permission(Permission.ORDERS_VIEW)),
    service: OrderService = Depends(get_order_service)
):
    return success(service.get(order_id, _scope_store(ctx)).to_dict())


@router.put("/{order_id}/status")
async def update_order_status(
    order_id: int,
    body: OrderStatusUpdate,
    request: Request,
    ctx: StoreContext = Depends(require_permission(Permission.ORDERS_UPDATE)),
    service: OrderService = Depends(get_order_service),
    guard: RequestIdempotencyService = Depends(get_request_idempotency)
):
    async def apply():
        order = service.update_status(order_id, _scope_store(ctx), body, user=ctx.user)
        return success(order.to_dict(), message=f"Order status updated to {order.status}")

    return await run_idempotent(request, ctx, f"order-status:{order_id}", body.model_dump(), apply, guard)


@router.get("/{order_id}/invoice")
async def get_invoice(
    order_id: int,
    ctx: StoreContext = Depends(require_permission(Permission.ORDERS_VIEW)),
    service: OrderService = Depends(get_order_service)
):
    return success(service.build_invoice(order_id, _scope_store(ctx)))


@router.post("/{order_id}/refund")
async def refund_order(
    order_id: int,
    body: RefundRequest,
    request: Request,
    ctx: StoreContext = Depends(require_permission(Permission.ORDERS_UPDATE)),
    orders: OrderService = Depends(get_order_service),
    payments: PaymentService = Depends(get_payment_service),
    guard: RequestIdempotencyService = Depends(get_request_idempotency)
):
    async def apply():
        store_id = _scope_store(ctx)
        orders.get(order_id, store_id)
        payment = await payments.refund_order(order_id, store_id, amount=body.amount,
                                              reason=body.reason, user=ctx.user)
        return success(payment.to_dict(), message="Refund processed")

    return await run_idempotent(request, ctx, f"order-refund:{order_id}", body.model_dump(), apply, guard)
