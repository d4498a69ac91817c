"""
Export job endpoints and the shared CSV export response

Small exports stream as text/csv (200); large ones come back as a
queued job (202) that the client polls here.
"""
import os

from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse, JSONResponse, StreamingResponse

from app.api.deps import get_export_service
from app.core.auth import Role, StoreContext, get_store_context
from app.core.errors import ErrorCode, ForbiddenError, NotFoundError, ValidationError
from app.core.responses import success
from app.domain.export_job import ExportJobStatus
from app.services.export_service import ExportResult, ExportService

router = APIRouter()

EXPORT_ROLES = (Role.SUPER_ADMIN, Role.STORE_ADMIN, Role.STAFF)


async def export_context(ctx: StoreContext = Depends(get_store_context)) -> StoreContext:
    """Staff and above, acting on one store"""
    if ctx.user.role not in EXPORT_ROLES:
        raise ForbiddenError(
            f"Access denied. Required role: {', '.join(EXPORT_ROLES)}, your role: {ctx.user.role}",
            code=ErrorCode.INSUFFICIENT_PERMISSIONS
        )
    if ctx.store_id is None:
        if ctx.is_super_admin:
            raise ValidationError("Select a store with the X-Store-Id header or storeId query param")
        raise ForbiddenError("No store context for this user")
    return ctx


def csv_export_response(result: ExportResult):
    if result.is_async:
        return JSONResponse(status_code=202, content=success(result.job_payload()))

    return StreamingResponse(
        result.stream,
        media_type="text/csv; charset=utf-8",
        headers={
            "Content-Disposition": f'attachment; filename="{result.filename}"',
            "Cache-Control": "no-cache",
        },
    )


def _owner_filter(ctx: StoreContext):
    return None if ctx.is_super_admin else ctx.user.id


@router.get("/{job_id}")
async def get_export_job(
    job_id: int,
    ctx: StoreContext = Depends(export_context),
    service: ExportService = Depends(get_export_service)
):
    return success(service.get_job(job_id, _owner_filter(ctx)).to_dict())


@router.post("/{job_id}/cancel")
async def cancel_export_job(
    job_id: int,
    ctx: StoreContext = Depends(export_context),
    service: ExportService = Depends(get_export_service)
):
    job = service.cancel_job(job_id, _owner_filter(ctx))
    return success(job.to_dict(), message="Export canceled")


@router.get("/{job_id}/download")
async def download_export(
    job_id: int,
    ctx: StoreContext = Depends(export_context),
    service: ExportService = Depends(get_export_service)
):
    job = service.get_job(job_id, _owner_filter(ctx))
    if job.status != ExportJobStatus.COMPLETED or not job.file_url or not os.path.exists(job.file_url):
        raise NotFoundError("Export file")

    return FileResponse(
        job.file_url,
        media_type="text/csv; charset=utf-8",
        filename=os.path.basename(job.file_url),
        headers={"Cache-Control": "no-cache"},
    )
