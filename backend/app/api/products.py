"""
Products API Endpoints
Product catalog management for the current store, plus CSV export and
spreadsheet import
"""
from typing import Literal, Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile
from fastapi.responses import StreamingResponse

from app.api.deps import get_bulk_import_service, get_export_service, get_product_service
from app.api.exports import csv_export_response, export_context
from app.core.auth import Permission, StoreContext, require_permission
from app.core.responses import Pagination, paginated, pagination_params, success
from app.domain.bulk_import import ImportConfig
from app.domain.product import InventoryAdjustment, ProductCreate, ProductStatusLiteral, ProductUpdate
from app.services.bulk_import_service import BulkImportService
from app.services.export_service import ExportService
from app.services.product_service import ProductService

router = APIRouter()

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@router.get("")
async def list_products(
    search: Optional[str] = Query(None, description="Search by name, SKU or description"),
    status: Optional[ProductStatusLiteral] = Query(None),
    category_id: Optional[int] = Query(None, alias="categoryId"),
    brand_id: Optional[int] = Query(None, alias="brandId"),
    low_stock: bool = Query(False, alias="lowStock"),
    sort_by: Literal["createdAt", "name", "price", "inventory"] = Query("createdAt", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
    pagination: Pagination = Depends(pagination_params),
    ctx: StoreContext = Depends(require_permission(Permission.PRODUCTS_VIEW)),
    service: ProductService = Depends(get_product_service)
):
    products, total = service.list(
        ctx.require_store(),
        search=search,
        status=status,
        category_id=category_id,
        brand_id=brand_id,
        low_stock=low_stock,
        sort_by=sort_by,
        sort_order=sort_order,
        limit=pagination.limit,
        offset=pagination.offset,
    )
    return paginated([product.to_dict() for product in products], total, pagination)


@router.post("", status_code=201)
async def create_product(
    body: ProductCreate,
    ctx: StoreContext = Depends(require_permission(Permission.PRODUCTS_CREATE)),
    service: ProductService = Depends(get_product_service)
):
    product = service.create(ctx.require_store(), body, user=ctx.user)
    return success(product.to_dict(), message="Product created")


# Fixed paths are declared before /{product_id}

@router.get("/export")
async def export_products(
    search: Optional[str] = Query(None),
    status: Optional[ProductStatusLiteral] = Query(None),
    category_id: Optional[int] = Query(None, alias="categoryId"),
    ctx: StoreContext = Depends(export_context),
    service: ExportService = Depends(get_export_service)
):
    """
    Export products as CSV.

    Up to EXPORT_STREAMING_THRESHOLD rows stream back directly; larger
    exports return 202 with a job id to poll at /exports/{job_id}.
    """
    filters = {"search": search, "status": status, "category_id": category_id}
    result = service.export_products(ctx.store_id, ctx.user.id, filters)
    return csv_export_response(result)


@router.get("/import/template")
async def download_import_template(
    ctx: StoreContext = Depends(require_permission(Permission.PRODUCTS_CREATE)),
):
    return StreamingResponse(
        BulkImportService.generate_template(),
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": 'attachment; filename="product-import-template.xlsx"'},
    )


@router.post("/import")
async def import_products(
    file: UploadFile = File(..., description="CSV or XLSX file with one product per row"),
    update_existing: bool = Query(False, alias="updateExisting"),
    skip_duplicates: bool = Query(True, alias="skipDuplicates"),
    validate_only: bool = Query(False, alias="validateOnly"),
    batch_size: int = Query(100, ge=1, le=1000, alias="batchSize"),
    create_categories: bool = Query(True, alias="createCategories"),
    create_brands: bool = Query(True, alias="createBrands"),
    rollback_on_error: bool = Query(True, alias="rollbackOnError"),
    ctx: StoreContext = Depends(require_permission(Permission.PRODUCTS_CREATE)),
    service: BulkImportService = Depends(get_bulk_import_service)
):
    """
    Bulk import products.

    Returns:
        {"data": {"jobId": "import-...", "totalRows": 120, "created": 110, "updated": 0,
                  "skipped": 8, "failed": 2, "errors": [...], "warnings": [...]}}
    """
    config = ImportConfig(
        update_existing=update_existing,
        skip_duplicates=skip_duplicates,
        validate_only=validate_only,
        batch_size=batch_size,
        create_categories=create_categories,
        create_brands=create_brands,
        rollback_on_error=rollback_on_error,
    )
    content = await file.read()
    result = service.import_products(ctx.require_store(), content, file.filename, config, user=ctx.user)

    message = "Validation finished" if validate_only else "Import finished"
    return success({
        "jobId": result.job_id,
        "success": result.success,
        "validateOnly": result.validate_only,
        "totalRows": result.total_rows,
        "processedRows": result.processed_rows,
        "created": result.created,
        "updated": result.updated,
        "skipped": result.skipped,
        "failed": result.failed,
        "errors": [issue.model_dump() for issue in result.errors],
        "warnings": [issue.model_dump() for issue in result.warnings],
    }, message=message)


@router.get("/{product_id}")
async def get_product(
    product_id: int,
    ctx: StoreContext = Depends(require_permission(Permission.PRODUCTS_VIEW)),
    service: ProductService = Depends(get_product_service)
):
    return success(service.get(ctx.require_store(), product_id).to_dict())


@router.put("/{product_id}")
async def update_product(
    product_id: int,
    body: ProductUpdate,
    ctx: StoreContext = Depends(require_permission(Permission.PRODUCTS_UPDATE)),
    service: ProductService = Depends(get_product_service)
):
    product = service.update(ctx.require_store(), product_id, body, user=ctx.user)
    return success(product.to_dict(), message="Product updated")


@router.delete("/{product_id}")
async def delete_product(
    product_id: int,
    ctx: StoreContext = Depends(require_permission(Permission.PRODUCTS_DELETE)),
    service: ProductService = Depends(get_product_service)
):
    service.delete(ctx.require_store(), product_id, user=ctx.user)
    return success(None, message="Product deleted")


@router.post("/{product_id}/inventory")
async def adjust_inventory(
    product_id: int,
    body: InventoryAdjustment,
    ctx: StoreContext = Depends(require_permission(Permission.PRODUCTS_UPDATE)),
    service: ProductService = Depends(get_product_service)
):
    product = service.adjust_inventory(ctx.require_store(), product_id, body, user=ctx.user)
    return success(product.to_dict(), message="Inventory updated")
