"""
Bulk Product Import Service

Reads a CSV or XLSX spreadsheet with pandas, validates every row into an
ImportRow and creates (or updates) products through ProductService so the
same catalog rules and plan limits apply as for single-product writes.

Column headers are matched loosely: "shortDescription", "short_description"
and "Short Description" all map to the same field.

Author: Platform Team
Date: 2025-11-20
"""
import io
import logging
import re
import uuid
from typing import Dict, List, Optional, Tuple

import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from pydantic import ValidationError as PydanticValidationError

from app.core.auth import TokenUser
from app.core.errors import AppError, ValidationError
from app.domain.base import slugify
from app.domain.brand import BrandCreate
from app.domain.bulk_import import ImportConfig, ImportIssue, ImportResult, ImportRow
from app.domain.category import CategoryCreate
from app.domain.product import Product, ProductCreate, ProductStatus, ProductUpdate
from app.repositories.brand_repository import BrandRepository
from app.repositories.category_repository import CategoryRepository
from app.repositories.product_repository import ProductRepository
from app.services.audit_service import AuditAction, AuditService
from app.services.brand_service import BrandService
from app.services.category_service import CategoryService
from app.services.product_service import ProductService

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = (".csv", ".xlsx", ".xls")

# Normalized header -> ImportRow field
COLUMN_ALIASES = {
    "category": "category_name",
    "brand": "brand_name",
    "stock": "quantity",
    "inventory": "quantity",
    "qty": "quantity",
    "visible": "is_visible",
    "trackinventory": "track_quantity",
    "compareprice": "compare_at_price",
    "cost": "cost_price",
}

STRING_FIELDS = {
    "name", "sku", "description", "short_description", "category_name", "category_path",
    "brand_name", "meta_title", "meta_description", "tags", "status",
}
INTEGER_FIELDS = {"quantity", "low_stock_threshold"}

TEMPLATE_COLUMNS = [
    ("name", "Classic Cotton Tee"),
    ("sku", "TEE-001"),
    ("description", "Soft 100% cotton t-shirt"),
    ("shortDescription", "Everyday tee"),
    ("price", 19.99),
    ("salePrice", None),
    ("compareAtPrice", 24.99),
    ("costPrice", 8.5),
    ("categoryPath", "Apparel > Shirts"),
    ("brandName", "Acme"),
    ("trackQuantity", "true"),
    ("quantity", 100),
    ("lowStockThreshold", 5),
    ("weight", 0.2),
    ("tags", "cotton, summer"),
    ("metaTitle", "Classic Cotton Tee"),
    ("metaDescription", "Soft cotton tee for every day"),
    ("isVisible", "true"),
    ("status", "DRAFT"),
]


def _header_key(header) -> str:
    return re.sub(r"[^a-z0-9]", "", str(header).lower())


FIELD_BY_HEADER = {_header_key(name): name for name in ImportRow.model_fields}
FIELD_BY_HEADER.update(COLUMN_ALIASES)


def normalize_columns(columns) -> Dict[str, str]:
    """Map spreadsheet headers to ImportRow fields; unknown headers are dropped"""
    mapping = {}
    for column in columns:
        field = FIELD_BY_HEADER.get(_header_key(column))
        if field and field not in mapping.values():
            mapping[column] = field
    return mapping


def clean_cell(field: str, value):
    if value is None or (not isinstance(value, (list, dict)) and pd.isna(value)):
        return None

    if isinstance(value, str):
        value = value.strip()
        if value == "" or value.lower() in ("null", "none", "nan"):
            return None

    if field in STRING_FIELDS and not isinstance(value, str):
        # Excel hands back numeric SKUs as floats
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        return str(value)

    if field in INTEGER_FIELDS:
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return value

    return value


def read_frame(content: bytes, filename: str) -> pd.DataFrame:
    name = (filename or "").lower()
    if not name.endswith(SUPPORTED_EXTENSIONS):
        raise ValidationError(
            "Unsupported file type. Upload a .csv or .xlsx file",
            details={"filename": filename}
        )
    if not content:
        raise ValidationError("The uploaded file is empty")

    try:
        if name.endswith(".csv"):
            return pd.read_csv(io.BytesIO(content), dtype=str, encoding="utf-8-sig")
        return pd.read_excel(io.BytesIO(content), sheet_name=0, header=0, dtype=object)
    except Exception as e:
        raise ValidationError(f"Error reading file: {str(e)}")


def make_job_id() -> str:
    return f"import-{uuid.uuid4().hex[:12]}"


class BulkImportService:

    def __init__(self, products: Optional[ProductService] = None,
                 categories: Optional[CategoryService] = None,
                 brands: Optional[BrandService] = None,
                 product_repo: Optional[ProductRepository] = None,
                 category_repo: Optional[CategoryRepository] = None,
                 brand_repo: Optional[BrandRepository] = None,
                 audit: Optional[AuditService] = None):
        self.product_repo = product_repo or ProductRepository()
        self.category_repo = category_repo or CategoryRepository()
        self.brand_repo = brand_repo or BrandRepository()
        self.audit = audit or AuditService()
        self.products = products or ProductService(
            repo=self.product_repo, category_repo=self.category_repo,
            brand_repo=self.brand_repo, audit=self.audit,
        )
        self.categories = categories or CategoryService(repo=self.category_repo, audit=self.audit)
        self.brands = brands or BrandService(repo=self.brand_repo, audit=self.audit)

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def parse_rows(self, frame: pd.DataFrame, result: ImportResult) -> List[Tuple[int, ImportRow]]:
        """Validate every row; invalid rows land in result.errors"""
        mapping = normalize_columns(frame.columns)
        if "name" not in mapping.values() or "price" not in mapping.values():
            raise ValidationError(
                "The file must have at least 'name' and 'price' columns",
                details={"columns": [str(column) for column in frame.columns]}
            )

        rows = []
        for index, record in enumerate(frame.to_dict(orient="records")):
            row_number = index + 2  # header is row 1
            values = {}
            for column, field in mapping.items():
                value = clean_cell(field, record.get(column))
                if value is not None:
                    values[field] = value

            if not values:
                continue

            try:
                rows.append((row_number, ImportRow(**values)))
            except PydanticValidationError as e:
                result.failed += 1
                for issue in e.errors():
                    result.errors.append(ImportIssue(
                        row=row_number,
                        field=".".join(str(part) for part in issue["loc"]) or None,
                        message=issue["msg"],
                    ))

        result.total_rows = len(rows) + result.failed
        return rows

    # ------------------------------------------------------------------
    # Catalog references
    # ------------------------------------------------------------------

    def _unique_category_slug(self, store_id: int, name: str) -> str:
        base = slugify(name)
        slug = base
        suffix = 2
        while self.category_repo.slug_exists(store_id, slug):
            slug = f"{base}-{suffix}"
            suffix += 1
        return slug

    def resolve_category(self, store_id: int, row: ImportRow, config: ImportConfig,
                         cache: Dict, user: Optional[TokenUser]) -> Optional[int]:
        """Walk 'A > B > C' from the root, creating missing levels when allowed"""
        segments = row.category_segments
        if not segments:
            return None

        parent_id = None
        for segment in segments:
            key = (parent_id, segment.lower())
            if key not in cache:
                category = self.category_repo.find_by_name(store_id, segment, parent_id)
                if category is None:
                    if not config.create_categories:
                        raise LookupError(f"Category \"{segment}\" not found in \"{' > '.join(segments)}\"")
                    category = self.categories.create(store_id, CategoryCreate(
                        name=segment,
                        slug=self._unique_category_slug(store_id, segment),
                        parent_id=parent_id,
                    ), user=user)
                    logger.info(f"Import created category '{segment}' ({category.id}) in store {store_id}")
                cache[key] = category.id
            parent_id = cache[key]

        return parent_id

    def resolve_brand(self, store_id: int, name: Optional[str], config: ImportConfig,
                      cache: Dict, user: Optional[TokenUser]) -> Optional[int]:
        if not name:
            return None

        key = name.lower()
        if key not in cache:
            brand = self.brand_repo.find_by_name(store_id, name)
            if brand is None:
                if not config.create_brands:
                    raise LookupError(f"Brand \"{name}\" not found")
                brand = self.brands.create(store_id, BrandCreate(name=name), user=user)
                logger.info(f"Import created brand '{name}' ({brand.id}) in store {store_id}")
            cache[key] = brand.id
        return cache[key]

    # ------------------------------------------------------------------
    # Rows
    # ------------------------------------------------------------------

    @staticmethod
    def product_values(row: ImportRow, result: ImportResult, row_number: int) -> dict:
        price = row.price
        compare_at_price = row.compare_at_price
        if row.sale_price is not None and row.sale_price < row.price:
            # Sale price becomes the selling price; the regular price is shown struck through
            compare_at_price = compare_at_price or row.price
            price = row.sale_price

        status = row.status
        if not row.is_visible and status == ProductStatus.PUBLISHED:
            result.warnings.append(ImportIssue(
                row=row_number, field="isVisible", severity="warning",
                message="Hidden products are imported as DRAFT",
            ))
            status = ProductStatus.DRAFT

        return {
            "name": row.name,
            "description": row.description,
            "short_description": row.short_description,
            "price": price,
            "compare_at_price": compare_at_price,
            "cost_price": row.cost_price,
            "track_inventory": row.track_quantity,
            "inventory_qty": row.quantity,
            "low_stock_threshold": row.low_stock_threshold,
            "weight": row.weight,
            "tags": row.tags,
            "meta_title": row.meta_title,
            "meta_description": row.meta_description,
            "status": status,
        }

    def _generate_sku(self, store_id: int, name: str) -> str:
        base = slugify(name).upper()[:80]
        while True:
            sku = f"{base}-{uuid.uuid4().hex[:6].upper()}"
            if not self.product_repo.sku_exists(store_id, sku):
                return sku

    def process_row(self, store_id: int, row_number: int, row: ImportRow, config: ImportConfig,
                    result: ImportResult, caches: Dict, seen_skus: set,
                    created: List[int], updated: List[Product], user: Optional[TokenUser]):
        existing = None
        if row.sku:
            duplicate_in_file = row.sku.lower() in seen_skus
            seen_skus.add(row.sku.lower())
            existing = self.product_repo.find_by_sku(store_id, row.sku)

            if duplicate_in_file or (existing is not None and not config.update_existing):
                if config.skip_duplicates or duplicate_in_file:
                    result.skipped += 1
                    result.warnings.append(ImportIssue(
                        row=row_number, field="sku", severity="warning",
                        message=f"Product with SKU \"{row.sku}\" already exists, skipping",
                    ))
                    return
                result.failed += 1
                result.errors.append(ImportIssue(
                    row=row_number, field="sku",
                    message=f"Product with SKU \"{row.sku}\" already exists",
                ))
                return

        try:
            category_id = self.resolve_category(store_id, row, config, caches["categories"], user)
        except LookupError as e:
            result.failed += 1
            result.errors.append(ImportIssue(row=row_number, field="categoryName", message=str(e)))
            return

        try:
            brand_id = self.resolve_brand(store_id, row.brand_name, config, caches["brands"], user)
        except LookupError as e:
            result.failed += 1
            result.errors.append(ImportIssue(row=row_number, field="brandName", message=str(e)))
            return

        values = self.product_values(row, result, row_number)
        values["category_id"] = category_id
        values["brand_id"] = brand_id

        if existing is not None:
            product = self.products.update(store_id, existing.id, ProductUpdate(**values), user=user)
            updated.append(existing)
            result.updated += 1
            logger.debug(f"Import row {row_number}: updated product {product.id}")
        else:
            values["sku"] = row.sku or self._generate_sku(store_id, row.name)
            product = self.products.create(store_id, ProductCreate(**values), user=user)
            created.append(product.id)
            result.created += 1
            logger.debug(f"Import row {row_number}: created product {product.id}")

    def _undo(self, store_id: int, created: List[int], updated: List[Product]):
        """Compensate a failed import: drop created products, restore updated ones"""
        for product_id in created:
            self.product_repo.soft_delete(store_id, product_id)
        for product in updated:
            self.product_repo.update(store_id, product.id, product.model_dump(
                exclude={"id", "store_id", "created_at", "updated_at", "variants", "attributes",
                         "category_name", "brand_name"}
            ))
        logger.warning(
            f"Rolled back import in store {store_id}: "
            f"{len(created)} created and {len(updated)} updated products reverted"
        )

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def import_products(self, store_id: int, content: bytes, filename: str,
                        config: Optional[ImportConfig] = None,
                        user: Optional[TokenUser] = None) -> ImportResult:
        config = config or ImportConfig()
        result = ImportResult(job_id=make_job_id(), validate_only=config.validate_only)

        frame = read_frame(content, filename)
        rows = self.parse_rows(frame, result)
        logger.info(
            f"Import {result.job_id}: {result.total_rows} rows from '{filename}' "
            f"for store {store_id} ({len(rows)} valid)"
        )

        if config.validate_only:
            result.processed_rows = result.total_rows
            return result

        caches = {"categories": {}, "brands": {}}
        seen_skus = set()
        created: List[int] = []
        updated: List[Product] = []
        result.processed_rows = result.failed

        for start in range(0, len(rows), config.batch_size):
            for row_number, row in rows[start:start + config.batch_size]:
                try:
                    self.process_row(store_id, row_number, row, config, result, caches,
                                     seen_skus, created, updated, user)
                except AppError as e:
                    result.failed += 1
                    result.errors.append(ImportIssue(row=row_number, message=f"Processing failed: {e.message}"))
                except PydanticValidationError as e:
                    result.failed += 1
                    result.errors.append(ImportIssue(row=row_number, message=f"Processing failed: {e.errors()[0]['msg']}"))
                result.processed_rows += 1

        if config.rollback_on_error and result.errors and (created or updated):
            self._undo(store_id, created, updated)
            result.created = 0
            result.updated = 0
            result.errors.append(ImportIssue(
                row=0, message="Import rolled back because some rows failed",
            ))

        self.audit.log(
            AuditAction.IMPORT, "product", None, store_id=store_id, user=user,
            metadata={
                "jobId": result.job_id,
                "filename": filename,
                "created": result.created,
                "updated": result.updated,
                "skipped": result.skipped,
                "failed": result.failed,
            },
        )
        logger.info(
            f"Import {result.job_id} done: created={result.created} updated={result.updated} "
            f"skipped={result.skipped} failed={result.failed}"
        )
        return result

    @staticmethod
    def generate_template() -> io.BytesIO:
        """XLSX template with the supported columns and one example row"""
        wb = Workbook()
        ws = wb.active
        ws.title = "Products"

        header_fill = PatternFill(start_color="366092", end_color="366092", fill_type="solid")
        header_font = Font(color="FFFFFF", bold=True, size=12)
        border = Border(
            left=Side(style="thin"),
            right=Side(style="thin"),
            top=Side(style="thin"),
            bottom=Side(style="thin"),
        )

        for col_num, (header, example) in enumerate(TEMPLATE_COLUMNS, 1):
            cell = ws.cell(row=1, column=col_num, value=header)
            cell.fill = header_fill
            cell.font = header_font
            cell.alignment = Alignment(horizontal="center", vertical="center")
            cell.border = border

            example_cell = ws.cell(row=2, column=col_num, value=example)
            example_cell.border = border

            ws.column_dimensions[cell.column_letter].width = max(14, len(header) + 4)

        ws.freeze_panes = "A2"

        notes = wb.create_sheet("Instructions")
        for row_num, line in enumerate([
            "name and price are required; every other column is optional.",
            "categoryPath uses ' > ' between levels, e.g. Apparel > Shirts > Tees.",
            "tags are comma-separated.",
            "status is DRAFT, PUBLISHED or ARCHIVED.",
            "Rows whose SKU already exists are skipped unless updates are enabled.",
        ], 1):
            notes.cell(row=row_num, column=1, value=line)
        notes.column_dimensions["A"].width = 80

        excel_file = io.BytesIO()
        wb.save(excel_file)
        excel_file.seek(0)
        return excel_file
