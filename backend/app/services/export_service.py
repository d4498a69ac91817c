"""
CSV Export Service

Small exports stream straight to the client in batches; anything above
the streaming threshold becomes a background job that writes the file
to EXPORT_DIR.

    count <= threshold  -> 200 text/csv (streamed)
    count >  threshold  -> 202 {jobId, status, estimatedRows, message}

Author: Platform Team
Date: 2025-11-20
"""
import csv
import io
import logging
import os
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Callable, Iterable, Iterator, List, Optional

from app.core.config import settings
from app.core.errors import NotFoundError, ValidationError
from app.core.job_queue import JobQueue, job_queue
from app.domain.export_job import ExportJob, ExportJobStatus
from app.domain.order import OrderFilters
from app.repositories.export_job_repository import ExportJobRepository
from app.repositories.order_repository import OrderRepository
from app.repositories.product_repository import ProductRepository

logger = logging.getLogger(__name__)

ORDER_HEADERS = [
    "Order Number", "Customer Email", "Status", "Total Amount", "Currency",
    "Created At", "Items Count", "Payment Status",
]

PRODUCT_HEADERS = [
    "Name", "SKU", "Price", "Compare At Price", "Inventory", "Status",
    "Category", "Brand", "Created At",
]

EXPORT_ORDERS_JOB = "export-orders"
EXPORT_PRODUCTS_JOB = "export-products"


def format_money(value) -> str:
    if value is None:
        return ""
    return f"{Decimal(str(value)):.2f}"


def format_timestamp(value) -> str:
    if value is None:
        return ""
    return value.isoformat() if isinstance(value, (datetime, date)) else str(value)


def csv_line(values: Iterable) -> str:
    """One CSV record; fields with commas, quotes or newlines are quoted, quotes doubled"""
    buffer = io.StringIO()
    csv.writer(buffer, lineterminator="\n").writerow(["" if value is None else value for value in values])
    return buffer.getvalue()


def order_row(row: dict) -> list:
    return [
        row.get("order_number"),
        row.get("customer_email"),
        row.get("status"),
        format_money(row.get("total_amount")),
        row.get("currency") or "USD",
        format_timestamp(row.get("created_at")),
        row.get("items_count") or 0,
        row.get("payment_status"),
    ]


def product_row(row: dict) -> list:
    return [
        row.get("name"),
        row.get("sku"),
        format_money(row.get("price")),
        format_money(row.get("compare_at_price")),
        row.get("inventory_qty") or 0,
        row.get("status"),
        row.get("category_name") or "",
        row.get("brand_name") or "",
        format_timestamp(row.get("created_at")),
    ]


def export_filename(export_type: str, today: Optional[date] = None) -> str:
    return f"{export_type}-{(today or date.today()).isoformat()}.csv"


@dataclass
class ExportResult:
    """Either a stream (small export) or a queued job (large export)"""
    estimated_rows: int
    filename: str
    stream: Optional[Iterator[str]] = None
    job: Optional[ExportJob] = None

    @property
    def is_async(self) -> bool:
        return self.job is not None

    def job_payload(self) -> dict:
        return {
            "jobId": self.job.id,
            "status": self.job.status,
            "estimatedRows": self.estimated_rows,
            "message": f"Export of {self.estimated_rows} rows queued. Check the job status for the file.",
        }


class ExportService:

    def __init__(self, order_repo: Optional[OrderRepository] = None,
                 product_repo: Optional[ProductRepository] = None,
                 job_repo: Optional[ExportJobRepository] = None,
                 queue: Optional[JobQueue] = None,
                 threshold: Optional[int] = None,
                 batch_size: Optional[int] = None,
                 export_dir: Optional[str] = None):
        self.order_repo = order_repo or OrderRepository()
        self.product_repo = product_repo or ProductRepository()
        self.job_repo = job_repo or ExportJobRepository()
        self.queue = queue or job_queue
        self.threshold = threshold or settings.EXPORT_STREAMING_THRESHOLD
        self.batch_size = batch_size or settings.EXPORT_BATCH_SIZE
        self.export_dir = export_dir or settings.EXPORT_DIR

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    def _stream(self, headers: List[str], fetch_batch: Callable[[int, int], List[dict]],
                to_row: Callable[[dict], list]) -> Iterator[str]:
        yield csv_line(headers)

        offset = 0
        while True:
            batch = fetch_batch(self.batch_size, offset)
            if not batch:
                break
            yield "".join(csv_line(to_row(row)) for row in batch)
            if len(batch) < self.batch_size:
                break
            offset += self.batch_size

    def stream_orders(self, filters: OrderFilters) -> Iterator[str]:
        return self._stream(
            ORDER_HEADERS,
            lambda limit, offset: self.order_repo.fetch_export_batch(filters, limit, offset),
            order_row,
        )

    def stream_products(self, store_id: int, filters: dict) -> Iterator[str]:
        return self._stream(
            PRODUCT_HEADERS,
            lambda limit, offset: self.product_repo.fetch_export_batch(store_id, filters, limit, offset),
            product_row,
        )

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def export_orders(self, store_id: int, user_id: int, filters: OrderFilters) -> ExportResult:
        filters = filters.model_copy(update={"store_id": store_id})
        total = self.order_repo.count_for_export(filters)
        filename = export_filename("orders")

        if total > self.threshold:
            job = self.job_repo.create(store_id, user_id, "orders", filters.model_dump(mode="json"), total)
            self.queue.enqueue(EXPORT_ORDERS_JOB, {"job_id": job.id}, run_inline=False)
            logger.info(f"Queued order export job {job.id} ({total} rows) for store {store_id}")
            return ExportResult(estimated_rows=total, filename=filename, job=job)

        return ExportResult(estimated_rows=total, filename=filename, stream=self.stream_orders(filters))

    def export_products(self, store_id: int, user_id: int, filters: dict) -> ExportResult:
        total = self.product_repo.count_for_export(store_id, filters)
        filename = export_filename("products")

        if total > self.threshold:
            job = self.job_repo.create(store_id, user_id, "products", filters, total)
            self.queue.enqueue(EXPORT_PRODUCTS_JOB, {"job_id": job.id}, run_inline=False)
            logger.info(f"Queued product export job {job.id} ({total} rows) for store {store_id}")
            return ExportResult(estimated_rows=total, filename=filename, job=job)

        return ExportResult(estimated_rows=total, filename=filename,
                            stream=self.stream_products(store_id, filters))

    # ------------------------------------------------------------------
    # Background jobs
    # ------------------------------------------------------------------

    def _job_stream(self, job: ExportJob) -> Iterator[str]:
        filters = job.filters or {}
        if job.export_type == "orders":
            return self.stream_orders(OrderFilters(**{**filters, "store_id": job.store_id}))
        if job.export_type == "products":
            return self.stream_products(job.store_id, filters)
        raise ValueError(f"Unknown export type: {job.export_type}")

    def process_export_job(self, payload: dict):
        """Job queue handler for export-orders / export-products"""
        job_id = payload["job_id"]
        job = self.job_repo.find_by_id(job_id)
        if job is None:
            logger.warning(f"Export job {job_id} no longer exists")
            return

        if not self.job_repo.update_status(job_id, ExportJobStatus.PROCESSING,
                                           only_if_status=(ExportJobStatus.PENDING,)):
            logger.info(f"Export job {job_id} is {job.status}; skipping")
            return

        path = None
        try:
            os.makedirs(self.export_dir, exist_ok=True)
            filename = f"{job.export_type}-{job.id}-{date.today().isoformat()}.csv"
            path = os.path.join(self.export_dir, filename)

            with open(path, "w", encoding="utf-8", newline="") as handle:
                for chunk in self._job_stream(job):
                    handle.write(chunk)

            completed = self.job_repo.update_status(
                job_id, ExportJobStatus.COMPLETED, file_url=path,
                completed_at=datetime.now(timezone.utc),
                only_if_status=(ExportJobStatus.PROCESSING,),
            )
            if completed:
                logger.info(f"Export job {job_id} completed: {path}")
            else:
                # Canceled while writing
                os.remove(path)

        except Exception as e:
            logger.error(f"Export job {job_id} failed: {e}")
            if path and os.path.exists(path):
                os.remove(path)
            self.job_repo.update_status(job_id, ExportJobStatus.FAILED, error=str(e),
                                        completed_at=datetime.now(timezone.utc))

    def get_job(self, job_id: int, user_id: Optional[int]) -> ExportJob:
        """user_id None skips the ownership check (super admin)"""
        job = self.job_repo.find_by_id(job_id, user_id=user_id)
        if job is None:
            raise NotFoundError("Export job")
        return job

    def cancel_job(self, job_id: int, user_id: Optional[int]) -> ExportJob:
        job = self.get_job(job_id, user_id)
        if job.status not in ExportJobStatus.ACTIVE:
            raise ValidationError(f"Cannot cancel an export that is {job.status}")

        if not self.job_repo.update_status(job_id, ExportJobStatus.CANCELED,
                                           only_if_status=ExportJobStatus.ACTIVE):
            raise ValidationError("Export finished before it could be canceled")
        return self.get_job(job_id, user_id)


def register_export_handlers(queue: JobQueue, service: Optional[ExportService] = None):
    service = service or ExportService(queue=queue)
    queue.register_handler(EXPORT_ORDERS_JOB, service.process_export_job)
    queue.register_handler(EXPORT_PRODUCTS_JOB, service.process_export_job)
