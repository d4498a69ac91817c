"""
Tests for CSV export selection, batching and background jobs
"""
from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import Mock

import pytest

from app.core.errors import NotFoundError, ValidationError
from app.domain.export_job import ExportJob, ExportJobStatus
from app.domain.order import OrderFilters
from app.services.export_service import (
    EXPORT_ORDERS_JOB, ORDER_HEADERS, ExportService, csv_line, export_filename,
)


def order_rows(count, start=0):
    return [
        {
            "order_number": f"ORD-{start + i:05d}",
            "customer_email": "shopper@shopmail.com",
            "status": "DELIVERED",
            "total_amount": Decimal("10.5"),
            "currency": "USD",
            "created_at": datetime(2025, 11, 20, tzinfo=timezone.utc),
            "items_count": 1,
            "payment_status": "PAID",
        }
        for i in range(count)
    ]


def make_job(status=ExportJobStatus.PENDING, **overrides):
    values = {"id": 7, "store_id": 1, "user_id": 2, "export_type": "orders", "status": status,
              "filters": {"status": "DELIVERED"}, "estimated_rows": 5000}
    values.update(overrides)
    return ExportJob(**values)


@pytest.fixture
def service(tmp_path):
    return ExportService(order_repo=Mock(), product_repo=Mock(), job_repo=Mock(), queue=Mock(),
                         threshold=1000, batch_size=2, export_dir=str(tmp_path))


class TestCsvFormatting:

    def test_plain_fields(self):
        assert csv_line(["ORD-1", 10, None]) == "ORD-1,10,\n"

    def test_fields_with_commas_and_quotes_are_quoted(self):
        assert csv_line(['Tee, blue', 'The "classic"']) == '"Tee, blue","The ""classic"""\n'

    def test_newlines_are_quoted(self):
        assert csv_line(["line one\nline two"]) == '"line one\nline two"\n'

    def test_export_filename(self):
        assert export_filename("orders", date(2025, 11, 20)) == "orders-2025-11-20.csv"


class TestExportSelection:

    def test_small_export_streams(self, service):
        service.order_repo.count_for_export.return_value = 3
        service.order_repo.fetch_export_batch.side_effect = [order_rows(2), order_rows(1, start=2)]

        result = service.export_orders(1, 2, OrderFilters())

        assert result.is_async is False
        body = "".join(result.stream)
        lines = body.strip().split("\n")
        assert lines[0] == ",".join(ORDER_HEADERS)
        assert len(lines) == 4
        assert lines[1].startswith("ORD-00000,shopper@shopmail.com,DELIVERED,10.50,USD,2025-11-20")
        service.job_repo.create.assert_not_called()

    def test_batches_use_limit_and_offset(self, service):
        service.order_repo.count_for_export.return_value = 4
        service.order_repo.fetch_export_batch.side_effect = [order_rows(2), order_rows(2), []]

        "".join(service.export_orders(1, 2, OrderFilters()).stream)

        offsets = [c[0][2] for c in service.order_repo.fetch_export_batch.call_args_list]
        assert offsets == [0, 2, 4]

    def test_store_scope_is_forced(self, service):
        service.order_repo.count_for_export.return_value = 0

        service.export_orders(1, 2, OrderFilters(store_id=99))

        filters = service.order_repo.count_for_export.call_args[0][0]
        assert filters.store_id == 1

    def test_large_export_becomes_job(self, service):
        service.order_repo.count_for_export.return_value = 5000
        service.job_repo.create.return_value = make_job()

        result = service.export_orders(1, 2, OrderFilters(status="DELIVERED"))

        assert result.is_async is True
        assert result.job_payload()["jobId"] == 7
        assert result.job_payload()["estimatedRows"] == 5000
        service.queue.enqueue.assert_called_once_with(EXPORT_ORDERS_JOB, {"job_id": 7}, run_inline=False)

    def test_threshold_is_inclusive_for_streaming(self, service):
        service.order_repo.count_for_export.return_value = 1000
        service.order_repo.fetch_export_batch.return_value = []

        result = service.export_orders(1, 2, OrderFilters())

        assert result.is_async is False


class TestExportJobs:

    def test_process_job_writes_file(self, service, tmp_path):
        service.job_repo.find_by_id.return_value = make_job()
        service.job_repo.update_status.return_value = True
        service.order_repo.fetch_export_batch.side_effect = [order_rows(1)]

        service.process_export_job({"job_id": 7})

        files = list(tmp_path.iterdir())
        assert len(files) == 1
        content = files[0].read_text(encoding="utf-8")
        assert content.startswith("Order Number,")
        completed = service.job_repo.update_status.call_args_list[-1]
        assert completed[0][1] == ExportJobStatus.COMPLETED
        assert completed[1]["file_url"] == str(files[0])

    def test_canceled_job_is_skipped(self, service):
        service.job_repo.find_by_id.return_value = make_job(status=ExportJobStatus.CANCELED)
        service.job_repo.update_status.return_value = False

        service.process_export_job({"job_id": 7})

        service.order_repo.fetch_export_batch.assert_not_called()

    def test_missing_job_is_ignored(self, service):
        service.job_repo.find_by_id.return_value = None

        service.process_export_job({"job_id": 7})

        service.job_repo.update_status.assert_not_called()

    def test_failure_marks_job_failed(self, service):
        service.job_repo.find_by_id.return_value = make_job()
        service.job_repo.update_status.return_value = True
        service.order_repo.fetch_export_batch.side_effect = RuntimeError("connection lost")

        service.process_export_job({"job_id": 7})

        failed = service.job_repo.update_status.call_args_list[-1]
        assert failed[0][1] == ExportJobStatus.FAILED
        assert failed[1]["error"] == "connection lost"

    def test_failure_mid_write_removes_partial_file(self, service, tmp_path):
        service.job_repo.find_by_id.return_value = make_job()
        service.job_repo.update_status.return_value = True
        service.order_repo.fetch_export_batch.side_effect = [order_rows(2), RuntimeError("connection lost")]

        service.process_export_job({"job_id": 7})

        assert list(tmp_path.iterdir()) == []
        assert service.job_repo.update_status.call_args_list[-1][0][1] == ExportJobStatus.FAILED

    def test_cancel_pending_job(self, service):
        service.job_repo.find_by_id.side_effect = [make_job(), make_job(status=ExportJobStatus.CANCELED)]
        service.job_repo.update_status.return_value = True

        job = service.cancel_job(7, 2)

        assert job.status == ExportJobStatus.CANCELED

    def test_cannot_cancel_completed_job(self, service):
        service.job_repo.find_by_id.return_value = make_job(status=ExportJobStatus.COMPLETED)

        with pytest.raises(ValidationError):
            service.cancel_job(7, 2)

    def test_other_users_job_is_not_found(self, service):
        service.job_repo.find_by_id.return_value = None

        with pytest.raises(NotFoundError):
            service.get_job(7, 3)
