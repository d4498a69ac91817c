"""
Unit tests for the webhook and request idempotency guards
"""
import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from app.core.errors import ConflictError, ValidationError
from app.services.idempotency_service import (
    REQUEST_ACTION, WEBHOOK_ACTION, RequestIdempotencyService, WebhookIdempotencyService,
    build_idempotency_key,
)

KEY = "order-status-0001-abcdef"


class TestBuildIdempotencyKey:

    def test_deterministic(self):
        assert build_idempotency_key("stripe", "payment", "evt_1") == \
            build_idempotency_key("stripe", "payment", "evt_1")

    def test_distinct_per_part(self):
        assert build_idempotency_key("stripe", "payment", "evt_1") != \
            build_idempotency_key("stripe", "subscription", "evt_1")


class TestWebhookIdempotencyService:

    def _service(self, inserted=True, reclaimed=False):
        repo = Mock()
        repo.insert_claim.return_value = inserted
        repo.reclaim_stale.return_value = reclaimed
        return WebhookIdempotencyService(repo=repo), repo

    def test_process_once_runs_handler_and_commits(self):
        service, repo = self._service()
        handler = Mock(return_value="paid")

        processed, result = service.process_once("stripe", "payment", "evt_1", handler)

        assert (processed, result) == (True, "paid")
        handler.assert_called_once()
        action, key, changes = repo.update_claim.call_args[0]
        assert action == WEBHOOK_ACTION
        assert key == build_idempotency_key("stripe", "payment", "evt_1")
        assert changes["status"] == "completed"

    def test_duplicate_event_is_skipped(self):
        service, repo = self._service(inserted=False, reclaimed=False)
        handler = Mock()

        processed, result = service.process_once("stripe", "payment", "evt_1", handler)

        assert (processed, result) == (False, None)
        handler.assert_not_called()
        repo.update_claim.assert_not_called()

    def test_stale_claim_is_taken_over(self):
        service, repo = self._service(inserted=False, reclaimed=True)
        handler = Mock(return_value="paid")

        processed, _ = service.process_once("stripe", "payment", "evt_1", handler)

        assert processed is True
        handler.assert_called_once()

    def test_failed_handler_releases_claim(self):
        service, repo = self._service()

        def handler():
            raise RuntimeError("database down")

        with pytest.raises(RuntimeError):
            service.process_once("stripe", "payment", "evt_1", handler)

        repo.delete_claim.assert_called_once_with(
            WEBHOOK_ACTION, build_idempotency_key("stripe", "payment", "evt_1")
        )
        repo.update_claim.assert_not_called()

    def test_process_once_async(self):
        service, repo = self._service()

        async def handler():
            return "paid"

        processed, result = asyncio.run(service.process_once_async("sslcommerz", "ipn", "tx:1", handler))

        assert (processed, result) == (True, "paid")
        repo.update_claim.assert_called_once()

    def test_is_processed(self):
        service, repo = self._service()
        repo.find_claim.return_value = {"changes": {"status": "completed"}}

        assert service.is_processed("stripe", "payment", "evt_1") is True

        repo.find_claim.return_value = {"changes": {"status": "processing"}}
        assert service.is_processed("stripe", "payment", "evt_1") is False


class TestRequestIdempotencyService:

    def _service(self):
        repo = Mock()
        return RequestIdempotencyService(repo=repo), repo

    @pytest.mark.parametrize("key", ["", "short", "has spaces in the key!!", "x" * 65])
    def test_invalid_keys(self, key):
        with pytest.raises(ValidationError):
            RequestIdempotencyService.validate_key(key)

    def test_first_request_claims_key(self):
        service, repo = self._service()
        repo.insert_claim.return_value = True

        stored_key, cached = service.begin(KEY, "1|2|orders.status.100", "hash-a")

        assert cached is None
        assert stored_key == RequestIdempotencyService.scoped_key(KEY, "1|2|orders.status.100")
        assert repo.insert_claim.call_args[0][0] == REQUEST_ACTION

    def test_completed_request_is_replayed(self):
        service, repo = self._service()
        repo.insert_claim.return_value = False
        repo.find_claim.return_value = {
            "changes": {"status": "completed", "requestHash": "hash-a", "statusCode": 200,
                        "body": {"data": {"id": 100}}},
            "created_at": datetime.now(timezone.utc),
        }

        _, cached = service.begin(KEY, "scope", "hash-a")

        assert cached == {"statusCode": 200, "body": {"data": {"id": 100}}}

    def test_reused_key_with_different_body_conflicts(self):
        service, repo = self._service()
        repo.insert_claim.return_value = False
        repo.find_claim.return_value = {
            "changes": {"status": "completed", "requestHash": "hash-a"},
            "created_at": datetime.now(timezone.utc),
        }

        with pytest.raises(ConflictError):
            service.begin(KEY, "scope", "hash-b")

    def test_in_flight_request_conflicts(self):
        service, repo = self._service()
        repo.insert_claim.return_value = False
        repo.reclaim_stale.return_value = False
        repo.find_claim.return_value = {
            "changes": {"status": "processing", "requestHash": "hash-a"},
            "created_at": datetime.now(timezone.utc),
        }

        with pytest.raises(ConflictError):
            service.begin(KEY, "scope", "hash-a")

    def test_expired_record_is_replaced(self):
        service, repo = self._service()
        repo.insert_claim.side_effect = [False, True]
        repo.find_claim.return_value = {
            "changes": {"status": "completed", "requestHash": "hash-old"},
            "created_at": datetime.now(timezone.utc) - timedelta(hours=48),
        }

        _, cached = service.begin(KEY, "scope", "hash-new")

        assert cached is None
        repo.delete_claim.assert_called_once()

    def test_request_hash_ignores_key_order(self):
        assert RequestIdempotencyService.request_hash({"a": 1, "b": 2}) == \
            RequestIdempotencyService.request_hash({"b": 2, "a": 1})
