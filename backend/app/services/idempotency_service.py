"""
Idempotency Service

Two guards share the audit_logs table (unique on action + entity_id):

- Webhook guard: a provider event (source, entity, event id) is handled
  at most once. A placeholder row claims the event before the handler
  runs; a failed handler deletes it so the provider retry goes through.
- Request guard: a client Idempotency-Key on mutating routes replays the
  first response instead of applying the change twice.

Author: Platform Team
Date: 2025-11-20
"""
import hashlib
import json
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional, Tuple

from app.core.config import settings
from app.core.errors import ConflictError, ValidationError
from app.repositories.audit_log_repository import AuditLogRepository

logger = logging.getLogger(__name__)

WEBHOOK_ACTION = "WEBHOOK_IDEMPOTENCY"
REQUEST_ACTION = "REQUEST_IDEMPOTENCY"

IDEMPOTENCY_KEY_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{16,64}$")


class ClaimStatus:
    PROCESSING = "processing"
    COMPLETED = "completed"


def build_idempotency_key(source: str, entity: str, event_id: str) -> str:
    """Deterministic key for a provider event"""
    raw = f"{source}|{entity}|{event_id}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class WebhookIdempotencyService:
    """
    At-most-once processing for provider webhooks

    Usage:
        processed, result = idempotency.process_once(
            "stripe", "payment_intent", event["id"], lambda: handle(event)
        )
    """

    def __init__(self, repo: Optional[AuditLogRepository] = None,
                 lock_ttl_seconds: Optional[int] = None,
                 retention_hours: Optional[int] = None):
        self.repo = repo or AuditLogRepository()
        self.lock_ttl = timedelta(seconds=lock_ttl_seconds or settings.IDEMPOTENCY_LOCK_TTL_SECONDS)
        self.retention = timedelta(hours=retention_hours or settings.IDEMPOTENCY_RETENTION_HOURS)

    def acquire(self, source: str, entity: str, event_id: str) -> Tuple[bool, str]:
        """
        Claim an event.

        Returns:
            (acquired, key). acquired is False when another delivery already
            holds or finished the claim.
        """
        key = build_idempotency_key(source, entity, event_id)
        changes = {
            "status": ClaimStatus.PROCESSING,
            "source": source,
            "entity": entity,
            "eventId": event_id,
            "startedAt": _now().isoformat(),
        }

        if self.repo.insert_claim(WEBHOOK_ACTION, key, entity, changes):
            return True, key

        # Placeholder left behind by a crashed worker
        if self.repo.reclaim_stale(WEBHOOK_ACTION, key, _now() - self.lock_ttl, changes):
            logger.warning(f"Reclaimed stale webhook claim {source}/{entity}/{event_id}")
            return True, key

        return False, key

    def commit(self, key: str):
        self.repo.update_claim(WEBHOOK_ACTION, key, {
            "status": ClaimStatus.COMPLETED,
            "completedAt": _now().isoformat(),
        })

    def rollback(self, key: str):
        self.repo.delete_claim(WEBHOOK_ACTION, key)

    def is_processed(self, source: str, entity: str, event_id: str) -> bool:
        claim = self.repo.find_claim(WEBHOOK_ACTION, build_idempotency_key(source, entity, event_id))
        return bool(claim) and (claim.get("changes") or {}).get("status") == ClaimStatus.COMPLETED

    def process_once(self, source: str, entity: str, event_id: str,
                     handler: Callable[[], Any]) -> Tuple[bool, Any]:
        """
        Run handler once per event.

        Returns:
            (True, handler result) when processed now, (False, None) for a duplicate.
            Handler exceptions release the claim and propagate.
        """
        acquired, key = self.acquire(source, entity, event_id)
        if not acquired:
            logger.info(f"Skipping duplicate webhook {source}/{entity}/{event_id}")
            return False, None

        try:
            result = handler()
        except Exception:
            self.rollback(key)
            raise

        self.commit(key)
        return True, result

    async def process_once_async(self, source: str, entity: str, event_id: str,
                                 handler: Callable[[], Awaitable[Any]]) -> Tuple[bool, Any]:
        """process_once for coroutine handlers"""
        acquired, key = self.acquire(source, entity, event_id)
        if not acquired:
            logger.info(f"Skipping duplicate webhook {source}/{entity}/{event_id}")
            return False, None

        try:
            result = await handler()
        except Exception:
            self.rollback(key)
            raise

        self.commit(key)
        return True, result

    def cleanup_expired(self) -> int:
        """Delete claims past the retention window; returns how many"""
        deleted = self.repo.delete_claims_before(WEBHOOK_ACTION, _now() - self.retention)
        if deleted:
            logger.info(f"Purged {deleted} expired webhook idempotency records")
        return deleted


class RequestIdempotencyService:
    """
    Idempotency-Key support for mutating API requests.

    The stored key is scoped by store, user and route so two clients
    cannot collide on the same header value.
    """

    def __init__(self, repo: Optional[AuditLogRepository] = None,
                 lock_ttl_seconds: Optional[int] = None,
                 retention_hours: Optional[int] = None):
        self.repo = repo or AuditLogRepository()
        self.lock_ttl = timedelta(seconds=lock_ttl_seconds or settings.IDEMPOTENCY_LOCK_TTL_SECONDS)
        self.retention = timedelta(hours=retention_hours or settings.IDEMPOTENCY_RETENTION_HOURS)

    @staticmethod
    def validate_key(key: str) -> str:
        if not IDEMPOTENCY_KEY_PATTERN.match(key or ""):
            raise ValidationError(
                "Idempotency key must be 16-64 characters of letters, digits, '-' or '_'",
                code="INVALID_IDEMPOTENCY_KEY"
            )
        return key

    @staticmethod
    def request_hash(body: Any) -> str:
        if isinstance(body, (bytes, bytearray)):
            raw = bytes(body)
        else:
            raw = json.dumps(body, sort_keys=True, default=str).encode("utf-8")
        return hashlib.sha256(raw).hexdigest()

    @staticmethod
    def scoped_key(key: str, scope: str) -> str:
        return hashlib.sha256(f"{scope}|{key}".encode("utf-8")).hexdigest()

    def begin(self, key: str, scope: str, body_hash: str) -> Tuple[str, Optional[dict]]:
        """
        Claim the key for this request.

        Returns:
            (stored_key, cached). cached is {"statusCode", "body"} when the
            request was already completed and should be replayed.

        Raises:
            ConflictError: key reused with a different body, or still in flight
        """
        self.validate_key(key)
        stored_key = self.scoped_key(key, scope)
        changes = {"status": ClaimStatus.PROCESSING, "requestHash": body_hash}

        if self.repo.insert_claim(REQUEST_ACTION, stored_key, "request", changes):
            return stored_key, None

        claim = self.repo.find_claim(REQUEST_ACTION, stored_key)
        if claim is None:
            # Deleted between insert and read; try once more
            if self.repo.insert_claim(REQUEST_ACTION, stored_key, "request", changes):
                return stored_key, None
            raise ConflictError("A request with this idempotency key is already in progress")

        recorded = claim.get("changes") or {}
        created_at = claim.get("created_at")

        if created_at and _as_aware(created_at) < _now() - self.retention:
            self.repo.delete_claim(REQUEST_ACTION, stored_key)
            if self.repo.insert_claim(REQUEST_ACTION, stored_key, "request", changes):
                return stored_key, None

        if recorded.get("requestHash") != body_hash:
            raise ConflictError(
                "Idempotency key was already used with a different request body",
                details={"idempotencyKey": key}
            )

        if recorded.get("status") == ClaimStatus.COMPLETED:
            logger.info(f"Replaying cached response for idempotency key {key}")
            return stored_key, {"statusCode": recorded.get("statusCode", 200), "body": recorded.get("body")}

        if self.repo.reclaim_stale(REQUEST_ACTION, stored_key, _now() - self.lock_ttl, changes):
            return stored_key, None

        raise ConflictError("A request with this idempotency key is already in progress")

    def complete(self, stored_key: str, body_hash: str, status_code: int, body: Any):
        self.repo.update_claim(REQUEST_ACTION, stored_key, {
            "status": ClaimStatus.COMPLETED,
            "requestHash": body_hash,
            "statusCode": status_code,
            "body": body,
        })

    def release(self, stored_key: str):
        self.repo.delete_claim(REQUEST_ACTION, stored_key)

    def cleanup_expired(self) -> int:
        return self.repo.delete_claims_before(REQUEST_ACTION, _now() - self.retention)
