"""
Audit Service
Records who changed what; failures never break the calling operation
"""
import logging
from datetime import datetime
from typing import Any, Optional, Tuple, List

from app.core.auth import TokenUser
from app.domain.audit import AuditLog
from app.repositories.audit_log_repository import AuditLogRepository

logger = logging.getLogger(__name__)

# Idempotency claims live in the same table but are not audit history
INTERNAL_ACTIONS = ("WEBHOOK_IDEMPOTENCY", "REQUEST_IDEMPOTENCY")

MAX_AUDIT_PAGE = 100


class AuditAction:
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    STATUS_CHANGE = "STATUS_CHANGE"
    REFUND = "REFUND"
    IMPORT = "IMPORT"
    EXPORT = "EXPORT"
    LOGIN = "LOGIN"
    SUBSCRIPTION_CHANGE = "SUBSCRIPTION_CHANGE"


class AuditService:

    def __init__(self, repo: Optional[AuditLogRepository] = None):
        self.repo = repo or AuditLogRepository()

    def log(
        self,
        action: str,
        entity_type: str,
        entity_id: Any = None,
        store_id: Optional[int] = None,
        user: Optional[TokenUser] = None,
        changes: Optional[dict] = None,
        metadata: Optional[dict] = None,
        ip_address: Optional[str] = None
    ) -> Optional[int]:
        """Write an audit entry. Returns the id, or None when the write failed."""
        try:
            return self.repo.create(
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                store_id=store_id,
                user_id=user.id if user else None,
                actor_email=user.email if user else None,
                changes=changes,
                metadata=metadata,
                ip_address=ip_address,
            )
        except Exception as e:
            logger.error(f"Audit log failed ({action} {entity_type} {entity_id}): {e}")
            return None

    def list(
        self,
        store_id: Optional[int] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        user_id: Optional[int] = None,
        action: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0
    ) -> Tuple[List[AuditLog], int]:
        limit = max(1, min(MAX_AUDIT_PAGE, limit))
        return self.repo.find_all(
            store_id=store_id,
            entity_type=entity_type,
            entity_id=entity_id,
            user_id=user_id,
            action=action,
            date_from=date_from,
            date_to=date_to,
            exclude_actions=INTERNAL_ACTIONS,
            limit=limit,
            offset=max(0, offset),
        )


def diff_changes(before: dict, after: dict) -> dict:
    """{"field": {"from": old, "to": new}} for fields that differ"""
    changes = {}
    for key, new_value in after.items():
        old_value = before.get(key)
        if old_value != new_value:
            changes[key] = {"from": old_value, "to": new_value}
    return changes
