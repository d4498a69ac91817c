"""
Audit log domain model
"""
from typing import Optional, Any
from datetime import datetime

from app.domain.base import DomainModel


class AuditLog(DomainModel):
    id: int
    store_id: Optional[int] = None
    user_id: Optional[int] = None
    actor_email: Optional[str] = None
    action: str
    entity_type: str
    entity_id: Optional[str] = None
    changes: Optional[Any] = None
    metadata: Optional[Any] = None
    ip_address: Optional[str] = None
    created_at: Optional[datetime] = None
