"""
Export job domain model
"""
from typing import Optional
from datetime import datetime

from app.domain.base import DomainModel


class ExportJobStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"

    ACTIVE = (PENDING, PROCESSING)


class ExportJob(DomainModel):
    id: int
    store_id: int
    user_id: int
    export_type: str
    status: str
    filters: Optional[dict] = None
    estimated_rows: Optional[int] = None
    file_url: Optional[str] = None
    error: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
