"""
Audit log and export job tables
"""
from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from app.core.database import Base


class AuditLog(Base):
    """
    Who did what to which entity. Also holds idempotency claims
    (action WEBHOOK_IDEMPOTENCY / REQUEST_IDEMPOTENCY).
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    store_id = Column(Integer, ForeignKey("stores.id", ondelete="SET NULL"), index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), index=True)
    actor_email = Column(String(255))

    action = Column(String(50), nullable=False, index=True)
    entity_type = Column(String(50), nullable=False, index=True)
    entity_id = Column(String(100), index=True)
    changes = Column(JSONB)
    metadata_ = Column("metadata", JSONB)
    ip_address = Column(String(64))
    user_agent = Column(String(500))

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)


class ExportJob(Base):
    __tablename__ = "export_jobs"

    id = Column(Integer, primary_key=True, index=True)
    store_id = Column(Integer, ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # orders, products
    export_type = Column(String(30), nullable=False)
    # pending, processing, completed, failed, canceled
    status = Column(String(20), nullable=False, default="pending", index=True)
    filters = Column(JSONB)
    estimated_rows = Column(Integer)
    file_url = Column(String(500))
    error = Column(Text)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    completed_at = Column(DateTime(timezone=True))
