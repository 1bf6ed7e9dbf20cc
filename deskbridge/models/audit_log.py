"""Audit log model"""
from sqlalchemy import Column, Integer, String, DateTime, Text, Enum
from datetime import datetime
import enum
from deskbridge.models.base import Base


class AuditStatus(str, enum.Enum):
    """Audit status enumeration"""
    SUCCESS = "success"
    FAILED = "failed"
    INFO = "info"


class AuditLog(Base):
    """Audit trail of bridge activity (one row per recorded event)"""

    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)

    # e.g. "WEBHOOK_RECEIVED", "STATUS_COMMENT_ADDED", "CU_REOPEN_AFTER_ZD_NOTE"
    event_type = Column(String, nullable=False, index=True)
    status = Column(Enum(AuditStatus), nullable=False)
    details = Column(Text, nullable=True)  # JSON

    # Timestamp
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    def __repr__(self):
        return f"<AuditLog(event_type={self.event_type}, status={self.status})>"
