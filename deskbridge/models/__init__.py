"""Database models"""

from deskbridge.models.audit_log import AuditLog
from deskbridge.models.base import Base
from deskbridge.models.state_record import StateRecord

__all__ = [
    "Base",
    "AuditLog",
    "StateRecord",
]
