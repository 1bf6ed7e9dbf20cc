"""Durable engine state model"""
from sqlalchemy import Column, Integer, String, DateTime, Text
from datetime import datetime, timezone
from deskbridge.models.base import Base


def utcnow() -> datetime:
    """UTC 'now' as tz-naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class StateRecord(Base):
    """Key/value state owned by the engine (correlation links, last known status, dedup markers)"""

    __tablename__ = "state_records"

    id = Column(Integer, primary_key=True, index=True)

    key = Column(String, unique=True, nullable=False, index=True)
    value = Column(Text, nullable=False, default="")

    # NULL means the record never expires.
    expires_at = Column(DateTime, nullable=True, index=True)

    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<StateRecord(key={self.key}, expires_at={self.expires_at})>"
