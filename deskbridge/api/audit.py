"""Audit log and statistics endpoints"""
from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import desc
from sqlalchemy.orm import Session

from deskbridge.models import AuditLog, StateRecord
from deskbridge.models.audit_log import AuditStatus
from deskbridge.models.base import get_db
from deskbridge.models.state_record import utcnow

router = APIRouter(prefix="/api/audit", tags=["audit"])


class AuditLogResponse(BaseModel):
    id: int
    event_type: str
    status: str
    details: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


@router.get("/logs", response_model=List[AuditLogResponse])
def list_audit_logs(
    limit: int = 100,
    event_type: str = None,
    status: AuditStatus = None,
    db: Session = Depends(get_db)
):
    """List audit logs, newest first"""
    query = db.query(AuditLog).order_by(desc(AuditLog.created_at), desc(AuditLog.id))
    if event_type:
        query = query.filter(AuditLog.event_type == event_type)
    if status is not None:
        query = query.filter(AuditLog.status == status)
    return query.limit(limit).all()


@router.get("/stats")
def get_audit_stats(db: Session = Depends(get_db)):
    """Activity over the last 24 hours plus state size"""
    last_24h = datetime.utcnow() - timedelta(hours=24)
    recent = db.query(AuditLog).filter(AuditLog.created_at >= last_24h)

    by_status = {s.value: recent.filter(AuditLog.status == s).count() for s in AuditStatus}

    now = utcnow()
    total_records = db.query(StateRecord).count()
    expired_records = (
        db.query(StateRecord)
        .filter(StateRecord.expires_at.isnot(None), StateRecord.expires_at <= now)
        .count()
    )
    correlations = db.query(StateRecord).filter(StateRecord.key.like("zd_link:%")).count()

    return {
        "recent_events": recent.count(),
        "recent_successes": by_status[AuditStatus.SUCCESS.value],
        "recent_failures": by_status[AuditStatus.FAILED.value],
        "recent_info": by_status[AuditStatus.INFO.value],
        "state_records": total_records,
        "expired_state_records": expired_records,
        "correlations": correlations,
    }
