"""Audit trail and per-invocation execution trace"""

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, List, Optional

from sqlalchemy.orm import Session

from deskbridge.models import AuditLog
from deskbridge.models.audit_log import AuditStatus

logger = logging.getLogger(__name__)


class AuditTrail:
    """Records bridge activity for one invocation.

    Rows go to the ``audit_logs`` table (when a session factory is given) and
    every call also appends a line to ``trace_lines``, which the bridge embeds
    in its response. A new instance is created per inbound call, so trace
    lines never leak between invocations.
    """

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        self._session_factory = session_factory
        self.trace_lines: List[str] = []

    def trace(self, message: str) -> None:
        """Append a human-readable line to this invocation's trace."""
        self.trace_lines.append(message)
        logger.info(message)

    def record(self, event_type: str, status: AuditStatus, details: Any = None) -> None:
        """Persist an audit row. Never raises."""
        if isinstance(details, (dict, list)):
            text = json.dumps(details, default=str, sort_keys=True)
        elif details is None:
            text = None
        else:
            text = str(details)

        line = f"{event_type} {status.value}"
        if text:
            line += f" {text[:500]}"
        self.trace_lines.append(line)
        if status == AuditStatus.FAILED:
            logger.warning(line)
        else:
            logger.info(line)

        if self._session_factory is None:
            return
        db = self._session_factory()
        try:
            db.add(AuditLog(event_type=event_type, status=status, details=text))
            db.commit()
        except Exception as e:
            db.rollback()
            msg = f"audit log write failed: {e}"
            logger.error(msg)
            self.trace_lines.append(msg)
        finally:
            db.close()

    def success(self, event_type: str, details: Any = None) -> None:
        self.record(event_type, AuditStatus.SUCCESS, details)

    def failed(self, event_type: str, details: Any = None) -> None:
        self.record(event_type, AuditStatus.FAILED, details)

    def info(self, event_type: str, details: Any = None) -> None:
        self.record(event_type, AuditStatus.INFO, details)


def prune_audit_logs(db: Session, retention_days: int) -> int:
    """Delete audit rows older than the retention window."""
    cutoff = datetime.utcnow() - timedelta(days=retention_days)
    removed = db.query(AuditLog).filter(AuditLog.created_at < cutoff).delete(
        synchronize_session=False
    )
    db.commit()
    return int(removed or 0)
