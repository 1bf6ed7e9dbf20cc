"""Background scheduler for periodic state maintenance"""

import logging
from typing import Callable, Dict, Iterable, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from deskbridge.config import settings
from deskbridge.models.base import SessionLocal
from deskbridge.services.audit import prune_audit_logs
from deskbridge.services.state_store import StateStore

logger = logging.getLogger(__name__)


class MaintenanceScheduler:
    """Purges expired state and old audit rows on an interval"""

    JOB_ID = "state_maintenance"

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        interval_minutes: Optional[int] = None,
        retention_days: Optional[int] = None,
    ):
        self.scheduler = BackgroundScheduler()
        self.session_factory = session_factory
        self.interval_minutes = interval_minutes or settings.maintenance_interval_minutes
        self.retention_days = retention_days or settings.audit_retention_days
        self.stores: List[StateStore] = []

    def start(self, stores: Iterable[StateStore] = ()):
        """Start the scheduler"""
        self.stores = list(stores)
        self.scheduler.start()
        logger.info("Maintenance scheduler started")
        self.schedule_maintenance(self.interval_minutes)

    def stop(self):
        """Stop the scheduler"""
        if self.scheduler.running:
            self.scheduler.shutdown()
        logger.info("Maintenance scheduler stopped")

    def schedule_maintenance(self, interval_minutes: int):
        existing = self.scheduler.get_job(self.JOB_ID)
        if existing is not None:
            self.scheduler.remove_job(self.JOB_ID)

        self.scheduler.add_job(
            func=self.run_maintenance,
            trigger=IntervalTrigger(minutes=interval_minutes),
            id=self.JOB_ID,
            replace_existing=True,
        )
        logger.info(f"Scheduled state maintenance every {interval_minutes} minutes")

    def run_maintenance(self) -> Dict[str, int]:
        """Job function: purge every registered store, then prune the audit log"""
        result = {"state_purged": 0, "audit_pruned": 0}
        for store in self.stores:
            try:
                result["state_purged"] += store.purge_expired()
            except Exception as e:
                logger.error(f"State purge failed for {type(store).__name__}: {e}")

        db = self.session_factory()
        try:
            result["audit_pruned"] = prune_audit_logs(db, self.retention_days)
        except Exception as e:
            db.rollback()
            logger.error(f"Audit pruning failed: {e}")
        finally:
            db.close()

        logger.info(f"Maintenance completed: {result}")
        return result


# Global scheduler instance
scheduler = MaintenanceScheduler()
