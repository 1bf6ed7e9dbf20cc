"""Reopen a completed task and its ticket when a new escalation note arrives"""

import logging
from dataclasses import dataclass, field
from typing import Any, List

from deskbridge.config import EngineConfig
from deskbridge.errors import UpstreamCallFailure
from deskbridge.services.audit import AuditTrail
from deskbridge.services.status import StatusStateStore, is_completed

logger = logging.getLogger(__name__)


@dataclass
class ReopenOutcome:
    last_status: str = ""
    triggered: bool = False
    ticket_reopened: bool = False
    task_reopened: bool = False
    errors: List[str] = field(default_factory=list)


class ReopenCoordinator:
    """Applies the reopen policy after a note has been mirrored onto a task.

    The ticket and the task are reopened independently; a failure on one side
    is recorded and never blocks the other.
    """

    def __init__(
        self,
        taskboard: Any,
        ticketing: Any,
        status_state: StatusStateStore,
        config: EngineConfig,
        audit: AuditTrail,
    ):
        self.taskboard = taskboard
        self.ticketing = ticketing
        self.status_state = status_state
        self.config = config
        self.audit = audit

    def current_status(self, task_id: str) -> str:
        """Live task status, or the last known one if the task can't be read."""
        try:
            task = self.taskboard.get_task(task_id) or {}
        except UpstreamCallFailure as e:
            logger.warning(f"Falling back to cached status for task {task_id}: {e}")
            return self.status_state.last_known(task_id)
        status = task.get("status") or {}
        if isinstance(status, str):
            return status
        return status.get("status") or ""

    def apply(self, task_id: str, ticket_id: str, subdomain: str) -> ReopenOutcome:
        outcome = ReopenOutcome(last_status=self.current_status(task_id))
        if not is_completed(outcome.last_status):
            return outcome
        outcome.triggered = True

        try:
            self.ticketing.update_status(subdomain, ticket_id, "new")
            outcome.ticket_reopened = True
            self.audit.success(
                "ZD_REOPEN_AFTER_NEW_COMMENT",
                {"ticketId": ticket_id, "taskId": task_id, "lastClickUpStatus": outcome.last_status},
            )
        except UpstreamCallFailure as e:
            outcome.errors.append(f"ticket:{e}")
            self.audit.failed(
                "ZD_REOPEN_AFTER_NEW_COMMENT",
                {"ticketId": ticket_id, "taskId": task_id, "error": str(e)},
            )

        reopen_status = self.config.clickup_reopen_status
        try:
            self.taskboard.update_status(task_id, reopen_status)
            self.status_state.remember(task_id, reopen_status)
            outcome.task_reopened = True
            self.audit.success(
                "CU_REOPEN_AFTER_ZD_NOTE",
                {"taskId": task_id, "fromStatus": outcome.last_status, "toStatus": reopen_status},
            )
        except UpstreamCallFailure as e:
            outcome.errors.append(f"task:{e}")
            self.audit.failed(
                "CU_REOPEN_AFTER_ZD_NOTE",
                {
                    "taskId": task_id,
                    "fromStatus": outcome.last_status,
                    "toStatus": reopen_status,
                    "error": str(e),
                },
            )

        return outcome
