"""ClickUp status tracking and translation to Zendesk statuses"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from deskbridge.config import EngineConfig
from deskbridge.services.dedup import DedupLedger, status_history_key
from deskbridge.services.events import CanonicalEvent, TransitionSource
from deskbridge.services.state_store import StateStore

logger = logging.getLogger(__name__)

UNKNOWN_STATUS = "UNKNOWN"
TERMINAL_STATUS = "COMPLETE"
STATUS_UPDATE_EVENTS = frozenset({"taskStatusUpdated", "taskUpdated", "taskStatusChanged"})
COMPLETION_RE = re.compile(r"COMPLETE|COMPLETED|DONE|RESOLVED|CLOSED")

_SEPARATOR_RE = re.compile(r"[_-]")
_WHITESPACE_RE = re.compile(r"\s+")

_EXPLICIT_ZENDESK_STATUS = {
    "COMPLETE": "solved",
    "COMPLETED": "solved",
    "DONE": "solved",
    "RESOLVED": "solved",
    "CLOSED": "solved",
    "READY FOR QA": "pending",
    "READY FOR REVIEW": "pending",
    "QA REVIEW": "pending",
    "IN REVIEW": "pending",
    "IN QA": "pending",
    "IN PROGRESS": "open",
    "ACTIVE": "open",
    "TO DO": "open",
    "BACKLOG": "new",
    "ON HOLD": "hold",
    "HOLD": "hold",
    "BLOCKED": "hold",
}


def normalize_status(label: Optional[str]) -> str:
    """Canonical comparable form: NBSP → space, ``_``/``-`` → space, collapsed, upper-cased."""
    if not label:
        return ""
    s = str(label).replace("\u00a0", " ")
    s = _SEPARATOR_RE.sub(" ", s)
    s = _WHITESPACE_RE.sub(" ", s)
    return s.strip().upper()


def is_completed(label: Optional[str]) -> bool:
    norm = normalize_status(label)
    return bool(norm) and bool(COMPLETION_RE.search(norm))


def translate_status(label: Optional[str]) -> Optional[str]:
    """Map a ClickUp status to a Zendesk status. None only for an empty label."""
    normalized = normalize_status(label)
    if not normalized:
        return None
    if normalized in _EXPLICIT_ZENDESK_STATUS:
        return _EXPLICIT_ZENDESK_STATUS[normalized]
    if re.search(r"COMPLETE|DONE|RESOLVED", normalized):
        return "solved"
    if re.search(r"HOLD|BLOCK", normalized):
        return "hold"
    if re.search(r"REVIEW|QA", normalized):
        return "pending"
    return "open"


class StatusStateStore:
    """Last status this engine observed per task, always stored normalized"""

    def __init__(self, cache: StateStore, durable: StateStore, config: EngineConfig):
        self.cache = cache
        self.durable = durable
        self.config = config

    @staticmethod
    def key(task_id: str) -> str:
        return f"cu_status:{task_id}"

    def last_known(self, task_id: Optional[str]) -> str:
        if not task_id:
            return ""
        key = self.key(task_id)
        cached = self.cache.get(key)
        if cached:
            return cached
        stored = self.durable.get(key) or ""
        if stored:
            self.cache.put(key, stored, self.config.cache_ttl_seconds)
        return stored

    def remember(self, task_id: Optional[str], label: Optional[str]) -> None:
        if not task_id:
            return
        key = self.key(task_id)
        normalized = normalize_status(label)
        if not normalized:
            self.forget(task_id)
            return
        self.cache.put(key, normalized, self.config.cache_ttl_seconds)
        self.durable.put(key, normalized)

    def baseline(self, task_id: Optional[str], label: Optional[str]) -> bool:
        """Record ``label`` only when nothing is known yet. Returns True if it was recorded."""
        if not task_id or not normalize_status(label):
            return False
        if self.last_known(task_id):
            return False
        self.remember(task_id, label)
        return True

    def forget(self, task_id: str) -> None:
        key = self.key(task_id)
        self.cache.delete(key)
        self.durable.delete(key)


@dataclass
class StatusChange:
    source: TransitionSource
    from_label: str
    to_label: str
    raw_from: str = ""
    raw_to: str = ""

    @property
    def readable_from(self) -> str:
        return self.raw_from or self.from_label or UNKNOWN_STATUS

    @property
    def readable_to(self) -> str:
        return self.raw_to or self.to_label


class StatusChangeDetector:
    """Decides whether a ClickUp delivery is a genuine status transition.

    History entries are preferred and deduplicated by their own id. Without
    one, the live status is compared against the last known status. When
    nothing is known yet and the event does not clearly imply a status
    update, nothing is emitted and the caller baselines instead.
    """

    def __init__(self, status_state: StatusStateStore, ledger: DedupLedger, config: EngineConfig):
        self.status_state = status_state
        self.ledger = ledger
        self.config = config

    def detect(self, event: CanonicalEvent) -> Optional[StatusChange]:
        task_id = event.external_id

        transition = event.latest_status_transition
        if transition is not None and task_id:
            to_label = normalize_status(transition.to_status)
            if to_label:
                key = status_history_key(task_id, transition.sub_event_id)
                if self.ledger.seen(key):
                    logger.info(f"Status history entry {transition.sub_event_id} on task {task_id} already handled")
                    return None
                self.ledger.mark_seen(key, self.config.cache_ttl_seconds)
                from_label = (
                    normalize_status(transition.from_status)
                    or self.status_state.last_known(task_id)
                    or UNKNOWN_STATUS
                )
                return StatusChange(
                    source=TransitionSource.HISTORY,
                    from_label=from_label,
                    to_label=to_label,
                    raw_from=transition.from_status,
                    raw_to=transition.to_status,
                )

        current = normalize_status(event.raw_status)
        if not task_id or not current:
            return None

        last_known = self.status_state.last_known(task_id)
        if last_known:
            if last_known == current:
                return None
            return StatusChange(
                source=TransitionSource.LIVE_DIFF,
                from_label=last_known,
                to_label=current,
                raw_from=last_known,
                raw_to=event.raw_status,
            )

        if event.event_name not in STATUS_UPDATE_EVENTS and current != TERMINAL_STATUS:
            return None

        return StatusChange(
            source=TransitionSource.INFERRED,
            from_label=UNKNOWN_STATUS,
            to_label=current,
            raw_to=event.raw_status,
        )
