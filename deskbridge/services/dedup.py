"""Idempotency ledger for sub-events (comments, status history entries, one-time notices)"""

from typing import Optional

from deskbridge.services.state_store import StateStore


def zendesk_comment_key(ticket_id: str, comment_id: str) -> str:
    return f"zd:{ticket_id}:c:{comment_id}"


def task_comment_key(task_id: str, comment_id: str) -> str:
    return f"cu:task:{task_id}:comment:{comment_id}"


def status_history_key(task_id: str, history_id: str) -> str:
    return f"cu:task:{task_id}:status_hist:{history_id}"


def task_created_key(task_id: str) -> str:
    return f"cu:task:{task_id}:created_note_sent"


class DedupLedger:
    """Advisory seen-set with expiry.

    There is a window between ``seen`` returning False and the matching
    ``mark_seen``; two concurrent deliveries can both get through. That is
    accepted: an occasional duplicate note is cheaper than cross-request locking.
    """

    def __init__(self, store: StateStore, default_ttl: int):
        self.store = store
        self.default_ttl = default_ttl

    def seen(self, key: str) -> bool:
        return bool(self.store.get(key))

    def mark_seen(self, key: str, ttl: Optional[int] = None) -> None:
        """Insert or refresh the key's expiry."""
        self.store.put(key, "1", self.default_ttl if ttl is None else ttl)
