"""Key/value state backends.

The engine keeps two tiers: a fast cache (``MemoryStateStore`` in production)
and a durable store (``SqlStateStore``). Neither tier locks: concurrent
webhook deliveries for the same item may observe stale values or both
proceed past a dedup check. Callers must tolerate that and must not add
cross-request coordination on top of it.
"""

import logging
import time
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Callable, Dict, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from deskbridge.models import StateRecord

logger = logging.getLogger(__name__)


class StateStore:
    """Interface shared by the cache and durable tiers.

    ``get`` may return a stale value (or miss a value written concurrently).
    ``put`` overwrites unconditionally; ``ttl_seconds=None`` means no expiry.
    """

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def purge_expired(self) -> int:
        """Drop expired entries, returning how many were removed."""
        return 0


class MemoryStateStore(StateStore):
    """In-process store with per-key expiry (cache tier and test double)"""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}
        self._lock = Lock()

    def _expired(self, expires_at: Optional[float]) -> bool:
        return expires_at is not None and expires_at <= self._clock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._expired(expires_at):
                self._data.pop(key, None)
                return None
            return value

    def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        expires_at = self._clock() + ttl_seconds if ttl_seconds is not None else None
        with self._lock:
            self._data[key] = (value, expires_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def purge_expired(self) -> int:
        with self._lock:
            stale = [k for k, (_, exp) in self._data.items() if self._expired(exp)]
            for k in stale:
                del self._data[k]
        return len(stale)

    def __len__(self) -> int:
        return len(self._data)


class SqlStateStore(StateStore):
    """Durable store backed by the ``state_records`` table"""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    @staticmethod
    def _utcnow() -> datetime:
        """UTC 'now' as tz-naive datetime for DB + comparisons."""
        return datetime.now(timezone.utc).replace(tzinfo=None)

    def get(self, key: str) -> Optional[str]:
        db = self._session_factory()
        try:
            row = db.query(StateRecord).filter(StateRecord.key == key).first()
            if row is None:
                return None
            if row.expires_at is not None and row.expires_at <= self._utcnow():
                return None
            return row.value
        finally:
            db.close()

    def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        expires_at = None
        if ttl_seconds is not None:
            expires_at = self._utcnow() + timedelta(seconds=ttl_seconds)

        db = self._session_factory()
        try:
            for _ in range(2):
                row = db.query(StateRecord).filter(StateRecord.key == key).first()
                if row is None:
                    row = StateRecord(key=key)
                    db.add(row)
                row.value = value
                row.expires_at = expires_at
                try:
                    db.commit()
                    return
                except IntegrityError:
                    # Another worker inserted the same key first; retry as an update.
                    db.rollback()
            logger.warning(f"Gave up writing state record {key} after concurrent inserts")
        finally:
            db.close()

    def delete(self, key: str) -> None:
        db = self._session_factory()
        try:
            db.query(StateRecord).filter(StateRecord.key == key).delete()
            db.commit()
        finally:
            db.close()

    def purge_expired(self) -> int:
        db = self._session_factory()
        try:
            removed = (
                db.query(StateRecord)
                .filter(StateRecord.expires_at.isnot(None), StateRecord.expires_at <= self._utcnow())
                .delete(synchronize_session=False)
            )
            db.commit()
            return int(removed or 0)
        finally:
            db.close()
