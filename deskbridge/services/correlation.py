"""Task ↔ ticket correlation store"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Optional

from deskbridge.config import EngineConfig
from deskbridge.errors import MalformedPersistedState
from deskbridge.services.audit import AuditTrail
from deskbridge.services.state_store import StateStore

logger = logging.getLogger(__name__)

_TICKET_URL_RE = re.compile(
    r"https://(?P<subdomain>[a-z0-9-]+)\.zendesk\.com/agent/tickets/(?P<ticket_id>\d+)",
    re.IGNORECASE,
)
_SUBDOMAIN_RE = re.compile(r"^https://(?P<subdomain>[a-z0-9-]+)\.zendesk\.com/", re.IGNORECASE)


def build_ticket_url(subdomain: Optional[str], ticket_id: Optional[str], fallback_url: str = "") -> str:
    if subdomain and ticket_id:
        return f"https://{subdomain}.zendesk.com/agent/tickets/{ticket_id}"
    return fallback_url or ""


def infer_subdomain(account: Optional[str] = None, ticket_url: Optional[str] = None) -> str:
    """Account wins; otherwise take the subdomain out of the ticket URL."""
    if account:
        return str(account)
    if ticket_url:
        m = _SUBDOMAIN_RE.match(str(ticket_url))
        if m:
            return m.group("subdomain")
    return ""


@dataclass
class CorrelationLink:
    ticket_id: str
    subdomain: str = ""
    ticket_url: str = ""
    # Where the link came from on lookup: "cache", "durable" or "description". Not persisted.
    source: str = ""

    def to_json(self) -> str:
        return json.dumps(
            {
                "ticketId": str(self.ticket_id),
                "subdomain": self.subdomain or "",
                "ticketUrl": self.ticket_url or build_ticket_url(self.subdomain, self.ticket_id),
            },
            sort_keys=True,
        )

    def as_dict(self) -> dict:
        return {
            "ticketId": self.ticket_id,
            "subdomain": self.subdomain,
            "ticketUrl": self.ticket_url,
            "source": self.source,
        }


def extract_link_from_text(text: Optional[str]) -> Optional[CorrelationLink]:
    """Find the Zendesk ticket URL this engine writes into task descriptions."""
    m = _TICKET_URL_RE.search(str(text or ""))
    if not m:
        return None
    subdomain = m.group("subdomain")
    ticket_id = m.group("ticket_id")
    return CorrelationLink(
        ticket_id=ticket_id,
        subdomain=subdomain,
        ticket_url=build_ticket_url(subdomain, ticket_id),
        source="description",
    )


def parse_link_record(key: str, value: str) -> CorrelationLink:
    """Parse a serialized link, raising MalformedPersistedState on bad input."""
    try:
        data = json.loads(value)
    except (TypeError, ValueError) as e:
        raise MalformedPersistedState(key, value) from e
    if not isinstance(data, dict) or not data.get("ticketId"):
        raise MalformedPersistedState(key, value)

    ticket_id = str(data["ticketId"])
    subdomain = data.get("subdomain") or infer_subdomain(ticket_url=data.get("ticketUrl"))
    ticket_url = data.get("ticketUrl") or build_ticket_url(subdomain, ticket_id)
    return CorrelationLink(ticket_id=ticket_id, subdomain=subdomain or "", ticket_url=ticket_url)


class CorrelationStore:
    """At most one link per task id, cached for a TTL and kept durably without expiry.

    Reads may be stale under concurrent deliveries; writes are last-writer-wins.
    """

    def __init__(
        self,
        cache: StateStore,
        durable: StateStore,
        config: EngineConfig,
        audit: Optional[AuditTrail] = None,
    ):
        self.cache = cache
        self.durable = durable
        self.config = config
        self.audit = audit or AuditTrail()

    @staticmethod
    def key(task_id: str) -> str:
        return f"zd_link:{task_id}"

    def remember(self, task_id: Optional[str], link: Optional[CorrelationLink]) -> bool:
        if not task_id or link is None or not str(link.ticket_id or "").strip():
            logger.warning(f"Refusing to store correlation for task {task_id!r} without a ticket id")
            return False
        serialized = link.to_json()
        key = self.key(task_id)
        try:
            self.cache.put(key, serialized, self.config.cache_ttl_seconds)
            self.durable.put(key, serialized)
        except Exception as e:
            self.audit.failed("ZD_LINK_STORE_FAILED", {"taskId": task_id, "error": str(e)})
            return False
        return True

    def _parse_or_report(self, key: str, value: str) -> Optional[CorrelationLink]:
        try:
            return parse_link_record(key, value)
        except MalformedPersistedState as e:
            self.audit.failed("ZD_LINK_PARSE_FAILED", {"key": key, "error": str(e)})
            return None

    def lookup(self, task_id: Optional[str], fallback_text: Optional[str] = None) -> Optional[CorrelationLink]:
        """Cache, then durable store, then the URL embedded in ``fallback_text``."""
        if task_id:
            key = self.key(task_id)
            cached = self.cache.get(key)
            if cached:
                link = self._parse_or_report(key, cached)
                if link is not None:
                    link.source = "cache"
                    return link

            stored = self.durable.get(key)
            if stored:
                link = self._parse_or_report(key, stored)
                if link is not None:
                    self.cache.put(key, stored, self.config.cache_ttl_seconds)
                    link.source = "durable"
                    return link

        if fallback_text:
            return extract_link_from_text(fallback_text)
        return None

    def forget(self, task_id: str) -> None:
        key = self.key(task_id)
        self.cache.delete(key)
        self.durable.delete(key)
