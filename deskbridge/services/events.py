"""Inbound payload normalization.

Four payload shapes reach the webhook. ``parse_payload`` picks exactly one
variant (tried in a fixed order) and each variant converts itself into a
``CanonicalEvent``:

* ``TaskWebhookV1``: ClickUp webhook carrying ``event`` and ``task``.
* ``TaskWebhookV2``: ClickUp relay carrying ``trigger_id`` and a nested ``payload``.
* ``DirectTicketPayload``: Zendesk trigger with the ticket fields at the top level.
* ``WrappedTicketPayload``: legacy Zendesk trigger with a nested ``ticket`` object.
"""

import enum
import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from deskbridge.config import EngineConfig
from deskbridge.errors import UnrecognizedPayload
from deskbridge.services.comments import (
    DEFAULT_ACTOR,
    MirroredComment,
    attachments_for_parent,
    clean_comment_text,
    comment_text,
    dedupe_urls,
    normalize_attachment,
    user_display_name,
)
from deskbridge.services.correlation import build_ticket_url

COMMENT_POSTED_EVENT = "taskCommentPosted"
TASK_CREATED_EVENT = "taskCreated"
TASK_UPDATED_EVENT = "taskUpdated"

_STATUS_FROM_KEYS = ("before", "from", "old", "value_before")
_STATUS_TO_KEYS = ("after", "to", "new", "value_after")


class Origin(str, enum.Enum):
    ZENDESK = "zendesk"
    CLICKUP = "clickup"


class TransitionSource(str, enum.Enum):
    HISTORY = "history"
    LIVE_DIFF = "live-diff"
    INFERRED = "inferred"


@dataclass
class StatusTransition:
    sub_event_id: str
    to_status: str
    from_status: str = ""
    source: TransitionSource = TransitionSource.HISTORY


@dataclass
class CanonicalEvent:
    """One inbound delivery, normalized. Built per call and never persisted."""

    origin: Origin
    external_id: str
    event_name: str = ""
    name: str = ""
    raw_status: str = ""
    status_history: List[StatusTransition] = field(default_factory=list)
    comment_history: List[MirroredComment] = field(default_factory=list)
    description: str = ""
    url: str = ""
    actor_name: str = DEFAULT_ACTOR
    history_items: List[Dict[str, Any]] = field(default_factory=list)
    task_attachments: List[Dict[str, Any]] = field(default_factory=list)

    # Zendesk side
    ticket_url: str = ""
    ops_reason: str = ""
    comment_body: str = ""
    comment_id: str = ""
    agent_name: str = ""
    account: str = ""

    @property
    def has_comment_history(self) -> bool:
        return any(_entry_has_tag(h, "comment") for h in self.history_items)

    @property
    def latest_status_transition(self) -> Optional[StatusTransition]:
        return self.status_history[-1] if self.status_history else None


# --- history helpers --------------------------------------------------------


def _s(value: Any) -> str:
    return "" if value is None else str(value)


def _entry_has_tag(entry: Any, tag: str) -> bool:
    if not isinstance(entry, dict):
        return False
    return entry.get("field") == tag or entry.get("type") == tag or entry.get("history_type") == tag


def history_entry_id(entry: Dict[str, Any], *extra_keys: str) -> str:
    """Stable id for a history entry, digesting the entry when it carries none."""
    for key in ("id", "history_id") + extra_keys:
        if entry.get(key) not in (None, ""):
            return str(entry[key])
    raw = json.dumps(entry, sort_keys=True, default=str)
    return "h" + hashlib.sha1(raw.encode("utf-8")).hexdigest()[:16]


def comment_entry_id(entry: Dict[str, Any]) -> str:
    """Id of the comment a history entry carries.

    The comment's own id comes first so the inline copy and a live fetch of the
    same comment share one dedup key; the history entry id is the fallback.
    """
    nested = entry.get("comment") if isinstance(entry.get("comment"), dict) else {}
    for value in (entry.get("comment_id"), nested.get("id")):
        if value not in (None, ""):
            return str(value)
    return history_entry_id(entry)


def _status_value(entry: Dict[str, Any], keys) -> str:
    for key in keys:
        value = entry.get(key)
        if isinstance(value, dict):
            value = value.get("status")
        if isinstance(value, str) and value:
            return value
    return ""


def status_transition_from_entry(entry: Any) -> Optional[StatusTransition]:
    if not _entry_has_tag(entry, "status"):
        return None
    to_status = _status_value(entry, _STATUS_TO_KEYS)
    if not to_status:
        return None
    return StatusTransition(
        sub_event_id=history_entry_id(entry),
        from_status=_status_value(entry, _STATUS_FROM_KEYS),
        to_status=to_status,
        source=TransitionSource.HISTORY,
    )


def extract_status_transitions(history: Optional[List[Any]]) -> List[StatusTransition]:
    """Usable status transitions in delivery order (oldest first)."""
    out = []
    for entry in history or []:
        transition = status_transition_from_entry(entry)
        if transition is not None:
            out.append(transition)
    return out


def comment_from_history_entry(
    entry: Dict[str, Any], task_attachments: Optional[List[Dict[str, Any]]] = None
) -> MirroredComment:
    text, inline_urls = clean_comment_text(comment_text(entry))
    entry_id = comment_entry_id(entry)

    urls = [
        normalize_attachment(a)
        for a in (entry.get("attachments") or [])
        + (entry.get("comment_attachments") or [])
        + (entry.get("files") or [])
    ]
    urls.extend(attachments_for_parent(task_attachments or [], [entry_id, entry.get("id")]))
    urls.extend(inline_urls)

    return MirroredComment(
        id=entry_id,
        text=text,
        user_name=user_display_name(entry),
        attachments=dedupe_urls(urls),
    )


def extract_comment_history(
    history: Optional[List[Any]], task_attachments: Optional[List[Dict[str, Any]]] = None
) -> List[MirroredComment]:
    return [
        comment_from_history_entry(entry, task_attachments)
        for entry in history or []
        if _entry_has_tag(entry, "comment")
    ]


def actor_from_history(history: Optional[List[Any]], default: str = DEFAULT_ACTOR) -> str:
    for entry in reversed(history or []):
        if not isinstance(entry, dict):
            continue
        name = user_display_name(entry, default="")
        if name:
            return name
    return default


def _task_status(task: Dict[str, Any]) -> str:
    status = task.get("status")
    if isinstance(status, dict):
        return _s(status.get("status"))
    return _s(status)


def _task_event(
    event_name: str,
    task: Dict[str, Any],
    history: List[Any],
    task_attachments: List[Dict[str, Any]],
) -> CanonicalEvent:
    history = [h for h in history or [] if isinstance(h, dict)]
    return CanonicalEvent(
        origin=Origin.CLICKUP,
        external_id=_s(task.get("id")),
        event_name=event_name or "",
        name=_s(task.get("name")),
        raw_status=_task_status(task),
        status_history=extract_status_transitions(history),
        comment_history=extract_comment_history(history, task_attachments),
        description=_s(task.get("description")),
        url=_s(task.get("url")),
        actor_name=actor_from_history(history),
        history_items=history,
        task_attachments=task_attachments,
    )


# --- variants ---------------------------------------------------------------


@dataclass
class TaskWebhookV1:
    event: str
    task: Dict[str, Any]
    history_items: List[Any] = field(default_factory=list)

    def to_event(self) -> CanonicalEvent:
        attachments = self.task.get("attachments")
        return _task_event(
            self.event,
            self.task,
            self.history_items,
            attachments if isinstance(attachments, list) else [],
        )


def normalize_v2_task(body: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten the relay body into the v1 task shape."""
    nested = body.get("task") if isinstance(body.get("task"), dict) else {}
    task_id = body.get("id") or body.get("task_id") or nested.get("id") or nested.get("task_id") or ""
    name = body.get("name") or nested.get("name") or ""
    description = (
        body.get("description")
        or body.get("text_content")
        or nested.get("description")
        or nested.get("text_content")
        or ""
    )
    url = body.get("url") or nested.get("url") or ""
    status = body.get("status") or nested.get("status") or ""
    if isinstance(status, str):
        status = {"status": status}
    return {"id": task_id, "name": name, "description": description, "url": url, "status": status}


@dataclass
class TaskWebhookV2:
    trigger_id: str
    body: Dict[str, Any]
    declared_event: str = ""
    history_items: List[Any] = field(default_factory=list)
    created_window_ms: int = 5000

    def infer_event(self) -> Optional[str]:
        try:
            created = int(self.body.get("date_created") or 0)
            updated = int(self.body.get("date_updated") or 0)
        except (TypeError, ValueError):
            return None
        if created and updated and abs(updated - created) <= self.created_window_ms:
            return TASK_CREATED_EVENT
        return None

    @property
    def event_name(self) -> str:
        # A comment entry anywhere in the history wins over the declared name.
        if any(_entry_has_tag(h, "comment") for h in self.history_items):
            return COMMENT_POSTED_EVENT
        return self.declared_event or self.infer_event() or TASK_UPDATED_EVENT

    def to_event(self) -> CanonicalEvent:
        attachments = self.body.get("attachments")
        return _task_event(
            self.event_name,
            normalize_v2_task(self.body),
            self.history_items,
            attachments if isinstance(attachments, list) else [],
        )


@dataclass
class DirectTicketPayload:
    ticket_id: str
    ticket_url: str = ""
    ops_reason: str = ""
    comment_body: str = ""
    comment_id: str = ""
    agent_name: str = ""
    account: str = ""

    REQUIRED = ("ticket_id", "ticket_url", "ops_reason", "comment_body", "comment_id")

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "DirectTicketPayload":
        return cls(
            ticket_id=_s(payload.get("ticket_id")).strip(),
            ticket_url=_s(payload.get("ticket_url")).strip(),
            ops_reason=_s(payload.get("ops_reason")),
            comment_body=_s(payload.get("comment_body")),
            comment_id=_s(payload.get("comment_id")).strip(),
            agent_name=_s(payload.get("agent_name")),
            account=_s(payload.get("account")),
        )

    def missing_fields(self) -> List[str]:
        return [name for name in self.REQUIRED if not getattr(self, name)]

    def to_event(self) -> CanonicalEvent:
        ticket_url = self.ticket_url
        if ticket_url and not ticket_url.startswith("http"):
            ticket_url = "https://" + ticket_url
        return CanonicalEvent(
            origin=Origin.ZENDESK,
            external_id=self.ticket_id,
            url=ticket_url,
            ticket_url=ticket_url,
            ops_reason=self.ops_reason,
            comment_body=self.comment_body,
            comment_id=self.comment_id,
            agent_name=self.agent_name,
            actor_name=self.agent_name or DEFAULT_ACTOR,
            account=self.account,
        )


@dataclass
class WrappedTicketPayload:
    ticket: Dict[str, Any]
    envelope: Dict[str, Any] = field(default_factory=dict)
    default_subdomain: str = ""

    def unwrap(self) -> DirectTicketPayload:
        t = self.ticket
        p = self.envelope
        latest = t.get("latest_comment")
        latest_dict = latest if isinstance(latest, dict) else {}
        author = latest_dict.get("author") if isinstance(latest_dict.get("author"), dict) else {}

        ticket_id = t.get("id") or p.get("ticket_id")
        ticket_url = (
            t.get("url")
            or p.get("ticket_url")
            or (build_ticket_url(self.default_subdomain, _s(t.get("id"))) if t.get("id") else "")
        )
        if latest_dict.get("body"):
            comment_body = latest_dict["body"]
        elif isinstance(latest, str) and latest:
            comment_body = latest
        else:
            comment_body = t.get("comment_body") or p.get("comment_body") or ""

        return DirectTicketPayload(
            ticket_id=_s(ticket_id).strip(),
            ticket_url=_s(ticket_url).strip(),
            ops_reason=_s(t.get("ops_reason") or p.get("ops_reason") or t.get("custom_fields_ops_reason")),
            comment_body=_s(comment_body),
            comment_id=_s(latest_dict.get("id") or p.get("comment_id")).strip(),
            agent_name=_s(
                author.get("name") or t.get("agent_name") or p.get("agent_name") or t.get("requester_name")
            ),
            account=_s(t.get("account") or p.get("account") or self.default_subdomain),
        )

    def to_event(self) -> CanonicalEvent:
        return self.unwrap().to_event()


PayloadVariant = Union[TaskWebhookV1, TaskWebhookV2, DirectTicketPayload, WrappedTicketPayload]


def parse_payload(payload: Any, config: EngineConfig) -> PayloadVariant:
    """Classify a decoded JSON body, raising UnrecognizedPayload when no shape fits."""
    if not isinstance(payload, dict):
        raise UnrecognizedPayload([])

    task = payload.get("task")
    if payload.get("event") and isinstance(task, dict) and task:
        history = payload.get("history_items")
        return TaskWebhookV1(
            event=_s(payload.get("event")),
            task=task,
            history_items=history if isinstance(history, list) else [],
        )

    body = payload.get("payload")
    if payload.get("trigger_id") and isinstance(body, dict) and body:
        history = body.get("history_items") or payload.get("history_items") or []
        return TaskWebhookV2(
            trigger_id=_s(payload.get("trigger_id")),
            body=body,
            declared_event=_s(payload.get("event") or payload.get("type")),
            history_items=history if isinstance(history, list) else [],
            created_window_ms=config.v2_created_window_ms,
        )

    if payload.get("ticket_id"):
        return DirectTicketPayload.from_payload(payload)

    ticket = payload.get("ticket")
    if isinstance(ticket, dict) and ticket:
        return WrappedTicketPayload(
            ticket=ticket,
            envelope=payload,
            default_subdomain=config.zendesk_default_subdomain,
        )

    raise UnrecognizedPayload(payload.keys())


def normalize_payload(payload: Any, config: EngineConfig) -> CanonicalEvent:
    return parse_payload(payload, config).to_event()
