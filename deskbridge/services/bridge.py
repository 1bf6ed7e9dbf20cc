"""Zendesk ↔ ClickUp bridge: the two sync directions and their wiring"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from deskbridge.config import EngineConfig
from deskbridge.errors import (
    BridgeError,
    NoCorrelationFound,
    UnrecognizedPayload,
    UpstreamCallFailure,
    ValidationFailure,
)
from deskbridge.services.audit import AuditTrail
from deskbridge.services.clickup_client import ClickUpClient
from deskbridge.services.comments import (
    OrderNote,
    fetch_latest_human_comment,
    is_engine_zendesk_note,
    latest_comment_from_event,
    normalize_first_last,
    parse_order_note,
)
from deskbridge.services.correlation import (
    CorrelationLink,
    CorrelationStore,
    build_ticket_url,
    extract_link_from_text,
    infer_subdomain,
)
from deskbridge.services.dedup import (
    DedupLedger,
    task_comment_key,
    task_created_key,
    zendesk_comment_key,
)
from deskbridge.services.events import (
    TASK_CREATED_EVENT,
    CanonicalEvent,
    DirectTicketPayload,
    WrappedTicketPayload,
    parse_payload,
)
from deskbridge.services.reopen import ReopenCoordinator
from deskbridge.services.state_store import MemoryStateStore, SqlStateStore, StateStore
from deskbridge.services.status import (
    StatusChange,
    StatusChangeDetector,
    StatusStateStore,
    translate_status,
)
from deskbridge.services.zendesk_client import ZendeskClient

logger = logging.getLogger(__name__)

SIDE_ZD_TO_CU = "zd->cu"
SIDE_CU_TO_ZD = "cu->zd"

_FORWARD_REASON_RE = re.compile(r"^fwd[\s_-]", re.IGNORECASE)
_REVERSE_REASON_RE = re.compile(r"^rev[\s_-]", re.IGNORECASE)


class BridgeService:
    """Handles one inbound webhook delivery.

    Built per call around a fresh AuditTrail; the stores and clients it is
    given are shared across calls.
    """

    def __init__(
        self,
        config: EngineConfig,
        correlations: CorrelationStore,
        status_state: StatusStateStore,
        ledger: DedupLedger,
        taskboard: Any,
        ticketing: Any,
        audit: AuditTrail,
    ):
        self.config = config
        self.correlations = correlations
        self.status_state = status_state
        self.ledger = ledger
        self.taskboard = taskboard
        self.ticketing = ticketing
        self.audit = audit
        self.detector = StatusChangeDetector(status_state, ledger, config)
        self.reopen = ReopenCoordinator(taskboard, ticketing, status_state, config, audit)

    def handle(self, payload: Any) -> Dict[str, Any]:
        """Process a decoded webhook body. Never raises; the result carries this call's trace."""
        try:
            self.audit.info("WEBHOOK_RECEIVED", {"payload": json.dumps(payload, default=str)[:500]})
            result = self.dispatch(payload)
        except UnrecognizedPayload as e:
            self.audit.failed("UNRECOGNIZED_PAYLOAD", {"keys": e.keys})
            result = e.to_result()
        except BridgeError as e:
            result = e.to_result()
        except Exception as e:
            logger.exception("Unhandled error while processing webhook")
            self.audit.failed("FATAL_ERROR", {"error": str(e)})
            result = {"ok": False, "error": str(e)}
        result["execution_logs"] = list(self.audit.trace_lines)
        return result

    def dispatch(self, payload: Any) -> Dict[str, Any]:
        variant = parse_payload(payload, self.config)
        if isinstance(variant, WrappedTicketPayload):
            variant = variant.unwrap()
        if isinstance(variant, DirectTicketPayload):
            missing = variant.missing_fields()
            if missing:
                raise ValidationFailure(missing, SIDE_ZD_TO_CU)
            return self.handle_ticket_event(variant.to_event())
        return self.handle_task_event(variant.to_event())

    # --- Zendesk → ClickUp ---------------------------------------------------

    def list_for_reason(self, ops_reason: str) -> Optional[str]:
        if _FORWARD_REASON_RE.match(ops_reason or ""):
            return self.config.clickup_list_forward
        if _REVERSE_REASON_RE.match(ops_reason or ""):
            return self.config.clickup_list_reverse
        return None

    @staticmethod
    def task_description(ticket_url: str, ops_reason: str, agent_name: str, note_text: str) -> str:
        return "\n".join(
            [
                f"🔗 Zendesk Ticket: {ticket_url}",
                f"🎯 Ops Escalation Reason: {ops_reason}",
                f"👤 Sent by: {agent_name or 'Unknown Agent'}",
                "📝 Notes:",
                f"- {note_text}",
            ]
        )

    @staticmethod
    def context_comment(
        event: CanonicalEvent, note: OrderNote, agent_name: str, is_new_task: bool
    ) -> str:
        lines = [
            "ClickUp task created" if is_new_task else "ClickUp task updated",
            f"From Zendesk #{event.external_id}",
            f"By: {agent_name or 'Unknown Agent'}",
            f"Ops Reason: {event.ops_reason}",
            f"Note: {note.note_text}",
            f"Link: {event.ticket_url}" if event.ticket_url else "",
            f"Zendesk Comment ID: {event.comment_id or 'n/a'}",
        ]
        return "\n".join(line for line in lines if line)

    def fetch_ticket_comment(self, event: CanonicalEvent, subdomain: str) -> Tuple[str, List[Dict[str, Any]]]:
        """Author name and attachments of the triggering comment; falls back to the payload."""
        agent_name = normalize_first_last(event.agent_name)
        try:
            comment = self.ticketing.get_internal_comment(subdomain, event.external_id, event.comment_id)
        except UpstreamCallFailure as e:
            self.audit.failed(
                "ZD_COMMENT_FETCH_FAILED",
                {"ticketId": event.external_id, "commentId": event.comment_id, "error": str(e)},
            )
            return agent_name, []
        if not comment:
            return agent_name, []
        agent_name = normalize_first_last(comment.get("author_name") or event.agent_name)
        return agent_name, list(comment.get("attachments") or [])

    def refresh_task(self, task_id: str, description: str, ops_reason: str) -> None:
        """Bring an existing task's description and tag in line with the latest note (best effort)."""
        try:
            current = self.taskboard.get_task(task_id) or {}
            if (current.get("description") or "") != description:
                self.taskboard.update_description(task_id, description)
            tag_names = [t.get("name") if isinstance(t, dict) else t for t in current.get("tags") or []]
            if tag_names != [ops_reason]:
                self.taskboard.replace_tags(task_id, ops_reason)
        except UpstreamCallFailure as e:
            self.audit.failed("CU_TASK_REFRESH_FAILED", {"taskId": task_id, "error": str(e)})

    def find_or_create_task(
        self, note: OrderNote, list_id: str, description: str, ops_reason: str
    ) -> Tuple[Dict[str, Any], bool]:
        existing = self.taskboard.find_task_by_name(note.order_token, self.config.task_lists)
        if existing:
            self.refresh_task(existing["id"], description, ops_reason)
            return existing, False
        task = self.taskboard.create_task(
            list_id,
            note.order_token,
            description,
            tags=[ops_reason],
            assignee_email=self.config.assignee_email,
        )
        return task, True

    def mirror_ticket_attachments(self, task_id: str, attachments: List[Dict[str, Any]]) -> None:
        for att in attachments:
            if not isinstance(att, dict):
                continue
            content_url = att.get("content_url")
            file_name = att.get("file_name") or "file"
            if not content_url:
                continue
            try:
                blob = self.ticketing.download_attachment(content_url, file_name)
                self.taskboard.upload_attachment(task_id, blob.content, blob.content_type, blob.file_name)
                self.audit.success("ATTACHMENT_UPLOADED", {"taskId": task_id, "file": file_name})
            except UpstreamCallFailure as e:
                self.audit.failed("ATTACHMENT_UPLOAD_FAILED", {"taskId": task_id, "file": file_name, "error": str(e)})
                try:
                    self.taskboard.add_comment(task_id, f"Attachment (fallback link): {file_name}\n{content_url}")
                except UpstreamCallFailure as e2:
                    logger.warning(f"Fallback attachment link for task {task_id} not posted: {e2}")

    def handle_ticket_event(self, event: CanonicalEvent) -> Dict[str, Any]:
        """Mirror an escalation note from a Zendesk ticket onto its ClickUp task."""
        ticket_id = event.external_id
        note_body = event.comment_body

        if is_engine_zendesk_note(note_body):
            self.audit.info("ZENDESK_NOTE_SKIPPED", {"preview": note_body[:120]})
            return {"ok": True, "side": SIDE_ZD_TO_CU, "skipped": True}

        note = parse_order_note(note_body)
        if note is None:
            return {"ok": False, "side": SIDE_ZD_TO_CU, "reason": "bad note format", "comment_body": note_body}

        subdomain = infer_subdomain(event.account, event.ticket_url)
        if not subdomain:
            return {"ok": False, "side": SIDE_ZD_TO_CU, "reason": "no subdomain"}

        list_id = self.list_for_reason(event.ops_reason)
        if not list_id:
            return {
                "ok": False,
                "side": SIDE_ZD_TO_CU,
                "reason": "invalid ops_reason prefix",
                "ops_reason": event.ops_reason,
            }

        agent_name, attachments = self.fetch_ticket_comment(event, subdomain)

        dedup_key = zendesk_comment_key(ticket_id, event.comment_id)
        if self.ledger.seen(dedup_key):
            self.audit.trace(f"Zendesk comment {event.comment_id} on ticket {ticket_id} already mirrored")
            return {"ok": True, "side": SIDE_ZD_TO_CU, "deduped": True}

        description = self.task_description(event.ticket_url, event.ops_reason, agent_name, note.note_text)
        try:
            task, is_new_task = self.find_or_create_task(note, list_id, description, event.ops_reason)
        except UpstreamCallFailure as e:
            self.audit.failed("CU_TASK_UPSERT_FAILED", {"ticketId": ticket_id, "order": note.order_token, "error": str(e)})
            return {"ok": False, "side": SIDE_ZD_TO_CU, "reason": "create/find failed", "error": str(e)}
        task_id = str(task["id"])

        self.correlations.remember(
            task_id,
            CorrelationLink(
                ticket_id=ticket_id,
                subdomain=subdomain,
                ticket_url=event.ticket_url or build_ticket_url(subdomain, ticket_id),
            ),
        )

        try:
            self.taskboard.add_comment(task_id, self.context_comment(event, note, agent_name, is_new_task))
        except UpstreamCallFailure as e:
            self.audit.failed("CU_CONTEXT_COMMENT_FAILED", {"taskId": task_id, "error": str(e)})

        outcome = self.reopen.apply(task_id, ticket_id, subdomain)

        self.mirror_ticket_attachments(task_id, attachments)

        self.ledger.mark_seen(dedup_key, self.config.cache_ttl_seconds)
        self.audit.success(
            "ZD_NOTE_MIRRORED",
            {"ticketId": ticket_id, "taskId": task_id, "isNewTask": is_new_task, "order": note.order_token},
        )
        return {
            "ok": True,
            "side": SIDE_ZD_TO_CU,
            "task": task,
            "isNewTask": is_new_task,
            "reopened": outcome.triggered,
        }

    # --- ClickUp → Zendesk ---------------------------------------------------

    def resolve_link(self, event: CanonicalEvent) -> CorrelationLink:
        """The description link wins since it's what the task shows now; else the stored link."""
        task_id = event.external_id
        link = extract_link_from_text(event.description)
        if link is None:
            link = self.correlations.lookup(task_id)
            if link is not None:
                self.audit.info("CU_ZD_LINK_RECOVERED", {"taskId": task_id, "source": link.source})
        if link is None:
            self.audit.failed(
                "CU_NO_ZD_LINK",
                {"taskId": task_id, "has_description": bool(event.description), "desc_length": len(event.description)},
            )
            raise NoCorrelationFound(task_id)
        return link

    def process_status_change(
        self, event: CanonicalEvent, link: CorrelationLink, change: StatusChange
    ) -> Dict[str, Any]:
        """Post the status note and move the ticket. Both are attempted; failures are collected."""
        task_id = event.external_id
        readable_from = change.readable_from
        readable_to = change.readable_to
        result: Dict[str, Any] = {
            "ok": True,
            "side": SIDE_CU_TO_ZD,
            "action": "status_updated",
            "taskId": task_id,
            "ticketId": link.ticket_id,
            "from": readable_from,
            "to": readable_to,
            "source": change.source.value,
        }
        errors = []

        lines = [
            f"ClickUp status changed ({change.source.value})",
            f"From: {readable_from}",
            f"To: {readable_to}",
            f"Updated by: {event.actor_name}",
        ]
        if event.url:
            lines.append(f"Task: {event.url}")
        try:
            self.ticketing.add_internal_note(link.subdomain, link.ticket_id, "\n".join(lines))
            self.audit.success(
                "STATUS_COMMENT_ADDED",
                {
                    "taskId": task_id,
                    "ticketId": link.ticket_id,
                    "from": readable_from,
                    "to": readable_to,
                    "user": event.actor_name,
                },
            )
        except UpstreamCallFailure as e:
            errors.append(f"note:{e}")
            self.audit.failed("STATUS_COMMENT_FAILED", {"taskId": task_id, "ticketId": link.ticket_id, "error": str(e)})

        target = translate_status(change.to_label)
        if target:
            try:
                self.ticketing.update_status(link.subdomain, link.ticket_id, target)
                self.audit.success("ZD_STATUS_UPDATED", {"taskId": task_id, "ticketId": link.ticket_id, "zdStatus": target})
                result["zendesk_status"] = target
            except UpstreamCallFailure as e:
                errors.append(f"status:{e}")
                self.audit.failed(
                    "ZD_STATUS_UPDATE_FAILED", {"taskId": task_id, "ticketId": link.ticket_id, "error": str(e)}
                )
        else:
            self.audit.info("ZD_STATUS_SKIPPED", {"taskId": task_id, "ticketId": link.ticket_id, "clickUpStatus": change.to_label})

        self.status_state.remember(task_id, change.to_label)

        if errors:
            result["ok"] = False
            result["errors"] = errors
        return result

    def post_created_note(self, event: CanonicalEvent, link: CorrelationLink) -> None:
        """Announce a new task on its ticket, at most once per task."""
        task_id = event.external_id
        created_key = task_created_key(task_id)
        if self.ledger.seen(created_key):
            return
        lines = [
            "✅ ClickUp task created",
            f"Task #{task_id} — {event.name}",
            event.url,
            f"Status: {event.raw_status}" if event.raw_status else "",
        ]
        try:
            self.ticketing.add_internal_note(link.subdomain, link.ticket_id, "\n".join(line for line in lines if line))
            self.audit.success("TASK_CREATED", {"taskId": task_id, "ticketId": link.ticket_id})
        except UpstreamCallFailure as e:
            self.audit.failed("TASK_CREATED", {"taskId": task_id, "ticketId": link.ticket_id, "error": str(e)})
        self.ledger.mark_seen(created_key, self.config.created_flag_ttl_seconds)

    def mirror_latest_comment(self, event: CanonicalEvent, link: CorrelationLink) -> Optional[str]:
        """Copy the newest human comment to the ticket. Returns the comment id when one was posted."""
        task_id = event.external_id
        latest = latest_comment_from_event(event)
        if latest is None and not event.has_comment_history:
            latest = fetch_latest_human_comment(self.taskboard, task_id)
        if latest is None:
            return None

        dedup_key = task_comment_key(task_id, latest.id)
        if self.ledger.seen(dedup_key):
            self.audit.trace(f"ClickUp comment {latest.id} on task {task_id} already mirrored")
            return None

        text = latest.text if latest.text.strip() else "(no text)"
        lines = [
            f"ClickUp update | {event.name}",
            f"Comment added by: {latest.user_name}",
            f"Comment: {text}",
        ]
        if event.url:
            lines.append(f"Task: {event.url}")
        lines.extend(f"Attachment URL: {url}" for url in latest.attachments)

        posted = None
        try:
            self.ticketing.add_internal_note(link.subdomain, link.ticket_id, "\n".join(lines))
            self.audit.success(
                "COMMENT_ADDED",
                {"taskId": task_id, "ticketId": link.ticket_id, "commentId": latest.id, "user": latest.user_name},
            )
            posted = latest.id
        except UpstreamCallFailure as e:
            self.audit.failed("COMMENT_FAILED", {"taskId": task_id, "ticketId": link.ticket_id, "error": str(e)})
        self.ledger.mark_seen(dedup_key, self.config.cache_ttl_seconds)
        return posted

    def handle_task_event(self, event: CanonicalEvent) -> Dict[str, Any]:
        """Mirror a ClickUp task change (status, creation, comment) onto its Zendesk ticket."""
        task_id = event.external_id
        self.audit.info("CU_WEBHOOK_START", {"event": event.event_name, "taskId": task_id, "status": event.raw_status})

        link = self.resolve_link(event)
        if not link.subdomain:
            link.subdomain = infer_subdomain(ticket_url=link.ticket_url) or self.config.zendesk_default_subdomain
        self.correlations.remember(
            task_id,
            CorrelationLink(
                ticket_id=link.ticket_id,
                subdomain=link.subdomain,
                ticket_url=link.ticket_url or build_ticket_url(link.subdomain, link.ticket_id),
            ),
        )

        change = self.detector.detect(event)
        if change is not None:
            return self.process_status_change(event, link, change)
        self.status_state.baseline(task_id, event.raw_status)

        if event.event_name == TASK_CREATED_EVENT:
            self.post_created_note(event, link)

        comment_id = self.mirror_latest_comment(event, link)

        result = {"ok": True, "side": SIDE_CU_TO_ZD, "event": event.event_name, "ticketId": link.ticket_id}
        if comment_id:
            result["commentId"] = comment_id
        return result


@dataclass
class BridgeRuntime:
    """Long-lived pieces shared by every call: the two state tiers and the API clients."""

    config: EngineConfig
    cache: StateStore
    durable: StateStore
    taskboard: Any
    ticketing: Any
    session_factory: Optional[Callable[[], Session]] = None

    def new_audit(self) -> AuditTrail:
        return AuditTrail(self.session_factory)

    def correlation_store(self, audit: Optional[AuditTrail] = None) -> CorrelationStore:
        return CorrelationStore(self.cache, self.durable, self.config, audit)

    def status_store(self) -> StatusStateStore:
        return StatusStateStore(self.cache, self.durable, self.config)

    def ledger(self) -> DedupLedger:
        return DedupLedger(self.durable, self.config.cache_ttl_seconds)

    def new_bridge(self) -> BridgeService:
        audit = self.new_audit()
        return BridgeService(
            config=self.config,
            correlations=self.correlation_store(audit),
            status_state=self.status_store(),
            ledger=self.ledger(),
            taskboard=self.taskboard,
            ticketing=self.ticketing,
            audit=audit,
        )


def build_runtime(config: EngineConfig, session_factory: Callable[[], Session]) -> BridgeRuntime:
    """Wire the production runtime: in-process cache over the SQL store, real API clients."""
    return BridgeRuntime(
        config=config,
        cache=MemoryStateStore(),
        durable=SqlStateStore(session_factory),
        taskboard=ClickUpClient(config.clickup_api_url, config.clickup_token or "", config.http_timeout_seconds),
        ticketing=ZendeskClient(config.zendesk_email, config.zendesk_api_token, config.http_timeout_seconds),
        session_factory=session_factory,
    )
