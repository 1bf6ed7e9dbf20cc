"""Comment text cleaning, loop prevention and order-note parsing"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from deskbridge.errors import UpstreamCallFailure

logger = logging.getLogger(__name__)

DEFAULT_ACTOR = "Operations Agent"
COMMENT_TEXT_KEYS = ("comment_text", "comment", "value", "text", "text_content", "html_text")

_BREAK_RE = re.compile(r"<br\s*/?>", re.IGNORECASE)
_PARAGRAPH_END_RE = re.compile(r"</p>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_MARKDOWN_IMAGE_RE = re.compile(r"!\[[^\]]*]\((.*?)\)")
_PERCENT_TOKEN_RE = re.compile(r"\S*%[0-9A-Fa-f]{2}\S*")
_FILENAME_TOKEN_RE = re.compile(
    r"\b\S+\.(?:png|jpg|jpeg|gif|pdf|doc|docx|xls|xlsx|zip|rar|txt|mp4|mov|avi|csv)\b",
    re.IGNORECASE,
)
_WHITESPACE_RE = re.compile(r"\s+")

# Notes this engine writes into Zendesk. Seeing one inbound means it came back around.
_ENGINE_ZENDESK_NOTE_RES = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"^✅\s*ClickUp task created",
        r"^ClickUp task created",
        r"^ClickUp task updated",
        r"^ℹ️?\s*ClickUp task updated",
        r"^ℹ️?\s*ClickUp task status:",
        r"^ClickUp status changed",
        r"^Task update\s*\|",
        r"^Clicup update\s*\|",
        r"^Clickup update\s*\|",
        r"^Comment added by:",
    )
]

# Comments this engine writes onto ClickUp tasks.
_ENGINE_TASK_COMMENT_RES = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"^\s*(?:✅\s*)?ClickUp task (?:created|updated)",
        r"^\s*From Zendesk #",
        r"^\s*Attachment \(fallback link\):",
    )
]

# "clickup - <ORDER> - <note>". The spaced form lets the order token carry hyphens
# (ORD-1234); the tight form covers notes typed without spaces around the dashes.
_ORDER_NOTE_SPACED_RE = re.compile(
    r"^\s*clickup\s*-\s*(?P<order>[^\n]+?)\s+-\s+(?P<note>[\s\S]+)$", re.IGNORECASE
)
_ORDER_NOTE_TIGHT_RE = re.compile(
    r"^\s*clickup\s*-\s*(?P<order>[^-\n]+?)\s*-\s*(?P<note>[\s\S]+)$", re.IGNORECASE
)


@dataclass
class MirroredComment:
    """A single human comment ready to be mirrored"""

    id: str
    text: str
    user_name: str = DEFAULT_ACTOR
    attachments: List[str] = field(default_factory=list)
    created: Optional[int] = None


@dataclass
class OrderNote:
    order_token: str
    note_text: str


def clean_comment_text(raw: Any) -> Tuple[str, List[str]]:
    """Strip markup and attachment noise from a comment.

    Returns the cleaned text and the image URLs lifted out of markdown links.
    """
    text = str(raw if raw is not None else "")
    text = _BREAK_RE.sub("\n", text)
    text = _PARAGRAPH_END_RE.sub("\n", text)
    text = _TAG_RE.sub("", text)
    text = text.replace("\u00a0", " ")

    urls = [m.group(1) for m in _MARKDOWN_IMAGE_RE.finditer(text) if m.group(1)]
    text = _MARKDOWN_IMAGE_RE.sub("", text)

    text = _PERCENT_TOKEN_RE.sub("", text)
    text = _FILENAME_TOKEN_RE.sub("", text)
    text = _WHITESPACE_RE.sub(" ", text).strip()
    return text, urls


def dedupe_urls(urls: Iterable[Optional[str]]) -> List[str]:
    seen = set()
    out = []
    for url in urls:
        if not url or url in seen:
            continue
        seen.add(url)
        out.append(url)
    return out


def normalize_attachment(obj: Any) -> Optional[str]:
    """Best-effort URL discovery across the attachment shapes ClickUp emits."""
    if not obj:
        return None
    if isinstance(obj, str):
        return obj
    if not isinstance(obj, dict):
        return None
    for key in ("download_url", "url", "preview_url", "link", "href"):
        if obj.get(key):
            return str(obj[key])
    for nested in ("file", "attachment"):
        inner = obj.get(nested)
        if isinstance(inner, dict):
            url = inner.get("url") or inner.get("download_url")
            if url:
                return str(url)
    return None


def attachments_for_parent(task_attachments: Iterable[Dict[str, Any]], parent_ids: Iterable[Any]) -> List[str]:
    """URLs of task-level attachments whose parent_id points at a comment."""
    wanted = {str(p) for p in parent_ids if p not in (None, "")}
    urls = []
    for att in task_attachments or []:
        if not isinstance(att, dict):
            continue
        if str(att.get("parent_id")) not in wanted:
            continue
        url = att.get("url") or att.get("url_w_query") or att.get("url_w_host")
        if url:
            urls.append(url)
    return urls


def first_text(obj: Dict[str, Any], keys: Iterable[str]) -> str:
    """First non-empty string value among ``keys``."""
    for key in keys:
        value = obj.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            value = str(value)
        if isinstance(value, str) and value:
            return value
    return ""


def comment_text(entry: Dict[str, Any]) -> str:
    """Text of a comment or comment history entry.

    History entries may carry the comment as a nested object under ``comment``.
    """
    text = first_text(entry, COMMENT_TEXT_KEYS)
    if text:
        return text
    nested = entry.get("comment")
    if isinstance(nested, dict):
        return first_text(nested, ("text_content", "comment_text", "text"))
    return ""


def user_display_name(entry: Dict[str, Any], default: str = DEFAULT_ACTOR) -> str:
    user = entry.get("user") or entry.get("author") or entry.get("member") or {}
    if not isinstance(user, dict):
        return default
    return user.get("username") or user.get("name") or user.get("email") or default


def is_engine_zendesk_note(body: Optional[str]) -> bool:
    s = str(body or "").strip()
    return any(r.search(s) for r in _ENGINE_ZENDESK_NOTE_RES)


def is_engine_task_comment(text: Optional[str]) -> bool:
    s = str(text or "")
    return any(r.search(s) for r in _ENGINE_TASK_COMMENT_RES)


def normalize_order_token(raw: Optional[str]) -> str:
    s = re.sub(r"<[^>]*>", "", str(raw or ""))
    s = re.sub(r"[\[\]\(\)\{\}<>【】]", " ", s)
    s = re.sub(r"&[a-z]+;", " ", s, flags=re.IGNORECASE)
    s = re.sub(r"[^\w-]+", " ", s).strip()
    parts = s.split()
    return parts[0] if parts else ""


def parse_order_note(body: Optional[str]) -> Optional[OrderNote]:
    """Parse ``clickup - <ORDER> - <note>``; None when the note doesn't follow it."""
    text = str(body or "")
    m = _ORDER_NOTE_SPACED_RE.match(text) or _ORDER_NOTE_TIGHT_RE.match(text)
    if not m:
        return None
    order_token = normalize_order_token(m.group("order"))
    note_text = m.group("note").strip()
    if not order_token or not note_text:
        return None
    return OrderNote(order_token=order_token, note_text=note_text)


def normalize_first_last(full_name: Optional[str]) -> str:
    if not full_name or not str(full_name).strip():
        return "Unknown Agent"
    parts = str(full_name).split()
    return " ".join(parts[:2])


def latest_comment_from_event(event: Any) -> Optional[MirroredComment]:
    """Newest human comment carried inline on the webhook (no network call)."""
    for record in reversed(getattr(event, "comment_history", None) or []):
        if is_engine_task_comment(record.text):
            continue
        return record
    return None


def fetch_latest_human_comment(taskboard: Any, task_id: str) -> Optional[MirroredComment]:
    """Newest comment on the task that this engine did not write itself."""
    task_attachments: List[Dict[str, Any]] = []
    try:
        task_attachments = (taskboard.get_task(task_id) or {}).get("attachments") or []
    except UpstreamCallFailure as e:
        logger.warning(f"Could not load attachments for task {task_id}: {e}")

    try:
        comments = taskboard.get_comments(task_id)
    except UpstreamCallFailure as e:
        logger.error(f"Failed to fetch comments for task {task_id}: {e}")
        return None

    for c in comments or []:
        if not isinstance(c, dict):
            continue
        comment_id = str(c.get("id") or c.get("comment_id") or "")
        raw = comment_text(c)
        text, inline_urls = clean_comment_text(raw)
        if is_engine_task_comment(text):
            continue

        urls = [
            normalize_attachment(a)
            for a in (c.get("attachments") or [])
            + (c.get("comment_attachments") or [])
            + (c.get("files") or [])
        ]
        if comment_id:
            urls.extend(attachments_for_parent(task_attachments, [comment_id]))
        urls.extend(inline_urls)

        try:
            created = int(c.get("date") or c.get("date_created") or c.get("created") or 0) or None
        except (TypeError, ValueError):
            created = None

        return MirroredComment(
            id=comment_id or str(created or ""),
            text=text,
            user_name=user_display_name(c),
            attachments=dedupe_urls(urls),
            created=created,
        )
    return None
