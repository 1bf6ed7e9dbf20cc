"""Zendesk API client wrapper"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import quote

import requests

from deskbridge.errors import UpstreamCallFailure

logger = logging.getLogger(__name__)


@dataclass
class AttachmentBlob:
    content: bytes
    content_type: str
    file_name: str


class ZendeskClient:
    """Wrapper for Zendesk API operations.

    One client serves every subdomain; each call names the subdomain it targets.
    """

    service = "zendesk"

    def __init__(
        self,
        email: Optional[str],
        api_token: Optional[str],
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        """Initialize Zendesk client with API-token basic auth"""
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.auth = (f"{email or ''}/token", api_token or "")

    @staticmethod
    def ticket_api_url(subdomain: str, ticket_id: str, suffix: str = ".json") -> str:
        return f"https://{subdomain}.zendesk.com/api/v2/tickets/{quote(str(ticket_id), safe='')}{suffix}"

    def _request(self, method: str, url: str, operation: str, **kwargs) -> requests.Response:
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.error(f"Zendesk {operation} request error: {e}")
            raise UpstreamCallFailure(self.service, operation, body=str(e)) from e
        if resp.status_code >= 300:
            logger.error(f"Zendesk {operation} failed: {resp.status_code}")
            raise UpstreamCallFailure(self.service, operation, resp.status_code, resp.text or "")
        return resp

    def _json(self, resp: requests.Response, operation: str) -> Any:
        """Decoded body; a 2xx that isn't JSON (proxy or HTML error page) is an upstream failure."""
        try:
            return resp.json()
        except ValueError as e:
            logger.error(f"{self.service} {operation} returned a non-JSON body")
            raise UpstreamCallFailure(self.service, operation, resp.status_code, resp.text or "") from e

    def add_internal_note(self, subdomain: str, ticket_id: str, body: str) -> None:
        """Post a private comment on a ticket"""
        payload = {"ticket": {"comment": {"public": False, "body": body}}}
        self._request("PUT", self.ticket_api_url(subdomain, ticket_id), "add note", json=payload)
        logger.info(f"Added internal note to ticket {subdomain}#{ticket_id}")

    def update_status(self, subdomain: str, ticket_id: str, status: str) -> None:
        payload = {"ticket": {"status": status}}
        self._request("PUT", self.ticket_api_url(subdomain, ticket_id), "update status", json=payload)
        logger.info(f"Ticket {subdomain}#{ticket_id} set to {status}")

    def get_internal_comment(self, subdomain: str, ticket_id: str, comment_id: str) -> Optional[Dict[str, Any]]:
        """Fetch one private comment by id, with ``author_name`` resolved from the sideloaded users.

        Returns None when the comment is missing or public.
        """
        target = str(comment_id or "").strip()
        if not target:
            return None
        resp = self._request(
            "GET",
            self.ticket_api_url(subdomain, ticket_id, "/comments.json"),
            "get comments",
            params={"include": "users"},
        )
        data = self._json(resp, "get comments")
        users = {u.get("id"): u for u in data.get("users") or [] if isinstance(u, dict)}

        for comment in reversed(data.get("comments") or []):
            if not isinstance(comment, dict):
                continue
            if str(comment.get("id") or "").strip() != target:
                continue
            if comment.get("public") is not False:
                continue
            author = users.get(comment.get("author_id")) or {}
            found = dict(comment)
            found["author_name"] = author.get("name") or author.get("email") or "Unknown"
            return found
        return None

    def download_attachment(self, content_url: str, file_name: Optional[str] = None) -> AttachmentBlob:
        resp = self._request("GET", content_url, "download attachment")
        return AttachmentBlob(
            content=resp.content,
            content_type=resp.headers.get("Content-Type") or "application/octet-stream",
            file_name=file_name or "file",
        )
