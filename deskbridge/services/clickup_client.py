"""ClickUp API client wrapper"""
import logging
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import quote

import requests

from deskbridge.errors import UpstreamCallFailure
from deskbridge.services.comments import normalize_order_token

logger = logging.getLogger(__name__)


class ClickUpClient:
    """Wrapper for ClickUp API operations"""

    service = "clickup"

    def __init__(self, base_url: str, token: str, timeout: float = 30.0, session: Optional[requests.Session] = None):
        """Initialize ClickUp client"""
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Authorization": token or ""})

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _request(self, method: str, path: str, operation: str, **kwargs) -> requests.Response:
        """Send one request; any non-2xx response becomes UpstreamCallFailure. No retries."""
        try:
            resp = self.session.request(method, self._url(path), timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.error(f"ClickUp {operation} request error: {e}")
            raise UpstreamCallFailure(self.service, operation, body=str(e)) from e
        if resp.status_code >= 300:
            logger.error(f"ClickUp {operation} failed: {resp.status_code}")
            raise UpstreamCallFailure(self.service, operation, resp.status_code, resp.text or "")
        return resp

    def _json(self, resp: requests.Response, operation: str) -> Any:
        """Decoded body; a 2xx that isn't JSON (proxy or HTML error page) is an upstream failure."""
        try:
            return resp.json()
        except ValueError as e:
            logger.error(f"{self.service} {operation} returned a non-JSON body")
            raise UpstreamCallFailure(self.service, operation, resp.status_code, resp.text or "") from e

    @staticmethod
    def _task_path(task_id: str) -> str:
        return f"task/{quote(str(task_id), safe='')}"

    @staticmethod
    def summarize(task: Dict[str, Any]) -> Dict[str, Any]:
        return {"id": task.get("id"), "url": task.get("url"), "name": task.get("name")}

    def list_tasks(self, list_id: str) -> List[Dict[str, Any]]:
        """First page of tasks in a list, closed tasks included"""
        resp = self._request(
            "GET",
            f"list/{quote(str(list_id), safe='')}/task",
            "list tasks",
            params={"include_closed": "true", "page": 0},
        )
        return self._json(resp, "list tasks").get("tasks") or []

    def find_task_by_name(self, name: str, list_ids: Iterable[str]) -> Optional[Dict[str, Any]]:
        """Find a task whose normalized name equals the normalized ``name``, searching lists in order."""
        needle = normalize_order_token((name or "").strip())
        if not needle:
            return None
        for list_id in list_ids:
            for task in self.list_tasks(list_id):
                if normalize_order_token(task.get("name") or "") == needle:
                    return self.summarize(task)
        return None

    def get_task(self, task_id: str) -> Dict[str, Any]:
        """Get a task by id"""
        resp = self._request("GET", self._task_path(task_id), "get task")
        return self._json(resp, "get task")

    def get_user_id_by_email(self, email: Optional[str]) -> Optional[Any]:
        """Resolve a workspace member id by email. Returns None when it can't be resolved."""
        if not email:
            return None
        try:
            data = self._json(self._request("GET", "team", "list teams"), "list teams")
        except UpstreamCallFailure as e:
            logger.warning(f"Could not resolve ClickUp user {email}: {e}")
            return None
        wanted = str(email).lower()
        for team in data.get("teams") or []:
            for member in team.get("members") or []:
                user = member.get("user") or {}
                if (user.get("email") or "").lower() == wanted:
                    return user.get("id")
        return None

    def create_task(
        self,
        list_id: str,
        name: str,
        description: str,
        tags: Optional[List[str]] = None,
        assignee_email: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create a task; returns its id, url and name"""
        assignee_id = self.get_user_id_by_email(assignee_email)
        payload = {
            "name": name,
            "description": description,
            "priority": 3,
            "tags": tags or [],
            "assignees": [assignee_id] if assignee_id else [],
        }
        resp = self._request("POST", f"list/{quote(str(list_id), safe='')}/task", "create task", json=payload)
        task = self.summarize(self._json(resp, "create task"))
        logger.info(f"Created task {task['id']} ({name}) in list {list_id}")
        return task

    def update_description(self, task_id: str, description: str) -> None:
        self._request("PUT", self._task_path(task_id), "update description", json={"description": description})

    def replace_tags(self, task_id: str, tag: str) -> None:
        """Drop every current tag (best effort) and add ``tag``"""
        try:
            current = self.get_task(task_id).get("tags") or []
        except UpstreamCallFailure as e:
            logger.warning(f"Could not read tags of task {task_id}: {e}")
            current = []
        for existing in current:
            tag_name = existing.get("name") if isinstance(existing, dict) else existing
            if not tag_name:
                continue
            try:
                self._request(
                    "DELETE", f"{self._task_path(task_id)}/tag/{quote(str(tag_name), safe='')}", "remove tag"
                )
            except UpstreamCallFailure as e:
                logger.warning(f"Could not remove tag {tag_name!r} from task {task_id}: {e}")
        self._request("POST", f"{self._task_path(task_id)}/tag/{quote(str(tag), safe='')}", "add tag")

    def add_comment(self, task_id: str, text: str) -> None:
        self._request("POST", f"{self._task_path(task_id)}/comment", "add comment", json={"comment_text": text})

    def update_status(self, task_id: str, status: str) -> None:
        if not task_id or not status:
            return
        self._request("PUT", self._task_path(task_id), "update status", json={"status": status})
        logger.info(f"Task {task_id} moved to {status}")

    def upload_attachment(self, task_id: str, content: bytes, content_type: str, file_name: str) -> None:
        files = {"attachment": (file_name or "file", content, content_type or "application/octet-stream")}
        self._request("POST", f"{self._task_path(task_id)}/attachment", "upload attachment", files=files)

    def get_comments(self, task_id: str) -> List[Dict[str, Any]]:
        """Task comments, newest first as ClickUp returns them"""
        resp = self._request("GET", f"{self._task_path(task_id)}/comment", "get comments")
        return self._json(resp, "get comments").get("comments") or []
