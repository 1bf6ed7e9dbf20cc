"""Engine error taxonomy.

Shape and validation errors short-circuit an event. Upstream failures are
caught per action by the bridge so sibling actions still run. Malformed
persisted state never leaves the state layer.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional


class BridgeError(Exception):
    """Base class for all engine errors."""

    reason = "error"

    def to_result(self) -> dict[str, Any]:
        return {"ok": False, "reason": self.reason}


class UnrecognizedPayload(BridgeError):
    reason = "unrecognized payload"

    def __init__(self, keys: Iterable[str]):
        self.keys = sorted(str(k) for k in keys)
        super().__init__(f"unrecognized payload (keys: {', '.join(self.keys) or 'none'})")

    def to_result(self) -> dict[str, Any]:
        return {"ok": False, "reason": self.reason, "keys": self.keys}


class ValidationFailure(BridgeError):
    reason = "missing"

    def __init__(self, missing: Iterable[str], side: str):
        self.missing = list(missing)
        self.side = side
        super().__init__(f"missing required fields: {', '.join(self.missing)}")

    def to_result(self) -> dict[str, Any]:
        return {"ok": False, "side": self.side, "reason": self.reason, "missing": self.missing}


class NoCorrelationFound(BridgeError):
    reason = "no zendesk link"

    def __init__(self, task_id: Optional[str]):
        self.task_id = task_id
        super().__init__(f"no zendesk link for task {task_id}")

    def to_result(self) -> dict[str, Any]:
        return {"ok": False, "side": "cu->zd", "reason": self.reason, "taskId": self.task_id}


class UpstreamCallFailure(BridgeError):
    reason = "upstream call failed"

    def __init__(
        self,
        service: str,
        operation: str,
        status_code: Optional[int] = None,
        body: str = "",
    ):
        self.service = service
        self.operation = operation
        self.status_code = status_code
        self.body = body
        detail = f"{service} {operation} failed"
        if status_code is not None:
            detail += f": {status_code}"
        if body:
            detail += f" {body[:300]}"
        super().__init__(detail)


class MalformedPersistedState(BridgeError):
    reason = "malformed persisted state"

    def __init__(self, key: str, value: Any = None):
        self.key = key
        self.value = value
        super().__init__(f"malformed record under {key!r}")
