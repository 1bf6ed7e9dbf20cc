"""Security-related helpers (shared-key auth).

Webhook senders can't do interactive auth, so the bridge accepts a shared
key either as a header or as a ``key`` query parameter.
"""

from __future__ import annotations

import secrets

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

KEY_HEADER = "X-Bridge-Key"
KEY_PARAM = "key"


def _presented_key(request: Request) -> str:
    """The key carried by the request, header first."""
    return request.headers.get(KEY_HEADER) or request.query_params.get(KEY_PARAM) or ""


class SharedKeyMiddleware(BaseHTTPMiddleware):
    """Protect routes with a shared secret.

    ``allow_paths`` are open for every method; ``allow_get_paths`` only for GET,
    so the webhook's diagnostic GET stays reachable while POSTs are checked.
    """

    def __init__(
        self,
        app,
        *,
        key: str,
        allow_paths: set[str] | None = None,
        allow_get_paths: set[str] | None = None,
    ):
        super().__init__(app)
        self._key = key
        self._allow_paths = allow_paths or {"/health"}
        self._allow_get_paths = allow_get_paths or set()

    def _unauthorized(self) -> Response:
        return JSONResponse({"ok": False, "reason": "unauthorized"}, status_code=401)

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path in self._allow_paths:
            return await call_next(request)
        if request.method == "GET" and path in self._allow_get_paths:
            return await call_next(request)

        presented = _presented_key(request)
        if not presented or not secrets.compare_digest(presented, self._key):
            return self._unauthorized()

        return await call_next(request)
