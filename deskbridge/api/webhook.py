"""Webhook entry point for Zendesk triggers and ClickUp automations"""
import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool

from deskbridge.api.deps import get_runtime
from deskbridge.services.bridge import BridgeRuntime

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhook", tags=["webhook"])


@router.post("")
async def receive_webhook(request: Request, runtime: BridgeRuntime = Depends(get_runtime)):
    """Process one delivery. Always answers 200 with a JSON result."""
    raw = await request.body()
    if not raw or not raw.strip():
        logger.warning("Webhook POST without a body")
        return {"ok": False, "reason": "No postData", "execution_logs": []}

    try:
        payload = json.loads(raw)
    except ValueError as e:
        return {"ok": False, "reason": "invalid JSON", "error": str(e), "execution_logs": []}

    bridge = runtime.new_bridge()
    return await run_in_threadpool(bridge.handle, payload)


@router.get("")
def webhook_info(request: Request):
    """Diagnostic answer for GETs; never touches state"""
    params = dict(request.query_params)
    params.pop("key", None)
    return {
        "ok": False,
        "method": "GET",
        "has_params": bool(params),
        "params": params,
        "hint": "Use POST + JSON",
    }
