"""Task ↔ ticket correlation endpoints"""
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from deskbridge.api.deps import get_runtime
from deskbridge.services.bridge import BridgeRuntime

router = APIRouter(prefix="/api/correlations", tags=["correlations"])


class CorrelationResponse(BaseModel):
    task_id: str
    ticket_id: str
    subdomain: str = ""
    ticket_url: str = ""
    source: str = ""
    last_known_status: str = ""


@router.get("/{task_id}", response_model=CorrelationResponse)
def get_correlation(task_id: str, runtime: BridgeRuntime = Depends(get_runtime)):
    """Show the ticket a task is linked to and its last known status"""
    link = runtime.correlation_store(runtime.new_audit()).lookup(task_id)
    if link is None:
        raise HTTPException(status_code=404, detail="Correlation not found")
    return CorrelationResponse(
        task_id=task_id,
        ticket_id=link.ticket_id,
        subdomain=link.subdomain,
        ticket_url=link.ticket_url,
        source=link.source,
        last_known_status=runtime.status_store().last_known(task_id),
    )


@router.delete("/{task_id}")
def delete_correlation(task_id: str, runtime: BridgeRuntime = Depends(get_runtime)):
    """Forget a task's link and status so the next delivery starts fresh"""
    runtime.correlation_store().forget(task_id)
    runtime.status_store().forget(task_id)
    return {"message": "Correlation deleted successfully", "task_id": task_id}
