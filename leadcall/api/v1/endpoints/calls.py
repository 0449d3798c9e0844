"""
Scheduled Call Endpoints
Inspect and cancel outbound call chains
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from leadcall.api.v1.dependencies import get_scheduler
from leadcall.domain.services.call_scheduler import CallScheduler

router = APIRouter(prefix="/calls", tags=["calls"])


class PendingCallsResponse(BaseModel):
    """Call chains waiting on a timer or retry"""
    pending: List[str]
    count: int


class CallDetail(BaseModel):
    """Full call record"""
    call_id: str
    phone_number: str
    lead_metadata: Dict[str, Any]
    status: str
    attempt_count: int
    scheduled_at: Optional[str] = None
    last_attempt_at: Optional[str] = None
    next_attempt_at: Optional[str] = None
    provider_call_id: Optional[str] = None
    last_error: Optional[str] = None
    skip_reason: Optional[str] = None


@router.get("/pending", response_model=PendingCallsResponse)
async def list_pending_calls(scheduler: CallScheduler = Depends(get_scheduler)):
    """List call ids that have not reached a terminal outcome."""
    pending = scheduler.get_pending_calls()
    return PendingCallsResponse(pending=pending, count=len(pending))


@router.get("/{call_id}", response_model=CallDetail)
async def get_call(call_id: str, scheduler: CallScheduler = Depends(get_scheduler)):
    """Get the record of one call chain."""
    record = scheduler.get_call_status(call_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Call not found")
    return CallDetail(**record.to_dict())


@router.delete("/{call_id}")
async def cancel_call(call_id: str, scheduler: CallScheduler = Depends(get_scheduler)):
    """
    Cancel a pending call chain.

    Returns 404 when the call is unknown or already finished.
    """
    if not scheduler.cancel_call(call_id):
        raise HTTPException(status_code=404, detail="No pending call with this id")
    return {"success": True, "call_id": call_id, "status": "cancelled"}
