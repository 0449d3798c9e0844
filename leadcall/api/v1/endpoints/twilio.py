"""
Twilio Webhook Endpoints
IVR keypresses, call status callbacks and lead status updates
"""
import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Request, Response
from fastapi.responses import JSONResponse

from leadcall.api.v1.dependencies import (
    get_idempotency,
    get_ivr,
    get_scheduler,
    parse_webhook_payload,
)
from leadcall.domain.interfaces.crm_client import CRMAPIError
from leadcall.domain.services.call_scheduler import CallScheduler
from leadcall.domain.services.idempotency import IdempotencyGuard
from leadcall.domain.services.ivr_service import IvrService
from leadcall.domain.services.token_manager import TokenRefreshError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/twilio", tags=["twilio"])


@router.post("/ivr-response")
async def ivr_response(
    request: Request,
    background_tasks: BackgroundTasks,
    ivr: IvrService = Depends(get_ivr)
):
    """
    Handle the lead's keypress from the <Gather> in the greeting.

    Replies with TwiML immediately; the CRM status write runs after the
    response is sent.
    """
    payload = await parse_webhook_payload(request)
    digit = payload.get("Digits")
    call_sid = payload.get("CallSid")
    phone = payload.get("To") or payload.get("From")

    logger.info(f"IVR response received: digit={digit}, call_sid={call_sid}")

    option = ivr.get_option(digit)
    if option is None:
        logger.warning(f"Invalid IVR input: digit={digit}, call_sid={call_sid}")
    elif option.status and phone:
        background_tasks.add_task(ivr.handle_keypress, digit, phone)

    return Response(content=ivr.render_response(digit), media_type="text/xml")


@router.post("/status-callback")
async def status_callback(request: Request):
    """Receive call progress events from Twilio."""
    payload = await parse_webhook_payload(request)

    logger.info(
        f"Twilio status callback received: call_sid={payload.get('CallSid')}, "
        f"status={payload.get('CallStatus')}, duration={payload.get('CallDuration') or payload.get('Duration')}"
    )

    return {"success": True}


@router.post("/update-lead-status")
async def update_lead_status(
    request: Request,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    ivr: IvrService = Depends(get_ivr),
    idempotency: IdempotencyGuard = Depends(get_idempotency)
):
    """
    Set the CRM Lead_Status for the lead with this phone number.

    Called by the Twilio Function behind the IVR. Retries of the same
    update replay the first response.

    Request Body:
        {"phone": "+919876543210", "status": "Interested", "buttonPressed": "1"}
    """
    payload = await parse_webhook_payload(request)
    phone = payload.get("phone")
    status = payload.get("status")

    logger.info(f"IVR status update received: status={status}, button={payload.get('buttonPressed')}")

    if not phone or not status:
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "Phone and status are required"}
        )

    key = idempotency_key or idempotency.generate_key({"phone": phone, "source": f"ivr:{status}"})
    cached = idempotency.check(key)
    if cached is not None:
        return {**cached, "idempotent_replay": True}

    try:
        result = await ivr.update_lead_status(phone, status)
    except (CRMAPIError, TokenRefreshError) as e:
        logger.error(f"Failed to update lead in CRM: {e}")
        # Acknowledge so the Twilio Function does not retry
        return {
            "success": True,
            "message": "Webhook received but CRM update failed",
            "error": str(e)
        }

    if not result.updated:
        return {
            "success": False,
            "message": "Lead not found in CRM",
            "phone": phone
        }

    body = {
        "success": True,
        "message": "Lead status updated in CRM",
        "phone": phone,
        "status": status,
        "lead_id": result.lead_id
    }
    idempotency.store(key, body)
    return body


@router.get("/stats")
async def call_stats(scheduler: CallScheduler = Depends(get_scheduler)):
    """Outbound call statistics."""
    return {
        "success": True,
        "provider": scheduler.provider_name,
        "stats": scheduler.get_stats()
    }
