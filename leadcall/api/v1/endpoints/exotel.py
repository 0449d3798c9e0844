"""
Exotel Webhook Endpoints
Call status callbacks and IVR keypresses from Exotel
"""
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Request, Response
from fastapi.responses import PlainTextResponse

from leadcall.api.v1.dependencies import get_ivr, get_scheduler, parse_webhook_payload
from leadcall.domain.services.call_scheduler import CallScheduler
from leadcall.domain.services.ivr_service import IvrService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/exotel", tags=["exotel"])


@router.post("/status-callback")
async def status_callback(
    request: Request,
    scheduler: CallScheduler = Depends(get_scheduler)
):
    """
    Receive call status updates from Exotel.

    Always answers 200 so Exotel does not redeliver.
    """
    try:
        data = await parse_webhook_payload(request)
        call_sid = data.get("CallSid")
        status = data.get("Status")
        custom_field = data.get("CustomField")

        logger.info(
            f"Exotel status callback received: call_sid={call_sid}, status={status}, "
            f"duration={data.get('Duration')}, custom_field={custom_field}"
        )

        # CustomField carries our call_id
        record = scheduler.get_call_status(custom_field) if custom_field else None
        lead = record.lead_id if record else None

        if status == "completed":
            logger.info(f"Call completed: call_sid={call_sid}, lead={lead}, duration={data.get('Duration')}")
        elif status == "failed":
            logger.warning(f"Call failed: call_sid={call_sid}, lead={lead}, reason={data.get('FailureReason')}")
        elif status in ("busy", "no-answer"):
            logger.info(f"Call not connected ({status}): call_sid={call_sid}, lead={lead}")

    except Exception as e:
        logger.error(f"Error processing Exotel callback: {e}", exc_info=True)

    return PlainTextResponse("OK", status_code=200)


@router.post("/ivr-response")
async def ivr_response(
    request: Request,
    background_tasks: BackgroundTasks,
    ivr: IvrService = Depends(get_ivr)
):
    """Handle a keypress from the Exotel IVR app."""
    data = await parse_webhook_payload(request)
    digit = data.get("Digits")
    phone = data.get("From")

    logger.info(f"Exotel IVR response received: digit={digit}, call_sid={data.get('CallSid')}")

    if ivr.status_for_digit(digit) and phone:
        background_tasks.add_task(ivr.handle_keypress, digit, phone)

    return Response(content=ivr.render_response(digit), media_type="text/xml")


@router.get("/stats")
async def call_stats(scheduler: CallScheduler = Depends(get_scheduler)):
    """Outbound call statistics."""
    return {
        "success": True,
        "provider": scheduler.provider_name,
        "stats": scheduler.get_stats()
    }
