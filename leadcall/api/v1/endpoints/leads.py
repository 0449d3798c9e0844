"""
Lead Ingestion Endpoints
Web form and ad-platform webhooks that create or update CRM leads
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from leadcall.api.v1.dependencies import get_container
from leadcall.core.container import ServiceContainer
from leadcall.domain.models.lead import LeadCreateRequest, NormalizedLead, LeadUpsertResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/leads", tags=["leads"])


def _validation_messages(error: ValidationError) -> list:
    messages = []
    for detail in error.errors():
        field = ".".join(str(part) for part in detail.get("loc", ()))
        messages.append(f"{field}: {detail.get('msg')}" if field else detail.get("msg"))
    return messages


def _schedule_follow_up_call(
    container: ServiceContainer,
    lead: NormalizedLead,
    result: LeadUpsertResult
) -> Optional[str]:
    if not container.settings.auto_schedule_calls or not lead.phone:
        return None

    return container.scheduler.schedule_call(
        lead.phone,
        lead_metadata={
            "lead_id": result.record_id,
            "name": lead.display_name,
            "source": lead.lead_source,
            "action": result.action,
        }
    )


@router.post("")
async def ingest_lead(
    request: Request,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    container: ServiceContainer = Depends(get_container)
):
    """
    Create a lead in the CRM, or update the existing one.

    Redelivered webhooks (same Idempotency-Key header, or the same
    email/phone/source within a minute) replay the first response instead
    of writing again.

    Response:
        201 created / 200 updated:
        {success, action, lead_id, message, matched_by, call_id}
    """
    try:
        payload = await request.json()
    except ValueError:
        payload = None

    if not isinstance(payload, dict):
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "Validation failed", "details": ["Body must be a JSON object"]}
        )

    logger.info(
        f"Received lead ingestion request: source={payload.get('source')}, "
        f"has_email={bool(payload.get('email'))}, has_phone={bool(payload.get('phone'))}"
    )

    try:
        lead_request = LeadCreateRequest.model_validate(payload)
    except ValidationError as e:
        details = _validation_messages(e)
        logger.warning(f"Validation failed: {details}")
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "Validation failed", "details": details}
        )

    idempotency = container.idempotency
    key = idempotency_key or idempotency.generate_key(payload)

    cached = idempotency.check(key)
    if cached is not None:
        return JSONResponse(
            status_code=cached["status_code"],
            content={**cached["body"], "idempotent_replay": True}
        )

    normalized = container.normalizer.normalize(lead_request)
    result = await container.duplicate_detector.process_lead(normalized)

    logger.info(f"Lead processed successfully: action={result.action}, lead_id={result.record_id}")

    body: Dict[str, Any] = result.to_response()
    body["call_id"] = _schedule_follow_up_call(container, normalized, result)

    status_code = 201 if result.action == "created" else 200
    idempotency.store(key, {"status_code": status_code, "body": body})

    return JSONResponse(status_code=status_code, content=body)


@router.get("/sources")
async def list_sources(container: ServiceContainer = Depends(get_container)):
    """List the recognised lead source values."""
    sources = container.normalizer.get_valid_sources()
    return {
        "success": True,
        "sources": sources,
        "count": len(sources)
    }
