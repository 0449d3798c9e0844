"""
API Dependencies
Shared dependencies resolving services from the application container
"""
from typing import Any, Dict

from fastapi import Depends, Request
from starlette.datastructures import FormData

from leadcall.core.container import ServiceContainer
from leadcall.domain.services.call_scheduler import CallScheduler
from leadcall.domain.services.idempotency import IdempotencyGuard
from leadcall.domain.services.ivr_service import IvrService


def get_container(request: Request) -> ServiceContainer:
    """
    Get the service container built in the application lifespan.

    Raises:
        RuntimeError: If the application has not started
    """
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise RuntimeError("Service container not initialized. Is the application lifespan running?")
    return container


def get_scheduler(container: ServiceContainer = Depends(get_container)) -> CallScheduler:
    return container.scheduler


def get_idempotency(container: ServiceContainer = Depends(get_container)) -> IdempotencyGuard:
    return container.idempotency


def get_ivr(container: ServiceContainer = Depends(get_container)) -> IvrService:
    return container.ivr


async def parse_webhook_payload(request: Request) -> Dict[str, Any]:
    """
    Read a webhook body sent either form-encoded (Twilio, Exotel) or as JSON.

    Returns an empty dict for an empty or unparseable body.
    """
    content_type = (request.headers.get("content-type") or "").lower()

    if "application/x-www-form-urlencoded" in content_type or "multipart/form-data" in content_type:
        form: FormData = await request.form()
        return {k: (v if isinstance(v, str) else str(v)) for k, v in form.items()}

    body = await request.body()
    if not body:
        return {}

    try:
        data = await request.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
