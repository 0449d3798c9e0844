"""
Health Check Endpoint
Provides health status for Docker health checks and monitoring
"""
from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter, Depends, status

from leadcall.api.v1.dependencies import get_container
from leadcall.core.container import ServiceContainer

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check(container: ServiceContainer = Depends(get_container)) -> Dict[str, Any]:
    """
    Health check endpoint for Docker and monitoring systems.

    Returns:
        Service status with token, idempotency cache and scheduler state
    """
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat() + "Z",
        "service": "leadcall",
        "environment": container.settings.environment,
        "token": container.token_manager.get_token_info(),
        "idempotency": container.idempotency.get_stats(),
        "calls": container.scheduler.get_stats(),
    }


@router.get("/", status_code=status.HTTP_200_OK)
async def root() -> Dict[str, str]:
    """
    Root endpoint.

    Returns:
        Welcome message
    """
    return {
        "message": "Lead Call Engine API",
        "version": "1.0.0",
        "docs": "/docs"
    }
