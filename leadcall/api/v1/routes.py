"""
API Router
Combines all endpoint routers
"""
from fastapi import APIRouter
from leadcall.api.v1.endpoints import (
    leads,
    twilio,
    exotel,
    calls,
)

api_router = APIRouter()

# Lead ingestion
api_router.include_router(leads.router)

# Telephony webhooks
api_router.include_router(twilio.router)
api_router.include_router(exotel.router)

# Scheduled calls
api_router.include_router(calls.router)
