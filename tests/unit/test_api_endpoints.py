"""
Tests for API Endpoints
Lead ingestion, Twilio/Exotel webhooks, scheduled calls and health
"""
from contextlib import asynccontextmanager
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient

from leadcall.core.config import ConfigManager, Settings, ZohoSettings
from leadcall.core.container import ServiceContainer
from leadcall.domain.interfaces.crm_client import CRMAPIError, CRMWriteResult
from leadcall.domain.interfaces.telephony_provider import CallOptions, CallResult, TelephonyProvider
from leadcall.domain.services.token_manager import TokenRefreshError
from leadcall.main import create_app

LEAD = {
    "source": "meta_ads",
    "name": "Asha Rao",
    "email": "asha@example.com",
    "phone": "9876543210",
}


class FakeProvider(TelephonyProvider):
    """Provider that never dials"""

    def __init__(self):
        self.calls = []

    @property
    def name(self) -> str:
        return "fake"

    @property
    def enabled(self) -> bool:
        return True

    async def make_call(self, phone_number: str, options: Optional[CallOptions] = None) -> CallResult:
        self.calls.append(phone_number)
        return CallResult.ok("CA-test")


def make_crm(existing=None):
    records = existing or {}
    crm = MagicMock()
    crm.search_by_field = AsyncMock(side_effect=lambda field, value: records.get(value))
    crm.create = AsyncMock(return_value=CRMWriteResult(id="new-1", status="created"))
    crm.update = AsyncMock(side_effect=lambda record_id, data: CRMWriteResult(id=record_id, status="updated"))
    crm.close = AsyncMock()
    return crm


def make_container(crm=None, provider=None, **settings_overrides) -> ServiceContainer:
    settings = Settings(
        environment="test",
        base_url="https://leads.test",
        zoho=ZohoSettings(client_id="id", client_secret="secret", refresh_token="refresh"),
        **settings_overrides
    )
    return ServiceContainer.build(
        settings,
        ConfigManager(env="test"),
        crm_client=crm or make_crm(),
        provider=provider if provider is not None else FakeProvider()
    )


@asynccontextmanager
async def api_client(container: ServiceContainer):
    app = create_app(container=container)
    transport = ASGITransport(app=app)
    try:
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
    finally:
        await container.scheduler.shutdown()


class TestLeadIngestion:
    """Tests for POST /api/v1/leads"""

    @pytest.mark.asyncio
    async def test_new_lead_is_created_and_called(self):
        """Test that a new lead returns 201 and schedules a follow-up call"""
        crm = make_crm()
        container = make_container(crm)

        async with api_client(container) as client:
            response = await client.post("/api/v1/leads", json=LEAD)

            assert response.status_code == 201
            data = response.json()
            assert data["success"] is True
            assert data["action"] == "created"
            assert data["lead_id"] == "new-1"
            assert data["call_id"].startswith("call_new-1_")
            assert container.scheduler.get_pending_calls() == [data["call_id"]]

        sent = crm.create.await_args.args[0]
        assert sent["Phone"] == "+919876543210"
        assert sent["Email"] == "asha@example.com"

    @pytest.mark.asyncio
    async def test_existing_lead_is_updated(self):
        """Test that a duplicate returns 200 with the matched record"""
        crm = make_crm({"asha@example.com": {"id": "e1", "Lead_Status": "Hot"}})

        async with api_client(make_container(crm)) as client:
            response = await client.post("/api/v1/leads", json=LEAD)

        assert response.status_code == 200
        assert response.json()["action"] == "updated"
        assert response.json()["matched_by"] == "email"
        crm.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_idempotency_key_replays_response(self):
        """Test that a redelivery with the same key does not write again"""
        crm = make_crm()

        async with api_client(make_container(crm)) as client:
            first = await client.post("/api/v1/leads", json=LEAD, headers={"Idempotency-Key": "evt-1"})
            second = await client.post("/api/v1/leads", json=LEAD, headers={"Idempotency-Key": "evt-1"})

        assert first.status_code == 201
        assert second.status_code == 201
        assert second.json()["idempotent_replay"] is True
        assert second.json()["lead_id"] == first.json()["lead_id"]
        crm.create.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_derived_key_replays_same_submission(self):
        """Test that identical submissions without a key are de-duplicated"""
        crm = make_crm()

        async with api_client(make_container(crm)) as client:
            await client.post("/api/v1/leads", json=LEAD)
            second = await client.post("/api/v1/leads", json=LEAD)

        assert second.json()["idempotent_replay"] is True
        crm.create.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_schema_validation_error(self):
        """Test that an invalid body returns 400 with details"""
        async with api_client(make_container()) as client:
            response = await client.post("/api/v1/leads", json={"source": "organic", "name": "A"})

        assert response.status_code == 400
        data = response.json()
        assert data["success"] is False
        assert data["error"] == "Validation failed"
        assert any("name" in d for d in data["details"])

    @pytest.mark.asyncio
    async def test_email_or_phone_required(self):
        """Test that a lead without contact details is rejected before any CRM call"""
        crm = make_crm()

        async with api_client(make_container(crm)) as client:
            response = await client.post("/api/v1/leads", json={"source": "organic", "name": "Ravi"})

        assert response.status_code == 400
        assert response.json()["details"] == ["Either email or phone is required"]
        crm.search_by_field.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_non_object_body_rejected(self):
        """Test that a JSON array body returns 400"""
        async with api_client(make_container()) as client:
            response = await client.post("/api/v1/leads", json=[LEAD])

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_crm_error_maps_to_bad_gateway(self):
        """Test that a CRM failure without an HTTP status returns 502"""
        crm = make_crm()
        crm.create = AsyncMock(side_effect=CRMAPIError("Failed to create lead", code="INVALID_DATA"))

        async with api_client(make_container(crm)) as client:
            response = await client.post("/api/v1/leads", json=LEAD)
            retry = await client.post("/api/v1/leads", json=LEAD)

        assert response.status_code == 502
        assert response.json() == {"success": False, "error": "Failed to create lead", "code": "INVALID_DATA"}
        assert crm.create.await_count == 2
        assert "idempotent_replay" not in retry.json()

    @pytest.mark.asyncio
    async def test_token_failure_maps_to_unavailable(self):
        """Test that CRM authentication failure returns 503"""
        crm = make_crm()
        crm.create = AsyncMock(side_effect=TokenRefreshError("invalid_client"))

        async with api_client(make_container(crm)) as client:
            response = await client.post("/api/v1/leads", json=LEAD)

        assert response.status_code == 503
        assert response.json()["code"] == "TOKEN_REFRESH_FAILED"

    @pytest.mark.asyncio
    async def test_auto_schedule_disabled(self):
        """Test that no call is scheduled when auto scheduling is off"""
        container = make_container(auto_schedule_calls=False)

        async with api_client(container) as client:
            response = await client.post("/api/v1/leads", json=LEAD)

        assert response.json()["call_id"] is None
        assert container.scheduler.get_stats()["total"] == 0

    @pytest.mark.asyncio
    async def test_list_sources(self):
        """Test the configured source list"""
        async with api_client(make_container()) as client:
            response = await client.get("/api/v1/leads/sources")

        data = response.json()
        assert data["success"] is True
        assert "meta_ads" in data["sources"]
        assert data["count"] == len(data["sources"])


class TestTwilioWebhooks:
    """Tests for /api/v1/twilio endpoints"""

    @pytest.mark.asyncio
    async def test_ivr_keypress_updates_status(self):
        """Test that a keypress replies with TwiML and writes the mapped status"""
        crm = make_crm({"+919876543210": {"id": "77"}})

        async with api_client(make_container(crm)) as client:
            response = await client.post(
                "/api/v1/twilio/ivr-response",
                data={"Digits": "1", "CallSid": "CA1", "To": "+919876543210"}
            )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/xml")
        assert "schedule your site visit" in response.text
        crm.update.assert_awaited_once_with("77", {"Lead_Status": "Interested"})

    @pytest.mark.asyncio
    async def test_ivr_keypress_without_status(self):
        """Test that the WhatsApp option replies without touching the CRM"""
        crm = make_crm({"+919876543210": {"id": "77"}})

        async with api_client(make_container(crm)) as client:
            response = await client.post("/api/v1/twilio/ivr-response", data={"Digits": "2", "To": "+919876543210"})

        assert "WhatsApp" in response.text
        crm.update.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ivr_invalid_keypress(self):
        """Test the fallback TwiML for an unknown digit"""
        async with api_client(make_container()) as client:
            response = await client.post("/api/v1/twilio/ivr-response", data={"Digits": "9"})

        assert "valid selection" in response.text

    @pytest.mark.asyncio
    async def test_status_callback_acknowledged(self):
        """Test that call progress events are acknowledged"""
        async with api_client(make_container()) as client:
            response = await client.post(
                "/api/v1/twilio/status-callback",
                data={"CallSid": "CA1", "CallStatus": "completed", "CallDuration": "42"}
            )

        assert response.json() == {"success": True}

    @pytest.mark.asyncio
    async def test_update_lead_status(self):
        """Test the lead status update and its replay"""
        crm = make_crm({"+919876543210": {"id": "77"}})
        payload = {"phone": "+919876543210", "status": "Interested", "buttonPressed": "1"}

        async with api_client(make_container(crm)) as client:
            first = await client.post("/api/v1/twilio/update-lead-status", json=payload)
            second = await client.post("/api/v1/twilio/update-lead-status", json=payload)

        assert first.json() == {
            "success": True,
            "message": "Lead status updated in CRM",
            "phone": "+919876543210",
            "status": "Interested",
            "lead_id": "77",
        }
        assert second.json()["idempotent_replay"] is True
        crm.update.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_update_lead_status_requires_phone_and_status(self):
        """Test that missing fields return 400"""
        async with api_client(make_container()) as client:
            response = await client.post("/api/v1/twilio/update-lead-status", json={"phone": "+919876543210"})

        assert response.status_code == 400
        assert response.json()["error"] == "Phone and status are required"

    @pytest.mark.asyncio
    async def test_update_lead_status_not_found(self):
        """Test the response when no lead has the number"""
        async with api_client(make_container()) as client:
            response = await client.post(
                "/api/v1/twilio/update-lead-status",
                json={"phone": "+919876543210", "status": "Interested"}
            )

        assert response.status_code == 200
        assert response.json() == {
            "success": False,
            "message": "Lead not found in CRM",
            "phone": "+919876543210",
        }

    @pytest.mark.asyncio
    async def test_update_lead_status_crm_failure_acknowledged(self):
        """Test that a CRM failure is acknowledged without a retry-inducing error"""
        crm = make_crm()
        crm.search_by_field = AsyncMock(side_effect=CRMAPIError("Zoho down", status=503))

        async with api_client(make_container(crm)) as client:
            response = await client.post(
                "/api/v1/twilio/update-lead-status",
                json={"phone": "+919876543210", "status": "Interested"}
            )

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert response.json()["message"] == "Webhook received but CRM update failed"

    @pytest.mark.asyncio
    async def test_stats(self):
        """Test the call statistics endpoint"""
        async with api_client(make_container()) as client:
            response = await client.get("/api/v1/twilio/stats")

        data = response.json()
        assert data["provider"] == "fake"
        assert data["stats"]["pending"] == 0


class TestExotelWebhooks:
    """Tests for /api/v1/exotel endpoints"""

    @pytest.mark.asyncio
    async def test_status_callback_always_ok(self):
        """Test that Exotel callbacks are answered with plain OK"""
        async with api_client(make_container()) as client:
            response = await client.post(
                "/api/v1/exotel/status-callback",
                data={"CallSid": "ex-1", "Status": "failed", "CustomField": "call_unknown_1"}
            )

        assert response.status_code == 200
        assert response.text == "OK"

    @pytest.mark.asyncio
    async def test_ivr_keypress_with_local_number(self):
        """Test that an Exotel keypress from a 0-prefixed number updates the lead"""
        crm = make_crm({"+919876543210": {"id": "88"}})

        async with api_client(make_container(crm)) as client:
            response = await client.post("/api/v1/exotel/ivr-response", data={"Digits": "3", "From": "09876543210"})

        assert response.headers["content-type"].startswith("text/xml")
        crm.update.assert_awaited_once_with("88", {"Lead_Status": "Not Interested"})


class TestCallEndpoints:
    """Tests for /api/v1/calls endpoints"""

    @pytest.mark.asyncio
    async def test_inspect_and_cancel_pending_call(self):
        """Test listing, reading and cancelling a scheduled call"""
        container = make_container()

        async with api_client(container) as client:
            call_id = (await client.post("/api/v1/leads", json=LEAD)).json()["call_id"]

            pending = (await client.get("/api/v1/calls/pending")).json()
            assert pending == {"pending": [call_id], "count": 1}

            detail = (await client.get(f"/api/v1/calls/{call_id}")).json()
            assert detail["status"] == "pending"
            assert detail["phone_number"] == "+919876543210"
            assert detail["lead_metadata"]["lead_id"] == "new-1"

            cancelled = await client.delete(f"/api/v1/calls/{call_id}")
            assert cancelled.json() == {"success": True, "call_id": call_id, "status": "cancelled"}

            again = await client.delete(f"/api/v1/calls/{call_id}")
            assert again.status_code == 404

            detail = (await client.get(f"/api/v1/calls/{call_id}")).json()
            assert detail["status"] == "cancelled"

    @pytest.mark.asyncio
    async def test_unknown_call(self):
        """Test 404 for an unknown call id"""
        async with api_client(make_container()) as client:
            response = await client.get("/api/v1/calls/call_nope_1")

        assert response.status_code == 404


class TestHealthEndpoint:
    """Tests for the /health endpoint."""

    @pytest.mark.asyncio
    async def test_health_endpoint_returns_healthy(self):
        """Test that /health reports service state without secrets"""
        async with api_client(make_container()) as client:
            response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["environment"] == "test"
        assert data["token"]["has_token"] is False
        assert "access_token" not in data["token"]
        assert data["calls"]["provider"] == "fake"

    @pytest.mark.asyncio
    async def test_root_endpoint(self):
        """Test that / returns the service banner"""
        async with api_client(make_container()) as client:
            response = await client.get("/")

        assert response.json()["message"] == "Lead Call Engine API"

    @pytest.mark.asyncio
    async def test_requests_before_startup_fail(self):
        """Test that endpoints refuse to run without a service container"""
        app = create_app(Settings(environment="test"))
        transport = ASGITransport(app=app)

        async with AsyncClient(transport=transport, base_url="http://test") as client:
            with pytest.raises(RuntimeError, match="Service container not initialized"):
                await client.get("/health")
