"""
Unit Tests for ZohoCRMClient
Request shape, response mapping and the retry matrix
"""
import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from leadcall.core.config import ZohoSettings
from leadcall.domain.interfaces.crm_client import CRMAPIError
from leadcall.infrastructure.crm.zoho import ZohoCRMClient


def make_token_manager(token: str = "access-1"):
    manager = MagicMock()
    manager.get_access_token = AsyncMock(return_value=token)
    manager.refresh_access_token = AsyncMock(return_value="access-2")
    manager.clear_token = MagicMock()
    return manager


class ZohoAPI:
    """Scripted Zoho endpoint recording requests"""

    def __init__(self, *responses: httpx.Response):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses.pop(0)


def make_client(api: ZohoAPI, token_manager=None):
    token_manager = token_manager or make_token_manager()
    client = ZohoCRMClient(
        ZohoSettings(api_domain="https://zoho.test"),
        token_manager,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(api))
    )
    client._sleep = AsyncMock()
    return client, token_manager


def write_ok(record_id: str = "5001") -> httpx.Response:
    return httpx.Response(200, json={"data": [{"code": "SUCCESS", "details": {"id": record_id}}]})


class TestSearch:
    """Tests for lead search"""

    @pytest.mark.asyncio
    async def test_search_request_shape(self):
        """Test the search URL, criteria and auth header"""
        api = ZohoAPI(httpx.Response(200, json={"data": [{"id": "1"}, {"id": "2"}]}))
        client, _ = make_client(api)

        record = await client.search_by_email("asha@example.com")

        assert record == {"id": "1"}
        request = api.requests[0]
        assert request.method == "GET"
        assert request.url.path == "/crm/v2/Leads/search"
        assert request.url.params["criteria"] == "(Email:equals:asha@example.com)"
        assert request.headers["Authorization"] == "Zoho-oauthtoken access-1"

    @pytest.mark.asyncio
    async def test_no_content_is_no_match(self):
        """Test that 204 means no matching record"""
        client, _ = make_client(ZohoAPI(httpx.Response(204)))

        assert await client.search_by_phone("+919876543210") is None

    @pytest.mark.asyncio
    async def test_no_data_found_is_no_match(self):
        """Test that the NO_DATA_FOUND error code means no matching record"""
        api = ZohoAPI(httpx.Response(400, json={"code": "NO_DATA_FOUND", "message": "no data"}))
        client, _ = make_client(api)

        assert await client.search_by_field("Phone", "+919876543210") is None

    @pytest.mark.asyncio
    async def test_empty_data_is_no_match(self):
        """Test that an empty data list means no matching record"""
        client, _ = make_client(ZohoAPI(httpx.Response(200, json={"data": []})))

        assert await client.search_by_email("a@b.com") is None

    @pytest.mark.asyncio
    async def test_other_client_error_raises(self):
        """Test that non-retryable errors carry status and code"""
        api = ZohoAPI(httpx.Response(400, json={"code": "INVALID_QUERY", "message": "bad criteria"}))
        client, _ = make_client(api)

        with pytest.raises(CRMAPIError) as exc_info:
            await client.search_by_email("a@b.com")

        assert exc_info.value.status == 400
        assert exc_info.value.code == "INVALID_QUERY"
        assert exc_info.value.message == "bad criteria"


class TestWrites:
    """Tests for create and update"""

    @pytest.mark.asyncio
    async def test_create_payload_and_result(self):
        """Test that create wraps the record and requests automation triggers"""
        api = ZohoAPI(write_ok("5001"))
        client, _ = make_client(api)

        result = await client.create({"Last_Name": "Asha", "Phone": "+919876543210"})

        assert result.id == "5001"
        assert result.status == "created"
        request = api.requests[0]
        assert request.method == "POST"
        assert request.url.path == "/crm/v2/Leads"
        assert json.loads(request.content) == {
            "data": [{"Last_Name": "Asha", "Phone": "+919876543210"}],
            "trigger": ["approval", "workflow", "blueprint"],
        }

    @pytest.mark.asyncio
    async def test_update_uses_put_on_record(self):
        """Test that update targets the record URL"""
        api = ZohoAPI(write_ok("42"))
        client, _ = make_client(api)

        result = await client.update("42", {"Lead_Status": "Interested"})

        assert result.id == "42"
        assert result.status == "updated"
        assert api.requests[0].method == "PUT"
        assert api.requests[0].url.path == "/crm/v2/Leads/42"

    @pytest.mark.asyncio
    async def test_write_rejected_by_zoho(self):
        """Test that a non-SUCCESS record code raises"""
        api = ZohoAPI(httpx.Response(200, json={
            "data": [{"code": "MANDATORY_NOT_FOUND", "message": "required field not found"}]
        }))
        client, _ = make_client(api)

        with pytest.raises(CRMAPIError, match="Failed to create lead") as exc_info:
            await client.create({"Email": "a@b.com"})

        assert exc_info.value.code == "MANDATORY_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_write_unexpected_format(self):
        """Test that a body without data raises"""
        client, _ = make_client(ZohoAPI(httpx.Response(200, json={})))

        with pytest.raises(CRMAPIError, match="Unexpected response format"):
            await client.update("42", {"Lead_Status": "Interested"})


class TestRetries:
    """Tests for token refresh, rate limit and server error handling"""

    @pytest.mark.asyncio
    async def test_invalid_token_refreshes_and_retries_once(self):
        """Test that a 401 INVALID_TOKEN clears, refreshes and replays the request"""
        api = ZohoAPI(
            httpx.Response(401, json={"code": "INVALID_TOKEN", "message": "invalid oauth token"}),
            httpx.Response(200, json={"data": [{"id": "1"}]}),
        )
        client, token_manager = make_client(api)

        assert await client.search_by_email("a@b.com") == {"id": "1"}

        token_manager.clear_token.assert_called_once()
        token_manager.refresh_access_token.assert_awaited_once()
        assert len(api.requests) == 2

    @pytest.mark.asyncio
    async def test_second_invalid_token_raises(self):
        """Test that a replayed request is not retried again on 401"""
        unauthorized = {"code": "INVALID_TOKEN", "message": "invalid oauth token"}
        api = ZohoAPI(httpx.Response(401, json=unauthorized), httpx.Response(401, json=unauthorized))
        client, token_manager = make_client(api)

        with pytest.raises(CRMAPIError) as exc_info:
            await client.search_by_email("a@b.com")

        assert exc_info.value.is_auth_error
        assert len(api.requests) == 2
        token_manager.clear_token.assert_called_once()
        token_manager.refresh_access_token.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_rate_limit_honours_retry_after(self):
        """Test that 429 sleeps for Retry-After before retrying"""
        api = ZohoAPI(
            httpx.Response(429, headers={"Retry-After": "5"}, json={"code": "TOO_MANY_REQUESTS"}),
            write_ok(),
        )
        client, _ = make_client(api)

        await client.create({"Last_Name": "Asha"})

        client._sleep.assert_awaited_once_with(5.0)

    @pytest.mark.asyncio
    async def test_rate_limit_default_wait(self):
        """Test that 429 without Retry-After waits two seconds"""
        api = ZohoAPI(httpx.Response(429, json={}), write_ok())
        client, _ = make_client(api)

        await client.create({"Last_Name": "Asha"})

        client._sleep.assert_awaited_once_with(2.0)

    @pytest.mark.asyncio
    async def test_server_errors_retry_with_linear_backoff(self):
        """Test that 5xx retries twice, waiting 1s then 2s"""
        api = ZohoAPI(
            httpx.Response(503, json={"message": "unavailable"}),
            httpx.Response(502, json={"message": "bad gateway"}),
            write_ok(),
        )
        client, _ = make_client(api)

        await client.create({"Last_Name": "Asha"})

        assert [c.args[0] for c in client._sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_server_errors_exhaust_retries(self):
        """Test that the third consecutive 5xx is raised"""
        api = ZohoAPI(*[httpx.Response(500, json={"message": "internal"}) for _ in range(3)])
        client, _ = make_client(api)

        with pytest.raises(CRMAPIError) as exc_info:
            await client.create({"Last_Name": "Asha"})

        assert exc_info.value.status == 500
        assert len(api.requests) == 3

    @pytest.mark.asyncio
    async def test_transport_error_raises_crm_error(self):
        """Test that network failures surface as CRMAPIError"""
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        client = ZohoCRMClient(
            ZohoSettings(api_domain="https://zoho.test"),
            make_token_manager(),
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
        )

        with pytest.raises(CRMAPIError, match="request failed"):
            await client.search_by_email("a@b.com")
