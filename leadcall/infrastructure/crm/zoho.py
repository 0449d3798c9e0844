"""
Zoho CRM Client
Leads module access over the Zoho CRM v2 REST API.

- Bearer tokens come from the shared TokenManager on every request
- 401 INVALID_TOKEN forces a refresh and retries once
- 429 honours Retry-After, 5xx retries with linear backoff
"""
import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from leadcall.core.config import ZohoSettings
from leadcall.domain.interfaces.crm_client import CRMAPIError, CRMClient, CRMWriteResult
from leadcall.domain.services.token_manager import TokenManager

logger = logging.getLogger(__name__)


class ZohoCRMClient(CRMClient):
    """
    Zoho CRM integration for the Leads module.

    Setup Required:
    - Create a Self Client in the Zoho API console
    - Generate a refresh token with the ZohoCRM.modules.ALL scope
    - Set ZOHO_CLIENT_ID, ZOHO_CLIENT_SECRET and ZOHO_REFRESH_TOKEN env vars
    """

    MAX_RETRIES = 2
    REQUEST_TIMEOUT = 15.0
    DEFAULT_RETRY_AFTER = 2.0
    TRIGGERS = ["approval", "workflow", "blueprint"]

    def __init__(
        self,
        settings: ZohoSettings,
        token_manager: TokenManager,
        http_client: Optional[httpx.AsyncClient] = None,
        module: str = "Leads"
    ):
        self._settings = settings
        self._token_manager = token_manager
        self._module = module
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=self.REQUEST_TIMEOUT)

    @property
    def base_url(self) -> str:
        return f"{self._settings.api_domain.rstrip('/')}/crm/v2"

    async def _sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    async def _request(
        self,
        method: str,
        endpoint: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
        retry_count: int = 0
    ) -> Optional[Dict[str, Any]]:
        """
        Make an authenticated request.

        Returns:
            Parsed JSON body, or None for 204 No Content

        Raises:
            CRMAPIError: On a non-retryable error or when retries are exhausted
        """
        access_token = await self._token_manager.get_access_token()
        url = f"{self.base_url}{endpoint}"

        logger.debug(f"Zoho API Request: {method} {url}")

        try:
            response = await self._client.request(
                method,
                url,
                json=json,
                params=params,
                headers={
                    "Authorization": f"Zoho-oauthtoken {access_token}",
                    "Content-Type": "application/json"
                },
                timeout=self.REQUEST_TIMEOUT
            )
        except httpx.HTTPError as e:
            logger.error(f"Zoho API request failed: {method} {endpoint}: {e}")
            raise CRMAPIError(f"Zoho API request failed: {e}") from e

        logger.debug(f"Zoho API Response: {response.status_code}")

        if response.status_code == 204:
            return None

        if response.is_success:
            if not response.content:
                return {}
            return response.json()

        return await self._handle_error(response, method, endpoint, json, params, retry_count)

    async def _handle_error(
        self,
        response: httpx.Response,
        method: str,
        endpoint: str,
        json: Optional[Dict[str, Any]],
        params: Optional[Dict[str, str]],
        retry_count: int
    ) -> Optional[Dict[str, Any]]:
        status = response.status_code
        try:
            body = response.json()
        except ValueError:
            body = {"message": response.text}
        if not isinstance(body, dict):
            body = {"message": str(body)}

        code = body.get("code")
        message = body.get("message") or response.reason_phrase or f"HTTP {status}"

        logger.error(f"Zoho API Error: {status} - {message} (endpoint={endpoint}, code={code}, retry={retry_count})")

        if status == 401 and code == "INVALID_TOKEN" and retry_count == 0:
            logger.warning("Token invalid, forcing refresh...")
            self._token_manager.clear_token()
            await self._token_manager.refresh_access_token()

            logger.info("Retrying request with refreshed token")
            return await self._request(method, endpoint, json, params, retry_count + 1)

        if status == 429 and retry_count < self.MAX_RETRIES:
            retry_after = self._retry_after(response)
            logger.warning(f"Rate limited, retry after {retry_after} seconds")
            await self._sleep(retry_after)
            return await self._request(method, endpoint, json, params, retry_count + 1)

        if status >= 500 and retry_count < self.MAX_RETRIES:
            logger.warning(f"Server error {status}, retrying...")
            await self._sleep(1.0 * (retry_count + 1))
            return await self._request(method, endpoint, json, params, retry_count + 1)

        raise CRMAPIError(message, status=status, code=code, details=body)

    def _retry_after(self, response: httpx.Response) -> float:
        try:
            return float(response.headers.get("retry-after", self.DEFAULT_RETRY_AFTER))
        except ValueError:
            return self.DEFAULT_RETRY_AFTER

    async def search_by_field(self, field_name: str, value: str) -> Optional[Dict[str, Any]]:
        """Find the first lead where field_name equals value."""
        criteria = f"({field_name}:equals:{value})"

        try:
            body = await self._request(
                "GET",
                f"/{self._module}/search",
                params={"criteria": criteria}
            )
        except CRMAPIError as e:
            if e.code == "NO_DATA_FOUND":
                logger.debug(f"No lead found with {field_name}")
                return None
            raise

        records = (body or {}).get("data") or []
        if not records:
            logger.debug(f"No lead found with {field_name}")
            return None

        record = records[0]
        logger.info(f"Found existing lead by {field_name}: lead_id={record.get('id')}")
        return record

    async def search_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return await self.search_by_field("Email", email)

    async def search_by_phone(self, phone: str) -> Optional[Dict[str, Any]]:
        return await self.search_by_field("Phone", phone)

    def _write_payload(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return {"data": [data], "trigger": list(self.TRIGGERS)}

    @staticmethod
    def _first_result(body: Optional[Dict[str, Any]], action: str) -> Dict[str, Any]:
        results = (body or {}).get("data") or []
        if not results:
            raise CRMAPIError(f"Unexpected response format from Zoho on {action}", details=body)

        result = results[0]
        if result.get("code") != "SUCCESS":
            raise CRMAPIError(
                f"Failed to {action} lead: {result.get('message')}",
                code=result.get("code"),
                details=result
            )
        return result

    async def create(self, data: Dict[str, Any]) -> CRMWriteResult:
        """Create a lead and trigger Zoho automation."""
        logger.info(f"Creating new lead in Zoho CRM: name={data.get('Last_Name')}")

        body = await self._request("POST", f"/{self._module}", json=self._write_payload(data))
        result = self._first_result(body, "create")

        lead_id = str((result.get("details") or {}).get("id"))
        logger.info(f"Lead created in Zoho CRM: lead_id={lead_id}")
        return CRMWriteResult(id=lead_id, status="created")

    async def update(self, record_id: str, data: Dict[str, Any]) -> CRMWriteResult:
        """Update an existing lead and trigger Zoho automation."""
        logger.info(f"Updating lead {record_id} in Zoho CRM: fields={sorted(data.keys())}")

        body = await self._request("PUT", f"/{self._module}/{record_id}", json=self._write_payload(data))
        self._first_result(body, "update")

        logger.info(f"Lead updated in Zoho CRM: lead_id={record_id}")
        return CRMWriteResult(id=record_id, status="updated")

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
