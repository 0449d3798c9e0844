"""
Exotel Call Origination
Places outbound calls through the Exotel connect API
"""
import logging
import re
from typing import Any, Dict, Optional

import httpx

from leadcall.core.config import ExotelSettings
from leadcall.domain.interfaces.telephony_provider import (
    CallOptions,
    CallResult,
    ProviderNotConfiguredError,
    TelephonyError,
    TelephonyProvider,
)

logger = logging.getLogger(__name__)


class ExotelCaller(TelephonyProvider):
    """
    Exotel Voice API client.

    With EXOTEL_APP_ID set, the lead is connected to the IVR flow of that app.
    Otherwise the lead is bridged to an agent number (or the exophone).
    """

    REQUEST_TIMEOUT = 10.0
    EXOML_URL = "http://my.exotel.in/exoml/start/{app_id}"

    def __init__(self, settings: ExotelSettings, http_client: Optional[httpx.AsyncClient] = None):
        self._settings = settings
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=self.REQUEST_TIMEOUT)

        logger.info(
            f"Exotel caller initialized: enabled={settings.enabled}, subdomain={settings.subdomain}, "
            f"has_exophone={bool(settings.exophone)}, has_app_id={bool(settings.app_id)}"
        )

    @property
    def name(self) -> str:
        return "exotel"

    @property
    def enabled(self) -> bool:
        return self._settings.enabled

    @property
    def connect_url(self) -> str:
        return f"https://{self._settings.subdomain}/v1/Accounts/{self._settings.account_sid}/Calls/connect.json"

    @staticmethod
    def format_phone_number(phone_number: str) -> str:
        """Exotel expects local numbers with a 0 prefix (e.g. 09876543210)."""
        cleaned = re.sub(r"\D", "", phone_number)

        if len(cleaned) == 10 and cleaned[0] in "6789":
            return f"0{cleaned}"

        if cleaned.startswith("91") and len(cleaned) == 12:
            return f"0{cleaned[2:]}"

        return cleaned

    def _build_params(self, from_number: str, options: CallOptions) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "From": from_number,
            "CallerId": self._settings.exophone,
            "CallType": self._settings.call_type,
        }

        if self._settings.app_id:
            params["Url"] = self.EXOML_URL.format(app_id=self._settings.app_id)
        else:
            params["To"] = getattr(options, "agent_number", None) or self._settings.exophone

        if options.custom_field:
            params["CustomField"] = options.custom_field

        time_limit = getattr(options, "time_limit", None)
        if time_limit:
            params["TimeLimit"] = str(time_limit)

        if options.status_callback_url:
            params["StatusCallback"] = options.status_callback_url
            params["StatusCallbackEvents[0]"] = "terminal"

        return params

    async def make_call(
        self,
        phone_number: str,
        options: Optional[CallOptions] = None
    ) -> CallResult:
        options = options or CallOptions()

        if not self.enabled:
            logger.warning(f"Exotel is disabled, skipping call to {self.mask_phone_number(phone_number)}")
            return CallResult.skip("Exotel disabled")

        if not self._settings.exophone:
            raise ProviderNotConfiguredError(
                "Exotel Exophone not configured. Please set EXOTEL_EXOPHONE in .env",
                provider=self.name
            )

        if not (self._settings.account_sid and self._settings.api_key and self._settings.api_token):
            raise ProviderNotConfiguredError(
                "Exotel credentials not configured. Set EXOTEL_ACCOUNT_SID, EXOTEL_API_KEY and EXOTEL_API_TOKEN",
                provider=self.name
            )

        from_number = self.format_phone_number(phone_number)
        logger.info(
            f"Initiating Exotel call: phone={self.mask_phone_number(from_number)}, "
            f"exophone={self._settings.exophone}, has_app_id={bool(self._settings.app_id)}"
        )

        try:
            response = await self._client.post(
                self.connect_url,
                data=self._build_params(from_number, options),
                auth=(self._settings.api_key, self._settings.api_token),
                timeout=self.REQUEST_TIMEOUT
            )
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                f"Exotel API call failed: phone={self.mask_phone_number(from_number)}, "
                f"status={e.response.status_code}, response={e.response.text[:200]}"
            )
            raise TelephonyError(
                f"Exotel call failed: HTTP {e.response.status_code}",
                provider=self.name,
                code=str(e.response.status_code)
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Exotel API call failed: phone={self.mask_phone_number(from_number)}, error={e}")
            raise TelephonyError(f"Exotel call failed: {e}", provider=self.name) from e

        call = body.get("Call") or {}
        logger.info(
            f"Exotel call initiated successfully: call_sid={call.get('Sid')}, status={call.get('Status')}"
        )
        return CallResult.ok(call_sid=call.get("Sid"), status=call.get("Status"))

    async def cleanup(self) -> None:
        if self._owns_client:
            await self._client.aclose()
