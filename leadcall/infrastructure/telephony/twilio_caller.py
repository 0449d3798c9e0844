"""
Twilio Call Origination
Places outbound IVR calls through the Twilio Voice API
"""
import logging
import re
from typing import Any, Dict, Optional

from twilio.base.exceptions import TwilioRestException
from twilio.http.async_http_client import AsyncTwilioHttpClient
from twilio.rest import Client
from twilio.twiml.voice_response import VoiceResponse

from leadcall.core.config import TwilioSettings
from leadcall.domain.interfaces.telephony_provider import (
    CallOptions,
    CallResult,
    ProviderNotConfiguredError,
    TelephonyError,
    TelephonyProvider,
)

logger = logging.getLogger(__name__)


def _default_twiml() -> str:
    response = VoiceResponse()
    response.say("Hello, this is an automated call. Our team will contact you shortly.")
    response.hangup()
    return str(response)


DEFAULT_TWIML = _default_twiml()


class TwilioCaller(TelephonyProvider):
    """
    Twilio Voice API client.

    Requirements:
    - TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN and TWILIO_PHONE_NUMBER
    - TWILIO_ENABLED=true, otherwise calls are skipped
    """

    REQUEST_TIMEOUT = 10.0
    STATUS_CALLBACK_EVENTS = ["initiated", "ringing", "answered", "completed"]

    def __init__(
        self,
        settings: TwilioSettings,
        twiml: Optional[str] = None,
        client: Optional[Client] = None
    ):
        self._settings = settings
        self._twiml = twiml or DEFAULT_TWIML
        self._client: Optional[Client] = client
        self._http_client: Optional[AsyncTwilioHttpClient] = None

        logger.info(
            f"Twilio caller initialized: enabled={settings.enabled}, "
            f"has_phone_number={bool(settings.phone_number)}"
        )

    @property
    def name(self) -> str:
        return "twilio"

    @property
    def enabled(self) -> bool:
        return self._settings.enabled

    def _get_client(self) -> Client:
        """Create the REST client on first use, inside the running event loop."""
        if self._client is None:
            self._http_client = AsyncTwilioHttpClient(timeout=self.REQUEST_TIMEOUT)
            self._client = Client(
                self._settings.account_sid,
                self._settings.auth_token,
                http_client=self._http_client
            )
        return self._client

    @staticmethod
    def format_phone_number(phone_number: str) -> str:
        """E.164 for Twilio, assuming Indian numbers when no country code is present."""
        cleaned = re.sub(r"\D", "", phone_number)

        if len(cleaned) == 10 and cleaned[0] in "6789":
            return f"+91{cleaned}"

        if cleaned.startswith("91") and len(cleaned) == 12:
            return f"+{cleaned}"

        if phone_number.startswith("+"):
            return phone_number

        return f"+91{cleaned}"

    def _build_params(self, to_number: str, options: CallOptions) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "to": to_number,
            "from_": self._settings.phone_number,
            "twiml": self._twiml,
            "timeout": options.timeout_seconds or self._settings.ring_timeout_seconds,
            "record": bool(getattr(options, "record", False)),
        }

        if options.status_callback_url:
            params["status_callback"] = options.status_callback_url
            params["status_callback_event"] = list(self.STATUS_CALLBACK_EVENTS)
            params["status_callback_method"] = "POST"

        return params

    async def make_call(
        self,
        phone_number: str,
        options: Optional[CallOptions] = None
    ) -> CallResult:
        options = options or CallOptions()

        if not self.enabled:
            logger.warning(f"Twilio is disabled, skipping call to {self.mask_phone_number(phone_number)}")
            return CallResult.skip("Twilio disabled")

        if not self._settings.phone_number:
            raise ProviderNotConfiguredError(
                "Twilio phone number not configured. Please set TWILIO_PHONE_NUMBER in .env",
                provider=self.name
            )

        if not self._settings.account_sid or not self._settings.auth_token:
            raise ProviderNotConfiguredError(
                "Twilio credentials not configured. Set TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN",
                provider=self.name
            )

        to_number = self.format_phone_number(phone_number)
        logger.info(f"Initiating Twilio call: to={self.mask_phone_number(to_number)}, from={self._settings.phone_number}")

        try:
            call = await self._get_client().calls.create_async(**self._build_params(to_number, options))
        except TwilioRestException as e:
            logger.error(
                f"Twilio API call failed: to={self.mask_phone_number(to_number)}, "
                f"status={e.status}, code={e.code}, error={e.msg}"
            )
            raise TelephonyError(
                f"Twilio call failed: {e.msg or f'HTTP {e.status}'}",
                provider=self.name,
                code=str(e.code) if e.code is not None else None
            ) from e
        except Exception as e:
            logger.error(f"Twilio API call failed: to={self.mask_phone_number(to_number)}, error={e}")
            raise TelephonyError(f"Twilio call failed: {e}", provider=self.name) from e

        logger.info(
            f"Twilio call initiated successfully: call_sid={call.sid}, "
            f"status={call.status}, to={self.mask_phone_number(to_number)}"
        )
        return CallResult.ok(call_sid=call.sid, status=call.status)

    async def cleanup(self) -> None:
        if self._http_client is not None:
            await self._http_client.close()
            self._http_client = None
        self._client = None
