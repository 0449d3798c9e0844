"""
IVR Service
Keypress menu for outbound lead calls.

Renders the TwiML played when a lead answers, maps the lead's keypress to
a CRM lead status, and writes that status back to the CRM.
"""
import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel
from twilio.twiml.voice_response import VoiceResponse

from leadcall.domain.interfaces.crm_client import CRMClient

logger = logging.getLogger(__name__)

LEAD_STATUS_FIELD = "Lead_Status"


class IvrOption(BaseModel):
    """One menu entry"""
    digit: str
    status: Optional[str] = None   # None: no CRM status change
    message: str


class LeadStatusUpdate(BaseModel):
    """Outcome of writing an IVR status to the CRM"""
    updated: bool
    phone: str
    status: str
    lead_id: Optional[str] = None
    matched_phone: Optional[str] = None


class IvrService:
    """
    IVR menu backed by the `ivr` section of the YAML config.

    Example config:
        ivr:
          voice: alice
          language: en-IN
          digits:
            "1": {status: Interested, message: "..."}
    """

    DEFAULT_GATHER_TIMEOUT = 10

    def __init__(
        self,
        crm_client: Optional[CRMClient],
        config: Optional[Dict[str, Any]] = None,
        default_country_code: str = "91"
    ):
        config = config or {}
        self._crm = crm_client
        self.default_country_code = default_country_code

        self.voice = config.get("voice", "alice")
        self.language = config.get("language", "en-IN")
        self.gather_timeout = int(config.get("gather_timeout_seconds", self.DEFAULT_GATHER_TIMEOUT))
        self.greeting: List[str] = list(config.get("greeting") or [])
        self.prompt: str = config.get("prompt", "")
        self.no_input_message: str = config.get("no_input_message", "")
        self.invalid_message: str = config.get(
            "invalid_message",
            "We did not receive a valid selection. Our team will call you back shortly. Thank you."
        )

        self._options: Dict[str, IvrOption] = {
            str(digit): IvrOption(digit=str(digit), **(entry or {}))
            for digit, entry in (config.get("digits") or {}).items()
        }

    def get_option(self, digit: Optional[str]) -> Optional[IvrOption]:
        if digit is None:
            return None
        return self._options.get(str(digit).strip())

    def status_for_digit(self, digit: Optional[str]) -> Optional[str]:
        option = self.get_option(digit)
        return option.status if option else None

    def list_options(self) -> List[IvrOption]:
        return [self._options[d] for d in sorted(self._options)]

    # TwiML rendering

    def _say(self, verb, text: str) -> None:
        verb.say(text, voice=self.voice, language=self.language)

    def render_greeting(self, action_url: str) -> str:
        """TwiML played when the lead answers; keypresses POST to action_url."""
        response = VoiceResponse()
        for line in self.greeting:
            self._say(response, line)
            response.pause(length=1)

        gather = response.gather(
            action=action_url,
            method="POST",
            num_digits=1,
            timeout=self.gather_timeout
        )
        if self.prompt:
            self._say(gather, self.prompt)

        if self.no_input_message:
            self._say(response, self.no_input_message)
        response.hangup()

        return str(response)

    def render_response(self, digit: Optional[str]) -> str:
        """TwiML reply for a keypress."""
        option = self.get_option(digit)
        message = option.message if option else self.invalid_message

        response = VoiceResponse()
        self._say(response, message)
        response.hangup()
        return str(response)

    # CRM status write-back

    def phone_candidates(self, phone: str) -> List[str]:
        """Forms the CRM may hold this number in, E.164 first."""
        prefix = f"+{self.default_country_code}"
        if phone.startswith(prefix):
            return [phone, phone[len(prefix):]]
        # Exotel sends local numbers with a trunk 0 prefix
        if phone.startswith("0") and len(phone) == 11 and phone.isdigit():
            return [f"{prefix}{phone[1:]}", phone[1:]]
        return [phone]

    async def update_lead_status(self, phone: str, status: str) -> LeadStatusUpdate:
        """
        Set Lead_Status on the lead with this phone number.

        The CRM may hold the number in local form, so a miss on the E.164
        number is retried without the country code prefix.

        Raises:
            CRMAPIError: If the search or the update fails
        """
        if self._crm is None:
            raise RuntimeError("CRM client not configured")

        lead = None
        matched_phone = None
        for candidate in self.phone_candidates(phone):
            lead = await self._crm.search_by_field("Phone", candidate)
            if lead is not None:
                matched_phone = candidate
                break

        if lead is None:
            logger.warning(f"Lead not found in CRM for status update: status={status}")
            return LeadStatusUpdate(updated=False, phone=phone, status=status)

        lead_id = str(lead.get("id"))
        # The keypress is the lead's own answer, written directly
        await self._crm.update(lead_id, {LEAD_STATUS_FIELD: status})

        logger.info(f"Lead status updated in CRM: lead_id={lead_id}, status={status}")
        return LeadStatusUpdate(
            updated=True,
            phone=phone,
            status=status,
            lead_id=lead_id,
            matched_phone=matched_phone
        )

    async def handle_keypress(self, digit: Optional[str], phone: Optional[str]) -> Optional[LeadStatusUpdate]:
        """Write the status mapped to a keypress, if any. Errors are logged."""
        status = self.status_for_digit(digit)
        if not status or not phone:
            return None

        try:
            return await self.update_lead_status(phone, status)
        except Exception as e:
            logger.error(f"Failed to update lead status from IVR: digit={digit}, error={e}")
            return None
