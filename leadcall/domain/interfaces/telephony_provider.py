"""
Telephony Provider Interface
Abstract base class for outbound calling providers (Twilio, Exotel)
"""
from abc import ABC, abstractmethod
from typing import Optional
from pydantic import BaseModel


def mask_phone_number(phone_number: Optional[str]) -> str:
    """Mask a phone number for logging: +91***10"""
    if not phone_number or len(phone_number) < 4:
        return "***"
    return f"{phone_number[:3]}***{phone_number[-2:]}"


class TelephonyError(Exception):
    """Raised when a provider fails to originate a call"""

    def __init__(self, message: str, provider: str = "", code: Optional[str] = None):
        super().__init__(message)
        self.provider = provider
        self.code = code


class ProviderNotConfiguredError(TelephonyError):
    """Raised when an enabled provider is missing required settings"""
    pass


class CallOptions(BaseModel):
    """Per-call options passed to the provider"""
    custom_field: Optional[str] = None          # Echoed back in status callbacks
    status_callback_url: Optional[str] = None
    timeout_seconds: Optional[int] = None       # Ring timeout
    lead_id: Optional[str] = None
    lead_name: Optional[str] = None

    model_config = {"extra": "allow"}


class CallResult(BaseModel):
    """
    Outcome of a call origination request.

    Either success=True with a provider call SID, or skipped=True with a reason.
    Failures are raised as TelephonyError, not returned.
    """
    success: bool = False
    call_sid: Optional[str] = None
    status: Optional[str] = None
    skipped: bool = False
    reason: Optional[str] = None

    @classmethod
    def ok(cls, call_sid: Optional[str], status: Optional[str] = None) -> "CallResult":
        return cls(success=True, call_sid=call_sid, status=status)

    @classmethod
    def skip(cls, reason: str) -> "CallResult":
        return cls(skipped=True, reason=reason)


class TelephonyProvider(ABC):
    """Abstract base class for telephony providers"""

    @abstractmethod
    async def make_call(
        self,
        phone_number: str,
        options: Optional[CallOptions] = None
    ) -> CallResult:
        """
        Initiate an outbound call

        Args:
            phone_number: Destination phone number (E.164-ish)
            options: Callback URL, custom field, ring timeout

        Returns:
            CallResult (success or skipped)

        Raises:
            TelephonyError: If the provider rejects the call
        """
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name"""
        pass

    @property
    @abstractmethod
    def enabled(self) -> bool:
        """Whether the provider is administratively enabled"""
        pass

    async def cleanup(self) -> None:
        """Release resources"""
        pass

    mask_phone_number = staticmethod(mask_phone_number)
