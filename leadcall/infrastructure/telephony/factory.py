"""
Telephony Provider Factory
"""
import logging
from typing import Any, Dict, Optional, Type

from leadcall.core.config import Settings
from leadcall.domain.interfaces.telephony_provider import TelephonyProvider
from leadcall.infrastructure.telephony.exotel_caller import ExotelCaller
from leadcall.infrastructure.telephony.twilio_caller import TwilioCaller

logger = logging.getLogger(__name__)


class TelephonyFactory:
    """Factory for creating Telephony provider instances"""

    _providers: Dict[str, Type[TelephonyProvider]] = {}

    @classmethod
    def create(cls, provider_name: str, settings: Any, **kwargs: Any) -> TelephonyProvider:
        """Create Telephony provider instance from its settings group"""
        if provider_name not in cls._providers:
            available = ", ".join(cls._providers.keys()) if cls._providers else "None"
            raise ValueError(f"Unknown Telephony provider: {provider_name}. Available: {available}")

        provider_class = cls._providers[provider_name]
        return provider_class(settings, **kwargs)

    @classmethod
    def register(cls, name: str, provider_class: Type[TelephonyProvider]) -> None:
        """Register a provider"""
        cls._providers[name] = provider_class

    @classmethod
    def list_providers(cls) -> list[str]:
        """List available providers"""
        return list(cls._providers.keys())


def create_active_provider(
    settings: Settings,
    twiml: Optional[str] = None
) -> Optional[TelephonyProvider]:
    """
    Pick the single provider used for outbound calls.

    Twilio wins when both are enabled. Returns None when neither is.
    """
    if settings.twilio.enabled:
        logger.info("Using Twilio for calls")
        return TelephonyFactory.create("twilio", settings.twilio, twiml=twiml)

    if settings.exotel.enabled:
        logger.info("Using Exotel for calls")
        return TelephonyFactory.create("exotel", settings.exotel)

    logger.info("No telephony provider enabled, outbound calls disabled")
    return None


TelephonyFactory.register("twilio", TwilioCaller)
TelephonyFactory.register("exotel", ExotelCaller)
