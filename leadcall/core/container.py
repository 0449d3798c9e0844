"""
Service Container
Builds the long-lived services once at startup and owns their lifecycle.

Every service is an explicitly constructed instance held here and reached
through app.state.container; nothing is a module-level singleton.
"""
import logging
from typing import Any, Optional

from leadcall.core.config import ConfigManager, Settings
from leadcall.domain.interfaces.crm_client import CRMClient
from leadcall.domain.interfaces.telephony_provider import TelephonyProvider
from leadcall.domain.services.call_scheduler import CallScheduler
from leadcall.domain.services.duplicate_detector import DuplicateDetector
from leadcall.domain.services.field_protector import FieldProtector
from leadcall.domain.services.idempotency import IdempotencyGuard
from leadcall.domain.services.ivr_service import IvrService
from leadcall.domain.services.lead_normalizer import LeadNormalizer
from leadcall.domain.services.token_manager import TokenManager
from leadcall.infrastructure.crm.zoho import ZohoCRMClient
from leadcall.infrastructure.telephony.factory import create_active_provider

logger = logging.getLogger(__name__)

_UNSET: Any = object()


class ServiceContainer:
    """Holds the services for one running application."""

    def __init__(
        self,
        settings: Settings,
        config: ConfigManager,
        token_manager: TokenManager,
        crm_client: CRMClient,
        idempotency: IdempotencyGuard,
        field_protector: FieldProtector,
        normalizer: LeadNormalizer,
        duplicate_detector: DuplicateDetector,
        ivr: IvrService,
        provider: Optional[TelephonyProvider],
        scheduler: CallScheduler
    ):
        self.settings = settings
        self.config = config
        self.token_manager = token_manager
        self.crm_client = crm_client
        self.idempotency = idempotency
        self.field_protector = field_protector
        self.normalizer = normalizer
        self.duplicate_detector = duplicate_detector
        self.ivr = ivr
        self.provider = provider
        self.scheduler = scheduler

    @classmethod
    def build(
        cls,
        settings: Optional[Settings] = None,
        config: Optional[ConfigManager] = None,
        crm_client: Optional[CRMClient] = None,
        provider: Optional[TelephonyProvider] = _UNSET
    ) -> "ServiceContainer":
        """
        Wire every service from settings.

        crm_client and provider may be injected; provider=None disables calling.
        """
        settings = settings or Settings()
        config = config or ConfigManager(env=settings.environment)

        token_manager = TokenManager(settings.zoho, buffer_seconds=settings.token_buffer_seconds)
        if crm_client is None:
            crm_client = ZohoCRMClient(settings.zoho, token_manager)

        field_protector = FieldProtector()
        for tier, fields in config.get_field_ownership().items():
            for field_name in fields:
                field_protector.register_field(field_name, tier)

        normalizer = LeadNormalizer(
            default_country_code=settings.default_country_code,
            valid_sources=config.get("leads.valid_sources")
        )

        idempotency = IdempotencyGuard(
            ttl_seconds=settings.idempotency_ttl_seconds,
            max_size=settings.idempotency_max_size,
            sweep_interval=settings.idempotency_sweep_interval_seconds
        )

        ivr = IvrService(
            crm_client,
            config=config.get("ivr", {}),
            default_country_code=settings.default_country_code
        )

        api_url = f"{settings.base_url.rstrip('/')}{settings.api_prefix}"
        if provider is _UNSET:
            provider = create_active_provider(
                settings,
                twiml=ivr.render_greeting(f"{api_url}/twilio/ivr-response")
            )

        call_delay, max_retries = 30.0, 3
        status_callback_url = None
        if provider is not None:
            provider_settings = settings.exotel if provider.name == "exotel" else settings.twilio
            call_delay = provider_settings.call_delay_seconds
            max_retries = provider_settings.max_retries
            status_callback_url = f"{api_url}/{provider.name}/status-callback"

        scheduler = CallScheduler(
            provider,
            call_delay_seconds=call_delay,
            max_retries=max_retries,
            retry_base_seconds=settings.call_retry_base_seconds,
            retry_max_seconds=settings.call_retry_max_seconds,
            status_callback_url=status_callback_url
        )

        return cls(
            settings=settings,
            config=config,
            token_manager=token_manager,
            crm_client=crm_client,
            idempotency=idempotency,
            field_protector=field_protector,
            normalizer=normalizer,
            duplicate_detector=DuplicateDetector(crm_client, field_protector),
            ivr=ivr,
            provider=provider,
            scheduler=scheduler
        )

    async def startup(self) -> None:
        await self.idempotency.start()
        logger.info(
            f"Services started: provider={self.scheduler.provider_name}, "
            f"crm_configured={self.settings.zoho.is_configured}"
        )

    async def shutdown(self) -> None:
        """Stop background work, then release HTTP clients."""
        await self.scheduler.shutdown()
        await self.idempotency.stop()

        if self.provider is not None:
            await self.provider.cleanup()
        await self.crm_client.close()

        logger.info("Services stopped")
