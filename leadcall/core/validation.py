"""
Provider Validation Module
Validates CRM and telephony configuration on startup
"""
import logging
from typing import List, Optional, Tuple
from dataclasses import dataclass

from leadcall.core.config import Settings

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    """Result of a configuration validation check."""
    provider: str
    setting: str
    is_valid: bool
    message: str


class ProviderValidator:
    """
    Validates provider configurations at startup.

    Zoho credentials are always required. Telephony credentials are only
    required for the providers that are enabled.
    """

    ZOHO_REQUIRED = [
        ("ZOHO_CLIENT_ID", "client_id"),
        ("ZOHO_CLIENT_SECRET", "client_secret"),
        ("ZOHO_REFRESH_TOKEN", "refresh_token"),
    ]

    TWILIO_REQUIRED = [
        ("TWILIO_ACCOUNT_SID", "account_sid"),
        ("TWILIO_AUTH_TOKEN", "auth_token"),
        ("TWILIO_PHONE_NUMBER", "phone_number"),
    ]

    EXOTEL_REQUIRED = [
        ("EXOTEL_ACCOUNT_SID", "account_sid"),
        ("EXOTEL_API_KEY", "api_key"),
        ("EXOTEL_API_TOKEN", "api_token"),
        ("EXOTEL_EXOPHONE", "exophone"),
    ]

    def __init__(self, settings: Settings, strict: bool = False):
        """
        Initialize validator.

        Args:
            settings: Loaded application settings
            strict: If True, missing required settings abort startup
        """
        self.settings = settings
        self.strict = strict
        self.results: List[ValidationResult] = []

    def validate_all(self) -> Tuple[bool, List[ValidationResult]]:
        """
        Validate all provider configurations.

        Returns:
            Tuple of (all_valid, list of results)
        """
        self.results = []

        self._check_group("zoho", self.settings.zoho, self.ZOHO_REQUIRED, "Zoho CRM")

        if self.settings.twilio.enabled:
            self._check_group("twilio", self.settings.twilio, self.TWILIO_REQUIRED, "Twilio telephony")

        if self.settings.exotel.enabled:
            self._check_group("exotel", self.settings.exotel, self.EXOTEL_REQUIRED, "Exotel telephony")
            if not self.settings.exotel.app_id:
                self._add_warning("exotel", "EXOTEL_APP_ID",
                    "Exotel app ID not configured, calls will bridge to the exophone")

        if not self.settings.twilio.enabled and not self.settings.exotel.enabled:
            self._add_warning("telephony", "TWILIO_ENABLED",
                "No telephony provider enabled, leads will not be called")

        if self.settings.base_url.startswith("http://localhost"):
            self._add_warning("api", "BASE_URL",
                "BASE_URL points at localhost, provider callbacks will not reach this service")

        errors = [r for r in self.results if not r.is_valid]
        return len(errors) == 0, self.results

    def _check_group(self, provider: str, group, required, description: str) -> None:
        for env_var, attr in required:
            if getattr(group, attr, None):
                self._add_success(provider, env_var, f"{description} {env_var} configured")
            else:
                self._add_error(provider, env_var, f"{description} requires {env_var} to be set")

    def _add_success(self, provider: str, setting: str, message: str):
        """Add successful validation result."""
        self.results.append(ValidationResult(
            provider=provider,
            setting=setting,
            is_valid=True,
            message=message
        ))

    def _add_error(self, provider: str, setting: str, message: str):
        """Add error validation result."""
        self.results.append(ValidationResult(
            provider=provider,
            setting=setting,
            is_valid=False,
            message=message
        ))

    def _add_warning(self, provider: str, setting: str, message: str):
        """Add warning validation result."""
        self.results.append(ValidationResult(
            provider=provider,
            setting=setting,
            is_valid=True,
            message=f"WARNING: {message}"
        ))

    def log_results(self):
        """Log all validation results."""
        for r in self.results:
            if not r.is_valid:
                logger.error(f"  ✗ [{r.provider}] {r.message}")
            elif r.message.startswith("WARNING"):
                logger.warning(f"  ⚠ [{r.provider}] {r.message}")
            else:
                logger.info(f"  ✓ [{r.provider}] {r.message}")

    def get_error_summary(self) -> Optional[str]:
        """Get summary of errors for exception message."""
        errors = [r for r in self.results if not r.is_valid]
        if not errors:
            return None

        lines = ["Provider configuration errors:"]
        for r in errors:
            lines.append(f"  - {r.setting}: {r.message}")
        return "\n".join(lines)


def validate_providers_on_startup(settings: Settings, strict: bool = False) -> bool:
    """
    Validate all providers at startup.

    In strict mode (production) a missing setting is fatal, otherwise the
    errors are logged and the service starts degraded.

    Raises:
        RuntimeError: If strict and required configuration is missing
    """
    validator = ProviderValidator(settings, strict=strict)
    all_valid, _ = validator.validate_all()
    validator.log_results()

    if not all_valid:
        error_msg = validator.get_error_summary()
        if strict:
            raise RuntimeError(error_msg)
        logger.warning("Starting with incomplete provider configuration")
        return False

    logger.info("All provider configurations validated successfully")
    return True
