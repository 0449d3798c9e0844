"""
Lead Normalizer
Transforms inbound lead requests into canonical NormalizedLead form
"""
import logging
import re
from typing import List, Optional, Sequence

from leadcall.domain.models.lead import (
    LeadCreateRequest,
    LeadValidationError,
    NormalizedLead,
)

logger = logging.getLogger(__name__)

DEFAULT_VALID_SOURCES = [
    "Website",
    "LinkedIn Ads",
    "Google Ads",
    "Facebook",
    "Referral",
    "Conference",
    "meta_ads",
    "google_ads",
    "organic",
]


class LeadNormalizer:
    """Normalizes phone, email and naming defaults of inbound leads."""

    def __init__(
        self,
        default_country_code: str = "91",
        valid_sources: Optional[Sequence[str]] = None
    ):
        self.default_country_code = default_country_code
        self._valid_sources = list(valid_sources or DEFAULT_VALID_SOURCES)

    def normalize_phone(self, phone: Optional[str]) -> Optional[str]:
        """
        Normalize to E.164-ish form.

        10-digit national numbers get the default country code,
        anything else is prefixed with "+".
        """
        if not phone:
            return None

        cleaned = re.sub(r"\D", "", phone)
        if not cleaned:
            return None

        if len(cleaned) == 10:
            return f"+{self.default_country_code}{cleaned}"
        return f"+{cleaned}"

    @staticmethod
    def normalize_email(email: Optional[str]) -> Optional[str]:
        if not email:
            return None
        return email.strip().lower()

    def normalize(self, request: LeadCreateRequest) -> NormalizedLead:
        """
        Normalize a validated request.

        Raises:
            LeadValidationError: If neither email nor phone survives normalization
        """
        normalized = NormalizedLead(
            last_name=request.name or "Unknown",
            email=self.normalize_email(request.email),
            phone=self.normalize_phone(request.phone),
            company=request.company or "Not Provided",
            lead_source=request.source or "Website",
            extra=dict(request.extra or {}),
        )

        if not normalized.email and not normalized.phone:
            raise LeadValidationError("Either email or phone is required")

        logger.debug(
            f"Lead normalized successfully: source={request.source}, "
            f"has_email={bool(normalized.email)}, has_phone={bool(normalized.phone)}"
        )
        return normalized

    def get_valid_sources(self) -> List[str]:
        return list(self._valid_sources)
