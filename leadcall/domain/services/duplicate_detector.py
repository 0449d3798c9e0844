"""
Duplicate Detector
Finds an existing CRM lead for an inbound lead and decides create vs update.

Duplicate search is best-effort: a failed search is logged and the lead is
created, preferring a possible duplicate over a failed ingestion. Failed
writes are propagated.
"""
import logging
from typing import Optional

from leadcall.domain.interfaces.crm_client import CRMClient
from leadcall.domain.models.lead import (
    DuplicateMatch,
    DuplicateSearchResult,
    LeadUpsertResult,
    NormalizedLead,
)
from leadcall.domain.services.field_protector import FieldProtector

logger = logging.getLogger(__name__)


class DuplicateDetector:
    """Create-or-update pipeline for normalized leads."""

    def __init__(self, crm_client: CRMClient, field_protector: FieldProtector):
        self._crm = crm_client
        self._field_protector = field_protector

    async def search_duplicate(self, lead: NormalizedLead) -> DuplicateSearchResult:
        """
        Search by email first, then by phone.

        Returns the first match found. Search errors are captured in the
        result instead of raised.
        """
        try:
            if lead.email:
                record = await self._crm.search_by_field("Email", lead.email)
                if record:
                    logger.debug(f"Duplicate found by email: {lead.email}")
                    return DuplicateSearchResult(
                        match=DuplicateMatch(record=record, matched_by="email")
                    )

            if lead.phone:
                record = await self._crm.search_by_field("Phone", lead.phone)
                if record:
                    logger.debug("Duplicate found by phone")
                    return DuplicateSearchResult(
                        match=DuplicateMatch(record=record, matched_by="phone")
                    )

            return DuplicateSearchResult()

        except Exception as e:
            logger.warning(f"Duplicate detection failed: {e}")
            return DuplicateSearchResult(error=str(e))

    async def find_duplicate(self, lead: NormalizedLead) -> Optional[DuplicateMatch]:
        """Best-effort lookup: None for no match and for a failed search."""
        result = await self.search_duplicate(lead)
        return result.match

    async def process_lead(self, lead: NormalizedLead) -> LeadUpsertResult:
        """
        Create a new lead or update the matched one.

        Raises:
            CRMAPIError: If the create or update call fails
        """
        duplicate = await self.find_duplicate(lead)
        fields = lead.to_crm_fields()

        try:
            if duplicate and duplicate.record_id:
                safe_data = self._field_protector.filter_update_data(
                    fields, duplicate.record, is_update=True
                )
                updated = await self._crm.update(duplicate.record_id, safe_data)

                logger.info(
                    f"Lead updated successfully: lead_id={updated.id}, matched_by={duplicate.matched_by}"
                )
                return LeadUpsertResult(
                    action="updated",
                    record_id=updated.id,
                    message="Existing lead updated successfully",
                    matched_by=duplicate.matched_by,
                )

            safe_data = self._field_protector.filter_update_data(fields, None, is_update=False)
            created = await self._crm.create(safe_data)

            logger.info(f"Lead created successfully: lead_id={created.id}")
            return LeadUpsertResult(
                action="created",
                record_id=created.id,
                message="New lead created successfully",
            )

        except Exception as e:
            logger.error(f"Lead processing failed: {e}")
            raise
