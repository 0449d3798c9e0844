"""
Lead Models
Inbound lead request, normalized lead, and upsert pipeline results
"""
import re
from typing import Optional, Dict, Any, Literal
from pydantic import BaseModel, Field, field_validator


EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class LeadValidationError(ValueError):
    """Raised when inbound lead data is rejected before any CRM call"""
    pass


class LeadCreateRequest(BaseModel):
    """Inbound lead payload from web forms and ad platforms"""

    source: str = Field(..., min_length=1, description="Marketing source, e.g. meta_ads")
    name: str = Field(..., min_length=2)
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    extra: Optional[Dict[str, Any]] = None

    model_config = {"extra": "ignore"}

    @field_validator("email", "phone", "company", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not EMAIL_PATTERN.match(value.strip()):
            raise ValueError("Invalid email format")
        return value


class NormalizedLead(BaseModel):
    """
    Lead data in canonical form, ready for duplicate detection.

    Transient: produced by the normalizer, never persisted by the core.
    """

    last_name: str = "Unknown"
    email: Optional[str] = None
    phone: Optional[str] = None
    company: str = "Not Provided"
    lead_source: str = "Website"
    extra: Dict[str, Any] = Field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return self.last_name

    def to_crm_fields(self) -> Dict[str, Any]:
        """Render with CRM (Zoho) field API names."""
        fields: Dict[str, Any] = {
            "Last_Name": self.last_name,
            "Email": self.email,
            "Phone": self.phone,
            "Company": self.company,
            "Lead_Source": self.lead_source,
        }
        fields.update(self.extra)
        return fields


class DuplicateMatch(BaseModel):
    """An existing CRM record matching an inbound lead"""
    record: Dict[str, Any]
    matched_by: Literal["email", "phone"]

    @property
    def record_id(self) -> Optional[str]:
        return self.record.get("id")


class DuplicateSearchResult(BaseModel):
    """
    Outcome of a duplicate search.

    Distinguishes "no match" (match=None, error=None) from
    "search failed" (error set).
    """
    match: Optional[DuplicateMatch] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class LeadUpsertResult(BaseModel):
    """Result of create-or-update against the CRM"""
    action: Literal["created", "updated"]
    record_id: str
    message: str = ""
    matched_by: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        return {
            "success": True,
            "action": self.action,
            "lead_id": self.record_id,
            "message": self.message,
            "matched_by": self.matched_by,
        }
