"""Domain models"""

# Lead models
from .lead import (
    LeadValidationError,
    LeadCreateRequest,
    NormalizedLead,
    DuplicateMatch,
    DuplicateSearchResult,
    LeadUpsertResult,
)

# Call models
from .call_record import (
    CallStatus,
    CallRecord,
)

# Field ownership
from .field_ownership import (
    FieldOwnershipTier,
    ASSIGNABLE_TIERS,
    DEFAULT_FIELD_OWNERSHIP,
)

__all__ = [
    # Lead
    "LeadValidationError",
    "LeadCreateRequest",
    "NormalizedLead",
    "DuplicateMatch",
    "DuplicateSearchResult",
    "LeadUpsertResult",
    # Call
    "CallStatus",
    "CallRecord",
    # Field ownership
    "FieldOwnershipTier",
    "ASSIGNABLE_TIERS",
    "DEFAULT_FIELD_OWNERSHIP",
]
