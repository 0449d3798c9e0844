"""
Field Ownership Model
Ownership tiers governing which CRM fields automation may write
"""
from enum import Enum
from typing import Dict, FrozenSet


class FieldOwnershipTier(str, Enum):
    """Ownership tier of a CRM record field"""
    SYSTEM_OWNED = "system-owned"      # API may always write
    HUMAN_OWNED = "human-owned"        # API may write only while empty
    SHARED = "shared"                  # Last write wins
    SYSTEM_MANAGED = "system-managed"  # Maintained by the CRM itself, never written
    UNKNOWN = "unknown"                # Not classified, allowed through

    @classmethod
    def parse(cls, value) -> "FieldOwnershipTier":
        """Accept enum members, "system-owned" or legacy "systemOwned" forms."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            normalized = value.strip()
            if normalized in _LEGACY_NAMES:
                return _LEGACY_NAMES[normalized]
            normalized = normalized.lower().replace("_", "-")
            for tier in cls:
                if tier.value == normalized:
                    return tier
        raise ValueError(f"Unknown ownership tier: {value!r}")


_LEGACY_NAMES = {
    "systemOwned": FieldOwnershipTier.SYSTEM_OWNED,
    "humanOwned": FieldOwnershipTier.HUMAN_OWNED,
    "shared": FieldOwnershipTier.SHARED,
    "systemManaged": FieldOwnershipTier.SYSTEM_MANAGED,
}

# Tiers that may be assigned at runtime
ASSIGNABLE_TIERS: FrozenSet[FieldOwnershipTier] = frozenset({
    FieldOwnershipTier.SYSTEM_OWNED,
    FieldOwnershipTier.HUMAN_OWNED,
    FieldOwnershipTier.SHARED,
})


DEFAULT_FIELD_OWNERSHIP: Dict[FieldOwnershipTier, FrozenSet[str]] = {
    FieldOwnershipTier.SYSTEM_OWNED: frozenset({
        "Lead_Source",
        "Description",
        "Email",
        "Phone",
        "Mobile",
        "First_Name",
        "Last_Name",
        "Company",
    }),
    FieldOwnershipTier.HUMAN_OWNED: frozenset({
        "Lead_Status",
        "Rating",
        "Lead_Owner",
        "Annual_Revenue",
        "No_of_Employees",
        "Industry",
        "Skype_ID",
        "Twitter",
        "Secondary_Email",
        "Website",
        "Fax",
    }),
    FieldOwnershipTier.SHARED: frozenset(),
    FieldOwnershipTier.SYSTEM_MANAGED: frozenset({
        "Created_Time",
        "Modified_Time",
        "Created_By",
        "Modified_By",
        "Id",
        "Owner",
    }),
}
