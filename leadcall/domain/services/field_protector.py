"""
Field Protector
Decides which CRM fields an automated write may set.

Rules, in priority order:
1. system-owned  -> always written
2. shared        -> always written (last write wins)
3. human-owned   -> written on create, or on update while the CRM value is empty
4. system-managed -> never written
5. unknown       -> written
None values are always skipped.
"""
import logging
from typing import Any, Dict, Iterable, Mapping, Optional, Set

from leadcall.domain.models.field_ownership import (
    ASSIGNABLE_TIERS,
    DEFAULT_FIELD_OWNERSHIP,
    FieldOwnershipTier,
)

logger = logging.getLogger(__name__)

EMPTY_VALUES = (None, "", "null")


class InvalidOwnershipTierError(ValueError):
    """Raised when registering a field under a tier that cannot be assigned"""
    pass


class FieldProtector:
    """Per-instance field ownership tables with a narrow mutation API."""

    def __init__(self, rules: Optional[Mapping[FieldOwnershipTier, Iterable[str]]] = None):
        source = rules if rules is not None else DEFAULT_FIELD_OWNERSHIP
        self._rules: Dict[FieldOwnershipTier, Set[str]] = {
            tier: set(source.get(tier, ()))
            for tier in FieldOwnershipTier
            if tier is not FieldOwnershipTier.UNKNOWN
        }

    @staticmethod
    def _is_empty(value: Any) -> bool:
        return any(value is empty or value == empty for empty in EMPTY_VALUES)

    def filter_update_data(
        self,
        new_data: Mapping[str, Any],
        existing_record: Optional[Mapping[str, Any]] = None,
        is_update: bool = False
    ) -> Dict[str, Any]:
        """
        Filter a write payload so it never overrides human-curated values.

        Args:
            new_data: Fields the automation wants to write
            existing_record: Current CRM record (None for create)
            is_update: True when writing to an existing record

        Returns:
            Subset of new_data safe to send to the CRM
        """
        safe_data: Dict[str, Any] = {}

        for field, value in new_data.items():
            if value is None:
                continue

            tier = self.get_field_ownership(field)

            if tier in (FieldOwnershipTier.SYSTEM_OWNED, FieldOwnershipTier.SHARED):
                safe_data[field] = value

            elif tier is FieldOwnershipTier.HUMAN_OWNED:
                if is_update and existing_record is not None:
                    if self._is_empty(existing_record.get(field)):
                        logger.info(f"Human-owned field was empty, updating: {field}")
                        safe_data[field] = value
                    else:
                        logger.warning(f"PROTECTED: Skipping human-owned field: {field} (already set in CRM)")
                else:
                    safe_data[field] = value

            elif tier is FieldOwnershipTier.SYSTEM_MANAGED:
                logger.warning(f"BLOCKED: Attempted to update system-managed field: {field}")

            else:
                logger.debug(f"Unknown field (allowing): {field}")
                safe_data[field] = value

        return safe_data

    def get_field_ownership(self, field: str) -> FieldOwnershipTier:
        """Classify a field name."""
        for tier in (
            FieldOwnershipTier.SYSTEM_OWNED,
            FieldOwnershipTier.SHARED,
            FieldOwnershipTier.HUMAN_OWNED,
            FieldOwnershipTier.SYSTEM_MANAGED,
        ):
            if field in self._rules[tier]:
                return tier
        return FieldOwnershipTier.UNKNOWN

    def get_all_rules(self) -> Dict[str, list]:
        return {tier.value: sorted(fields) for tier, fields in self._rules.items()}

    def register_field(self, field_name: str, tier) -> None:
        """
        Classify a field at runtime.

        Re-registering moves the field to the new tier. System-managed fields
        and the system-managed tier cannot be assigned.

        Raises:
            InvalidOwnershipTierError: If tier is not system-owned, human-owned or shared
        """
        valid = ", ".join(sorted(t.value for t in ASSIGNABLE_TIERS))
        try:
            parsed = FieldOwnershipTier.parse(tier)
        except ValueError:
            raise InvalidOwnershipTierError(f"Invalid ownership: {tier}. Must be one of: {valid}")

        if parsed not in ASSIGNABLE_TIERS:
            raise InvalidOwnershipTierError(f"Invalid ownership: {tier}. Must be one of: {valid}")

        if field_name in self._rules[FieldOwnershipTier.SYSTEM_MANAGED]:
            raise InvalidOwnershipTierError(
                f"Field {field_name} is system-managed and cannot be reassigned"
            )

        if field_name in self._rules[parsed]:
            return

        for assignable in ASSIGNABLE_TIERS:
            self._rules[assignable].discard(field_name)
        self._rules[parsed].add(field_name)
        logger.info(f"Added custom field: {field_name} as {parsed.value}")

    add_custom_field = register_field
