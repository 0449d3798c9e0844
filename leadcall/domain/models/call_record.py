"""
Call Record Model
Tracks one scheduled outbound call chain from scheduling to its terminal outcome
"""
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from datetime import datetime
from enum import Enum


class CallStatus(str, Enum):
    """Status of a call chain"""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"        # Terminal only once retries are exhausted
    SKIPPED = "skipped"      # Provider administratively disabled
    CANCELLED = "cancelled"


class CallRecord(BaseModel):
    """
    One logical outbound call attempt sequence.

    A record is created when a call is scheduled and mutated by the
    scheduler on every attempt. Records are never deleted during the
    process lifetime.
    """

    call_id: str = Field(..., description="call_<lead_id>_<epoch_ms>")
    phone_number: str = Field(..., description="Number to dial")
    lead_metadata: Dict[str, Any] = Field(default_factory=dict)

    status: CallStatus = Field(default=CallStatus.PENDING)
    attempt_count: int = Field(default=0, ge=0)

    scheduled_at: datetime = Field(default_factory=datetime.utcnow)
    last_attempt_at: Optional[datetime] = None
    next_attempt_at: Optional[datetime] = None

    provider_call_id: Optional[str] = None
    last_error: Optional[str] = None
    skip_reason: Optional[str] = None

    @property
    def lead_id(self) -> Optional[str]:
        return self.lead_metadata.get("lead_id")

    @property
    def lead_name(self) -> Optional[str]:
        return self.lead_metadata.get("name")

    def to_dict(self) -> dict:
        """Serialize for API responses."""
        return {
            "call_id": self.call_id,
            "phone_number": self.phone_number,
            "lead_metadata": self.lead_metadata,
            "status": self.status.value,
            "attempt_count": self.attempt_count,
            "scheduled_at": self.scheduled_at.isoformat() if self.scheduled_at else None,
            "last_attempt_at": self.last_attempt_at.isoformat() if self.last_attempt_at else None,
            "next_attempt_at": self.next_attempt_at.isoformat() if self.next_attempt_at else None,
            "provider_call_id": self.provider_call_id,
            "last_error": self.last_error,
            "skip_reason": self.skip_reason,
        }

    def __repr__(self) -> str:
        return (
            f"CallRecord(id={self.call_id}, "
            f"status={self.status.value}, "
            f"attempts={self.attempt_count})"
        )
