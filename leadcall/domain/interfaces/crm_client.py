"""
CRM Client Interface
The narrow CRM capability the lead pipeline depends on
"""
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any
from pydantic import BaseModel


class CRMAPIError(Exception):
    """
    Structured CRM failure.

    Carries the HTTP status and provider error code so callers can
    special-case authentication failures (code == "INVALID_TOKEN").
    """

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        code: Optional[str] = None,
        details: Optional[Any] = None
    ):
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code
        self.details = details

    @property
    def is_auth_error(self) -> bool:
        return self.status == 401 and self.code == "INVALID_TOKEN"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"CRMAPIError(status={self.status}, code={self.code}, message={self.message!r})"


class CRMWriteResult(BaseModel):
    """Result of a create or update call"""
    id: str
    status: str


class CRMClient(ABC):
    """
    CRM capability consumed by the duplicate detector and IVR handlers.

    Implementations obtain bearer tokens through the shared TokenManager.
    """

    @abstractmethod
    async def search_by_field(self, field_name: str, value: str) -> Optional[Dict[str, Any]]:
        """Return the first record whose field equals value, or None."""
        pass

    @abstractmethod
    async def create(self, data: Dict[str, Any]) -> CRMWriteResult:
        """Create a record."""
        pass

    @abstractmethod
    async def update(self, record_id: str, data: Dict[str, Any]) -> CRMWriteResult:
        """Update an existing record."""
        pass

    async def close(self) -> None:
        """Release HTTP resources."""
        pass
