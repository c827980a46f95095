"""
Consent data models for MedProof
Access requests a subject resolves for a single record
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

from ..utils.ids import generate_consent_id, utc_now


class ConsentStatus(str, Enum):
    """Consent request status"""
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    EXPIRED = "expired"  # derived at read time, never stored


class ConsentDecision(str, Enum):
    """Subject's answer to a pending request"""
    APPROVE = "approve"
    DENY = "deny"

    @property
    def target_status(self) -> ConsentStatus:
        return ConsentStatus.APPROVED if self is ConsentDecision.APPROVE else ConsentStatus.DENIED


class ConsentRequest(BaseModel):
    """Request by a third party to access one of a subject's records"""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=generate_consent_id)
    subject_id: str = Field(..., description="Patient who decides")
    requester_id: str = Field(..., description="Party asking for access")
    requester_type: str = Field(..., description="hospital, insurer, ...")
    record_id: str
    status: ConsentStatus = Field(default=ConsentStatus.PENDING)

    requested_at: datetime = Field(default_factory=utc_now)
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    expiry_hours: int = Field(..., description="Access window after approval")
    purpose: Optional[str] = None

    @property
    def expires_at(self) -> Optional[datetime]:
        """End of the access window; only defined once approved"""
        if self.status != ConsentStatus.APPROVED or self.resolved_at is None:
            return None
        return self.resolved_at + timedelta(hours=self.expiry_hours)

    def is_granted(self, now: Optional[datetime] = None) -> bool:
        """Approved and still inside the access window"""
        expires_at = self.expires_at
        if expires_at is None:
            return False
        return (now or utc_now()) <= expires_at

    def effective_status(self, now: Optional[datetime] = None) -> ConsentStatus:
        """Stored status, with approved requests past their window read as expired"""
        if self.status == ConsentStatus.APPROVED and not self.is_granted(now):
            return ConsentStatus.EXPIRED
        return self.status
