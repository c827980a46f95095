"""
Access context for MedProof operations
Identifies who performs an operation; passed explicitly into every call
"""

from typing import Optional
from pydantic import BaseModel, Field


class AccessContext(BaseModel):
    """The acting party and the channel it acts through"""
    accessor_id: str
    accessor_type: str = Field(..., description="hospital, insurer, patient, researcher or unknown")
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    model_config = {"frozen": True}
