"""
Verification result model for MedProof
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class VerificationResult(BaseModel):
    """Outcome of comparing stored ciphertext against its anchored hash"""
    record_id: str
    is_valid: bool
    local_hash: Optional[str] = Field(default=None, description="Hash of the retrieved ciphertext")
    on_chain_hash: Optional[str] = Field(default=None, description="Hash recorded at anchoring")
    consent_granted: bool = False
    block_ref: Optional[int] = None
    tx_ref: Optional[str] = None
    verified_at: datetime
    error: Optional[str] = None
    audit_entry_id: Optional[str] = None

    @property
    def hash_mismatch(self) -> bool:
        """Both hashes known and different"""
        return (
            self.local_hash is not None
            and self.on_chain_hash is not None
            and self.local_hash != self.on_chain_hash
        )
