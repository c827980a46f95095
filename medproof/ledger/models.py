"""
Ledger data models for MedProof
"""

from datetime import datetime
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field


class ChainRef(BaseModel):
    """Where an anchor landed on the ledger"""
    model_config = ConfigDict(frozen=True)

    tx_ref: str = Field(..., description="Transaction reference")
    block_ref: int = Field(..., description="Block height")


class AnchorEntry(BaseModel):
    """Immutable binding of a record's address and hash to a point in time"""
    model_config = ConfigDict(frozen=True)

    record_id: str
    address: str
    content_hash: str
    anchored_at: datetime
    chain_ref: ChainRef
    subject_id: Optional[str] = None

    def canonical(self) -> Dict[str, Any]:
        """Fields covered by the transaction reference"""
        return {
            "record_id": self.record_id,
            "address": self.address,
            "content_hash": self.content_hash,
            "anchored_at": self.anchored_at.isoformat(),
            "subject_id": self.subject_id,
        }
