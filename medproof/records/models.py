"""
Record data models for MedProof
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

from ..constants import EncryptionDefaults
from ..utils.ids import generate_record_id, utc_now


class RecordStatus(str, Enum):
    """Integrity status as last established by verification"""
    VERIFIED = "verified"
    TAMPERED = "tampered"
    UNKNOWN = "unknown"


class Record(BaseModel):
    """Encrypted medical record registered by a custodian"""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=generate_record_id)
    subject_id: str = Field(..., description="Patient the record belongs to")
    record_type: str = Field(..., description="Record category, e.g. Blood Test")
    title: str
    custodian_id: str = Field(..., description="Hospital that uploaded the record")
    created_at: datetime = Field(default_factory=utc_now)

    # Storage and integrity
    address: str = Field(..., description="Content address of the ciphertext")
    content_hash: str = Field(..., description="SHA-256 of the ciphertext")
    encryption_iv: str = Field(..., description="Hex encoded IV")
    algorithm: str = Field(default=EncryptionDefaults.ALGORITHM)
    size_bytes: int = 0
    mime_type: Optional[str] = None

    status: RecordStatus = Field(default=RecordStatus.UNKNOWN)
    verified_at: Optional[datetime] = None
