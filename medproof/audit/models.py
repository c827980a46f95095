"""
Audit data models for MedProof
Append-only, hash-linked record of every access and decision
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field

from ..crypto.hash import secure_hash


class AuditAction(str, Enum):
    """Audited operations"""
    UPLOAD = "UPLOAD"
    VIEW = "VIEW"
    APPROVE = "APPROVE"
    DENY = "DENY"
    REQUEST = "REQUEST"
    DOWNLOAD = "DOWNLOAD"


class AuditLogEntry(BaseModel):
    """Individual audit entry; never modified once appended"""
    model_config = ConfigDict(frozen=True)

    id: str
    sequence: int
    timestamp: datetime

    # Who and what
    subject_id: Optional[str] = None
    record_id: Optional[str] = None
    accessor_id: str
    accessor_type: str
    action: AuditAction

    verified: bool = False
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    detail: Dict[str, Any] = Field(default_factory=dict)

    # Integrity
    hash: Optional[str] = None
    previous_hash: Optional[str] = None

    def to_audit_string(self) -> str:
        """Convert to string for hashing"""
        audit_data = {
            "id": self.id,
            "sequence": self.sequence,
            "timestamp": self.timestamp.isoformat(),
            "subject_id": self.subject_id,
            "record_id": self.record_id,
            "accessor_id": self.accessor_id,
            "accessor_type": self.accessor_type,
            "action": self.action.value,
            "verified": self.verified,
            "ip_address": self.ip_address,
            "detail": self.detail,
        }

        return json.dumps(audit_data, sort_keys=True, separators=(',', ':'), default=str)

    def compute_hash(self, previous_hash: str) -> str:
        """Compute hash for integrity verification"""
        combined = f"{previous_hash}:{self.to_audit_string()}"
        return secure_hash(combined.encode('utf-8'))


class AuditFilter(BaseModel):
    """Optional equality filters; unset fields match everything"""
    subject_id: Optional[str] = None
    record_id: Optional[str] = None
    accessor_id: Optional[str] = None
    action: Optional[AuditAction] = None

    def matches(self, entry: AuditLogEntry) -> bool:
        if self.subject_id and entry.subject_id != self.subject_id:
            return False
        if self.record_id and entry.record_id != self.record_id:
            return False
        if self.accessor_id and entry.accessor_id != self.accessor_id:
            return False
        if self.action and entry.action != self.action:
            return False
        return True
