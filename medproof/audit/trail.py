"""
Audit trail for MedProof
Serialized append with monotonic sequence numbers and a hash chain
"""

import threading
from collections import Counter
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
import structlog

from .models import AuditAction, AuditFilter, AuditLogEntry
from .storage import AuditStorage, InMemoryAuditStorage
from ..context import AccessContext
from ..crypto.hash import GENESIS_HASH
from ..utils.ids import generate_audit_id, utc_now

logger = structlog.get_logger(__name__)

RECENT_ENTRY_COUNT = 5


class AuditTrail:
    """Audit logging system with integrity protection"""

    def __init__(self, storage: Optional[AuditStorage] = None,
                 clock: Callable[[], datetime] = utc_now):
        self.storage = storage or InMemoryAuditStorage()
        self.clock = clock
        self._lock = threading.Lock()

    def append(
        self,
        action: AuditAction,
        context: AccessContext,
        subject_id: Optional[str] = None,
        record_id: Optional[str] = None,
        verified: bool = False,
        detail: Optional[Dict[str, Any]] = None,
    ) -> AuditLogEntry:
        """Append one entry; ids and sequence numbers are unique and increasing"""
        action = AuditAction(action)

        def next_entry(head: Optional[AuditLogEntry]) -> AuditLogEntry:
            sequence = head.sequence + 1 if head else 1
            previous_hash = head.hash if head else GENESIS_HASH
            timestamp = self.clock()

            draft = AuditLogEntry(
                id=generate_audit_id(sequence, timestamp),
                sequence=sequence,
                timestamp=timestamp,
                subject_id=subject_id,
                record_id=record_id,
                accessor_id=context.accessor_id,
                accessor_type=context.accessor_type,
                action=action,
                verified=verified,
                ip_address=context.ip_address,
                user_agent=context.user_agent,
                detail=dict(detail or {}),
                previous_hash=previous_hash,
            )
            return draft.model_copy(update={"hash": draft.compute_hash(previous_hash)})

        # Head is read by the storage within its insert
        with self._lock:
            entry = self.storage.append_entry(next_entry)

        logger.info("Audit entry appended",
                    entry_id=entry.id,
                    action=entry.action.value,
                    accessor_id=entry.accessor_id,
                    record_id=record_id,
                    verified=verified)
        return entry

    def query(self, audit_filter: Optional[AuditFilter] = None,
              limit: Optional[int] = None) -> List[AuditLogEntry]:
        """Matching entries, most recent first"""
        return self.storage.get_entries(audit_filter, limit)

    def stats(self, subject_id: str) -> Dict[str, Any]:
        """Per-subject totals by action and accessor type"""
        entries = self.query(AuditFilter(subject_id=subject_id))

        return {
            "subject_id": subject_id,
            "total": len(entries),
            "by_action": dict(Counter(e.action.value for e in entries)),
            "by_accessor_type": dict(Counter(e.accessor_type for e in entries)),
            "recent": [e.model_dump(mode="json") for e in entries[:RECENT_ENTRY_COUNT]],
        }

    def verify_integrity(self) -> bool:
        """Recompute the hash chain over the whole log"""
        previous_hash = GENESIS_HASH
        for entry in self.storage.all_entries():
            if entry.previous_hash != previous_hash or entry.hash != entry.compute_hash(previous_hash):
                logger.error("Audit integrity violation",
                             entry_id=entry.id,
                             sequence=entry.sequence)
                return False
            previous_hash = entry.hash

        logger.info("Audit integrity verified", entry_count=len(self))
        return True

    def export(self, subject_id: Optional[str] = None) -> Dict[str, Any]:
        """Export audit trail for compliance"""
        entries = self.query(AuditFilter(subject_id=subject_id))

        return {
            "export_timestamp": utc_now().isoformat(),
            "subject_id": subject_id,
            "entry_count": len(entries),
            "entries": [e.model_dump(mode="json") for e in entries],
            "integrity_verified": self.verify_integrity(),
        }

    def __len__(self) -> int:
        return self.storage.count()
