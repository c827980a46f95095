"""
Verification engine for MedProof
Re-hashes stored ciphertext and compares it with the anchored hash
"""

import threading
from datetime import datetime
from typing import Any, Callable, Dict, Optional
import structlog

from .models import VerificationResult
from ..audit import AuditAction, AuditTrail
from ..config import ConsentMode, MedProofConfig, get_config
from ..consent import ConsentManager
from ..constants import AuditDetailKeys, VerificationErrors
from ..context import AccessContext
from ..crypto import CryptoEngine
from ..exceptions import (
    ConsentRequiredError,
    LedgerError,
    NotFoundError,
    StorageError,
)
from ..ledger import Ledger
from ..records import RecordStatus, RecordStorage
from ..store import ContentStore
from ..utils.ids import utc_now
from ..utils.retry import RetryPolicy, call_with_retry
from ..utils.validators import validate_entity_id

logger = structlog.get_logger(__name__)


class VerificationEngine:
    """Integrity check of a record against the ledger, always audited"""

    def __init__(
        self,
        records: RecordStorage,
        ledger: Ledger,
        store: ContentStore,
        consent: ConsentManager,
        audit: AuditTrail,
        crypto: CryptoEngine,
        config: Optional[MedProofConfig] = None,
        retry_policy: Optional[RetryPolicy] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.records = records
        self.ledger = ledger
        self.store = store
        self.consent = consent
        self.audit = audit
        self.crypto = crypto
        self.config = config or get_config()
        self.retry_policy = retry_policy or RetryPolicy.from_config(self.config)
        self.clock = clock

    def verify(
        self,
        record_id: str,
        requester_id: str,
        context: Optional[AccessContext] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> VerificationResult:
        """
        Verify a record's integrity for a requester.

        Exactly one VIEW entry is appended per call that gets past input
        validation, including calls that end in NotFoundError or
        ConsentRequiredError.

        Raises:
            ValidationError: Malformed identifiers
            NotFoundError: Unknown record, or record without anchor
            ConsentRequiredError: Enforcing mode and no effective consent
        """
        record_id = validate_entity_id(record_id, "record_id")
        requester_id = validate_entity_id(requester_id, "requester_id")
        context = context or AccessContext(accessor_id=requester_id, accessor_type="unknown")

        record = self.records.get_record(record_id)
        if record is None:
            self._audit_view(context, None, record_id, False,
                             {AuditDetailKeys.ERROR: VerificationErrors.RECORD_NOT_FOUND})
            logger.warning("Verification of unknown record", record_id=record_id,
                           requester_id=requester_id)
            raise NotFoundError("record", record_id)

        detail: Dict[str, Any] = {AuditDetailKeys.CONSENT_MODE: self.config.consent_mode.value}
        error: Optional[str] = None

        # Anchor lookup
        anchor = None
        try:
            anchor = call_with_retry(
                lambda: self.ledger.get(record_id),
                self.retry_policy, LedgerError, "ledger.get", cancel_event,
            )
        except NotFoundError:
            detail[AuditDetailKeys.ERROR] = VerificationErrors.ANCHOR_NOT_FOUND
            self._audit_view(context, record.subject_id, record_id, False, detail)
            logger.error("Record has no anchor", record_id=record_id)
            raise
        except LedgerError as e:
            error = VerificationErrors.LEDGER_UNAVAILABLE
            logger.error("Ledger unavailable during verification", record_id=record_id, error=str(e))

        # Consent
        consent_granted = self.consent.is_granted(record.subject_id, record_id)
        detail[AuditDetailKeys.CONSENT_GRANTED] = consent_granted
        if not consent_granted and self.config.consent_mode == ConsentMode.ENFORCING:
            detail[AuditDetailKeys.ERROR] = VerificationErrors.CONSENT_REQUIRED
            self._audit_view(context, record.subject_id, record_id, False, detail)
            logger.warning("Verification refused without consent", record_id=record_id,
                           requester_id=requester_id)
            raise ConsentRequiredError(record.subject_id, record_id, requester_id)

        # Content retrieval and comparison
        local_hash: Optional[str] = None
        if anchor is not None:
            try:
                ciphertext = call_with_retry(
                    lambda: self.store.get(record.address),
                    self.retry_policy, StorageError, "store.get", cancel_event,
                )
                local_hash = self.crypto.hash(ciphertext)
            except NotFoundError:
                error = VerificationErrors.CONTENT_NOT_FOUND
                logger.error("Stored content missing", record_id=record_id, address=record.address)
            except StorageError as e:
                error = VerificationErrors.STORAGE_UNAVAILABLE
                logger.error("Content store unavailable during verification",
                             record_id=record_id, error=str(e))

        on_chain_hash = anchor.content_hash if anchor is not None else None
        is_valid = local_hash is not None and local_hash == on_chain_hash
        verified_at = self.clock()

        if local_hash is not None:
            detail[AuditDetailKeys.HASH_MISMATCH] = not is_valid
            status = RecordStatus.VERIFIED if is_valid else RecordStatus.TAMPERED
            self.records.update_status(record_id, status, verified_at)
        if error:
            detail[AuditDetailKeys.ERROR] = error
        if anchor is not None:
            detail[AuditDetailKeys.BLOCK_REF] = anchor.chain_ref.block_ref

        entry = self._audit_view(context, record.subject_id, record_id, is_valid, detail)

        result = VerificationResult(
            record_id=record_id,
            is_valid=is_valid,
            local_hash=local_hash,
            on_chain_hash=on_chain_hash,
            consent_granted=consent_granted,
            block_ref=anchor.chain_ref.block_ref if anchor is not None else None,
            tx_ref=anchor.chain_ref.tx_ref if anchor is not None else None,
            verified_at=verified_at,
            error=error,
            audit_entry_id=entry.id,
        )

        if result.hash_mismatch:
            logger.warning("Record failed integrity check", record_id=record_id,
                           local_hash=local_hash, on_chain_hash=on_chain_hash)
        else:
            logger.info("Record verified", record_id=record_id, is_valid=is_valid,
                        consent_granted=consent_granted, error=error)
        return result

    def _audit_view(self, context: AccessContext, subject_id: Optional[str],
                    record_id: str, verified: bool, detail: Dict[str, Any]):
        return self.audit.append(
            AuditAction.VIEW,
            context,
            subject_id=subject_id,
            record_id=record_id,
            verified=verified,
            detail=dict(detail),
        )
