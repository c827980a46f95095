"""
MedProof service facade
Upload, consent, verification, download and audit operations over
injected record, content, ledger, consent and audit backends
"""

import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
import structlog

from .audit import AuditAction, AuditFilter, AuditLogEntry, AuditStorage, AuditTrail
from .config import BackendKind, MedProofConfig, get_config
from .consent import (
    ConsentDecision,
    ConsentManager,
    ConsentRequest,
    ConsentStatus,
    ConsentStorage,
)
from .constants import AuditDetailKeys, RequesterTypes, VerificationErrors
from .context import AccessContext
from .crypto import CryptoEngine
from .exceptions import (
    AlreadyAnchoredError,
    ConsentRequiredError,
    CryptoError,
    LedgerError,
    MedProofError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from .ledger import InMemoryLedger, JsonRpcLedger, Ledger, SqlLedger
from .records import InMemoryRecordStorage, Record, RecordStatus, RecordStorage
from .store import (
    ContentStore,
    InMemoryContentStore,
    IpfsHttpContentStore,
    SqlContentStore,
    get_addressing,
)
from .utils.ids import generate_record_id, utc_now
from .utils.retry import RetryPolicy, call_with_retry
from .utils.validators import (
    validate_entity_id,
    validate_payload,
    validate_requester_type,
    validate_text,
)
from .verification import VerificationEngine, VerificationResult

logger = structlog.get_logger(__name__)


class MedProofService:
    """Operations exposed to presentation layers"""

    def __init__(
        self,
        records: Optional[RecordStorage] = None,
        store: Optional[ContentStore] = None,
        ledger: Optional[Ledger] = None,
        consent: Optional[ConsentManager] = None,
        audit: Optional[AuditTrail] = None,
        crypto: Optional[CryptoEngine] = None,
        config: Optional[MedProofConfig] = None,
        retry_policy: Optional[RetryPolicy] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config or get_config()
        self.clock = clock
        self.records = records or InMemoryRecordStorage()
        self.store = store or InMemoryContentStore(get_addressing(self.config.address_strategy))
        self.ledger = ledger or InMemoryLedger()
        self.consent = consent or ConsentManager(config=self.config, clock=clock)
        self.audit = audit or AuditTrail(clock=clock)
        self.crypto = crypto or CryptoEngine(config=self.config)
        self.retry_policy = retry_policy or RetryPolicy.from_config(self.config)

        self.verifier = VerificationEngine(
            records=self.records,
            ledger=self.ledger,
            store=self.store,
            consent=self.consent,
            audit=self.audit,
            crypto=self.crypto,
            config=self.config,
            retry_policy=self.retry_policy,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def upload_record(
        self,
        subject_id: str,
        record_type: str,
        title: str,
        custodian_id: str,
        plaintext: bytes,
        context: Optional[AccessContext] = None,
        mime_type: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Record:
        """
        Encrypt, store and anchor a record, then open a consent request
        for the custodian and audit the upload.

        Store and ledger failures propagate; no Record is saved for them.
        A failed consent request or audit write removes the record again.
        """
        subject_id = validate_entity_id(subject_id, "subject_id")
        custodian_id = validate_entity_id(custodian_id, "custodian_id")
        record_type = validate_text(record_type, "record_type", max_length=128)
        title = validate_text(title, "title")
        plaintext = validate_payload(plaintext)
        context = context or AccessContext(accessor_id=custodian_id,
                                           accessor_type=RequesterTypes.HOSPITAL)

        record_id = generate_record_id()
        payload = self.crypto.encrypt(plaintext)
        content_hash = self.crypto.hash(payload.ciphertext)

        address = call_with_retry(
            lambda: self.store.put(payload.ciphertext),
            self.retry_policy, StorageError, "store.put", cancel_event,
        )
        anchor = self._anchor(record_id, address, content_hash, subject_id, cancel_event)

        record = Record(
            id=record_id,
            subject_id=subject_id,
            record_type=record_type,
            title=title,
            custodian_id=custodian_id,
            created_at=self.clock(),
            address=address,
            content_hash=content_hash,
            encryption_iv=payload.iv_hex,
            size_bytes=len(plaintext),
            mime_type=mime_type,
            status=RecordStatus.VERIFIED,
            verified_at=self.clock(),
        )
        self.records.store_record(record)

        request: Optional[ConsentRequest] = None
        try:
            request = self.consent.create_request(
                subject_id=subject_id,
                requester_id=custodian_id,
                requester_type=RequesterTypes.HOSPITAL,
                record_id=record_id,
                expiry_hours=self.config.default_expiry_hours,
            )

            self.audit.append(
                AuditAction.UPLOAD,
                context,
                subject_id=subject_id,
                record_id=record_id,
                verified=True,
                detail={
                    AuditDetailKeys.ADDRESS: address,
                    AuditDetailKeys.TX_REF: anchor.chain_ref.tx_ref,
                    AuditDetailKeys.BLOCK_REF: anchor.chain_ref.block_ref,
                    AuditDetailKeys.REQUEST_ID: request.id,
                },
            )
        except MedProofError as e:
            logger.error("Upload incomplete, rolling back record", record_id=record_id, error=str(e))
            if request is not None:
                self.consent.discard(request.id)
            self.records.delete_record(record_id)
            raise

        logger.info("Record uploaded", record_id=record_id, subject_id=subject_id,
                    custodian_id=custodian_id, address=address,
                    block_ref=anchor.chain_ref.block_ref)
        return record

    def _anchor(self, record_id: str, address: str, content_hash: str,
                subject_id: str, cancel_event: Optional[threading.Event]):
        try:
            return call_with_retry(
                lambda: self.ledger.anchor(record_id, address, content_hash, subject_id),
                self.retry_policy, LedgerError, "ledger.anchor", cancel_event,
            )
        except AlreadyAnchoredError:
            # A retried anchor whose first attempt landed
            anchor = self.ledger.get(record_id)
            if anchor.content_hash != content_hash or anchor.address != address:
                raise
            return anchor

    def get_record(self, record_id: str) -> Record:
        record = self.records.get_record(validate_entity_id(record_id, "record_id"))
        if record is None:
            raise NotFoundError("record", record_id)
        return record

    def list_records(self, subject_id: str) -> List[Record]:
        return self.records.list_for_subject(validate_entity_id(subject_id, "subject_id"))

    def download_record(
        self,
        record_id: str,
        requester_id: str,
        context: Optional[AccessContext] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> bytes:
        """
        Decrypt a record for its subject, its custodian, or a requester
        holding effective consent. Content whose hash no longer matches
        the anchor is never returned.
        """
        record_id = validate_entity_id(record_id, "record_id")
        requester_id = validate_entity_id(requester_id, "requester_id")
        context = context or AccessContext(accessor_id=requester_id, accessor_type="unknown")

        record = self.records.get_record(record_id)
        if record is None:
            self.audit.append(AuditAction.DOWNLOAD, context, record_id=record_id,
                              detail={AuditDetailKeys.ERROR: VerificationErrors.RECORD_NOT_FOUND})
            raise NotFoundError("record", record_id)

        allowed = (
            requester_id in (record.subject_id, record.custodian_id)
            or self.consent.is_granted(record.subject_id, record_id, requester_id)
        )
        if not allowed:
            self.audit.append(AuditAction.DOWNLOAD, context,
                              subject_id=record.subject_id, record_id=record_id,
                              detail={AuditDetailKeys.ERROR: VerificationErrors.CONSENT_REQUIRED,
                                      AuditDetailKeys.CONSENT_GRANTED: False})
            logger.warning("Download refused without consent", record_id=record_id,
                           requester_id=requester_id)
            raise ConsentRequiredError(record.subject_id, record_id, requester_id)

        anchor = call_with_retry(
            lambda: self.ledger.get(record_id),
            self.retry_policy, LedgerError, "ledger.get", cancel_event,
        )
        ciphertext = call_with_retry(
            lambda: self.store.get(record.address),
            self.retry_policy, StorageError, "store.get", cancel_event,
        )

        if self.crypto.hash(ciphertext) != anchor.content_hash:
            self.records.update_status(record_id, RecordStatus.TAMPERED, self.clock())
            self.audit.append(AuditAction.DOWNLOAD, context,
                              subject_id=record.subject_id, record_id=record_id,
                              detail={AuditDetailKeys.HASH_MISMATCH: True})
            logger.warning("Download blocked by integrity failure", record_id=record_id)
            raise CryptoError("Stored content does not match anchored hash", reason="hash_mismatch")

        plaintext = self.crypto.decrypt(ciphertext, bytes.fromhex(record.encryption_iv))

        self.audit.append(AuditAction.DOWNLOAD, context,
                          subject_id=record.subject_id, record_id=record_id,
                          verified=True, detail={AuditDetailKeys.HASH_MISMATCH: False})
        return plaintext

    # ------------------------------------------------------------------
    # Consent
    # ------------------------------------------------------------------

    def create_consent_request(
        self,
        subject_id: str,
        requester_id: str,
        requester_type: str,
        record_id: str,
        expiry_hours: int,
        context: Optional[AccessContext] = None,
        purpose: Optional[str] = None,
    ) -> ConsentRequest:
        """Ask a subject for access to one of their records"""
        subject_id = validate_entity_id(subject_id, "subject_id")
        requester_type = validate_requester_type(requester_type)

        record = self.get_record(record_id)
        if record.subject_id != subject_id:
            raise ValidationError("Record does not belong to subject", field="subject_id")

        request = self.consent.create_request(
            subject_id=subject_id,
            requester_id=requester_id,
            requester_type=requester_type,
            record_id=record.id,
            expiry_hours=expiry_hours,
            purpose=purpose,
        )

        context = context or AccessContext(accessor_id=request.requester_id,
                                           accessor_type=requester_type)
        self.audit.append(
            AuditAction.REQUEST,
            context,
            subject_id=subject_id,
            record_id=record.id,
            detail={AuditDetailKeys.REQUEST_ID: request.id},
        )
        return request

    def resolve_consent(
        self,
        request_id: str,
        decision: ConsentDecision,
        context: Optional[AccessContext] = None,
    ) -> ConsentRequest:
        """Approve or deny a pending request; a second resolution raises StateError"""
        try:
            decision = ConsentDecision(decision)
        except ValueError:
            raise ValidationError(f"Unknown decision: {decision}", field="decision")

        request = self.consent.get_request(validate_entity_id(request_id, "request_id"))
        context = context or AccessContext(accessor_id=request.subject_id,
                                           accessor_type=RequesterTypes.PATIENT)

        resolved = self.consent.resolve(request.id, decision, resolved_by=context.accessor_id)

        action = AuditAction.APPROVE if decision is ConsentDecision.APPROVE else AuditAction.DENY
        self.audit.append(
            action,
            context,
            subject_id=resolved.subject_id,
            record_id=resolved.record_id,
            detail={AuditDetailKeys.REQUEST_ID: resolved.id},
        )
        return resolved

    def get_consent_request(self, request_id: str) -> ConsentRequest:
        return self.consent.get_request(request_id)

    def list_consents(self, subject_id: str,
                      status: Optional[ConsentStatus] = None) -> List[ConsentRequest]:
        return self.consent.list_for_subject(validate_entity_id(subject_id, "subject_id"), status)

    def pending_consents(self, subject_id: str) -> List[ConsentRequest]:
        return self.consent.pending_for_subject(validate_entity_id(subject_id, "subject_id"))

    def is_granted(self, subject_id: str, record_id: str) -> bool:
        return self.consent.is_granted(subject_id, record_id)

    # ------------------------------------------------------------------
    # Verification and audit
    # ------------------------------------------------------------------

    def verify_record(
        self,
        record_id: str,
        requester_id: str,
        context: Optional[AccessContext] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> VerificationResult:
        return self.verifier.verify(record_id, requester_id, context, cancel_event)

    def get_audit_trail(self, audit_filter: Optional[AuditFilter] = None,
                        limit: Optional[int] = None) -> List[AuditLogEntry]:
        return self.audit.query(audit_filter, limit)

    def audit_stats(self, subject_id: str) -> Dict[str, Any]:
        return self.audit.stats(validate_entity_id(subject_id, "subject_id"))

    def export_audit(self, subject_id: Optional[str] = None) -> Dict[str, Any]:
        return self.audit.export(subject_id)

    def verify_audit_integrity(self) -> bool:
        return self.audit.verify_integrity()

    def close(self) -> None:
        """Release HTTP clients held by remote backends"""
        for backend in (self.store, self.ledger):
            close = getattr(backend, "close", None)
            if close is not None:
                close()


def build_service(config: Optional[MedProofConfig] = None) -> MedProofService:
    """Wire backends according to ``config.backend``"""
    config = config or get_config()
    addressing = get_addressing(config.address_strategy)

    if config.backend == BackendKind.MEMORY:
        return MedProofService(config=config)

    records = RecordStorage(config.database_url)
    consent = ConsentManager(storage=ConsentStorage(config.database_url), config=config)
    audit = AuditTrail(storage=AuditStorage(config.database_url))

    if config.backend == BackendKind.REMOTE:
        store: ContentStore = IpfsHttpContentStore(config.ipfs_api_url,
                                                   timeout=config.operation_timeout_seconds)
        ledger: Ledger = JsonRpcLedger(config.ledger_rpc_url,
                                       timeout=config.operation_timeout_seconds)
    else:
        store = SqlContentStore(config.database_url, addressing=addressing)
        ledger = SqlLedger(config.database_url)

    logger.info("Service backends configured", backend=config.backend.value,
                consent_mode=config.consent_mode.value)

    return MedProofService(
        records=records,
        store=store,
        ledger=ledger,
        consent=consent,
        audit=audit,
        config=config,
    )
