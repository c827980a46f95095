"""
Ledger adapters for MedProof
Append-only registry of record anchors; no retroactive edits
"""

import threading
from abc import ABC, abstractmethod
from datetime import UTC
from typing import Dict, List, Optional
import structlog
from sqlalchemy import create_engine, Column, String, Integer, DateTime
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .models import AnchorEntry, ChainRef
from ..crypto.hash import GENESIS_HASH, chain_link, create_data_fingerprint
from ..exceptions import AlreadyAnchoredError, LedgerError, NotFoundError
from ..utils.ids import utc_now
from ..utils.validators import validate_address, validate_content_hash

logger = structlog.get_logger(__name__)

Base = declarative_base()


def compute_tx_ref(previous_tx_ref: Optional[str], entry: AnchorEntry) -> str:
    """Transaction reference chained onto the previous block's reference"""
    previous = previous_tx_ref[2:] if previous_tx_ref else GENESIS_HASH
    fingerprint = create_data_fingerprint(entry.canonical())
    return "0x" + chain_link(previous, fingerprint.encode("utf-8"))


def _verify_sequence(entries: List[AnchorEntry]) -> bool:
    previous: Optional[str] = None
    for height, entry in enumerate(entries, start=1):
        if entry.chain_ref.block_ref != height:
            logger.error("Ledger block gap", record_id=entry.record_id,
                         expected=height, actual=entry.chain_ref.block_ref)
            return False
        expected = compute_tx_ref(previous, entry)
        if entry.chain_ref.tx_ref != expected:
            logger.error("Ledger integrity violation", record_id=entry.record_id,
                         expected_tx=expected, actual_tx=entry.chain_ref.tx_ref)
            return False
        previous = entry.chain_ref.tx_ref
    return True


class Ledger(ABC):
    """Registry contract: one anchor per record, never overwritten"""

    @abstractmethod
    def anchor(self, record_id: str, address: str, content_hash: str,
               subject_id: Optional[str] = None) -> AnchorEntry:
        """Anchor a record or raise AlreadyAnchoredError"""

    @abstractmethod
    def get(self, record_id: str) -> AnchorEntry:
        """Return the anchor or raise NotFoundError"""


class InMemoryLedger(Ledger):
    """Hash-chained in-memory ledger for testing, one anchor per block"""

    def __init__(self):
        self._entries: Dict[str, AnchorEntry] = {}
        self._blocks: List[str] = []
        self._lock = threading.Lock()

    def anchor(self, record_id: str, address: str, content_hash: str,
               subject_id: Optional[str] = None) -> AnchorEntry:
        address = validate_address(address)
        content_hash = validate_content_hash(content_hash)
        with self._lock:
            if record_id in self._entries:
                raise AlreadyAnchoredError(record_id)

            previous = self._blocks[-1] if self._blocks else None
            draft = AnchorEntry(
                record_id=record_id,
                address=address,
                content_hash=content_hash,
                anchored_at=utc_now(),
                subject_id=subject_id,
                chain_ref=ChainRef(tx_ref="0x", block_ref=len(self._blocks) + 1),
            )
            tx_ref = compute_tx_ref(previous, draft)
            entry = draft.model_copy(update={
                "chain_ref": ChainRef(tx_ref=tx_ref, block_ref=draft.chain_ref.block_ref)
            })

            self._entries[record_id] = entry
            self._blocks.append(tx_ref)

        logger.info("Anchored record", record_id=record_id,
                    tx_ref=tx_ref, block_ref=entry.chain_ref.block_ref)
        return entry

    def get(self, record_id: str) -> AnchorEntry:
        with self._lock:
            entry = self._entries.get(record_id)
        if entry is None:
            raise NotFoundError("anchor", record_id)
        return entry

    def verify_chain(self) -> bool:
        with self._lock:
            entries = sorted(self._entries.values(), key=lambda e: e.chain_ref.block_ref)
        return _verify_sequence(entries)


class AnchorEntryDB(Base):
    """SQLAlchemy model for ledger anchors"""
    __tablename__ = "ledger_anchors"

    record_id = Column(String, primary_key=True)
    address = Column(String, nullable=False, index=True)
    content_hash = Column(String, nullable=False)
    subject_id = Column(String, index=True)
    anchored_at = Column(DateTime, nullable=False)
    tx_ref = Column(String, nullable=False, unique=True)
    block_ref = Column(Integer, nullable=False, unique=True)


class SqlLedger(Ledger):
    """Ledger backed by an insert-only relational table"""

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url or "sqlite:///medproof_ledger.db"
        self.engine = create_engine(self.database_url)
        self.SessionLocal = sessionmaker(bind=self.engine)
        self._lock = threading.Lock()

        Base.metadata.create_all(bind=self.engine)

    def _from_db_model(self, row: AnchorEntryDB) -> AnchorEntry:
        anchored_at = row.anchored_at
        if anchored_at.tzinfo is None:
            anchored_at = anchored_at.replace(tzinfo=UTC)
        return AnchorEntry(
            record_id=row.record_id,
            address=row.address,
            content_hash=row.content_hash,
            subject_id=row.subject_id,
            anchored_at=anchored_at,
            chain_ref=ChainRef(tx_ref=row.tx_ref, block_ref=row.block_ref),
        )

    def _head(self, session) -> Optional[AnchorEntryDB]:
        return session.query(AnchorEntryDB).order_by(AnchorEntryDB.block_ref.desc()).first()

    def anchor(self, record_id: str, address: str, content_hash: str,
               subject_id: Optional[str] = None) -> AnchorEntry:
        address = validate_address(address)
        content_hash = validate_content_hash(content_hash)
        try:
            with self._lock, self.SessionLocal() as session:
                if session.get(AnchorEntryDB, record_id) is not None:
                    raise AlreadyAnchoredError(record_id)

                head = self._head(session)
                height = (head.block_ref if head else 0) + 1

                draft = AnchorEntry(
                    record_id=record_id,
                    address=address,
                    content_hash=content_hash,
                    anchored_at=utc_now(),
                    subject_id=subject_id,
                    chain_ref=ChainRef(tx_ref="0x", block_ref=height),
                )
                tx_ref = compute_tx_ref(head.tx_ref if head else None, draft)

                session.add(AnchorEntryDB(
                    record_id=record_id,
                    address=address,
                    content_hash=content_hash,
                    subject_id=subject_id,
                    anchored_at=draft.anchored_at,
                    tx_ref=tx_ref,
                    block_ref=height,
                ))
                session.commit()

        except IntegrityError:
            if self._is_anchored(record_id):
                raise AlreadyAnchoredError(record_id)
            # Another writer on the database took this block height
            logger.warning("Ledger height taken concurrently", record_id=record_id, block_ref=height)
            raise LedgerError("Block height taken by a concurrent anchor", transient=True,
                              reason="height_conflict")
        except SQLAlchemyError as e:
            logger.error("Failed to anchor record", record_id=record_id, error=str(e))
            raise LedgerError("Failed to anchor record", transient=True, reason=str(e))

        logger.info("Anchored record", record_id=record_id, tx_ref=tx_ref, block_ref=height)
        return draft.model_copy(update={"chain_ref": ChainRef(tx_ref=tx_ref, block_ref=height)})

    def _is_anchored(self, record_id: str) -> bool:
        with self.SessionLocal() as session:
            return session.get(AnchorEntryDB, record_id) is not None

    def get(self, record_id: str) -> AnchorEntry:
        try:
            with self.SessionLocal() as session:
                row = session.get(AnchorEntryDB, record_id)
                if row is None:
                    raise NotFoundError("anchor", record_id)
                return self._from_db_model(row)

        except SQLAlchemyError as e:
            logger.error("Failed to read anchor", record_id=record_id, error=str(e))
            raise LedgerError("Failed to read anchor", transient=True, reason=str(e))

    def verify_chain(self) -> bool:
        with self.SessionLocal() as session:
            rows = session.query(AnchorEntryDB).order_by(AnchorEntryDB.block_ref).all()
            entries = [self._from_db_model(row) for row in rows]
        return _verify_sequence(entries)
