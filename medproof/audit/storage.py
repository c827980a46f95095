"""
Audit storage adapters for MedProof
Insert-only persistence for audit entries
"""

import threading
from datetime import datetime, UTC
from typing import Callable, List, Optional
import structlog
from sqlalchemy import create_engine, Column, String, Integer, DateTime, Boolean, JSON, func
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .models import AuditAction, AuditFilter, AuditLogEntry
from ..exceptions import StorageError

logger = structlog.get_logger(__name__)

Base = declarative_base()

APPEND_ATTEMPTS = 5


class AuditEntryDB(Base):
    """SQLAlchemy model for audit entries"""
    __tablename__ = "audit_log"

    id = Column(String, primary_key=True)
    sequence = Column(Integer, nullable=False, unique=True, index=True)
    timestamp = Column(DateTime, nullable=False)

    subject_id = Column(String, index=True)
    record_id = Column(String, index=True)
    accessor_id = Column(String, nullable=False, index=True)
    accessor_type = Column(String, nullable=False)
    action = Column(String, nullable=False, index=True)

    verified = Column(Boolean, nullable=False, default=False)
    ip_address = Column(String)
    user_agent = Column(String)
    detail = Column(JSON, nullable=False, default=dict)

    hash = Column(String, nullable=False)
    previous_hash = Column(String, nullable=False)


class AuditStorage:
    """Storage adapter for the audit log"""

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url or "sqlite:///medproof_audit.db"
        self.engine = create_engine(self.database_url)
        self.SessionLocal = sessionmaker(bind=self.engine)

        Base.metadata.create_all(bind=self.engine)

    def _to_db_model(self, entry: AuditLogEntry) -> AuditEntryDB:
        return AuditEntryDB(
            id=entry.id,
            sequence=entry.sequence,
            timestamp=entry.timestamp,
            subject_id=entry.subject_id,
            record_id=entry.record_id,
            accessor_id=entry.accessor_id,
            accessor_type=entry.accessor_type,
            action=entry.action.value,
            verified=entry.verified,
            ip_address=entry.ip_address,
            user_agent=entry.user_agent,
            detail=entry.detail,
            hash=entry.hash,
            previous_hash=entry.previous_hash,
        )

    def _from_db_model(self, row: AuditEntryDB) -> AuditLogEntry:
        timestamp: datetime = row.timestamp
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=UTC)
        return AuditLogEntry(
            id=row.id,
            sequence=row.sequence,
            timestamp=timestamp,
            subject_id=row.subject_id,
            record_id=row.record_id,
            accessor_id=row.accessor_id,
            accessor_type=row.accessor_type,
            action=AuditAction(row.action),
            verified=row.verified,
            ip_address=row.ip_address,
            user_agent=row.user_agent,
            detail=row.detail or {},
            hash=row.hash,
            previous_hash=row.previous_hash,
        )

    def append_entry(self, build: Callable[[Optional[AuditLogEntry]], AuditLogEntry]) -> AuditLogEntry:
        """
        Insert the entry ``build`` derives from the current head.

        The head is read inside the inserting transaction. When another
        writer on the same database takes the sequence first, the unique
        constraint rejects the insert and the head is read again.
        """
        last_error: Optional[Exception] = None
        for attempt in range(1, APPEND_ATTEMPTS + 1):
            entry = None
            try:
                with self.SessionLocal() as session:
                    row = session.query(AuditEntryDB).order_by(AuditEntryDB.sequence.desc()).first()
                    entry = build(self._from_db_model(row) if row else None)
                    session.add(self._to_db_model(entry))
                    session.commit()
                return entry

            except IntegrityError as e:
                logger.warning("Audit sequence taken by another writer, retrying",
                               attempt=attempt, sequence=entry.sequence if entry else None)
                last_error = e
            except SQLAlchemyError as e:
                logger.error("Failed to store audit entry", error=str(e))
                raise StorageError("Failed to persist audit entry", reason=str(e))

        raise StorageError("Failed to persist audit entry", transient=True, reason=str(last_error))

    def get_entries(self, audit_filter: Optional[AuditFilter] = None,
                    limit: Optional[int] = None) -> List[AuditLogEntry]:
        """Filtered entries, newest first"""
        audit_filter = audit_filter or AuditFilter()
        with self.SessionLocal() as session:
            query = session.query(AuditEntryDB)
            if audit_filter.subject_id:
                query = query.filter_by(subject_id=audit_filter.subject_id)
            if audit_filter.record_id:
                query = query.filter_by(record_id=audit_filter.record_id)
            if audit_filter.accessor_id:
                query = query.filter_by(accessor_id=audit_filter.accessor_id)
            if audit_filter.action:
                query = query.filter_by(action=audit_filter.action.value)
            query = query.order_by(AuditEntryDB.sequence.desc())
            if limit is not None:
                query = query.limit(limit)
            return [self._from_db_model(row) for row in query.all()]

    def all_entries(self) -> List[AuditLogEntry]:
        """Every entry in append order"""
        with self.SessionLocal() as session:
            rows = session.query(AuditEntryDB).order_by(AuditEntryDB.sequence).all()
            return [self._from_db_model(row) for row in rows]

    def count(self) -> int:
        with self.SessionLocal() as session:
            return session.query(func.count(AuditEntryDB.id)).scalar() or 0


class InMemoryAuditStorage(AuditStorage):
    """In-memory audit storage for testing"""

    def __init__(self):
        self.entries: List[AuditLogEntry] = []
        self._lock = threading.Lock()

    def append_entry(self, build: Callable[[Optional[AuditLogEntry]], AuditLogEntry]) -> AuditLogEntry:
        with self._lock:
            entry = build(self.entries[-1] if self.entries else None)
            self.entries.append(entry)
        return entry.model_copy(deep=True)

    def get_entries(self, audit_filter: Optional[AuditFilter] = None,
                    limit: Optional[int] = None) -> List[AuditLogEntry]:
        audit_filter = audit_filter or AuditFilter()
        with self._lock:
            filtered = [e for e in self.entries if audit_filter.matches(e)]

        filtered.sort(key=lambda e: e.sequence, reverse=True)
        if limit is not None:
            filtered = filtered[:limit]
        return [e.model_copy(deep=True) for e in filtered]

    def all_entries(self) -> List[AuditLogEntry]:
        with self._lock:
            ordered = sorted(self.entries, key=lambda e: e.sequence)
        return [e.model_copy(deep=True) for e in ordered]

    def count(self) -> int:
        return len(self.entries)
