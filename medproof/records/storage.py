"""
Record storage adapters for MedProof
Database adapters for record metadata persistence
"""

import threading
from datetime import datetime, UTC
from typing import Dict, List, Optional
import structlog
from sqlalchemy import create_engine, Column, String, Integer, DateTime
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .models import Record, RecordStatus
from ..exceptions import NotFoundError, StorageError, ValidationError

logger = structlog.get_logger(__name__)

Base = declarative_base()


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class RecordDB(Base):
    """SQLAlchemy model for records"""
    __tablename__ = "records"

    id = Column(String, primary_key=True)
    subject_id = Column(String, nullable=False, index=True)
    record_type = Column(String, nullable=False)
    title = Column(String, nullable=False)
    custodian_id = Column(String, nullable=False, index=True)
    created_at = Column(DateTime, nullable=False)

    address = Column(String, nullable=False, index=True)
    content_hash = Column(String, nullable=False)
    encryption_iv = Column(String, nullable=False)
    algorithm = Column(String, nullable=False)
    size_bytes = Column(Integer, nullable=False)
    mime_type = Column(String)

    status = Column(String, nullable=False)
    verified_at = Column(DateTime)


class RecordStorage:
    """Storage adapter for records"""

    def __init__(self, database_url: Optional[str] = None):
        # Default to SQLite for development
        self.database_url = database_url or "sqlite:///medproof_records.db"
        self.engine = create_engine(self.database_url)
        self.SessionLocal = sessionmaker(bind=self.engine)

        # Create tables
        Base.metadata.create_all(bind=self.engine)

    def _to_db_model(self, record: Record) -> RecordDB:
        """Convert Record to database model"""
        return RecordDB(
            id=record.id,
            subject_id=record.subject_id,
            record_type=record.record_type,
            title=record.title,
            custodian_id=record.custodian_id,
            created_at=record.created_at,
            address=record.address,
            content_hash=record.content_hash,
            encryption_iv=record.encryption_iv,
            algorithm=record.algorithm,
            size_bytes=record.size_bytes,
            mime_type=record.mime_type,
            status=record.status.value,
            verified_at=record.verified_at,
        )

    def _from_db_model(self, db_record: RecordDB) -> Record:
        """Convert database model to Record"""
        return Record(
            id=db_record.id,
            subject_id=db_record.subject_id,
            record_type=db_record.record_type,
            title=db_record.title,
            custodian_id=db_record.custodian_id,
            created_at=_aware(db_record.created_at),
            address=db_record.address,
            content_hash=db_record.content_hash,
            encryption_iv=db_record.encryption_iv,
            algorithm=db_record.algorithm,
            size_bytes=db_record.size_bytes,
            mime_type=db_record.mime_type,
            status=RecordStatus(db_record.status),
            verified_at=_aware(db_record.verified_at),
        )

    def store_record(self, record: Record) -> Record:
        """Store a new record; ids are never reused"""
        try:
            with self.SessionLocal() as session:
                session.add(self._to_db_model(record))
                session.commit()

        except IntegrityError:
            raise ValidationError(f"Record already exists: {record.id}", field="id")
        except SQLAlchemyError as e:
            logger.error("Failed to store record", record_id=record.id, error=str(e))
            raise StorageError("Failed to persist record", reason=str(e))

        logger.info("Stored record", record_id=record.id, subject_id=record.subject_id)
        return record

    def get_record(self, record_id: str) -> Optional[Record]:
        """Get a specific record by ID"""
        with self.SessionLocal() as session:
            db_record = session.get(RecordDB, record_id)
            if db_record:
                return self._from_db_model(db_record)
            return None

    def list_for_subject(self, subject_id: str) -> List[Record]:
        """All records of a subject, newest first"""
        with self.SessionLocal() as session:
            rows = (
                session.query(RecordDB)
                .filter_by(subject_id=subject_id)
                .order_by(RecordDB.created_at.desc())
                .all()
            )
            return [self._from_db_model(row) for row in rows]

    def update_status(self, record_id: str, status: RecordStatus,
                      verified_at: datetime) -> Record:
        """Set the integrity status; the only mutable part of a record"""
        with self.SessionLocal() as session:
            db_record = session.get(RecordDB, record_id)
            if not db_record:
                raise NotFoundError("record", record_id)

            db_record.status = status.value
            db_record.verified_at = verified_at
            session.commit()

            return self._from_db_model(db_record)

    def delete_record(self, record_id: str) -> None:
        """Remove a record whose upload did not complete"""
        try:
            with self.SessionLocal() as session:
                session.query(RecordDB).filter_by(id=record_id).delete()
                session.commit()
        except SQLAlchemyError as e:
            logger.error("Failed to delete record", record_id=record_id, error=str(e))
            raise StorageError("Failed to delete record", reason=str(e))


class InMemoryRecordStorage(RecordStorage):
    """In-memory storage for testing"""

    def __init__(self):
        self.records: Dict[str, Record] = {}
        self._lock = threading.Lock()

    def store_record(self, record: Record) -> Record:
        with self._lock:
            if record.id in self.records:
                raise ValidationError(f"Record already exists: {record.id}", field="id")
            self.records[record.id] = record
        return record

    def get_record(self, record_id: str) -> Optional[Record]:
        return self.records.get(record_id)

    def list_for_subject(self, subject_id: str) -> List[Record]:
        records = [r for r in self.records.values() if r.subject_id == subject_id]
        return sorted(records, key=lambda r: r.created_at, reverse=True)

    def update_status(self, record_id: str, status: RecordStatus,
                      verified_at: datetime) -> Record:
        with self._lock:
            record = self.records.get(record_id)
            if record is None:
                raise NotFoundError("record", record_id)
            updated = record.model_copy(update={"status": status, "verified_at": verified_at})
            self.records[record_id] = updated
        return updated

    def delete_record(self, record_id: str) -> None:
        with self._lock:
            self.records.pop(record_id, None)
