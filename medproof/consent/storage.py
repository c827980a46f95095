"""
Consent storage adapters for MedProof
Database adapters for consent request persistence
"""

import threading
from datetime import datetime, UTC
from typing import Dict, List, Optional
import structlog
from sqlalchemy import create_engine, Column, String, Integer, DateTime, Text, update
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .models import ConsentRequest, ConsentStatus
from ..exceptions import NotFoundError, StateError, StorageError, ValidationError

logger = structlog.get_logger(__name__)

Base = declarative_base()


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class ConsentRequestDB(Base):
    """SQLAlchemy model for consent requests"""
    __tablename__ = "consent_requests"

    id = Column(String, primary_key=True)
    subject_id = Column(String, nullable=False, index=True)
    requester_id = Column(String, nullable=False, index=True)
    requester_type = Column(String, nullable=False)
    record_id = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False, index=True)

    requested_at = Column(DateTime, nullable=False)
    resolved_at = Column(DateTime)
    resolved_by = Column(String)
    expiry_hours = Column(Integer, nullable=False)
    purpose = Column(Text)


class ConsentStorage:
    """Storage adapter for consent requests"""

    def __init__(self, database_url: Optional[str] = None):
        # Default to SQLite for development
        self.database_url = database_url or "sqlite:///medproof_consent.db"
        self.engine = create_engine(self.database_url)
        self.SessionLocal = sessionmaker(bind=self.engine)

        # Create tables
        Base.metadata.create_all(bind=self.engine)

    def _to_db_model(self, request: ConsentRequest) -> ConsentRequestDB:
        """Convert ConsentRequest to database model"""
        return ConsentRequestDB(
            id=request.id,
            subject_id=request.subject_id,
            requester_id=request.requester_id,
            requester_type=request.requester_type,
            record_id=request.record_id,
            status=request.status.value,
            requested_at=request.requested_at,
            resolved_at=request.resolved_at,
            resolved_by=request.resolved_by,
            expiry_hours=request.expiry_hours,
            purpose=request.purpose,
        )

    def _from_db_model(self, db_request: ConsentRequestDB) -> ConsentRequest:
        """Convert database model to ConsentRequest"""
        return ConsentRequest(
            id=db_request.id,
            subject_id=db_request.subject_id,
            requester_id=db_request.requester_id,
            requester_type=db_request.requester_type,
            record_id=db_request.record_id,
            status=ConsentStatus(db_request.status),
            requested_at=_aware(db_request.requested_at),
            resolved_at=_aware(db_request.resolved_at),
            resolved_by=db_request.resolved_by,
            expiry_hours=db_request.expiry_hours,
            purpose=db_request.purpose,
        )

    def store_request(self, request: ConsentRequest) -> ConsentRequest:
        """Store a new consent request"""
        try:
            with self.SessionLocal() as session:
                session.add(self._to_db_model(request))
                session.commit()

        except IntegrityError:
            raise ValidationError(f"Consent request already exists: {request.id}", field="id")
        except SQLAlchemyError as e:
            logger.error("Failed to store consent request", request_id=request.id, error=str(e))
            raise StorageError("Failed to persist consent request", reason=str(e))

        logger.info("Stored consent request", request_id=request.id,
                    subject_id=request.subject_id, record_id=request.record_id)
        return request

    def get_request(self, request_id: str) -> Optional[ConsentRequest]:
        """Get a specific consent request by ID"""
        with self.SessionLocal() as session:
            db_request = session.get(ConsentRequestDB, request_id)
            if db_request:
                return self._from_db_model(db_request)
            return None

    def find(self, subject_id: str, record_id: Optional[str] = None,
             requester_id: Optional[str] = None) -> List[ConsentRequest]:
        """Requests of a subject, optionally narrowed, newest first"""
        with self.SessionLocal() as session:
            query = session.query(ConsentRequestDB).filter_by(subject_id=subject_id)
            if record_id:
                query = query.filter_by(record_id=record_id)
            if requester_id:
                query = query.filter_by(requester_id=requester_id)
            rows = query.order_by(ConsentRequestDB.requested_at.desc()).all()
            return [self._from_db_model(row) for row in rows]

    def resolve(self, request_id: str, status: ConsentStatus,
                resolved_at: datetime, resolved_by: Optional[str] = None) -> ConsentRequest:
        """
        Move a pending request to ``status``.

        The conditional UPDATE makes the pending check and the write one
        atomic step, so of two racing resolutions exactly one wins.
        """
        with self.SessionLocal() as session:
            result = session.execute(
                update(ConsentRequestDB)
                .where(ConsentRequestDB.id == request_id)
                .where(ConsentRequestDB.status == ConsentStatus.PENDING.value)
                .values(status=status.value, resolved_at=resolved_at, resolved_by=resolved_by)
            )
            session.commit()

            db_request = session.get(ConsentRequestDB, request_id)
            if db_request is None:
                raise NotFoundError("consent request", request_id)

            if result.rowcount != 1:
                raise StateError(request_id, db_request.status, status.value)

            logger.info("Resolved consent request", request_id=request_id, status=status.value)
            return self._from_db_model(db_request)

    def delete_request(self, request_id: str) -> None:
        """Remove a request opened for an upload that was rolled back"""
        try:
            with self.SessionLocal() as session:
                session.query(ConsentRequestDB).filter_by(id=request_id).delete()
                session.commit()
        except SQLAlchemyError as e:
            logger.error("Failed to delete consent request", request_id=request_id, error=str(e))
            raise StorageError("Failed to delete consent request", reason=str(e))


class InMemoryConsentStorage(ConsentStorage):
    """In-memory storage for testing"""

    def __init__(self):
        self.requests: Dict[str, ConsentRequest] = {}
        self.subject_requests: Dict[str, List[str]] = {}
        self._lock = threading.Lock()

    def store_request(self, request: ConsentRequest) -> ConsentRequest:
        """Store consent request in memory"""
        with self._lock:
            if request.id in self.requests:
                raise ValidationError(f"Consent request already exists: {request.id}", field="id")

            self.requests[request.id] = request
            self.subject_requests.setdefault(request.subject_id, []).append(request.id)

        return request

    def get_request(self, request_id: str) -> Optional[ConsentRequest]:
        """Get consent request from memory"""
        return self.requests.get(request_id)

    def find(self, subject_id: str, record_id: Optional[str] = None,
             requester_id: Optional[str] = None) -> List[ConsentRequest]:
        """Get subject requests from memory"""
        with self._lock:
            requests = [self.requests[rid] for rid in self.subject_requests.get(subject_id, [])]

        if record_id:
            requests = [r for r in requests if r.record_id == record_id]
        if requester_id:
            requests = [r for r in requests if r.requester_id == requester_id]

        return sorted(requests, key=lambda r: r.requested_at, reverse=True)

    def resolve(self, request_id: str, status: ConsentStatus,
                resolved_at: datetime, resolved_by: Optional[str] = None) -> ConsentRequest:
        """Compare-and-set from pending under the storage lock"""
        with self._lock:
            request = self.requests.get(request_id)
            if request is None:
                raise NotFoundError("consent request", request_id)

            if request.status != ConsentStatus.PENDING:
                raise StateError(request_id, request.status.value, status.value)

            resolved = request.model_copy(update={
                "status": status,
                "resolved_at": resolved_at,
                "resolved_by": resolved_by,
            })
            self.requests[request_id] = resolved

        return resolved

    def delete_request(self, request_id: str) -> None:
        with self._lock:
            request = self.requests.pop(request_id, None)
            if request is not None:
                self.subject_requests[request.subject_id].remove(request_id)
