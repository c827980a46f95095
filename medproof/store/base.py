"""
Content store adapters for MedProof
Write-once, address-keyed storage for encrypted record content
"""

import threading
from abc import ABC, abstractmethod
from typing import Dict, Optional
import structlog
from sqlalchemy import create_engine, Column, String, Integer, DateTime, LargeBinary
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .addressing import Addressing, ContentAddressing
from ..exceptions import NotFoundError, StorageError
from ..utils.ids import utc_now

logger = structlog.get_logger(__name__)

Base = declarative_base()


class ContentStore(ABC):
    """Storage adapter for ciphertext; no update or delete"""

    def __init__(self, addressing: Optional[Addressing] = None):
        self.addressing = addressing or ContentAddressing()

    @abstractmethod
    def put(self, data: bytes) -> str:
        """Store bytes and return their address"""

    @abstractmethod
    def get(self, address: str) -> bytes:
        """Return stored bytes or raise NotFoundError"""

    @abstractmethod
    def exists(self, address: str) -> bool:
        ...


class InMemoryContentStore(ContentStore):
    """In-memory storage for testing"""

    def __init__(self, addressing: Optional[Addressing] = None):
        super().__init__(addressing)
        self._blobs: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def put(self, data: bytes) -> str:
        data = bytes(data)
        address = self.addressing.address_for(data)

        with self._lock:
            existing = self._blobs.get(address)
            if existing is None:
                self._blobs[address] = data
            elif existing != data:
                raise StorageError("Address collision", reason=f"{address} already holds other content")

        logger.debug("Stored content", address=address, size=len(data))
        return address

    def get(self, address: str) -> bytes:
        with self._lock:
            data = self._blobs.get(address)
        if data is None:
            raise NotFoundError("content", address)
        return data

    def exists(self, address: str) -> bool:
        with self._lock:
            return address in self._blobs


class ContentBlobDB(Base):
    """SQLAlchemy model for stored content"""
    __tablename__ = "content_blobs"

    address = Column(String, primary_key=True)
    data = Column(LargeBinary, nullable=False)
    size = Column(Integer, nullable=False)
    created_at = Column(DateTime, nullable=False)


class SqlContentStore(ContentStore):
    """Content store backed by a relational table"""

    def __init__(self, database_url: Optional[str] = None,
                 addressing: Optional[Addressing] = None):
        super().__init__(addressing)
        self.database_url = database_url or "sqlite:///medproof_content.db"
        self.engine = create_engine(self.database_url)
        self.SessionLocal = sessionmaker(bind=self.engine)

        Base.metadata.create_all(bind=self.engine)

    def put(self, data: bytes) -> str:
        data = bytes(data)
        address = self.addressing.address_for(data)

        try:
            with self.SessionLocal() as session:
                existing = session.get(ContentBlobDB, address)
                if existing is not None:
                    if existing.data != data:
                        raise StorageError("Address collision",
                                           reason=f"{address} already holds other content")
                    return address

                session.add(ContentBlobDB(
                    address=address,
                    data=data,
                    size=len(data),
                    created_at=utc_now(),
                ))
                session.commit()

        except IntegrityError:
            # Concurrent writer stored the same address first
            return address
        except SQLAlchemyError as e:
            logger.error("Failed to store content", address=address, error=str(e))
            raise StorageError("Failed to store content", transient=True, reason=str(e))

        logger.info("Stored content", address=address, size=len(data))
        return address

    def get(self, address: str) -> bytes:
        try:
            with self.SessionLocal() as session:
                blob = session.get(ContentBlobDB, address)
                if blob is None:
                    raise NotFoundError("content", address)
                return bytes(blob.data)

        except SQLAlchemyError as e:
            logger.error("Failed to read content", address=address, error=str(e))
            raise StorageError("Failed to read content", transient=True, reason=str(e))

    def exists(self, address: str) -> bool:
        try:
            with self.SessionLocal() as session:
                return session.get(ContentBlobDB, address) is not None
        except SQLAlchemyError as e:
            raise StorageError("Failed to read content", transient=True, reason=str(e))
