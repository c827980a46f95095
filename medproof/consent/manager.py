"""
Consent manager for MedProof
Request lifecycle: pending -> approved | denied, with expiry evaluated on read
"""

from datetime import datetime
from typing import Callable, List, Optional
import structlog

from .models import ConsentRequest, ConsentStatus, ConsentDecision
from .storage import ConsentStorage, InMemoryConsentStorage
from ..config import MedProofConfig, get_config
from ..exceptions import NotFoundError
from ..utils.ids import utc_now
from ..utils.validators import (
    validate_entity_id,
    validate_requester_type,
    validate_expiry_hours,
    validate_text,
)

logger = structlog.get_logger(__name__)


class ConsentManager:
    """Creates, resolves and evaluates consent requests"""

    def __init__(
        self,
        storage: Optional[ConsentStorage] = None,
        config: Optional[MedProofConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.storage = storage or InMemoryConsentStorage()
        self.config = config or get_config()
        self.clock = clock

    def create_request(
        self,
        subject_id: str,
        requester_id: str,
        requester_type: str,
        record_id: str,
        expiry_hours: int,
        purpose: Optional[str] = None,
    ) -> ConsentRequest:
        """Open a pending request for one record"""
        request = ConsentRequest(
            subject_id=validate_entity_id(subject_id, "subject_id"),
            requester_id=validate_entity_id(requester_id, "requester_id"),
            requester_type=validate_requester_type(requester_type),
            record_id=validate_entity_id(record_id, "record_id"),
            expiry_hours=validate_expiry_hours(expiry_hours, self.config.max_expiry_hours),
            purpose=validate_text(purpose, "purpose", max_length=1024) if purpose else None,
            requested_at=self.clock(),
        )
        self.storage.store_request(request)

        logger.info(
            "Consent requested",
            request_id=request.id,
            subject_id=request.subject_id,
            requester_id=request.requester_id,
            record_id=request.record_id,
            expiry_hours=request.expiry_hours,
        )
        return request

    def resolve(self, request_id: str, decision: ConsentDecision,
                resolved_by: Optional[str] = None) -> ConsentRequest:
        """Apply the subject's decision; only a pending request can be resolved"""
        request_id = validate_entity_id(request_id, "request_id")
        decision = ConsentDecision(decision)

        resolved = self.storage.resolve(
            request_id,
            decision.target_status,
            resolved_at=self.clock(),
            resolved_by=resolved_by,
        )

        logger.info(
            "Consent resolved",
            request_id=request_id,
            status=resolved.status.value,
            resolved_by=resolved_by,
        )
        return resolved

    def approve(self, request_id: str, resolved_by: Optional[str] = None) -> ConsentRequest:
        return self.resolve(request_id, ConsentDecision.APPROVE, resolved_by)

    def deny(self, request_id: str, resolved_by: Optional[str] = None) -> ConsentRequest:
        return self.resolve(request_id, ConsentDecision.DENY, resolved_by)

    def get_request(self, request_id: str) -> ConsentRequest:
        request = self.storage.get_request(request_id)
        if request is None:
            raise NotFoundError("consent request", request_id)
        return request

    def discard(self, request_id: str) -> None:
        """Remove a pending request opened by an upload that was rolled back"""
        self.storage.delete_request(request_id)
        logger.info("Consent request discarded", request_id=request_id)

    def is_granted(self, subject_id: str, record_id: str,
                   requester_id: Optional[str] = None) -> bool:
        """True if some matching request is approved and inside its window"""
        now = self.clock()
        requests = self.storage.find(subject_id, record_id=record_id, requester_id=requester_id)
        return any(request.is_granted(now) for request in requests)

    def effective_status(self, request: ConsentRequest) -> ConsentStatus:
        return request.effective_status(self.clock())

    def list_for_subject(self, subject_id: str,
                         status: Optional[ConsentStatus] = None) -> List[ConsentRequest]:
        """Requests of a subject, most recent first, filtered on effective status"""
        requests = self.storage.find(subject_id)
        if status is None:
            return requests

        now = self.clock()
        status = ConsentStatus(status)
        return [r for r in requests if r.effective_status(now) == status]

    def pending_for_subject(self, subject_id: str) -> List[ConsentRequest]:
        return self.list_for_subject(subject_id, ConsentStatus.PENDING)
