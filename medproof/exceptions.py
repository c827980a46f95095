"""
Custom Exceptions for MedProof

Provides a unified exception hierarchy for validation, lookups, the
consent state machine, encryption, content storage and ledger anchoring.
"""

from typing import Optional, Dict, Any


class MedProofError(Exception):
    """
    Base exception for all MedProof errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        error_code: str = "MEDPROOF_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses"""
        result: Dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# VALIDATION ERRORS
# =============================================================================

class ValidationError(MedProofError):
    """Raised when input validation fails, before any side effect"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, "VALIDATION_ERROR", details)


# =============================================================================
# LOOKUP ERRORS
# =============================================================================

class NotFoundError(MedProofError):
    """Raised for an unknown record, address, anchor or consent request"""

    def __init__(self, kind: str, identifier: str):
        super().__init__(
            message=f"{kind} not found: {identifier}",
            error_code="NOT_FOUND",
            details={"kind": kind, "id": identifier}
        )
        self.kind = kind
        self.identifier = identifier


# =============================================================================
# CONSENT ERRORS
# =============================================================================

class StateError(MedProofError):
    """Raised on an illegal consent request transition"""

    def __init__(
        self,
        request_id: str,
        current_status: str,
        attempted: str
    ):
        super().__init__(
            message=f"Cannot {attempted} consent request {request_id} in state {current_status}",
            error_code="INVALID_STATE",
            details={
                "request_id": request_id,
                "current_status": current_status,
                "attempted": attempted,
            }
        )


class ConsentRequiredError(MedProofError):
    """Raised by enforcing mode when no effective consent exists"""

    def __init__(
        self,
        subject_id: str,
        record_id: str,
        requester_id: Optional[str] = None
    ):
        details: Dict[str, Any] = {"subject_id": subject_id, "record_id": record_id}
        if requester_id:
            details["requester_id"] = requester_id
        super().__init__(
            message=f"Consent required for record {record_id}",
            error_code="CONSENT_REQUIRED",
            details=details
        )


# =============================================================================
# ENCRYPTION ERRORS
# =============================================================================

class CryptoError(MedProofError):
    """Raised when encryption or decryption fails"""

    def __init__(
        self,
        message: str = "Cryptographic operation failed",
        reason: Optional[str] = None
    ):
        details: Dict[str, Any] = {}
        if reason:
            details["reason"] = reason
        super().__init__(message, "CRYPTO_ERROR", details)


# =============================================================================
# BACKEND ERRORS
# =============================================================================

class BackendError(MedProofError):
    """
    Base for failures of external collaborators.

    ``transient`` marks failures worth retrying (timeouts, unreachable
    backends); deterministic failures are never retried.
    """

    def __init__(
        self,
        message: str,
        error_code: str,
        transient: bool = False,
        details: Optional[Dict[str, Any]] = None
    ):
        self.transient = transient
        super().__init__(message, error_code, details)


class StorageError(BackendError):
    """Raised when the content store is unreachable or returns corrupt data"""

    def __init__(
        self,
        message: str = "Content store operation failed",
        transient: bool = False,
        reason: Optional[str] = None
    ):
        details: Dict[str, Any] = {}
        if reason:
            details["reason"] = reason
        super().__init__(message, "STORAGE_ERROR", transient, details)


class LedgerError(BackendError):
    """Raised when an anchor write or read fails"""

    def __init__(
        self,
        message: str = "Ledger operation failed",
        transient: bool = False,
        reason: Optional[str] = None,
        error_code: str = "LEDGER_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        details = details or {}
        if reason:
            details["reason"] = reason
        super().__init__(message, error_code, transient, details)


class AlreadyAnchoredError(LedgerError):
    """Raised on a second anchor attempt for the same record"""

    def __init__(self, record_id: str):
        super().__init__(
            message=f"Record already anchored: {record_id}",
            error_code="ALREADY_ANCHORED",
            details={"record_id": record_id}
        )
        self.record_id = record_id
