"""
MedProof
Encrypted, content-addressed medical records anchored on a ledger, with
patient consent requests and a tamper-evident audit trail
"""

__version__ = "0.1.0"

# Core exports
from .config import MedProofConfig, ConsentMode, AddressStrategy, BackendKind, get_config
from .context import AccessContext
from .exceptions import (
    MedProofError, ValidationError, NotFoundError, StateError, ConsentRequiredError,
    CryptoError, StorageError, LedgerError, AlreadyAnchoredError,
)

# Domain
from .records import Record, RecordStatus
from .ledger import AnchorEntry, ChainRef
from .consent import ConsentRequest, ConsentStatus, ConsentDecision, ConsentManager
from .audit import AuditAction, AuditLogEntry, AuditFilter, AuditTrail
from .verification import VerificationResult, VerificationEngine

# Facade
from .service import MedProofService, build_service

__all__ = [
    # Config
    "MedProofConfig",
    "ConsentMode",
    "AddressStrategy",
    "BackendKind",
    "get_config",
    "AccessContext",

    # Errors
    "MedProofError",
    "ValidationError",
    "NotFoundError",
    "StateError",
    "ConsentRequiredError",
    "CryptoError",
    "StorageError",
    "LedgerError",
    "AlreadyAnchoredError",

    # Domain
    "Record",
    "RecordStatus",
    "AnchorEntry",
    "ChainRef",
    "ConsentRequest",
    "ConsentStatus",
    "ConsentDecision",
    "ConsentManager",
    "AuditAction",
    "AuditLogEntry",
    "AuditFilter",
    "AuditTrail",
    "VerificationResult",
    "VerificationEngine",

    # Facade
    "MedProofService",
    "build_service",
]
