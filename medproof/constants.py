"""
Constants for MedProof

Centralized values for service identification, encryption parameters,
addressing, consent defaults and audit actions.
"""

from typing import Final, Tuple

# =============================================================================
# SERVICE IDENTIFICATION
# =============================================================================

SERVICE_NAME: Final[str] = "medproof"
SERVICE_VERSION: Final[str] = "0.1.0"

# =============================================================================
# ENCRYPTION CONFIGURATION
# =============================================================================

class EncryptionDefaults:
    """Default encryption parameters"""
    ALGORITHM: Final[str] = "AES-256-GCM"
    KEY_SIZE_BYTES: Final[int] = 32
    IV_SIZE_BYTES: Final[int] = 12  # 96-bit nonce for GCM
    TAG_SIZE_BYTES: Final[int] = 16
    HASH_ALGORITHM: Final[str] = "sha256"
    HASH_HEX_LENGTH: Final[int] = 64


# =============================================================================
# CONTENT ADDRESSING
# =============================================================================

class AddressDefaults:
    """Content identifier layout"""
    PREFIX: Final[str] = "bafkrei"
    RANDOM_LENGTH: Final[int] = 52
    RANDOM_ALPHABET: Final[str] = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"


# =============================================================================
# CONSENT DEFAULTS
# =============================================================================

class RequesterTypes:
    """Kinds of parties that may request access to a record"""
    HOSPITAL: Final[str] = "hospital"
    INSURER: Final[str] = "insurer"
    PATIENT: Final[str] = "patient"
    RESEARCHER: Final[str] = "researcher"
    EMERGENCY: Final[str] = "emergency"

    ALL: Final[Tuple[str, ...]] = (HOSPITAL, INSURER, PATIENT, RESEARCHER, EMERGENCY)


class ConsentDefaults:
    """Default consent request parameters"""
    UPLOAD_EXPIRY_HOURS: Final[int] = 48
    MIN_EXPIRY_HOURS: Final[int] = 1


# =============================================================================
# AUDIT DETAIL KEYS
# =============================================================================

class AuditDetailKeys:
    """Keys used inside AuditLogEntry.detail"""
    ERROR: Final[str] = "error"
    HASH_MISMATCH: Final[str] = "hash_mismatch"
    CONSENT_GRANTED: Final[str] = "consent_granted"
    CONSENT_MODE: Final[str] = "consent_mode"
    REQUEST_ID: Final[str] = "request_id"
    ADDRESS: Final[str] = "address"
    TX_REF: Final[str] = "tx_ref"
    BLOCK_REF: Final[str] = "block_ref"


class VerificationErrors:
    """Error markers recorded for degraded verifications"""
    RECORD_NOT_FOUND: Final[str] = "record_not_found"
    ANCHOR_NOT_FOUND: Final[str] = "anchor_not_found"
    LEDGER_UNAVAILABLE: Final[str] = "ledger_unavailable"
    CONTENT_NOT_FOUND: Final[str] = "content_not_found"
    STORAGE_UNAVAILABLE: Final[str] = "storage_unavailable"
    CONSENT_REQUIRED: Final[str] = "consent_required"


# =============================================================================
# ID PREFIXES
# =============================================================================

class IdPrefixes:
    """Prefixes for generated identifiers"""
    RECORD: Final[str] = "REC"
    CONSENT: Final[str] = "CONSENT"
    AUDIT: Final[str] = "audit"
