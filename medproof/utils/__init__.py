"""
Utility functions for MedProof
ID generation, validation and retry helpers
"""

from .ids import (
    utc_now,
    generate_record_id,
    generate_consent_id,
    generate_audit_id,
)
from .validators import (
    validate_entity_id,
    validate_text,
    validate_requester_type,
    validate_expiry_hours,
    validate_payload,
    validate_content_hash,
    validate_address,
)
from .retry import RetryPolicy, call_with_retry

__all__ = [
    # ID generation
    "utc_now",
    "generate_record_id",
    "generate_consent_id",
    "generate_audit_id",
    # Validators
    "validate_entity_id",
    "validate_text",
    "validate_requester_type",
    "validate_expiry_hours",
    "validate_payload",
    "validate_content_hash",
    "validate_address",
    # Retry
    "RetryPolicy",
    "call_with_retry",
]
