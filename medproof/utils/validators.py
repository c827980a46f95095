"""
Input Validators for MedProof

Validation utilities for identifiers, record metadata, requester types
and consent expiry windows. Every validator raises ValidationError so that
callers reject bad input before touching any collection.
"""

import re
from typing import Any, Optional

from ..constants import RequesterTypes, ConsentDefaults, EncryptionDefaults
from ..exceptions import ValidationError


# =============================================================================
# REGEX PATTERNS
# =============================================================================

ENTITY_ID_PATTERN = re.compile(r"^[A-Za-z0-9_.:-]{1,128}$")
HEX_PATTERN = re.compile(r"^[0-9a-f]+$")
ADDRESS_PATTERN = re.compile(r"^[A-Za-z0-9]{8,128}$")

MAX_TITLE_LENGTH = 256
MAX_PAYLOAD_BYTES = 10 * 1024 * 1024

# =============================================================================
# VALIDATION FUNCTIONS
# =============================================================================

def validate_entity_id(
    value: Any,
    field_name: str = "id",
    required: bool = True
) -> Optional[str]:
    """
    Validate a subject, custodian, requester or record identifier.

    Args:
        value: Identifier to validate
        field_name: Field name for error messages
        required: Whether the field is required

    Returns:
        Validated identifier or None

    Raises:
        ValidationError: If validation fails
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{field_name} is required", field=field_name)
        return None

    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a string", field=field_name)

    value = value.strip()

    if not ENTITY_ID_PATTERN.match(value):
        raise ValidationError(
            f"{field_name} contains invalid characters",
            field=field_name
        )

    return value


def validate_text(value: Any, field_name: str, max_length: int = MAX_TITLE_LENGTH) -> str:
    """Validate a required free-text field such as a record title or type"""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field_name} is required", field=field_name)

    value = value.strip()
    if len(value) > max_length:
        raise ValidationError(f"{field_name} exceeds maximum length", field=field_name)

    return value


def validate_requester_type(value: Any, field_name: str = "requester_type") -> str:
    """Validate requester type against the known party kinds"""
    value = validate_text(value, field_name, max_length=32).lower()
    if value not in RequesterTypes.ALL:
        raise ValidationError(
            f"Unknown {field_name}: {value}",
            field=field_name,
            details={"valid_types": list(RequesterTypes.ALL)}
        )
    return value


def validate_expiry_hours(value: Any, max_hours: int, field_name: str = "expiry_hours") -> int:
    """
    Validate consent expiry window.

    Raises:
        ValidationError: If not an integer within [1, max_hours]
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field_name} must be an integer", field=field_name)

    if value < ConsentDefaults.MIN_EXPIRY_HOURS:
        raise ValidationError(
            f"{field_name} must be at least {ConsentDefaults.MIN_EXPIRY_HOURS}",
            field=field_name
        )

    if value > max_hours:
        raise ValidationError(
            f"{field_name} cannot exceed {max_hours}",
            field=field_name
        )

    return value


def validate_payload(value: Any, field_name: str = "plaintext") -> bytes:
    """Validate record content bytes"""
    if not isinstance(value, (bytes, bytearray)):
        raise ValidationError(f"{field_name} must be bytes", field=field_name)

    if len(value) == 0:
        raise ValidationError(f"{field_name} cannot be empty", field=field_name)

    if len(value) > MAX_PAYLOAD_BYTES:
        raise ValidationError(
            f"{field_name} exceeds maximum size",
            field=field_name,
            details={"max_bytes": MAX_PAYLOAD_BYTES}
        )

    return bytes(value)


def validate_content_hash(value: Any, field_name: str = "content_hash") -> str:
    """Validate a SHA-256 hex digest"""
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a string", field=field_name)

    value = value.lower()
    if len(value) != EncryptionDefaults.HASH_HEX_LENGTH or not HEX_PATTERN.match(value):
        raise ValidationError(f"{field_name} must be a SHA-256 hex digest", field=field_name)

    return value


def validate_address(value: Any, field_name: str = "address") -> str:
    """Validate a content address"""
    if not isinstance(value, str) or not ADDRESS_PATTERN.match(value):
        raise ValidationError(f"{field_name} is not a valid content address", field=field_name)
    return value
