"""
ID generation utilities for MedProof
Unique identifiers for records, consent requests and audit entries
"""

import secrets
from typing import Optional
from datetime import datetime, UTC

from ..constants import IdPrefixes


def utc_now() -> datetime:
    """Current time as an aware UTC datetime"""
    return datetime.now(UTC)


def _millis(now: Optional[datetime] = None) -> int:
    now = now or utc_now()
    return int(now.timestamp() * 1000)


def generate_record_id() -> str:
    """Generate record ID (REC<epoch millis><random>)"""
    return f"{IdPrefixes.RECORD}{_millis()}{secrets.token_hex(3).upper()}"


def generate_consent_id() -> str:
    """Generate consent request ID"""
    return f"{IdPrefixes.CONSENT}{_millis()}{secrets.token_hex(3).upper()}"


def generate_audit_id(sequence: int, timestamp: Optional[datetime] = None) -> str:
    """Generate audit entry ID from its timestamp and append sequence"""
    return f"{IdPrefixes.AUDIT}_{_millis(timestamp)}_{sequence:08d}"
