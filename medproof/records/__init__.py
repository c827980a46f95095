"""
Record module for MedProof
Metadata of encrypted, anchored medical records
"""

from .models import Record, RecordStatus
from .storage import RecordStorage, InMemoryRecordStorage

__all__ = [
    "Record",
    "RecordStatus",
    "RecordStorage",
    "InMemoryRecordStorage",
]
