"""
Consent module for MedProof
Per-record access requests resolved by the record's subject
"""

from .models import ConsentRequest, ConsentStatus, ConsentDecision
from .storage import ConsentStorage, InMemoryConsentStorage
from .manager import ConsentManager

__all__ = [
    "ConsentRequest",
    "ConsentStatus",
    "ConsentDecision",
    "ConsentStorage",
    "InMemoryConsentStorage",
    "ConsentManager",
]
