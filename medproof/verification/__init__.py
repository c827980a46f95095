"""
Verification module for MedProof
"""

from .models import VerificationResult
from .engine import VerificationEngine

__all__ = [
    "VerificationResult",
    "VerificationEngine",
]
