"""
Audit module for MedProof
Tamper-evident log of uploads, views, downloads and consent decisions
"""

from .models import AuditAction, AuditLogEntry, AuditFilter
from .storage import AuditStorage, InMemoryAuditStorage
from .trail import AuditTrail

__all__ = [
    "AuditAction",
    "AuditLogEntry",
    "AuditFilter",
    "AuditStorage",
    "InMemoryAuditStorage",
    "AuditTrail",
]
