"""
Ledger module for MedProof
Immutable anchoring of record addresses and content hashes
"""

from .models import AnchorEntry, ChainRef
from .base import Ledger, InMemoryLedger, SqlLedger, compute_tx_ref
from .http import JsonRpcLedger

__all__ = [
    "AnchorEntry",
    "ChainRef",
    "Ledger",
    "InMemoryLedger",
    "SqlLedger",
    "compute_tx_ref",
    "JsonRpcLedger",
]
