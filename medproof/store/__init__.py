"""
Content store module for MedProof
Content-addressed, write-once storage for encrypted records
"""

from .addressing import Addressing, ContentAddressing, RandomAddressing, get_addressing
from .base import ContentStore, InMemoryContentStore, SqlContentStore
from .http import IpfsHttpContentStore

__all__ = [
    "Addressing",
    "ContentAddressing",
    "RandomAddressing",
    "get_addressing",
    "ContentStore",
    "InMemoryContentStore",
    "SqlContentStore",
    "IpfsHttpContentStore",
]
