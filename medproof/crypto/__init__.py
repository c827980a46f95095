"""
Cryptographic utilities for MedProof
Record encryption, content hashing and hash chains
"""

from .encrypt import EncryptedPayload, encrypt_bytes, decrypt_bytes, generate_key, load_key
from .hash import (
    secure_hash,
    content_hash,
    create_data_fingerprint,
    chain_link,
    GENESIS_HASH,
)
from .engine import CryptoEngine

__all__ = [
    "EncryptedPayload",
    "encrypt_bytes",
    "decrypt_bytes",
    "generate_key",
    "load_key",
    "secure_hash",
    "content_hash",
    "create_data_fingerprint",
    "chain_link",
    "GENESIS_HASH",
    "CryptoEngine",
]
