"""
Hashing utilities for MedProof
Content digests, canonical fingerprints and hash chain links
"""

import hashlib
import json
from typing import Any, Dict

from ..constants import EncryptionDefaults

SUPPORTED_ALGORITHMS = frozenset({"sha256", "sha512", "blake2b"})


class HashError(Exception):
    """Raised for an unsupported hash algorithm"""
    pass


def secure_hash(data: bytes, algorithm: str = EncryptionDefaults.HASH_ALGORITHM) -> str:
    """
    Hex digest of ``data``

    Args:
        data: Bytes to digest
        algorithm: One of sha256, sha512, blake2b

    Returns:
        Lowercase hex string
    """
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise HashError(f"Unsupported hash algorithm: {algorithm}")
    return hashlib.new(algorithm, data).hexdigest()


def content_hash(content: bytes) -> str:
    """SHA-256 digest used for tamper evidence and ledger anchoring"""
    return secure_hash(bytes(content))


def create_data_fingerprint(data: Dict[str, Any]) -> str:
    """Digest of a JSON document, independent of key order"""
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    return secure_hash(canonical.encode("utf-8"))


GENESIS_HASH = secure_hash(b"genesis")


def chain_link(previous_hash: str, data: bytes) -> str:
    """Hash of ``data`` chained onto ``previous_hash``"""
    return secure_hash(previous_hash.encode("utf-8") + data)
