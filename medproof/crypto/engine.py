"""
CryptoEngine: symmetric encryption and content hashing behind one object
"""

from typing import Optional
import structlog

from .encrypt import EncryptedPayload, encrypt_bytes, decrypt_bytes, generate_key, load_key
from .hash import content_hash
from ..config import MedProofConfig, get_config

logger = structlog.get_logger(__name__)


class CryptoEngine:
    """AES-256-GCM encryption with a configured or process-local key"""

    def __init__(self, key: Optional[bytes] = None, config: Optional[MedProofConfig] = None):
        self.config = config or get_config()

        if key is not None:
            self._key = key
        elif self.config.encryption_key:
            self._key = load_key(self.config.encryption_key)
        else:
            logger.warning("No encryption key configured, using a process-local key")
            self._key = generate_key(self.config.encryption_key_size)

    @property
    def key(self) -> bytes:
        return self._key

    def encrypt(self, plaintext: bytes, key: Optional[bytes] = None) -> EncryptedPayload:
        """Encrypt with a fresh IV; identical inputs never give identical ciphertext"""
        return encrypt_bytes(key or self._key, plaintext)

    def decrypt(self, ciphertext: bytes, iv: bytes, key: Optional[bytes] = None) -> bytes:
        return decrypt_bytes(key or self._key, ciphertext, iv)

    def hash(self, content: bytes) -> str:
        return content_hash(content)
