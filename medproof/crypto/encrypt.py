"""
Encryption utilities for MedProof
AES-GCM encryption for record content at rest
"""

import os
from dataclasses import dataclass
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.exceptions import InvalidTag
import structlog

from ..constants import EncryptionDefaults
from ..exceptions import CryptoError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class EncryptedPayload:
    """Ciphertext (with GCM tag appended) and the IV used to produce it"""
    ciphertext: bytes
    iv: bytes

    @property
    def iv_hex(self) -> str:
        return self.iv.hex()


def generate_key(key_size: int = 256) -> bytes:
    """Generate a new AES encryption key"""
    if key_size not in [128, 192, 256]:
        raise ValueError("Key size must be 128, 192, or 256 bits")

    return AESGCM.generate_key(bit_length=key_size)


def load_key(hex_key: str) -> bytes:
    """Parse a 64-character hex key"""
    try:
        key = bytes.fromhex(hex_key)
    except ValueError:
        raise CryptoError("Invalid encryption key", reason="key is not hex encoded")

    if len(key) != EncryptionDefaults.KEY_SIZE_BYTES:
        raise CryptoError("Invalid encryption key", reason="key must be 32 bytes (64 hex characters)")

    return key


def _check_key(key: bytes) -> None:
    if not isinstance(key, (bytes, bytearray)) or len(key) != EncryptionDefaults.KEY_SIZE_BYTES:
        raise CryptoError("Invalid encryption key", reason="key must be 32 bytes for AES-256")


def encrypt_bytes(key: bytes, plaintext: bytes, associated_data: bytes | None = None) -> EncryptedPayload:
    """
    Encrypt bytes using AES-GCM

    Args:
        key: 32-byte encryption key
        plaintext: Data to encrypt
        associated_data: Optional associated data for authentication

    Returns:
        EncryptedPayload with a fresh IV; the ciphertext includes the auth tag
    """
    _check_key(key)

    try:
        aesgcm = AESGCM(bytes(key))
        iv = os.urandom(EncryptionDefaults.IV_SIZE_BYTES)
        ciphertext = aesgcm.encrypt(iv, plaintext, associated_data)
        return EncryptedPayload(ciphertext=ciphertext, iv=iv)

    except Exception as e:
        logger.error("Encryption failed", error=str(e))
        raise CryptoError(f"Encryption failed: {str(e)}")


def decrypt_bytes(key: bytes, ciphertext: bytes, iv: bytes,
                  associated_data: bytes | None = None) -> bytes:
    """
    Decrypt bytes using AES-GCM

    Args:
        key: 32-byte encryption key
        ciphertext: Ciphertext with auth tag appended
        iv: IV returned by encrypt_bytes
        associated_data: Optional associated data for authentication

    Returns:
        Decrypted plaintext

    Raises:
        CryptoError: On a bad key or IV, or when the tag does not verify
    """
    _check_key(key)

    if not isinstance(iv, (bytes, bytearray)) or len(iv) != EncryptionDefaults.IV_SIZE_BYTES:
        raise CryptoError("Invalid IV", reason=f"iv must be {EncryptionDefaults.IV_SIZE_BYTES} bytes")

    if len(ciphertext) < EncryptionDefaults.TAG_SIZE_BYTES:
        raise CryptoError("Decryption failed", reason="ciphertext too short")

    try:
        aesgcm = AESGCM(bytes(key))
        return aesgcm.decrypt(bytes(iv), bytes(ciphertext), associated_data)

    except InvalidTag:
        logger.warning("Decryption failed - invalid authentication tag")
        raise CryptoError(
            "Decryption failed",
            reason="invalid authentication tag - data may be corrupted or tampered"
        )
    except Exception as e:
        logger.error("Decryption failed", error=str(e))
        raise CryptoError(f"Decryption failed: {str(e)}")
