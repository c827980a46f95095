"""
Tests for record encryption and hashing
"""

import pytest

from medproof.config import MedProofConfig
from medproof.crypto import (
    CryptoEngine,
    chain_link,
    GENESIS_HASH,
    content_hash,
    create_data_fingerprint,
    decrypt_bytes,
    encrypt_bytes,
    generate_key,
    load_key,
    secure_hash,
)
from medproof.crypto.hash import HashError
from medproof.exceptions import CryptoError


class TestEncryption:
    """Test AES-GCM encryption helpers"""

    def setup_method(self):
        self.key = generate_key(256)

    def test_roundtrip(self):
        """Encrypted bytes decrypt to the original plaintext"""
        payload = encrypt_bytes(self.key, b"CBC: WBC 6.1, RBC 4.8")

        assert payload.ciphertext != b"CBC: WBC 6.1, RBC 4.8"
        assert len(payload.iv) == 12
        assert decrypt_bytes(self.key, payload.ciphertext, payload.iv) == b"CBC: WBC 6.1, RBC 4.8"

    def test_fresh_iv_per_encryption(self):
        """The same plaintext never produces the same ciphertext twice"""
        first = encrypt_bytes(self.key, b"same content")
        second = encrypt_bytes(self.key, b"same content")

        assert first.iv != second.iv
        assert first.ciphertext != second.ciphertext

    def test_tampered_ciphertext_rejected(self):
        """Flipping one byte breaks the authentication tag"""
        payload = encrypt_bytes(self.key, b"discharge summary")
        tampered = bytearray(payload.ciphertext)
        tampered[0] ^= 0x01

        with pytest.raises(CryptoError):
            decrypt_bytes(self.key, bytes(tampered), payload.iv)

    def test_wrong_key_rejected(self):
        """Decrypting with another key fails"""
        payload = encrypt_bytes(self.key, b"prescription")

        with pytest.raises(CryptoError):
            decrypt_bytes(generate_key(256), payload.ciphertext, payload.iv)

    def test_invalid_iv_length(self):
        """IVs must be 12 bytes"""
        payload = encrypt_bytes(self.key, b"x-ray report")

        with pytest.raises(CryptoError):
            decrypt_bytes(self.key, payload.ciphertext, b"\x00" * 16)

    def test_short_key_rejected(self):
        """Only 256-bit keys are accepted"""
        with pytest.raises(CryptoError):
            encrypt_bytes(b"\x00" * 16, b"data")

    def test_load_key(self):
        """Hex keys must decode to 32 bytes"""
        assert load_key("ab" * 32) == bytes.fromhex("ab" * 32)

        with pytest.raises(CryptoError):
            load_key("not-hex")
        with pytest.raises(CryptoError):
            load_key("ab" * 16)


class TestCryptoEngine:
    """Test the encryption engine wrapper"""

    def test_uses_configured_key(self):
        """A configured hex key is used as-is"""
        engine = CryptoEngine(config=MedProofConfig(encryption_key="01" * 32))

        assert engine.key == bytes.fromhex("01" * 32)

    def test_generates_key_when_unconfigured(self):
        """Without configuration a process-local key is generated"""
        engine = CryptoEngine(config=MedProofConfig(encryption_key=None))

        assert len(engine.key) == 32

    def test_encrypt_decrypt(self):
        engine = CryptoEngine(key=generate_key())
        payload = engine.encrypt(b"lab report")

        assert engine.decrypt(payload.ciphertext, payload.iv) == b"lab report"
        assert engine.hash(payload.ciphertext) == content_hash(payload.ciphertext)


class TestHashing:
    """Test content hashing and hash chains"""

    def test_hash_is_deterministic(self):
        assert content_hash(b"record") == content_hash(b"record")
        assert len(content_hash(b"record")) == 64

    def test_single_byte_change_changes_hash(self):
        """Any mutation of the bytes yields a different digest"""
        assert content_hash(b"record-a") != content_hash(b"record-b")

    def test_unsupported_algorithm(self):
        with pytest.raises(HashError):
            secure_hash(b"data", "md5")

    def test_fingerprint_ignores_key_order(self):
        assert create_data_fingerprint({"a": 1, "b": 2}) == create_data_fingerprint({"b": 2, "a": 1})

    def test_chain_link_depends_on_predecessor(self):
        """Each link commits to the hash before it"""
        first = chain_link(GENESIS_HASH, b"one")
        second = chain_link(first, b"two")

        assert second == chain_link(chain_link(GENESIS_HASH, b"one"), b"two")
        assert second != chain_link(chain_link(GENESIS_HASH, b"ONE"), b"two")
        assert second != chain_link(GENESIS_HASH, b"two")
