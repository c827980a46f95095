"""
Address issuance strategies for the content store
"""

import base64
import hashlib
import secrets
from abc import ABC, abstractmethod

from ..config import AddressStrategy
from ..constants import AddressDefaults

# CIDv1 header: version 1, raw codec (0x55), sha2-256 multihash (0x12, 32 bytes)
_CIDV1_RAW_SHA256 = bytes([0x01, 0x55, 0x12, 0x20])


class Addressing(ABC):
    """Maps stored bytes to an address"""

    name: str = ""

    @abstractmethod
    def address_for(self, data: bytes) -> str:
        ...


class ContentAddressing(Addressing):
    """
    CIDv1 (raw codec, sha2-256, base32) of the bytes.

    Identical bytes always map to the same address and any mutation changes
    it; the result matches what an IPFS node reports for a single raw block.
    """

    name = AddressStrategy.CONTENT.value

    def address_for(self, data: bytes) -> str:
        digest = hashlib.sha256(data).digest()
        encoded = base64.b32encode(_CIDV1_RAW_SHA256 + digest).decode("ascii")
        return "b" + encoded.lower().rstrip("=")


class RandomAddressing(Addressing):
    """Legacy demo scheme: a CID-shaped string unrelated to the content"""

    name = AddressStrategy.RANDOM.value

    def address_for(self, data: bytes) -> str:
        alphabet = AddressDefaults.RANDOM_ALPHABET
        suffix = "".join(secrets.choice(alphabet) for _ in range(AddressDefaults.RANDOM_LENGTH))
        return AddressDefaults.PREFIX + suffix


def get_addressing(strategy: AddressStrategy | str) -> Addressing:
    """Build the addressing strategy named in configuration"""
    strategy = AddressStrategy(strategy)
    if strategy == AddressStrategy.RANDOM:
        return RandomAddressing()
    return ContentAddressing()
