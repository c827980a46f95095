"""
Configuration management for MedProof
Toggles for consent enforcement, addressing, retries and backend endpoints
"""

from enum import Enum
from typing import Optional
from pydantic_settings import BaseSettings
from pydantic import Field

from .constants import ConsentDefaults


class ConsentMode(str, Enum):
    """How verification treats a missing consent"""
    ADVISORY = "advisory"     # record the fact, never block
    ENFORCING = "enforcing"   # refuse verification without consent


class AddressStrategy(str, Enum):
    """How the content store derives storage addresses"""
    CONTENT = "content"  # hash of the stored bytes
    RANDOM = "random"    # legacy demo scheme, independent of content


class BackendKind(str, Enum):
    """Where records, anchors, consents and audit entries live"""
    MEMORY = "memory"
    SQL = "sql"
    REMOTE = "remote"  # SQL metadata, IPFS content, JSON-RPC ledger


class MedProofConfig(BaseSettings):
    """Integrity, consent and audit configuration settings"""

    # Crypto settings
    encryption_key: Optional[str] = Field(
        default=None,
        description="AES-256 key as 64 hex characters; generated per process if unset"
    )
    encryption_key_size: int = Field(default=256, description="AES key size in bits")

    # Content store / ledger
    backend: BackendKind = Field(default=BackendKind.MEMORY)
    address_strategy: AddressStrategy = Field(default=AddressStrategy.CONTENT)
    database_url: str = Field(default="sqlite:///medproof.db")
    ipfs_api_url: str = Field(default="http://127.0.0.1:5001")
    ledger_rpc_url: str = Field(default="http://127.0.0.1:8545")

    # Consent settings
    consent_mode: ConsentMode = Field(default=ConsentMode.ADVISORY)
    default_expiry_hours: int = Field(default=ConsentDefaults.UPLOAD_EXPIRY_HOURS)
    max_expiry_hours: int = Field(default=8760, description="One year")

    # Remote call resilience
    retry_attempts: int = Field(default=3)
    retry_base_delay: float = Field(default=0.1, description="Seconds, doubles per retry")
    retry_max_delay: float = Field(default=2.0)
    operation_timeout_seconds: float = Field(default=30.0)

    # Environment-specific overrides
    debug_mode: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    model_config = {"env_prefix": "MEDPROOF_", "case_sensitive": False}


# Global configuration instance
config = MedProofConfig()


def get_config() -> MedProofConfig:
    """Get the global configuration instance"""
    return config

