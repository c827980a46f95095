"""Shared fixtures for MedProof tests."""

from __future__ import annotations

from datetime import datetime, timedelta, UTC

import pytest

from medproof.config import MedProofConfig
from medproof.service import MedProofService
from medproof.utils.retry import RetryPolicy


TEST_KEY_HEX = "3f" * 32


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 15, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> MedProofConfig:
    return MedProofConfig(encryption_key=TEST_KEY_HEX)


@pytest.fixture
def fast_retry() -> RetryPolicy:
    return RetryPolicy(attempts=3, base_delay=0.0, max_delay=0.0, timeout=5.0)


@pytest.fixture
def service(config: MedProofConfig, fast_retry: RetryPolicy, clock: FakeClock) -> MedProofService:
    return MedProofService(config=config, retry_policy=fast_retry, clock=clock)
