"""Shared test fixtures."""

from __future__ import annotations

import pytest

from pecoin.api.models import EntityKind, Participant
from pecoin.config import Settings


class FakeClock:
    """Manually advanced clock for TTL tests that run inside the event loop."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        rpc_url="https://rpc.test",
        supabase_url="https://project.supabase.test",
        supabase_key="anon-key",
    )


@pytest.fixture
def participants() -> list[Participant]:
    """Two teams, one startup and one staff member."""
    return [
        Participant(id="1", name="Alpha Team", wallet_address="WalletAlpha1111111111111111111111", type=EntityKind.TEAM),
        Participant(id="2", name="Beta Team", wallet_address="WalletBeta22222222222222222222222", type=EntityKind.TEAM),
        Participant(id="7", name="Rocket Labs", wallet_address="WalletRocket333333333333333333333", type=EntityKind.STARTUP),
        Participant(id="3", name="Dana", wallet_address="WalletDana444444444444444444444444", type=EntityKind.STAFF),
    ]
