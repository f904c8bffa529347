"""Shared fixtures."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from l2h.security.credentials import Argon2Parameters, PasswordCodec
from l2h.storage.store import BindingStore

# Cheap Argon2id parameters so tests do not spend 64 MiB per hash.
FAST_PARAMS = Argon2Parameters(memory_cost=256, time_cost=1, parallelism=1)


class FakeClock:
    """Controllable clock usable as both a datetime and a float time source."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 1, 1, tzinfo=UTC)

    def now(self) -> datetime:
        return self.current

    def time(self) -> float:
        return self.current.timestamp()

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


@pytest.fixture
def codec() -> PasswordCodec:
    return PasswordCodec(FAST_PARAMS)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_path, codec, clock):
    s = BindingStore(tmp_path / "l2h.db", codec=codec, now=clock.now)
    s.initialize()
    yield s
    s.close()
