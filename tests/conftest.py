from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from lift_tracker.config import get_config
from lift_tracker.kvstore import MemoryKeyValueStore
from lift_tracker.remote import InMemoryRemoteStore

NOW = datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = NOW) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now = self.now + timedelta(**delta)


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch, tmp_path):
    monkeypatch.delenv("LIFT_TRACKER_CONFIG", raising=False)
    monkeypatch.delenv("LIFT_TRACKER_OFFLINE", raising=False)
    monkeypatch.delenv("LIFT_TRACKER_USER", raising=False)
    monkeypatch.chdir(tmp_path)
    get_config.cache_clear()
    yield
    get_config.cache_clear()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def remote() -> InMemoryRemoteStore:
    return InMemoryRemoteStore()
