# tests/conftest.py
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Dict, Optional

import pytest

from odyssey.core.errors import StoreError
from odyssey.history.nudges import NudgeHistory
from odyssey.hydration.ledger import HydrationLedger
from odyssey.store.kv import InMemoryKeyValueStore


class FakeClock:
    """Manually driven clock; tests move time with set()/advance()."""

    def __init__(self, start: datetime) -> None:
        self.current = start

    def now(self) -> datetime:
        return self.current

    def set(self, moment: datetime) -> None:
        self.current = moment

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


class BrokenStore:
    """Every read and write fails like a flaky disk would."""

    def __init__(self) -> None:
        self.writes = 0

    def get(self, key: str) -> Optional[str]:
        raise StoreError(f"read of {key!r} failed")

    def set(self, key: str, value: str) -> None:
        self.writes += 1
        raise StoreError(f"write of {key!r} failed")

    def delete(self, key: str) -> None:
        raise StoreError(f"delete of {key!r} failed")


class FlakyStore(InMemoryKeyValueStore):
    """In-memory store whose next `failing_reads` reads fail, then recovers."""

    def __init__(self, initial: Optional[Dict[str, str]] = None, failing_reads: int = 1) -> None:
        super().__init__(initial)
        self.failing_reads = failing_reads

    def get(self, key: str) -> Optional[str]:
        if self.failing_reads > 0:
            self.failing_reads -= 1
            raise StoreError(f"read of {key!r} failed")
        return super().get(key)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 10, 20, 9, 0))


@pytest.fixture
def store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def broken_store() -> BrokenStore:
    return BrokenStore()


@pytest.fixture
def flaky_store() -> FlakyStore:
    return FlakyStore(failing_reads=0)


@pytest.fixture
def ledger(store, clock) -> HydrationLedger:
    return HydrationLedger(store, clock=clock)


@pytest.fixture
def history(store, clock) -> NudgeHistory:
    return NudgeHistory(store, clock=clock)
