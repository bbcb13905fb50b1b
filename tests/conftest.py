# tests/conftest.py
from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, Optional

import pytest

from bookkeeping.exceptions import PersistenceError
from bookkeeping.models import AppState, Client, Opportunity, Transaction
from bookkeeping.services import ClientService, OpportunityService, TransactionService
from bookkeeping.snapshots import SnapshotManager
from bookkeeping.storage import MemoryStorage
from bookkeeping.store import Store


class FailingStorage(MemoryStorage):
    """Memory storage whose writes can be switched off to simulate a full disk."""

    def __init__(self, initial: Optional[Dict[str, bytes]] = None) -> None:
        super().__init__(initial)
        self.fail_writes = False

    def save(self, key: str, payload: bytes) -> None:
        if self.fail_writes:
            raise PersistenceError(f"quota exceeded while writing {key}")
        super().save(key, payload)


class StepClock:
    """Deterministic clock advancing by a fixed step on every call."""

    def __init__(self, step: timedelta = timedelta(seconds=1)) -> None:
        self.current = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        self.step = step

    def __call__(self) -> datetime:
        value = self.current
        self.current += self.step
        return value


@pytest.fixture
def storage() -> FailingStorage:
    return FailingStorage()


@pytest.fixture
def store(storage: FailingStorage) -> Store:
    return Store(storage)


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def snapshots(store: Store, storage: FailingStorage, clock: StepClock) -> SnapshotManager:
    return SnapshotManager(store, storage, clock=clock)


@pytest.fixture
def transactions(store: Store) -> TransactionService:
    return TransactionService(store)


@pytest.fixture
def clients(store: Store) -> ClientService:
    return ClientService(store)


@pytest.fixture
def opportunities(store: Store) -> OpportunityService:
    return OpportunityService(store)


@pytest.fixture
def sample_state() -> AppState:
    """A small but complete state covering two months and every entity type."""
    return AppState(
        transactions=(
            Transaction("t1", "Consulting May", Decimal("1200.50"), date(2024, 5, 3), "revenue"),
            Transaction("t2", "Rent", Decimal("-50"), date(2024, 5, 10), "expense"),
            Transaction("t3", "Café supplies", Decimal("-19.99"), date(2024, 6, 1), "expense"),
            Transaction("t4", "Workshop", Decimal("300"), date(2024, 6, 20), "revenue"),
        ),
        clients=(
            Client("c1", "Ana Souza", "Acme Ltda", "ana@acme.test", "555-0101"),
            Client("c2", "Bruno Lima", "Globex", "", ""),
        ),
        opportunities=(
            Opportunity("o1", "Website redesign", Decimal("5000"), "c1", "Won"),
            Opportunity("o2", "Support plan", Decimal("750.25"), "c1", "Proposal"),
            Opportunity("o3", "Audit", Decimal("0"), "c2", "Lost"),
        ),
    )
