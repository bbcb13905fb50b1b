from __future__ import annotations

from datetime import timedelta

import pytest

from bookkeeping.backup import export_state, import_state
from bookkeeping.exceptions import (
    NotFoundError,
    PersistenceWarning,
    RecordNotFoundError,
    ValidationError,
)
from bookkeeping.models import AppState
from bookkeeping.snapshots import SnapshotManager
from bookkeeping.storage import SNAPSHOTS_KEY, STATE_KEY, MemoryStorage
from bookkeeping.store import Store

from tests.conftest import StepClock


class TestCreate:
    @pytest.mark.parametrize("name", ["", "   ", None])
    def test_blank_names_are_rejected(self, snapshots, name):
        with pytest.raises(ValidationError):
            snapshots.create(name)
        assert snapshots.list() == []

    def test_copies_current_state(self, store, snapshots, sample_state):
        store.replace(sample_state)
        snapshot = snapshots.create("  Q1 close  ")
        assert snapshot.name == "Q1 close"
        assert snapshot.data == sample_state
        assert snapshot.data is not store.current()
        assert snapshot.data.transactions[0] is not store.current().transactions[0]

    def test_collection_is_persisted_under_its_own_key(self, store, snapshots, storage):
        snapshots.create("first")
        reloaded = SnapshotManager(store, storage)
        assert reloaded.list() == snapshots.list()

    def test_ids_stay_unique_with_identical_timestamps(self, store, storage):
        manager = SnapshotManager(store, storage, clock=StepClock(step=timedelta(0)))
        created = [manager.create(f"snap {index}") for index in range(20)]
        assert len({snapshot.id for snapshot in created}) == 20

    def test_write_failure_keeps_snapshot_in_memory(self, snapshots, storage):
        storage.fail_writes = True
        with pytest.warns(PersistenceWarning):
            snapshot = snapshots.create("offline")
        assert snapshots.get(snapshot.id) == snapshot
        assert snapshots.last_error is not None


class TestList:
    def test_newest_first(self, snapshots):
        for name in ("a", "b", "c"):
            snapshots.create(name)
        assert [snapshot.name for snapshot in snapshots.list()] == ["c", "b", "a"]

    def test_ties_keep_creation_order(self, store, storage):
        manager = SnapshotManager(store, storage, clock=StepClock(step=timedelta(0)))
        manager.create("a")
        manager.create("b")
        assert [snapshot.name for snapshot in manager.list()] == ["a", "b"]

    def test_returned_list_is_a_copy(self, snapshots):
        snapshots.create("a")
        listing = snapshots.list()
        listing.clear()
        assert len(snapshots.list()) == 1


class TestRestore:
    def test_reproduces_state_after_intervening_changes(self, store, snapshots, sample_state, clients):
        store.replace(sample_state)
        snapshot = snapshots.create("Q1")
        clients.add({"name": "Later client"})
        store.apply(lambda state: AppState.empty())

        restored = snapshots.restore(snapshot.id)

        assert restored == sample_state
        assert store.current() == sample_state

    def test_goes_through_the_store_persistence_path(self, store, snapshots, storage, sample_state):
        store.replace(sample_state)
        snapshot = snapshots.create("Q1")
        store.replace(AppState.empty())
        snapshots.restore(snapshot.id)
        assert import_state(storage.load(STATE_KEY)) == sample_state

    def test_restored_state_is_independent_of_snapshot(self, store, snapshots, sample_state):
        store.replace(sample_state)
        snapshot = snapshots.create("Q1")
        snapshots.restore(snapshot.id)
        assert store.current() is not snapshot.data
        store.replace(AppState.empty())
        assert snapshots.get(snapshot.id).data == sample_state

    def test_does_not_touch_the_collection(self, snapshots, storage):
        snapshot = snapshots.create("Q1")
        before = storage.load(SNAPSHOTS_KEY)
        snapshots.restore(snapshot.id)
        assert storage.load(SNAPSHOTS_KEY) == before
        assert len(snapshots) == 1

    def test_unknown_id(self, snapshots):
        with pytest.raises(RecordNotFoundError):
            snapshots.restore("snap_missing")
        assert NotFoundError is RecordNotFoundError


class TestDelete:
    def test_removes_and_persists(self, store, snapshots, storage, sample_state):
        store.replace(sample_state)
        keep = snapshots.create("keep")
        drop = snapshots.create("drop")
        snapshots.delete(drop.id)
        assert [snapshot.id for snapshot in snapshots.list()] == [keep.id]
        assert [s.id for s in SnapshotManager(store, storage).list()] == [keep.id]
        assert store.current() == sample_state

    def test_unknown_id(self, snapshots):
        with pytest.raises(RecordNotFoundError):
            snapshots.delete("snap_missing")


def test_corrupt_collection_does_not_block_state(sample_state):
    storage = MemoryStorage({STATE_KEY: export_state(sample_state), SNAPSHOTS_KEY: b"garbage"})
    store = Store(storage)
    manager = SnapshotManager(store, storage)
    assert store.current() == sample_state
    assert manager.list() == []
    assert manager.load_warning is not None
    manager.create("fresh start")
    assert len(SnapshotManager(store, storage).list()) == 1
