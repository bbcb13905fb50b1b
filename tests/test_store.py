from __future__ import annotations

import threading
from dataclasses import replace
from datetime import date
from decimal import Decimal
from functools import reduce

import pytest

from bookkeeping.backup import export_state, import_state
from bookkeeping.exceptions import PersistenceError, PersistenceWarning, ValidationError
from bookkeeping.models import AppState, Transaction
from bookkeeping.storage import STATE_KEY, MemoryStorage
from bookkeeping.store import Store


def _append(description: str, amount: str = "10"):
    def updater(state: AppState) -> AppState:
        tx = Transaction(
            id=f"t{len(state.transactions)}",
            description=description,
            amount=Decimal(amount),
            date=date(2024, 5, 1),
            type="revenue",
        )
        return replace(state, transactions=state.transactions + (tx,))

    return updater


class TestInitialisation:
    """Loading the live state at construction time."""

    def test_starts_empty_without_saved_state(self, store):
        assert store.current() == AppState.empty()
        assert store.load_warning is None

    def test_loads_previously_saved_state(self, sample_state):
        storage = MemoryStorage({STATE_KEY: export_state(sample_state)})
        assert Store(storage).current() == sample_state

    def test_corrupt_state_degrades_to_empty(self):
        store = Store(MemoryStorage({STATE_KEY: b"{not json"}))
        assert store.current() == AppState.empty()
        assert "corrupt" in store.load_warning

    def test_missing_collection_counts_as_corrupt(self):
        store = Store(MemoryStorage({STATE_KEY: b'{"clients": []}'}))
        assert store.current() == AppState.empty()
        assert store.load_warning is not None


class TestApply:
    """The apply-and-persist contract."""

    def test_apply_persists_before_returning(self, store, storage):
        result = store.apply(_append("first"))
        assert result is store.current()
        assert import_state(storage.load(STATE_KEY)) == result

    def test_previous_state_is_not_mutated(self, store):
        before = store.current()
        store.apply(_append("first"))
        assert before.transactions == ()
        assert len(store.current().transactions) == 1

    def test_failing_updater_leaves_everything_untouched(self, store, storage):
        def boom(state):
            raise ValidationError("nope")

        with pytest.raises(ValidationError):
            store.apply(boom)
        assert store.current() == AppState.empty()
        assert storage.load(STATE_KEY) is None

    def test_updater_must_return_a_state(self, store):
        with pytest.raises(ValidationError):
            store.apply(lambda state: None)

    @pytest.mark.parametrize(
        "changes",
        [{"clients": None}, {"transactions": "t1"}, {"opportunities": ({"id": "o1"},)}],
    )
    def test_malformed_collections_are_rejected(self, store, storage, changes):
        with pytest.raises(ValidationError):
            store.apply(lambda state: replace(state, **changes))
        assert store.current() == AppState.empty()
        assert storage.load(STATE_KEY) is None
        assert store.last_error is None

    def test_list_collections_are_stored_as_tuples(self, store, sample_state):
        result = store.apply(lambda state: replace(sample_state, clients=list(sample_state.clients)))
        assert isinstance(result.clients, tuple)
        assert result == sample_state

    def test_sequence_matches_updaters_folded_in_order(self, store):
        updaters = [_append("a", "1"), _append("b", "2.5"), _append("c", "3")]
        for updater in updaters:
            store.apply(updater)
        expected = reduce(lambda state, fn: fn(state), updaters, AppState.empty())
        assert store.current() == expected

    def test_replace_swaps_the_whole_state(self, store, sample_state):
        store.replace(sample_state)
        assert store.current() == sample_state


class TestPersistenceFailure:
    """A failed write keeps the session going and reports a warning."""

    def test_state_advances_and_warning_is_issued(self, store, storage):
        storage.fail_writes = True
        with pytest.warns(PersistenceWarning):
            store.apply(_append("unsaved"))
        assert len(store.current().transactions) == 1
        assert isinstance(store.last_error, PersistenceError)
        assert storage.load(STATE_KEY) is None

    def test_next_successful_apply_saves_everything(self, store, storage):
        storage.fail_writes = True
        with pytest.warns(PersistenceWarning):
            store.apply(_append("unsaved"))
        storage.fail_writes = False
        store.apply(_append("saved"))
        assert store.last_error is None
        saved = import_state(storage.load(STATE_KEY))
        assert [tx.description for tx in saved.transactions] == ["unsaved", "saved"]

    def test_persist_retries_current_state(self, store, storage):
        storage.fail_writes = True
        with pytest.warns(PersistenceWarning):
            store.apply(_append("unsaved"))
        storage.fail_writes = False
        assert store.persist() is True
        assert import_state(storage.load(STATE_KEY)) == store.current()


class TestListeners:
    def test_listener_receives_new_state_until_unsubscribed(self, store):
        seen = []
        unsubscribe = store.subscribe(seen.append)
        first = store.apply(_append("a"))
        unsubscribe()
        store.apply(_append("b"))
        assert seen == [first]

    def test_failing_listener_does_not_undo_transition(self, store):
        def broken(state):
            raise RuntimeError("render failed")

        store.subscribe(broken)
        store.apply(_append("a"))
        assert len(store.current().transactions) == 1


def test_concurrent_applies_are_serialised(store):
    def updater(state: AppState) -> AppState:
        return _append(str(len(state.transactions)))(state)

    def worker():
        for _ in range(50):
            store.apply(updater)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    descriptions = [tx.description for tx in store.current().transactions]
    assert descriptions == [str(index) for index in range(200)]
