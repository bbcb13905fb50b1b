"""The single authoritative holder of the live ``AppState``."""

from __future__ import annotations

import logging
import threading
import warnings
from contextlib import contextmanager
from dataclasses import replace
from typing import Callable, Iterator, List, Optional

from .backup import export_state, import_state
from .exceptions import PersistenceError, PersistenceWarning, ValidationError
from .models import AppState, Client, Opportunity, Transaction
from .storage import STATE_KEY, StorageAdapter

logger = logging.getLogger(__name__)

Updater = Callable[[AppState], AppState]
Listener = Callable[[AppState], None]

_RECORD_TYPES = (
    ("transactions", Transaction),
    ("clients", Client),
    ("opportunities", Opportunity),
)


def _well_formed(state: object) -> AppState:
    """Check an updater's result holds three record collections; tuple them."""
    if not isinstance(state, AppState):
        raise ValidationError("State updaters must return an AppState")
    collections = {}
    for name, record_type in _RECORD_TYPES:
        records = getattr(state, name)
        if not isinstance(records, (tuple, list)):
            raise ValidationError(f"{name} must be a tuple or list of records")
        if any(not isinstance(record, record_type) for record in records):
            raise ValidationError(f"{name} must only hold {record_type.__name__} records")
        collections[name] = tuple(records)
    return replace(state, **collections)


class Store:
    """Holds the live state and applies every change through ``apply``.

    ``apply`` is a critical section: concurrent callers are serialised so each
    updater sees the result of the previous completed transition. A failed
    write does not roll the transition back; it is logged, kept in
    ``last_error`` and issued as a ``PersistenceWarning``.
    """

    def __init__(self, storage: StorageAdapter, key: str = STATE_KEY) -> None:
        self._storage = storage
        self._key = key
        self._lock = threading.RLock()
        self._listeners: List[Listener] = []
        self.last_error: Optional[PersistenceError] = None
        self.load_warning: Optional[str] = None
        self._state = self._load()

    # Public API -----------------------------------------------------------
    def current(self) -> AppState:
        return self._state

    def apply(self, updater: Updater) -> AppState:
        with self._lock:
            next_state = _well_formed(updater(self._state))
            self._write(next_state)
            self._state = next_state
            self._notify(next_state)
            return next_state

    def replace(self, state: AppState) -> AppState:
        return self.apply(lambda _current: state)

    def persist(self) -> bool:
        """Write the current state again; returns whether the write succeeded."""
        with self._lock:
            return self._write(self._state)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener; the returned callable removes it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    @contextmanager
    def locked(self) -> Iterator[AppState]:
        """Hold the critical section and yield the state it protects."""
        with self._lock:
            yield self._state

    # Internal helpers -----------------------------------------------------
    def _load(self) -> AppState:
        try:
            payload = self._storage.load(self._key)
        except PersistenceError as exc:
            return self._fallback(f"Unable to read saved state: {exc}")
        if payload is None:
            return AppState.empty()
        try:
            return import_state(payload)
        except ValidationError as exc:
            return self._fallback(f"Saved state is corrupt, starting with empty data: {exc}")

    def _fallback(self, message: str) -> AppState:
        logger.warning(message)
        self.load_warning = message
        return AppState.empty()

    def _write(self, state: AppState) -> bool:
        try:
            try:
                payload = export_state(state)
            except (TypeError, ValueError) as exc:
                raise PersistenceError("Unable to serialise state") from exc
            self._storage.save(self._key, payload)
        except PersistenceError as exc:
            self.last_error = exc
            logger.warning("Failed to save state: %s", exc)
            warnings.warn(f"State changed but was not saved: {exc}", PersistenceWarning, stacklevel=3)
            return False
        self.last_error = None
        return True

    def _notify(self, state: AppState) -> None:
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("State listener %r failed", listener)
