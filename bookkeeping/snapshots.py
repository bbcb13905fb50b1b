"""Named point-in-time copies of the application state."""

from __future__ import annotations

import logging
import threading
import warnings
from datetime import datetime, timezone
from operator import attrgetter
from typing import Any, Callable, List, Optional

from .backup import dumps_document, loads_document, validate_document
from .exceptions import (
    PersistenceError,
    PersistenceWarning,
    RecordNotFoundError,
    ValidationError,
)
from .models import AppState, Snapshot, new_id
from .storage import SNAPSHOTS_KEY, StorageAdapter
from .store import Store
from .validators import validate_required_str

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_collection(payload: bytes) -> List[Snapshot]:
    try:
        document = loads_document(payload)
    except ValueError as exc:
        raise ValidationError("Snapshot collection is not valid JSON") from exc
    if not isinstance(document, list):
        raise ValidationError("Snapshot collection must be a list")
    snapshots: List[Snapshot] = []
    for raw in document:
        if not isinstance(raw, dict):
            raise ValidationError("Snapshot entries must be objects")
        validate_document(raw.get("data"))
        try:
            snapshots.append(Snapshot.from_dict(raw))
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(f"Malformed snapshot entry: {exc!r}") from exc
    return snapshots


class SnapshotManager:
    """Owns the snapshot collection, persisted under its own storage key.

    The collection is independent of the live state: restoring a snapshot
    never touches the collection and deleting one never touches the state.
    """

    def __init__(
        self,
        store: Store,
        storage: StorageAdapter,
        key: str = SNAPSHOTS_KEY,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._storage = storage
        self._key = key
        self._clock = clock or _utc_now
        self._lock = threading.RLock()
        self.last_error: Optional[PersistenceError] = None
        self.load_warning: Optional[str] = None
        self._snapshots: List[Snapshot] = self._load()

    # Public API -----------------------------------------------------------
    def create(self, name: Any) -> Snapshot:
        name = validate_required_str(name, "name")
        with self._lock:
            with self._store.locked() as state:
                data = state.clone()
            snapshot = Snapshot(
                id=self._unique_id(),
                name=name,
                timestamp=int(self._clock().timestamp() * 1000),
                data=data,
            )
            self._snapshots.append(snapshot)
            self._persist()
        logger.info("Created snapshot %s (%s)", snapshot.id, snapshot.name)
        return snapshot

    def list(self) -> List[Snapshot]:
        """Newest first; snapshots sharing a timestamp keep creation order."""
        with self._lock:
            return sorted(self._snapshots, key=attrgetter("timestamp"), reverse=True)

    def get(self, snapshot_id: str) -> Snapshot:
        with self._lock:
            for snapshot in self._snapshots:
                if snapshot.id == snapshot_id:
                    return snapshot
        raise RecordNotFoundError(f"Snapshot {snapshot_id} not found")

    def restore(self, snapshot_id: str) -> AppState:
        snapshot = self.get(snapshot_id)
        data = snapshot.data.clone()
        restored = self._store.apply(lambda _current: data)
        logger.info("Restored snapshot %s (%s)", snapshot.id, snapshot.name)
        return restored

    def delete(self, snapshot_id: str) -> None:
        with self._lock:
            self.get(snapshot_id)
            self._snapshots = [s for s in self._snapshots if s.id != snapshot_id]
            self._persist()
        logger.info("Deleted snapshot %s", snapshot_id)

    def __len__(self) -> int:
        return len(self._snapshots)

    # Internal helpers -----------------------------------------------------
    def _unique_id(self) -> str:
        taken = {snapshot.id for snapshot in self._snapshots}
        candidate = new_id("snap")
        while candidate in taken:
            candidate = new_id("snap")
        return candidate

    def _load(self) -> List[Snapshot]:
        try:
            payload = self._storage.load(self._key)
            if payload is None:
                return []
            return _parse_collection(payload)
        except (PersistenceError, ValidationError) as exc:
            message = f"Unable to load snapshots, starting with none: {exc}"
            logger.warning(message)
            self.load_warning = message
            return []

    def _persist(self) -> bool:
        try:
            try:
                payload = dumps_document([snapshot.to_dict() for snapshot in self._snapshots])
            except (TypeError, ValueError) as exc:
                raise PersistenceError("Unable to serialise snapshots") from exc
            self._storage.save(self._key, payload)
        except PersistenceError as exc:
            self.last_error = exc
            logger.warning("Failed to save snapshots: %s", exc)
            warnings.warn(f"Snapshots changed but were not saved: {exc}", PersistenceWarning, stacklevel=3)
            return False
        self.last_error = None
        return True
