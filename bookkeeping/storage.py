"""Persistence adapters for the bookkeeping core."""

from __future__ import annotations

import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

from .exceptions import PersistenceError

STATE_KEY = "app_state.json"
SNAPSHOTS_KEY = "snapshots.json"


class StorageAdapter(ABC):
    """Durable key/value byte storage.

    Implementations must never expose a half-written value: a ``load`` either
    sees the previous payload for a key or the complete new one.
    """

    @abstractmethod
    def load(self, key: str) -> Optional[bytes]:
        """Return the stored payload, or ``None`` when the key was never saved."""

    @abstractmethod
    def save(self, key: str, payload: bytes) -> None:
        """Store ``payload`` under ``key``; raise ``PersistenceError`` on failure."""


class JSONStorage(StorageAdapter):
    """Simple file-based storage with crash-safe writes, one file per key."""

    def __init__(self, base_path: Path) -> None:
        self._base_path = Path(base_path)
        self._base_path.mkdir(parents=True, exist_ok=True)

    def load(self, key: str) -> Optional[bytes]:
        path = self._base_path / key
        if not path.exists():
            return None
        try:
            return path.read_bytes()
        except OSError as exc:
            raise PersistenceError(f"Unable to read from {path}") from exc

    def save(self, key: str, payload: bytes) -> None:
        path = self._base_path / key
        temp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            with temp_path.open("wb") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            # Use replace for atomic move on POSIX; ensures crash-safe persistence.
            temp_path.replace(path)
        except OSError as exc:
            raise PersistenceError(f"Unable to write to {path}") from exc

    @property
    def base_path(self) -> Path:
        return self._base_path


class MemoryStorage(StorageAdapter):
    """In-process storage for tests and throwaway sessions."""

    def __init__(self, initial: Optional[Dict[str, bytes]] = None) -> None:
        self._data: Dict[str, bytes] = dict(initial or {})
        self._lock = threading.Lock()

    def load(self, key: str) -> Optional[bytes]:
        with self._lock:
            return self._data.get(key)

    def save(self, key: str, payload: bytes) -> None:
        if not isinstance(payload, (bytes, bytearray)):
            raise PersistenceError(f"Payload for {key} must be bytes")
        with self._lock:
            self._data[key] = bytes(payload)

    def keys(self):
        with self._lock:
            return sorted(self._data)
