"""Portable JSON backup format shared by the durable state record."""

from __future__ import annotations

import json
import logging
from datetime import date
from decimal import Decimal
from typing import Any, Optional, Union

from .exceptions import ValidationError
from .models import AppState

__all__ = [
    "BackupCodec",
    "REQUIRED_KEYS",
    "backup_filename",
    "dumps_document",
    "export_state",
    "import_state",
    "loads_document",
    "restore_backup",
    "validate_document",
]

logger = logging.getLogger(__name__)

REQUIRED_KEYS = ("transactions", "clients", "opportunities")

Payload = Union[bytes, bytearray, str]


def dumps_document(document: Any) -> bytes:
    """Encode a JSON-native document as human-readable UTF-8."""
    return json.dumps(document, indent=2, ensure_ascii=False).encode("utf-8")


def loads_document(payload: Payload) -> Any:
    """Decode UTF-8 JSON, keeping fractional numbers exact as ``Decimal``.

    Raises ``ValueError`` (``UnicodeDecodeError`` or ``JSONDecodeError``) on
    unreadable input.
    """
    if isinstance(payload, (bytes, bytearray)):
        payload = bytes(payload).decode("utf-8-sig")
    return json.loads(payload, parse_float=Decimal)


def validate_document(document: Any) -> None:
    """Check the top-level shape of a backup document.

    Only the presence and container types of the three collections are
    checked; individual record fields are accepted as they are.
    """
    if not isinstance(document, dict):
        raise ValidationError("Backup document must be a JSON object")
    missing = [key for key in REQUIRED_KEYS if key not in document]
    if missing:
        raise ValidationError(f"Backup document is missing: {', '.join(missing)}")
    for key in REQUIRED_KEYS:
        records = document[key]
        if not isinstance(records, list):
            raise ValidationError(f"{key} must be a list")


def export_state(state: AppState) -> bytes:
    return dumps_document(state.to_dict())


def import_state(payload: Payload) -> AppState:
    """Parse a backup document into an ``AppState`` without applying it.

    Files from the Portuguese-language browser app are accepted too: their
    ``receita``/``despesa`` types and stage names such as ``Ganho`` are
    translated while hydrating. Entries that are not objects become records
    with empty fields and are rejected later by the calculators.
    """
    try:
        document = loads_document(payload)
    except ValueError as exc:
        raise ValidationError("Backup file is not valid UTF-8 JSON") from exc
    validate_document(document)
    return AppState.from_dict(document)


def restore_backup(store, payload: Payload, *, confirm: bool = False) -> AppState:
    """Replace the live state with a backup once the caller has confirmed it."""
    state = import_state(payload)
    if not confirm:
        raise ValidationError("Loading a backup replaces all current data and must be confirmed")
    logger.info(
        "Restoring backup with %d transactions, %d clients, %d opportunities",
        len(state.transactions),
        len(state.clients),
        len(state.opportunities),
    )
    return store.apply(lambda _current: state)


def backup_filename(today: Optional[date] = None) -> str:
    return f"gestor_backup_{(today or date.today()).isoformat()}.json"


class BackupCodec:
    """Export/import pair handed to the view layer."""

    media_type = "application/json"

    def export(self, state: AppState) -> bytes:
        return export_state(state)

    def import_(self, payload: Payload) -> AppState:
        return import_state(payload)

    def filename(self, today: Optional[date] = None) -> str:
        return backup_filename(today)
