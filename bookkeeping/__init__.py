"""Core state engine for the bookkeeping and sales pipeline tool."""

from .backup import BackupCodec, export_state, import_state, restore_backup
from .exceptions import (
    NotFoundError,
    PersistenceError,
    PersistenceWarning,
    RecordNotFoundError,
    ReferentialIntegrityError,
    ValidationError,
)
from .models import STAGES, AppState, Client, Opportunity, Snapshot, Transaction
from .reports import Totals, monthly_totals, totals
from .services import ClientService, OpportunityService, TransactionService, wipe_data
from .snapshots import SnapshotManager
from .storage import JSONStorage, MemoryStorage, StorageAdapter
from .store import Store

__all__ = [
    "AppState",
    "BackupCodec",
    "Client",
    "ClientService",
    "JSONStorage",
    "MemoryStorage",
    "NotFoundError",
    "Opportunity",
    "OpportunityService",
    "PersistenceError",
    "PersistenceWarning",
    "RecordNotFoundError",
    "ReferentialIntegrityError",
    "STAGES",
    "Snapshot",
    "SnapshotManager",
    "StorageAdapter",
    "Store",
    "Totals",
    "Transaction",
    "TransactionService",
    "ValidationError",
    "export_state",
    "import_state",
    "monthly_totals",
    "restore_backup",
    "totals",
    "wipe_data",
]
