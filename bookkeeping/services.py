"""Framework-agnostic entity services built on the store's ``apply``.

Every change is expressed as an updater over the state the store hands in,
so lookups and integrity checks always run against the latest committed
state and a failing check leaves everything untouched.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import replace
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, TypeVar

from .exceptions import RecordNotFoundError, ReferentialIntegrityError, ValidationError
from .models import (
    INITIAL_STAGE,
    STAGES,
    TRANSACTION_TYPES,
    AppState,
    Client,
    Opportunity,
    Transaction,
    new_id,
    signed_amount,
)
from .reports import transactions_for_month
from .store import Store
from .validators import (
    parse_amount,
    parse_value,
    validate_date,
    validate_email,
    validate_enum,
    validate_optional_str,
    validate_required_str,
)

Record = TypeVar("Record", Transaction, Client, Opportunity)


def _find(records: Sequence[Record], record_id: str, label: str) -> Record:
    for record in records:
        if record.id == record_id:
            return record
    raise RecordNotFoundError(f"{label} {record_id} not found")


def _replace_by_id(records: Sequence[Record], updated: Record) -> tuple:
    return tuple(updated if record.id == updated.id else record for record in records)


def _without(records: Sequence[Record], record_id: str) -> tuple:
    return tuple(record for record in records if record.id != record_id)


class TransactionService:
    """Revenue and expense entries."""

    def __init__(self, store: Store) -> None:
        self._store = store

    # Public API -----------------------------------------------------------
    def add(self, payload: Dict[str, object]) -> Transaction:
        transaction = Transaction(id=new_id("tx"), **self._validate_payload(payload))
        self._store.apply(
            lambda state: replace(state, transactions=state.transactions + (transaction,))
        )
        return transaction

    def update(self, transaction_id: str, changes: Dict[str, object]) -> Transaction:
        """Replace a transaction; omitted fields keep their current values."""
        result: List[Transaction] = []

        def updater(state: AppState) -> AppState:
            existing = _find(state.transactions, transaction_id, "Transaction")
            merged_payload = {**self._editable_fields(existing), **changes}
            updated = Transaction(id=existing.id, **self._validate_payload(merged_payload))
            result.append(updated)
            return replace(state, transactions=_replace_by_id(state.transactions, updated))

        self._store.apply(updater)
        return result[0]

    def delete(self, transaction_id: str) -> None:
        def updater(state: AppState) -> AppState:
            _find(state.transactions, transaction_id, "Transaction")
            return replace(state, transactions=_without(state.transactions, transaction_id))

        self._store.apply(updater)

    def get(self, transaction_id: str) -> Transaction:
        return _find(self._store.current().transactions, transaction_id, "Transaction")

    def list(self, period: Optional[str] = None) -> List[Transaction]:
        state = self._store.current()
        if period is not None:
            return transactions_for_month(state, period)
        return list(state.transactions)

    # Internal helpers -----------------------------------------------------
    @staticmethod
    def _editable_fields(transaction: Transaction) -> Dict[str, object]:
        amount = transaction.amount
        return {
            "description": transaction.description,
            "amount": abs(amount) if isinstance(amount, Decimal) else amount,
            "date": transaction.date,
            "type": transaction.type,
        }

    @staticmethod
    def _validate_payload(payload: Dict[str, object]) -> Dict[str, object]:
        type_ = validate_enum(payload.get("type"), "type", TRANSACTION_TYPES)
        magnitude = parse_amount(payload.get("amount"), "amount")
        return {
            "description": validate_required_str(payload.get("description"), "description", 200),
            "amount": signed_amount(magnitude, type_),
            "date": validate_date(payload.get("date"), "date"),
            "type": type_,
        }


class ClientService:
    """Customer records referenced by opportunities."""

    def __init__(self, store: Store) -> None:
        self._store = store

    def add(self, payload: Dict[str, object]) -> Client:
        client = Client(id=new_id("cl"), **self._validate_payload(payload))
        self._store.apply(lambda state: replace(state, clients=state.clients + (client,)))
        return client

    def update(self, client_id: str, changes: Dict[str, object]) -> Client:
        result: List[Client] = []

        def updater(state: AppState) -> AppState:
            existing = _find(state.clients, client_id, "Client")
            merged_payload = {**existing.to_dict(), **changes}
            updated = Client(id=existing.id, **self._validate_payload(merged_payload))
            result.append(updated)
            return replace(state, clients=_replace_by_id(state.clients, updated))

        self._store.apply(updater)
        return result[0]

    def delete(self, client_id: str) -> None:
        def updater(state: AppState) -> AppState:
            _find(state.clients, client_id, "Client")
            linked = [op for op in state.opportunities if op.client_id == client_id]
            if linked:
                raise ReferentialIntegrityError(
                    f"Client {client_id} has {len(linked)} linked opportunities and cannot be deleted"
                )
            return replace(state, clients=_without(state.clients, client_id))

        self._store.apply(updater)

    def get(self, client_id: str) -> Client:
        return _find(self._store.current().clients, client_id, "Client")

    def list(self) -> List[Client]:
        return sorted(self._store.current().clients, key=lambda client: str(client.name).lower())

    def is_referenced(self, client_id: str) -> bool:
        return any(op.client_id == client_id for op in self._store.current().opportunities)

    @staticmethod
    def _validate_payload(payload: Dict[str, object]) -> Dict[str, object]:
        return {
            "name": validate_required_str(payload.get("name"), "name", 100),
            "company": validate_optional_str(payload.get("company"), "company", 100),
            "email": validate_email(payload.get("email")),
            "phone": validate_optional_str(payload.get("phone"), "phone", 40),
        }


class OpportunityService:
    """Sales pipeline entries and their stage transitions."""

    def __init__(self, store: Store) -> None:
        self._store = store

    def add(self, payload: Dict[str, object]) -> Opportunity:
        data = self._validate_payload(payload)
        opportunity = Opportunity(id=new_id("op"), stage=INITIAL_STAGE, **data)

        def updater(state: AppState) -> AppState:
            self._ensure_client(state, opportunity.client_id)
            return replace(state, opportunities=state.opportunities + (opportunity,))

        self._store.apply(updater)
        return opportunity

    def update(self, opportunity_id: str, changes: Dict[str, object]) -> Opportunity:
        """Edit title, value or client; the stage only changes through ``move``."""
        changes = dict(changes)
        if "client_id" in changes:
            changes["clientId"] = changes.pop("client_id")
        result: List[Opportunity] = []

        def updater(state: AppState) -> AppState:
            existing = _find(state.opportunities, opportunity_id, "Opportunity")
            merged_payload = {**existing.to_dict(), **changes}
            data = self._validate_payload(merged_payload)
            if data["client_id"] != existing.client_id:
                self._ensure_client(state, data["client_id"])
            updated = replace(existing, **data)
            result.append(updated)
            return replace(state, opportunities=_replace_by_id(state.opportunities, updated))

        self._store.apply(updater)
        return result[0]

    def move(self, opportunity_id: str, stage: object) -> Opportunity:
        """Place an opportunity in any pipeline stage."""
        target = validate_enum(stage, "stage", STAGES)
        result: List[Opportunity] = []

        def updater(state: AppState) -> AppState:
            existing = _find(state.opportunities, opportunity_id, "Opportunity")
            updated = replace(existing, stage=target)
            result.append(updated)
            return replace(state, opportunities=_replace_by_id(state.opportunities, updated))

        self._store.apply(updater)
        return result[0]

    def delete(self, opportunity_id: str) -> None:
        def updater(state: AppState) -> AppState:
            _find(state.opportunities, opportunity_id, "Opportunity")
            return replace(state, opportunities=_without(state.opportunities, opportunity_id))

        self._store.apply(updater)

    def get(self, opportunity_id: str) -> Opportunity:
        return _find(self._store.current().opportunities, opportunity_id, "Opportunity")

    def list(self, stage: Optional[str] = None) -> List[Opportunity]:
        records = self._store.current().opportunities
        if stage is None:
            return list(records)
        stage = validate_enum(stage, "stage", STAGES)
        return [op for op in records if op.stage == stage]

    def board(self) -> "OrderedDict[str, List[Opportunity]]":
        """Opportunities grouped by stage in pipeline order."""
        columns: "OrderedDict[str, List[Opportunity]]" = OrderedDict((stage, []) for stage in STAGES)
        for op in self._store.current().opportunities:
            if op.stage in columns:
                columns[op.stage].append(op)
        return columns

    @staticmethod
    def _ensure_client(state: AppState, client_id: str) -> None:
        if not any(client.id == client_id for client in state.clients):
            raise ValidationError(f"clientId {client_id} does not reference an existing client")

    @staticmethod
    def _validate_payload(payload: Dict[str, object]) -> Dict[str, object]:
        client_id = payload.get("clientId", payload.get("client_id"))
        return {
            "title": validate_required_str(payload.get("title"), "title", 200),
            "value": parse_value(payload.get("value"), "value"),
            "client_id": validate_required_str(client_id, "clientId"),
        }


def wipe_data(store: Store, *, confirm: bool = False) -> AppState:
    """Reset every collection to empty; snapshots are left alone."""
    if not confirm:
        raise ValidationError("Erasing all data must be confirmed")
    return store.apply(lambda _current: AppState.empty())
