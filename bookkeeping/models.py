"""Data models for the bookkeeping domain."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Tuple
from uuid import uuid4

__all__ = [
    "AppState",
    "Client",
    "INITIAL_STAGE",
    "Opportunity",
    "STAGES",
    "Snapshot",
    "TRANSACTION_TYPES",
    "Transaction",
    "new_id",
    "signed_amount",
]

TRANSACTION_TYPES = ("revenue", "expense")

# Pipeline order; also the column order of the sales board.
STAGES = ("Lead", "Proposal", "Negotiation", "Won", "Lost")
INITIAL_STAGE = "Lead"

# Names used in files written by the Portuguese-language browser app.
LEGACY_TYPES = {"receita": "revenue", "despesa": "expense"}
LEGACY_STAGES = {
    "Proposta": "Proposal",
    "Negociação": "Negotiation",
    "Ganho": "Won",
    "Perdido": "Lost",
}


def new_id(prefix: str) -> str:
    """Return a collision-resistant identifier such as ``tx_3f9c...``."""
    return f"{prefix}_{uuid4().hex}"


def signed_amount(magnitude: Decimal, type_: str) -> Decimal:
    """Derive the stored amount from a magnitude and a transaction type."""
    magnitude = abs(magnitude)
    return magnitude if type_ == "revenue" else -magnitude


def _coerce_decimal(raw: Any) -> Any:
    # Stored documents are accepted as-is; values that are not numbers stay raw.
    if isinstance(raw, Decimal) or isinstance(raw, bool) or raw is None:
        return raw
    try:
        return Decimal(str(raw))
    except (InvalidOperation, ValueError):
        return raw


def _coerce_date(raw: Any) -> Any:
    if isinstance(raw, date):
        return raw
    if isinstance(raw, str):
        try:
            return date.fromisoformat(raw.strip())
        except ValueError:
            return raw
    return raw


def _fields(raw: Any) -> Dict[str, Any]:
    # Entries that are not objects hydrate as records with every field empty.
    return raw if isinstance(raw, dict) else {}


def _legacy(value: Any, aliases: Dict[str, str]) -> Any:
    return aliases.get(value, value) if isinstance(value, str) else value


def decimal_to_json(value: Any) -> Any:
    """Render a Decimal as a JSON number, keeping integral values integral.

    Fractions a float cannot carry exactly are written as strings, which
    hydrate back to the same Decimal.
    """
    if not isinstance(value, Decimal):
        return value
    if not value.is_finite():
        return str(value)
    if value == value.to_integral_value():
        return int(value)
    as_float = float(value)
    if Decimal(repr(as_float)) != value:
        return str(value)
    return as_float


def date_to_json(value: Any) -> Any:
    if isinstance(value, date):
        return value.isoformat()
    return value


@dataclass(frozen=True)
class Transaction:
    id: str
    description: str
    amount: Decimal
    date: date
    type: str

    def to_dict(self) -> Dict[str, Any]:
        """Serialise the transaction to JSON-friendly natives."""
        return {
            "id": self.id,
            "description": self.description,
            "amount": decimal_to_json(self.amount),
            "date": date_to_json(self.date),
            "type": self.type,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Transaction":
        """Hydrate a Transaction from JSON-native data."""
        data = _fields(data)
        return cls(
            id=data.get("id"),
            description=data.get("description"),
            amount=_coerce_decimal(data.get("amount")),
            date=_coerce_date(data.get("date")),
            type=_legacy(data.get("type"), LEGACY_TYPES),
        )

    @property
    def period(self) -> str:
        """The ``YYYY-MM`` month key this transaction falls in."""
        return str(date_to_json(self.date))[:7]


@dataclass(frozen=True)
class Client:
    id: str
    name: str
    company: str = ""
    email: str = ""
    phone: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "company": self.company,
            "email": self.email,
            "phone": self.phone,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Client":
        data = _fields(data)
        return cls(
            id=data.get("id"),
            name=data.get("name"),
            company=data.get("company", ""),
            email=data.get("email", ""),
            phone=data.get("phone", ""),
        )


@dataclass(frozen=True)
class Opportunity:
    id: str
    title: str
    value: Decimal
    client_id: str
    stage: str = INITIAL_STAGE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "value": decimal_to_json(self.value),
            "clientId": self.client_id,
            "stage": self.stage,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Opportunity":
        data = _fields(data)
        return cls(
            id=data.get("id"),
            title=data.get("title"),
            value=_coerce_decimal(data.get("value")),
            client_id=data.get("clientId", data.get("client_id")),
            stage=_legacy(data.get("stage"), LEGACY_STAGES),
        )


@dataclass(frozen=True)
class AppState:
    """All transactions, clients and opportunities at a point in time.

    Collections are tuples of frozen records, so a state value can be handed
    out freely; every change produces a new ``AppState``.
    """

    transactions: Tuple[Transaction, ...] = ()
    clients: Tuple[Client, ...] = ()
    opportunities: Tuple[Opportunity, ...] = ()

    @classmethod
    def empty(cls) -> "AppState":
        return cls(transactions=(), clients=(), opportunities=())

    def clone(self) -> "AppState":
        """Return a structurally independent copy of every record."""
        return AppState(
            transactions=tuple(replace(tx) for tx in self.transactions),
            clients=tuple(replace(client) for client in self.clients),
            opportunities=tuple(replace(op) for op in self.opportunities),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transactions": [tx.to_dict() for tx in self.transactions],
            "clients": [client.to_dict() for client in self.clients],
            "opportunities": [op.to_dict() for op in self.opportunities],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppState":
        """Hydrate a state; a missing collection raises ``KeyError``."""
        return cls(
            transactions=tuple(Transaction.from_dict(raw) for raw in data["transactions"]),
            clients=tuple(Client.from_dict(raw) for raw in data["clients"]),
            opportunities=tuple(Opportunity.from_dict(raw) for raw in data["opportunities"]),
        )


@dataclass(frozen=True)
class Snapshot:
    id: str
    name: str
    timestamp: int  # milliseconds since the epoch
    data: AppState

    @property
    def created_at(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp / 1000, tz=timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "timestamp": self.timestamp,
            "data": self.data.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Snapshot":
        return cls(
            id=data["id"],
            name=data["name"],
            timestamp=int(data["timestamp"]),
            data=AppState.from_dict(data["data"]),
        )
