"""Pure calculators deriving aggregates from an ``AppState``.

Nothing here mutates the state it is given. Records carrying values that are
not numbers (accepted permissively from stored documents) surface as a
``ValidationError`` naming the offending record.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .exceptions import ValidationError
from .models import STAGES, AppState, Client, Opportunity, Transaction, date_to_json
from .validators import ensure_date_range, validate_date, validate_period

ZERO = Decimal("0")
MIN_SEARCH_LENGTH = 3


def _money(value: Decimal) -> str:
    return f"{value:.2f}"


@dataclass(frozen=True)
class Totals:
    balance: Decimal = ZERO
    revenue: Decimal = ZERO
    expenses: Decimal = ZERO  # accumulated as a negative figure

    def __add__(self, other: "Totals") -> "Totals":
        return Totals(
            balance=self.balance + other.balance,
            revenue=self.revenue + other.revenue,
            expenses=self.expenses + other.expenses,
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            "balance": _money(self.balance),
            "revenue": _money(self.revenue),
            "expenses": _money(self.expenses),
        }


def _numeric(value: Any, what: str, record_id: Any) -> Decimal:
    if not isinstance(value, Decimal):
        raise ValidationError(f"{what} {record_id} has a non-numeric amount: {value!r}")
    return value


def _sum_transactions(transactions: Iterable[Transaction]) -> Totals:
    balance = revenue = expenses = ZERO
    for tx in transactions:
        amount = _numeric(tx.amount, "Transaction", tx.id)
        balance += amount
        if tx.type == "revenue":
            revenue += amount
        elif tx.type == "expense":
            expenses += amount
    return Totals(balance=balance, revenue=revenue, expenses=expenses)


def _date_text(tx: Transaction) -> str:
    return str(date_to_json(tx.date))


def period_key(value: date) -> str:
    return value.strftime("%Y-%m")


def in_period(transactions: Iterable[Transaction], period: str) -> List[Transaction]:
    return [tx for tx in transactions if _date_text(tx).startswith(period)]


def totals(state: AppState, period: Optional[str] = None) -> Totals:
    """Balance, revenue and expenses for all transactions or one ``YYYY-MM`` month."""
    if period is None:
        return _sum_transactions(state.transactions)
    period = validate_period(period)
    return _sum_transactions(in_period(state.transactions, period))


def dashboard_totals(state: AppState, period: str) -> Tuple[Totals, Totals]:
    """All-time and single-month totals, as shown side by side on the dashboard."""
    return totals(state), totals(state, period)


def monthly_totals(state: AppState) -> "OrderedDict[str, Totals]":
    grouped: Dict[str, List[Transaction]] = {}
    for tx in state.transactions:
        grouped.setdefault(tx.period, []).append(tx)
    return OrderedDict(
        (period, _sum_transactions(grouped[period])) for period in sorted(grouped)
    )


def transactions_for_month(state: AppState, period: str) -> List[Transaction]:
    period = validate_period(period)
    return sorted(in_period(state.transactions, period), key=_date_text, reverse=True)


@dataclass(frozen=True)
class FinancialReport:
    start: date
    end: date
    totals: Totals
    transactions: List[Transaction] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "totals": self.totals.to_dict(),
            "transactions": [tx.to_dict() for tx in self.transactions],
        }


def financial_report(state: AppState, start: object, end: object) -> FinancialReport:
    """Totals and rows for transactions dated within ``start``..``end`` inclusive."""
    start_date = validate_date(start, "start")
    end_date = validate_date(end, "end")
    ensure_date_range(start_date, end_date)
    low, high = start_date.isoformat(), end_date.isoformat()
    selected = [tx for tx in state.transactions if low <= _date_text(tx) <= high]
    return FinancialReport(
        start=start_date,
        end=end_date,
        totals=_sum_transactions(selected),
        transactions=sorted(selected, key=_date_text, reverse=True),
    )


@dataclass(frozen=True)
class SalesReport:
    won_count: int
    lost_count: int
    won_value: Decimal
    stage_counts: "OrderedDict[str, int]"
    rows: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "won_count": self.won_count,
            "lost_count": self.lost_count,
            "won_value": _money(self.won_value),
            "stage_counts": dict(self.stage_counts),
            "rows": list(self.rows),
        }


def sales_report(state: AppState) -> SalesReport:
    names = {client.id: client.name for client in state.clients}
    stage_counts: "OrderedDict[str, int]" = OrderedDict((stage, 0) for stage in STAGES)
    won_value = ZERO
    rows: List[Dict[str, Any]] = []
    for op in state.opportunities:
        if op.stage in stage_counts:
            stage_counts[op.stage] += 1
        if op.stage == "Won":
            won_value += _numeric(op.value, "Opportunity", op.id)
        rows.append(
            {
                "title": op.title,
                "value": op.to_dict()["value"],
                "client": names.get(op.client_id) or "N/A",
                "stage": op.stage,
            }
        )
    return SalesReport(
        won_count=stage_counts["Won"],
        lost_count=stage_counts["Lost"],
        won_value=won_value,
        stage_counts=stage_counts,
        rows=rows,
    )


@dataclass(frozen=True)
class SearchResults:
    transactions: List[Transaction] = field(default_factory=list)
    clients: List[Client] = field(default_factory=list)
    opportunities: List[Opportunity] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.transactions or self.clients or self.opportunities)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transactions": [tx.to_dict() for tx in self.transactions],
            "clients": [client.to_dict() for client in self.clients],
            "opportunities": [op.to_dict() for op in self.opportunities],
        }


def search(state: AppState, query: str) -> SearchResults:
    """Case-insensitive substring search; short queries match nothing."""
    needle = (query or "").strip().lower()
    if len(needle) < MIN_SEARCH_LENGTH:
        return SearchResults()

    def hit(*values: Any) -> bool:
        return any(needle in str(value or "").lower() for value in values)

    return SearchResults(
        transactions=[tx for tx in state.transactions if hit(tx.description)],
        clients=[client for client in state.clients if hit(client.name, client.company)],
        opportunities=[op for op in state.opportunities if hit(op.title)],
    )
