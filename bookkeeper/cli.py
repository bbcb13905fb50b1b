"""Console interface for the bookkeeping tool."""

from __future__ import annotations

import argparse
import os
import sys
import warnings
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, List, Optional

from bookkeeping.backup import BackupCodec, restore_backup
from bookkeeping.exceptions import (
    PersistenceError,
    PersistenceWarning,
    RecordNotFoundError,
    ReferentialIntegrityError,
    ValidationError,
)
from bookkeeping.models import STAGES, TRANSACTION_TYPES, Client, Opportunity, Snapshot, Transaction
from bookkeeping.reports import totals
from bookkeeping.services import ClientService, OpportunityService, TransactionService
from bookkeeping.snapshots import SnapshotManager
from bookkeeping.storage import JSONStorage
from bookkeeping.store import Store


class Session:
    """Everything one CLI invocation needs, wired over a single data directory."""

    def __init__(self, data_dir: Path) -> None:
        storage = JSONStorage(data_dir)
        self.store = Store(storage)
        self.snapshots = SnapshotManager(self.store, storage)
        self.transactions = TransactionService(self.store)
        self.clients = ClientService(self.store)
        self.opportunities = OpportunityService(self.store)
        self.codec = BackupCodec()

    def warnings(self) -> List[str]:
        messages = [self.store.load_warning, self.snapshots.load_warning]
        messages += [str(err) for err in (self.store.last_error, self.snapshots.last_error) if err]
        return [message for message in messages if message]


def _parse_date(value: str) -> str:
    try:
        date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(
            f"Invalid date '{value}'. Expected format YYYY-MM-DD."
        ) from exc
    return value


def _parse_amount(value: str) -> str:
    try:
        amount = Decimal(value)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError("Amount must be a numeric value") from exc
    if amount <= 0:
        raise argparse.ArgumentTypeError("Amount must be greater than zero")
    return value


def _drop_unset(values: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None}


def _format_transaction(tx: Transaction) -> str:
    return f"[{tx.id}] {tx.date} {str(tx.type):<7} {str(tx.amount):>12} {tx.description}"


def _format_client(client: Client) -> str:
    return (
        f"[{client.id}] {client.name}\n"
        f"  Company: {client.company or '-'} | Email: {client.email or '-'} | Phone: {client.phone or '-'}"
    )


def _format_opportunity(op: Opportunity) -> str:
    return f"[{op.id}] {str(op.stage):<11} {str(op.value):>12} {op.title} (client {op.client_id})"


def _format_snapshot(snapshot: Snapshot) -> str:
    stamp = snapshot.created_at.strftime("%Y-%m-%d %H:%M:%S")
    return f"[{snapshot.id}] {stamp} UTC  {snapshot.name}"


def handle_transaction(args: argparse.Namespace, session: Session) -> None:
    service = session.transactions
    if args.command == "add":
        payload = {
            "description": args.description,
            "amount": args.amount,
            "type": args.type,
            "date": args.date,
        }
        print("Transaction added:\n" + _format_transaction(service.add(payload)))
    elif args.command == "list":
        records = service.list(args.period)
        if not records:
            print("No transactions found.")
            return
        for tx in records:
            print(_format_transaction(tx))
    elif args.command == "edit":
        changes = _drop_unset({
            "description": args.description,
            "amount": args.amount,
            "type": args.type,
            "date": args.date,
        })
        print("Transaction updated:\n" + _format_transaction(service.update(args.id, changes)))
    elif args.command == "delete":
        service.delete(args.id)
        print(f"Transaction {args.id} deleted.")


def handle_client(args: argparse.Namespace, session: Session) -> None:
    service = session.clients
    if args.command == "add":
        payload = {
            "name": args.name,
            "company": args.company,
            "email": args.email,
            "phone": args.phone,
        }
        print("Client added:\n" + _format_client(service.add(payload)))
    elif args.command == "list":
        records = service.list()
        if not records:
            print("No clients found.")
            return
        for client in records:
            print(_format_client(client))
    elif args.command == "edit":
        changes = _drop_unset({
            "name": args.name,
            "company": args.company,
            "email": args.email,
            "phone": args.phone,
        })
        print("Client updated:\n" + _format_client(service.update(args.id, changes)))
    elif args.command == "delete":
        service.delete(args.id)
        print(f"Client {args.id} deleted.")


def handle_opportunity(args: argparse.Namespace, session: Session) -> None:
    service = session.opportunities
    if args.command == "add":
        payload = {"title": args.title, "value": args.value, "clientId": args.client_id}
        print("Opportunity added:\n" + _format_opportunity(service.add(payload)))
    elif args.command == "list":
        for stage, ops in service.board().items():
            print(f"{stage} ({len(ops)})")
            for op in ops:
                print("  " + _format_opportunity(op))
    elif args.command == "edit":
        changes = _drop_unset({"title": args.title, "value": args.value, "clientId": args.client_id})
        print("Opportunity updated:\n" + _format_opportunity(service.update(args.id, changes)))
    elif args.command == "move":
        print("Opportunity moved:\n" + _format_opportunity(service.move(args.id, args.stage)))
    elif args.command == "delete":
        service.delete(args.id)
        print(f"Opportunity {args.id} deleted.")


def handle_totals(args: argparse.Namespace, session: Session) -> None:
    result = totals(session.store.current(), args.period)
    scope = args.period or "all time"
    print(f"Totals ({scope}):")
    print(f"  Balance:  {result.balance:.2f}")
    print(f"  Revenue:  {result.revenue:.2f}")
    print(f"  Expenses: {abs(result.expenses):.2f}")


def handle_snapshot(args: argparse.Namespace, session: Session) -> None:
    manager = session.snapshots
    if args.command == "create":
        print("Snapshot created:\n" + _format_snapshot(manager.create(args.name)))
    elif args.command == "list":
        records = manager.list()
        if not records:
            print("No snapshots saved yet.")
            return
        for snapshot in records:
            print(_format_snapshot(snapshot))
    elif args.command == "restore":
        if not args.yes:
            raise ValidationError("Restoring replaces all current data; pass --yes to confirm")
        manager.restore(args.id)
        print(f"Snapshot {args.id} restored.")
    elif args.command == "delete":
        manager.delete(args.id)
        print(f"Snapshot {args.id} deleted.")


def handle_backup(args: argparse.Namespace, session: Session) -> None:
    if args.command == "export":
        target = args.output or Path(session.codec.filename())
        try:
            target.write_bytes(session.codec.export(session.store.current()))
        except OSError as exc:
            raise PersistenceError(f"Unable to write {target}") from exc
        print(f"Backup written to {target}")
    elif args.command == "import":
        try:
            payload = args.file.read_bytes()
        except OSError as exc:
            raise PersistenceError(f"Unable to read {args.file}") from exc
        state = restore_backup(session.store, payload, confirm=args.yes)
        print(
            f"Backup loaded: {len(state.transactions)} transactions, "
            f"{len(state.clients)} clients, {len(state.opportunities)} opportunities."
        )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Bookkeeping CLI")
    parser.add_argument(
        "--data-dir",
        default=os.getenv("BOOKKEEPING_DATA_DIR", "data"),
        type=Path,
        help="Directory to store JSON data (default: ./data)",
    )

    subparsers = parser.add_subparsers(dest="entity", required=True)

    tx_parser = subparsers.add_parser("transaction", help="Manage revenues and expenses")
    tx_sub = tx_parser.add_subparsers(dest="command", required=True)

    tx_add = tx_sub.add_parser("add", help="Add a transaction")
    tx_add.add_argument("type", choices=TRANSACTION_TYPES)
    tx_add.add_argument("amount", type=_parse_amount)
    tx_add.add_argument("date", type=_parse_date)
    tx_add.add_argument("description")

    tx_list = tx_sub.add_parser("list", help="List transactions")
    tx_list.add_argument("--period", help="Only this YYYY-MM month")

    tx_edit = tx_sub.add_parser("edit", help="Edit a transaction")
    tx_edit.add_argument("id")
    tx_edit.add_argument("--type", choices=TRANSACTION_TYPES)
    tx_edit.add_argument("--amount", type=_parse_amount)
    tx_edit.add_argument("--date", type=_parse_date)
    tx_edit.add_argument("--description")

    tx_delete = tx_sub.add_parser("delete", help="Delete a transaction")
    tx_delete.add_argument("id")

    client_parser = subparsers.add_parser("client", help="Manage clients")
    client_sub = client_parser.add_subparsers(dest="command", required=True)

    client_add = client_sub.add_parser("add", help="Add a client")
    client_add.add_argument("name")
    client_add.add_argument("--company")
    client_add.add_argument("--email")
    client_add.add_argument("--phone")

    client_sub.add_parser("list", help="List clients")

    client_edit = client_sub.add_parser("edit", help="Edit a client")
    client_edit.add_argument("id")
    client_edit.add_argument("--name")
    client_edit.add_argument("--company")
    client_edit.add_argument("--email")
    client_edit.add_argument("--phone")

    client_delete = client_sub.add_parser("delete", help="Delete a client")
    client_delete.add_argument("id")

    op_parser = subparsers.add_parser("opportunity", help="Manage the sales pipeline")
    op_sub = op_parser.add_subparsers(dest="command", required=True)

    op_add = op_sub.add_parser("add", help="Add an opportunity in the Lead stage")
    op_add.add_argument("title")
    op_add.add_argument("value")
    op_add.add_argument("client_id")

    op_sub.add_parser("list", help="Show the pipeline board")

    op_edit = op_sub.add_parser("edit", help="Edit an opportunity")
    op_edit.add_argument("id")
    op_edit.add_argument("--title")
    op_edit.add_argument("--value")
    op_edit.add_argument("--client-id")

    op_move = op_sub.add_parser("move", help="Move an opportunity to another stage")
    op_move.add_argument("id")
    op_move.add_argument("stage", choices=STAGES)

    op_delete = op_sub.add_parser("delete", help="Delete an opportunity")
    op_delete.add_argument("id")

    totals_parser = subparsers.add_parser("totals", help="Show balance, revenue and expenses")
    totals_parser.add_argument("--period", help="Only this YYYY-MM month")

    snap_parser = subparsers.add_parser("snapshot", help="Save and restore versions of the data")
    snap_sub = snap_parser.add_subparsers(dest="command", required=True)

    snap_create = snap_sub.add_parser("create", help="Save the current data under a name")
    snap_create.add_argument("name")

    snap_sub.add_parser("list", help="List snapshots, newest first")

    snap_restore = snap_sub.add_parser("restore", help="Replace the current data with a snapshot")
    snap_restore.add_argument("id")
    snap_restore.add_argument("--yes", action="store_true", help="Confirm replacing current data")

    snap_delete = snap_sub.add_parser("delete", help="Delete a snapshot permanently")
    snap_delete.add_argument("id")

    backup_parser = subparsers.add_parser("backup", help="Export or import a JSON backup")
    backup_sub = backup_parser.add_subparsers(dest="command", required=True)

    backup_export = backup_sub.add_parser("export", help="Write the current data to a file")
    backup_export.add_argument("--output", type=Path)

    backup_import = backup_sub.add_parser("import", help="Replace the current data with a backup file")
    backup_import.add_argument("file", type=Path)
    backup_import.add_argument("--yes", action="store_true", help="Confirm replacing current data")

    return parser


HANDLERS = {
    "transaction": handle_transaction,
    "client": handle_client,
    "opportunity": handle_opportunity,
    "totals": handle_totals,
    "snapshot": handle_snapshot,
    "backup": handle_backup,
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    session = Session(args.data_dir)

    try:
        with warnings.catch_warnings():
            # Reported below through session.warnings().
            warnings.simplefilter("ignore", PersistenceWarning)
            HANDLERS[args.entity](args, session)
    except ReferentialIntegrityError as exc:
        print(f"Cannot delete: {exc}", file=sys.stderr)
        return 1
    except ValidationError as exc:
        print(f"Validation error: {exc}", file=sys.stderr)
        return 1
    except RecordNotFoundError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    except PersistenceError as exc:
        print(f"Storage error: {exc}", file=sys.stderr)
        return 1
    finally:
        for message in session.warnings():
            print(f"Warning: {message}", file=sys.stderr)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
