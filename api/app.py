"""Flask JSON bridge between a local view layer and the bookkeeping core."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional

from flask import Flask, Response, jsonify, request
from flask_cors import CORS

from bookkeeping.backup import BackupCodec, restore_backup
from bookkeeping.exceptions import (
    PersistenceError,
    RecordNotFoundError,
    ReferentialIntegrityError,
    ValidationError,
)
from bookkeeping.models import Snapshot
from bookkeeping.reports import (
    dashboard_totals,
    financial_report,
    monthly_totals,
    sales_report,
    search,
    totals,
)
from bookkeeping.services import ClientService, OpportunityService, TransactionService, wipe_data
from bookkeeping.snapshots import SnapshotManager
from bookkeeping.storage import JSONStorage, StorageAdapter
from bookkeeping.store import Store


def _snapshot_summary(snapshot: Snapshot) -> Dict[str, Any]:
    return {
        "id": snapshot.id,
        "name": snapshot.name,
        "timestamp": snapshot.timestamp,
        "created_at": snapshot.created_at.isoformat(timespec="seconds").replace("+00:00", "Z"),
    }


def create_app(data_dir: Optional[Path] = None, storage: Optional[StorageAdapter] = None) -> Flask:
    app = Flask(__name__)

    env_name = os.getenv("BOOKKEEPING_ENV", "prod").lower()
    if env_name in {"dev", "development"}:
        CORS(app, resources={r"/*": {"origins": "*"}}, supports_credentials=True)
    else:
        allowed_origins = os.getenv("BOOKKEEPING_ALLOWED_ORIGINS")
        if allowed_origins:
            origins = [origin.strip() for origin in allowed_origins.split(",") if origin.strip()]
            CORS(app, resources={r"/*": {"origins": origins}}, supports_credentials=True)
        else:
            CORS(app)

    if storage is None:
        storage = JSONStorage(Path(data_dir or os.getenv("BOOKKEEPING_DATA_DIR", "data")))
    store = Store(storage)
    snapshots = SnapshotManager(store, storage)
    codec = BackupCodec()
    transaction_service = TransactionService(store)
    client_service = ClientService(store)
    opportunity_service = OpportunityService(store)

    for source in (store, snapshots):
        if source.load_warning:
            app.logger.warning(source.load_warning)

    def _success(payload: Any, status: int = 200, *, sources=()):
        failures = [str(source.last_error) for source in sources if source.last_error]
        if status == 204:
            if not failures:
                return ("", status)
            # A body is needed to carry the warning.
            status = 200
        if failures and isinstance(payload, dict):
            payload = {**payload, "warning": "; ".join(failures)}
        return jsonify(payload), status

    def _handle_error(exc: Exception, status: int, message: str):
        app.logger.error("%s: %s", message, exc)
        return jsonify({"error": message, "details": str(exc)}), status

    @app.errorhandler(ValidationError)
    def handle_validation_error(exc: ValidationError):
        return _handle_error(exc, 400, "Validation error")

    @app.errorhandler(ReferentialIntegrityError)
    def handle_integrity_error(exc: ReferentialIntegrityError):
        return _handle_error(exc, 409, "Record is still referenced")

    @app.errorhandler(RecordNotFoundError)
    def handle_not_found(exc: RecordNotFoundError):
        return _handle_error(exc, 404, "Record not found")

    @app.errorhandler(PersistenceError)
    def handle_persistence_error(exc: PersistenceError):
        return _handle_error(exc, 500, "Persistence error")

    def _json_body() -> Dict[str, Any]:
        if not request.is_json:
            raise ValidationError("Request content must be application/json")
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            raise ValidationError("Malformed JSON body")
        return data

    def _confirmed() -> bool:
        return request.args.get("confirm", "").strip().lower() in {"1", "true", "yes"}

    @app.get("/state")
    def get_state():
        state = store.current()
        return _success({**state.to_dict(), "load_warning": store.load_warning})

    @app.get("/transactions")
    def list_transactions():
        period = request.args.get("period") or None
        items = transaction_service.list(period)
        return _success({"items": [tx.to_dict() for tx in items]})

    @app.post("/transactions")
    def create_transaction():
        transaction = transaction_service.add(_json_body())
        return _success(transaction.to_dict(), 201, sources=(store,))

    @app.put("/transactions/<transaction_id>")
    def update_transaction(transaction_id: str):
        transaction = transaction_service.update(transaction_id, _json_body())
        return _success(transaction.to_dict(), sources=(store,))

    @app.delete("/transactions/<transaction_id>")
    def delete_transaction(transaction_id: str):
        transaction_service.delete(transaction_id)
        return _success({}, 204, sources=(store,))

    @app.get("/clients")
    def list_clients():
        return _success({"items": [client.to_dict() for client in client_service.list()]})

    @app.post("/clients")
    def create_client():
        client = client_service.add(_json_body())
        return _success(client.to_dict(), 201, sources=(store,))

    @app.put("/clients/<client_id>")
    def update_client(client_id: str):
        client = client_service.update(client_id, _json_body())
        return _success(client.to_dict(), sources=(store,))

    @app.delete("/clients/<client_id>")
    def delete_client(client_id: str):
        client_service.delete(client_id)
        return _success({}, 204, sources=(store,))

    @app.get("/opportunities")
    def list_opportunities():
        items = opportunity_service.list(request.args.get("stage") or None)
        return _success({"items": [op.to_dict() for op in items]})

    @app.get("/pipeline")
    def pipeline():
        board = opportunity_service.board()
        return _success({stage: [op.to_dict() for op in ops] for stage, ops in board.items()})

    @app.post("/opportunities")
    def create_opportunity():
        opportunity = opportunity_service.add(_json_body())
        return _success(opportunity.to_dict(), 201, sources=(store,))

    @app.put("/opportunities/<opportunity_id>")
    def update_opportunity(opportunity_id: str):
        opportunity = opportunity_service.update(opportunity_id, _json_body())
        return _success(opportunity.to_dict(), sources=(store,))

    @app.post("/opportunities/<opportunity_id>/stage")
    def move_opportunity(opportunity_id: str):
        opportunity = opportunity_service.move(opportunity_id, _json_body().get("stage"))
        return _success(opportunity.to_dict(), sources=(store,))

    @app.delete("/opportunities/<opportunity_id>")
    def delete_opportunity(opportunity_id: str):
        opportunity_service.delete(opportunity_id)
        return _success({}, 204, sources=(store,))

    @app.get("/totals")
    def get_totals():
        period = request.args.get("period") or None
        if period is None:
            return _success({"all_time": totals(store.current()).to_dict(), "period": None})
        all_time, scoped = dashboard_totals(store.current(), period)
        return _success({"all_time": all_time.to_dict(), "period": scoped.to_dict()})

    @app.get("/totals/monthly")
    def get_monthly_totals():
        breakdown = monthly_totals(store.current())
        return _success({period: item.to_dict() for period, item in breakdown.items()})

    @app.get("/reports/financial")
    def get_financial_report():
        report = financial_report(store.current(), request.args.get("start"), request.args.get("end"))
        return _success(report.to_dict())

    @app.get("/reports/sales")
    def get_sales_report():
        return _success(sales_report(store.current()).to_dict())

    @app.get("/search")
    def search_records():
        return _success(search(store.current(), request.args.get("q", "")).to_dict())

    @app.get("/snapshots")
    def list_snapshots():
        return _success({"items": [_snapshot_summary(snap) for snap in snapshots.list()]})

    @app.post("/snapshots")
    def create_snapshot():
        snapshot = snapshots.create(_json_body().get("name"))
        return _success(_snapshot_summary(snapshot), 201, sources=(snapshots,))

    @app.post("/snapshots/<snapshot_id>/restore")
    def restore_snapshot(snapshot_id: str):
        state = snapshots.restore(snapshot_id)
        return _success(state.to_dict(), sources=(store,))

    @app.delete("/snapshots/<snapshot_id>")
    def delete_snapshot(snapshot_id: str):
        snapshots.delete(snapshot_id)
        return _success({}, 204, sources=(snapshots,))

    @app.get("/backup")
    def download_backup():
        return Response(
            codec.export(store.current()),
            mimetype=codec.media_type,
            headers={"Content-Disposition": f"attachment; filename={codec.filename()}"},
        )

    @app.post("/backup")
    def upload_backup():
        upload = request.files.get("file")
        payload = upload.read() if upload is not None else request.get_data()
        candidate = codec.import_(payload)
        counts = {
            "transactions": len(candidate.transactions),
            "clients": len(candidate.clients),
            "opportunities": len(candidate.opportunities),
        }
        if not _confirmed():
            # Valid document; nothing is replaced until the caller confirms.
            return _success({"applied": False, "counts": counts})
        restore_backup(store, payload, confirm=True)
        return _success({"applied": True, "counts": counts}, sources=(store,))

    @app.post("/wipe")
    def wipe():
        wipe_data(store, confirm=_confirmed())
        return _success({"applied": True}, sources=(store,))

    return app
