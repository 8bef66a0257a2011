"""
Account API routes.

Handles:
- GET /api/me                          - Balance, pricing and limits
- GET /api/print-records               - Own print history (start/end dates)
- GET /api/print-records/<id>/file     - Download the stored upload of a job
- GET /api/printers                    - Available print queues
"""

from __future__ import annotations

from pathlib import Path

from flask import Blueprint, current_app, jsonify, request, send_file

from core.exceptions import AccessDeniedError, RecordNotFoundError
from logging_config import get_logger
from routes.common import current_identity, parse_date_range


# Module logger
logger = get_logger(__name__)

account_api_bp = Blueprint("account_api", __name__, url_prefix="/api")


@account_api_bp.route("/me", methods=["GET"])
def me():
    identity = current_identity()
    ledger = current_app.config["LEDGER"]
    return jsonify(ledger.account_summary(identity.user_id).to_dict())


@account_api_bp.route("/print-records", methods=["GET"])
def print_records():
    """Jobs of the caller, newest first, optionally bounded by ``start``/``end`` (YYYY-MM-DD)."""
    identity = current_identity()
    ledger = current_app.config["LEDGER"]

    start, end = parse_date_range(request.args.get("start"), request.args.get("end"))
    jobs = ledger.list_jobs(identity.user_id, start=start, end=end)
    return jsonify([job.to_dict() for job in jobs])


@account_api_bp.route("/print-records/<int:job_id>/file", methods=["GET"])
def print_record_file(job_id: int):
    """Download the upload of a job. Owners and admins only."""
    identity = current_identity()
    ledger = current_app.config["LEDGER"]

    job = ledger.get_job(job_id)
    if job is None:
        raise RecordNotFoundError("Record not found")
    if not identity.is_admin and job.user_id != identity.user_id:
        raise AccessDeniedError("Forbidden")

    upload_folder = Path(current_app.config["UPLOAD_FOLDER"]).resolve()
    path = (upload_folder / job.stored_path).resolve()
    if upload_folder not in path.parents or not path.is_file():
        raise RecordNotFoundError("File not found")

    return send_file(path, as_attachment=True, download_name=job.filename)


@account_api_bp.route("/printers", methods=["GET"])
def printers():
    current_identity()
    backend = current_app.config["PRINT_BACKEND"]
    return jsonify(backend.list_printers())
