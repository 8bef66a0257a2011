"""
Print API routes.

Handles:
- POST /api/estimate - Count pages and preview cost (no debit)
- POST /api/print    - Convert, charge and dispatch a document
- POST /api/convert  - Convert a document to PDF and download it
"""

from __future__ import annotations

from io import BytesIO
from pathlib import Path

from flask import Blueprint, current_app, jsonify, request, send_file

from core.exceptions import UploadError
from logging_config import get_logger
from models.order import PrintOptions, PrintOrder, parse_flag
from modules.converter import PDF_MIME
from routes.common import MAX_PAGE_RANGE_LENGTH, MAX_PRINTER_LENGTH, current_identity, sanitize_text


# Module logger
logger = get_logger(__name__)

print_api_bp = Blueprint("print_api", __name__, url_prefix="/api")


@print_api_bp.route("/estimate", methods=["POST"])
def estimate():
    """
    Dry-run a print of the uploaded file.

    Form fields: ``file``, ``color``. The upload is discarded afterwards.
    """
    identity = current_identity()
    service = current_app.config["SUBMISSION_SERVICE"]
    uploads = current_app.config["UPLOAD_STORE"]

    is_color = parse_flag(request.form.get("color"))
    upload = uploads.save(request.files.get("file"))

    result = service.estimate(identity, upload, is_color)
    return jsonify(result.to_dict())


@print_api_bp.route("/print", methods=["POST"])
def print_document():
    """
    Print the uploaded file and charge the caller.

    Form fields: ``file``, ``printer``, ``sides`` (or legacy ``duplex``),
    ``color``, ``copies`` (1-100), ``pageRange``. Options are validated
    before the upload is written.
    """
    identity = current_identity()
    service = current_app.config["SUBMISSION_SERVICE"]
    uploads = current_app.config["UPLOAD_STORE"]

    printer = sanitize_text(request.form.get("printer"), MAX_PRINTER_LENGTH)
    if not printer:
        raise UploadError("Missing printer")

    form = request.form.to_dict()
    form["pageRange"] = sanitize_text(form.get("pageRange"), MAX_PAGE_RANGE_LENGTH)
    options = PrintOptions.from_form(form)

    upload = uploads.save(request.files.get("file"))
    order = PrintOrder(printer=printer, upload=upload, options=options)

    result = service.submit(identity, order)
    return jsonify(result.to_dict())


@print_api_bp.route("/convert", methods=["POST"])
def convert():
    """
    Convert an office document, image or text file to PDF.

    Returns the PDF as a download. Nothing is billed or recorded.
    """
    current_identity()
    pipeline = current_app.config["DOCUMENT_PIPELINE"]
    uploads = current_app.config["UPLOAD_STORE"]

    upload = uploads.save(request.files.get("file"))
    try:
        with pipeline.prepare(upload.path, upload.original_filename) as doc:
            if doc.passed_through or doc.mime_type != PDF_MIME:
                raise UploadError(f"Cannot convert '{upload.original_filename}' to PDF")
            data = doc.print_path.read_bytes()
    finally:
        uploads.discard(upload)

    download_name = f"{Path(upload.original_filename).stem or 'document'}.pdf"
    logger.info(f"Converted '{upload.original_filename}' ({len(data)} bytes)")
    return send_file(BytesIO(data), mimetype=PDF_MIME, as_attachment=True, download_name=download_name)
