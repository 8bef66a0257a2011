"""
PrintQuotaWeb - Flask Application Entry Point.

This is a slim app factory that:
1. Opens the relational store and migrates it (fail-fast)
2. Builds the ledger, conversion pipeline, print backend and submission service
3. Registers route blueprints
4. Sets up JSON error handlers

ARCHITECTURE:
    Request thread (one per inbound request)
    ├── DocumentPipeline (temp dir + bounded converter process)
    ├── BillingLedger    (one store transaction per money movement)
    ├── PrintBackend     (lp, bounded by PRINT_TIMEOUT_SECONDS)
    └── RefundCompensator on dispatch failure

NO SHARED STATE between requests besides the Store and the upload folder.
Services live in app.config and are stateless apart from what they are
constructed with.
"""

from __future__ import annotations

import atexit
import logging
import os
import uuid
import weakref
from pathlib import Path
from typing import Any, Mapping, Optional

from dotenv import load_dotenv
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

from logging_config import setup_logging, get_logger, set_thread_name
from core.exceptions import PrintQuotaWebError, StorageUnavailableError
from core.store import Store
from modules.converter import ConverterSettings, DocumentPipeline
from modules.estimator import PricingSettings
from services.ledger_service import BillingLedger
from services.print_dispatcher import CupsPrintBackend
from services.refund_service import RefundCompensator
from services.submission_service import SubmissionService, UploadStore
from routes import register_blueprints


# Module logger (configured after setup_logging)
logger = get_logger(__name__)


# Stores of every app created in this process, disposed once at exit
_open_stores: weakref.WeakSet[Store] = weakref.WeakSet()
_shutdown_registered = False


def _dispose_open_stores() -> None:
    """Dispose stores that are still open at interpreter exit."""
    for store in list(_open_stores):
        store.dispose()


def _register_for_shutdown(store: Store) -> None:
    global _shutdown_registered
    _open_stores.add(store)
    if not _shutdown_registered:
        atexit.register(_dispose_open_stores)
        _shutdown_registered = True


def create_app(config_object: Any = "config.Config", overrides: Optional[Mapping[str, Any]] = None) -> Flask:
    """
    Application factory - creates and configures Flask app.

    FAIL-FAST: If the database cannot be opened or migrated, the app will
    not start.

    Args:
        config_object: Import path or object passed to ``config.from_object``
        overrides: Config values applied last (tests use this for
            DATABASE_URL, UPLOAD_FOLDER, PRINT_BACKEND, IDENTITY_PROVIDER)

    Returns:
        Configured Flask application

    Raises:
        StorageUnavailableError: If the database cannot be opened
    """
    # Load .env next to app.py
    # Use override=True so .env file always takes precedence over shell environment
    env_file = Path(__file__).parent / '.env'
    if env_file.exists():
        load_dotenv(env_file, override=True)
    else:
        load_dotenv(override=True)  # Default behavior

    # Create Flask app
    app = Flask(__name__)
    app.config.from_object(config_object)
    if overrides:
        app.config.update(overrides)

    # Configure logging
    log_level = logging.DEBUG if app.config.get("DEBUG") else logging.INFO
    enable_file_logging = app.config.get("ENVIRONMENT") == "production"

    root_logger = setup_logging(
        log_level=log_level,
        enable_file_logging=enable_file_logging
    )

    # Set Flask's logger to use our configured logger
    app.logger.handlers = root_logger.handlers
    app.logger.setLevel(log_level)

    logger.info(f"Starting PrintQuotaWeb in {app.config.get('ENVIRONMENT')} mode")

    # Ensure upload folder exists
    upload_folder = Path(app.config["UPLOAD_FOLDER"])
    upload_folder.mkdir(parents=True, exist_ok=True)

    # =========================================================================
    # STORAGE (FAIL-FAST)
    # =========================================================================

    try:
        store = Store(
            app.config["DATABASE_URL"],
            busy_timeout_seconds=app.config.get("DB_BUSY_TIMEOUT_SECONDS", 5.0),
        )
        store.migrate(
            default_per_page_cents=app.config["DEFAULT_PER_PAGE_CENTS"],
            default_color_page_cents=app.config["DEFAULT_COLOR_PAGE_CENTS"],
        )
    except StorageUnavailableError as e:
        logger.error(f"FATAL: Cannot start application - {e}")
        raise

    app.config["STORE"] = store

    # =========================================================================
    # SERVICES INITIALIZATION
    # =========================================================================

    ledger = BillingLedger(
        store,
        default_pricing=PricingSettings(
            per_page_cents=app.config["DEFAULT_PER_PAGE_CENTS"],
            color_page_cents=app.config["DEFAULT_COLOR_PAGE_CENTS"],
        ),
    )
    compensator = RefundCompensator(store)
    pipeline = DocumentPipeline(ConverterSettings.from_config(app.config))
    uploads = UploadStore(upload_folder)

    # A backend supplied through config (tests, alternative spoolers) wins
    backend = app.config.get("PRINT_BACKEND") or CupsPrintBackend(
        lp_path=app.config["LP_PATH"],
        lpstat_path=app.config["LPSTAT_PATH"],
        server=app.config.get("CUPS_SERVER") or None,
        timeout_seconds=app.config["PRINT_TIMEOUT_SECONDS"],
    )

    app.config["LEDGER"] = ledger
    app.config["DOCUMENT_PIPELINE"] = pipeline
    app.config["PRINT_BACKEND"] = backend
    app.config["UPLOAD_STORE"] = uploads
    app.config["SUBMISSION_SERVICE"] = SubmissionService(ledger, pipeline, backend, compensator, uploads)
    logger.info(f"Services initialized (backend: {type(backend).__name__})")

    # =========================================================================
    # CLEANUP REGISTRATION
    # =========================================================================

    _register_for_shutdown(store)

    # =========================================================================
    # REGISTER BLUEPRINTS
    # =========================================================================

    register_blueprints(app)

    @app.before_request
    def name_request_thread():
        set_thread_name(f"req-{uuid.uuid4().hex[:8]}")

    # =========================================================================
    # ERROR HANDLERS
    # =========================================================================

    @app.errorhandler(PrintQuotaWebError)
    def handle_app_error(e: PrintQuotaWebError):
        if e.status_code >= 500:
            logger.error(f"{type(e).__name__}: {e}")
        else:
            logger.info(f"Request rejected ({e.reason}): {e.message}")
        return jsonify({"error": e.message, "reason": e.reason}), e.status_code

    @app.errorhandler(RequestEntityTooLarge)
    def handle_file_too_large(e):
        max_mb = app.config.get("MAX_CONTENT_LENGTH", 64 * 1024 * 1024) / (1024 * 1024)
        return jsonify({
            "error": f"File too large. Maximum upload size is {max_mb:.0f} MB.",
            "reason": "file_too_large",
        }), 413

    @app.errorhandler(HTTPException)
    def handle_http_error(e: HTTPException):
        return jsonify({"error": e.description, "reason": e.name.lower().replace(" ", "_")}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(e: Exception):
        logger.error(f"Unhandled error: {e}", exc_info=True)
        return jsonify({"error": "Internal server error", "reason": "internal_error"}), 500

    logger.info("Application initialized successfully")
    return app


if __name__ == "__main__":
    app = create_app()
    debug_mode = os.environ.get("FLASK_DEBUG", "1") == "1"
    app.run(debug=debug_mode, threaded=True)
