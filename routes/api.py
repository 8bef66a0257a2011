"""
Service routes.

Handles:
- /health - Health check endpoint
"""

from flask import Blueprint, current_app, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

api_bp = Blueprint("api", __name__)


@api_bp.route("/health", methods=["GET"])
def health():
    """
    Health check endpoint.

    Returns 200 when the database answers, 503 otherwise.
    """
    store = current_app.config.get("STORE")

    try:
        with store.transaction(read_only=True) as db:
            db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Health check failed: {e}")
        return jsonify({"status": "unhealthy", "database": "unavailable"}), 503

    return jsonify({"status": "healthy", "database": "ok"})
