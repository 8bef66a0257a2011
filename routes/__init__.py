"""
Flask route blueprints for PrintQuotaWeb.

This module contains all route handlers organized by functionality:
- print_api: estimate, print and convert endpoints
- account_api: account summary, print history, printer list
- api: health check

Each blueprint is registered with the Flask app in create_app().
"""

from .print_api import print_api_bp
from .account_api import account_api_bp
from .api import api_bp

__all__ = [
    "print_api_bp",
    "account_api_bp",
    "api_bp",
]


def register_blueprints(app):
    """
    Register all blueprints with the Flask app.

    Args:
        app: Flask application instance
    """
    app.register_blueprint(print_api_bp)
    app.register_blueprint(account_api_bp)
    app.register_blueprint(api_bp)
