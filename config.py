"""
Configuration for PrintQuotaWeb.

All values can be overridden through the environment or a .env file.
The application fails fast at startup if the database cannot be opened.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env file early so environment variables are available for Config class
# This must happen before the Config class is defined
load_dotenv(override=True)

# Base directory (where this file lives)
BASE_DIR = Path(__file__).resolve().parent


class Config:
    """Default configuration for the Flask application."""

    # Flask settings
    SECRET_KEY = os.environ.get("FLASK_SECRET_KEY", "dev-secret-key")
    UPLOAD_FOLDER = os.environ.get("UPLOAD_FOLDER", str(BASE_DIR / "uploads"))
    MAX_CONTENT_LENGTH = 64 * 1024 * 1024  # 64 MB uploads
    SESSION_COOKIE_NAME = "print_quota_session"
    ENVIRONMENT = os.environ.get("FLASK_ENV", "development")

    # Debug mode
    DEBUG = os.environ.get("FLASK_DEBUG", "1") == "1"

    # Storage
    DATABASE_URL = os.environ.get(
        "DATABASE_URL", f"sqlite:///{BASE_DIR / 'data' / 'print_quota.db'}"
    )
    DB_BUSY_TIMEOUT_SECONDS = float(os.environ.get("DB_BUSY_TIMEOUT_SECONDS", "5"))

    # ==========================================================================
    # Pricing defaults
    # ==========================================================================
    # Seeded into the settings table on first start only. After that the
    # administration layer owns the values; these are ignored.
    DEFAULT_PER_PAGE_CENTS = int(os.environ.get("DEFAULT_PER_PAGE_CENTS", "10"))
    DEFAULT_COLOR_PAGE_CENTS = int(os.environ.get("DEFAULT_COLOR_PAGE_CENTS", "30"))

    # ==========================================================================
    # Document conversion
    # ==========================================================================
    # LIBREOFFICE_PATH: office converter executable (soffice works too)
    # CONVERT_TIMEOUT_SECONDS: hard limit per conversion; the process is killed
    # TEXT_LINES_PER_PAGE / TEXT_CHARS_PER_LINE: page estimate for plain text
    # TEXT_FONT_PATH: optional TTF used to render non-Latin plain text
    LIBREOFFICE_PATH = os.environ.get("LIBREOFFICE_PATH", "libreoffice")
    CONVERT_TIMEOUT_SECONDS = float(os.environ.get("CONVERT_TIMEOUT_SECONDS", "60"))
    TEXT_LINES_PER_PAGE = int(os.environ.get("TEXT_LINES_PER_PAGE", "60"))
    TEXT_CHARS_PER_LINE = int(os.environ.get("TEXT_CHARS_PER_LINE", "80"))
    TEXT_FONT_PATH = os.environ.get("TEXT_FONT_PATH", "")

    # ==========================================================================
    # Print backend (CUPS command line tools)
    # ==========================================================================
    LP_PATH = os.environ.get("LP_PATH", "lp")
    LPSTAT_PATH = os.environ.get("LPSTAT_PATH", "lpstat")
    CUPS_SERVER = os.environ.get("CUPS_SERVER", "")
    PRINT_TIMEOUT_SECONDS = float(os.environ.get("PRINT_TIMEOUT_SECONDS", "30"))


class ProductionConfig(Config):
    """Production configuration."""
    DEBUG = False
    TESTING = False
    SESSION_COOKIE_SECURE = True
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'
    PERMANENT_SESSION_LIFETIME = 86400


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True
    TESTING = False


class TestingConfig(Config):
    """Testing configuration."""
    DEBUG = False
    TESTING = True
    SECRET_KEY = "testing-secret-key"
    CONVERT_TIMEOUT_SECONDS = 5.0
    PRINT_TIMEOUT_SECONDS = 5.0
