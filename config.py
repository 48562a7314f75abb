"""
Application configuration.
This module defines the configuration settings for the Flask application, including database connection, secret key,
Telegram delivery and logging. It uses environment variables for sensitive information and defaults for development.
In production, make sure to set the appropriate environment variables and secure the secret key.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent


def _env_flag(name: str, default: str = "0") -> bool:
    return str(os.environ.get(name, default)).strip().lower() in {"1", "true", "yes", "on"}


class Config:
    """Base configuration shared by all environments."""

    # IMPORTANT: change this in production
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-change-me-please")

    # Database: SQLite for development (simple file in project folder)
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        f"sqlite:///{BASE_DIR / 'smartcrm.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # CSRF protection (JSON clients send X-CSRFToken)
    WTF_CSRF_ENABLED = True

    APP_NAME = "Smart Home CRM"

    # Telegram fan-out (external collaborator)
    TELEGRAM_ENABLED = _env_flag("TELEGRAM_ENABLED")
    TELEGRAM_BOT_TOKEN = os.environ.get("TELEGRAM_BOT_TOKEN", "")
    TELEGRAM_TIMEOUT = int(os.environ.get("TELEGRAM_TIMEOUT", "10"))

    # Logging
    LOG_TO_FILE = _env_flag("LOG_TO_FILE", "1")
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")


class TestConfig(Config):
    """In-memory database, no CSRF, no outbound Telegram calls."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    WTF_CSRF_ENABLED = False
    TELEGRAM_ENABLED = False
    LOG_TO_FILE = False
    SECRET_KEY = "test"
