# backend/lunebilling/config.py
from __future__ import annotations
import os


def _csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/lune.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///lune.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Guards against a hung connection; sqlite honors it as its busy timeout
    DB_QUERY_TIMEOUT_SECONDS = float(os.environ.get("DB_QUERY_TIMEOUT_SECONDS", "15"))
    SQLALCHEMY_ENGINE_OPTIONS = {
        "connect_args": {"timeout": DB_QUERY_TIMEOUT_SECONDS}
    } if SQLALCHEMY_DATABASE_URI.startswith("sqlite") else {"pool_pre_ping": True}

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Payment processor. Without a real "sk_..." key the mock gateway is used.
    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY", "")
    STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET", "")
    DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "usd")

    # Email. Without an API key messages are only logged.
    SENDGRID_API_KEY = os.environ.get("SENDGRID_API_KEY", "")
    MAIL_SENDER = os.environ.get("MAIL_SENDER", "noreply@enamelpure.local")
    MAIL_SENDER_NAME = os.environ.get("MAIL_SENDER_NAME", "EnamelPure Billing")

    FRONTEND_URL = os.environ.get("FRONTEND_URL", "http://localhost:3000")
    CORS_ORIGINS = _csv(os.environ.get("CORS_ORIGINS")) or [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Usernames granted the admin role when their account is created.
    # The very first account is always made admin.
    ADMIN_SEED_USERNAMES = _csv(os.environ.get("ADMIN_SEED_USERNAMES"))

    OVERDUE_AFTER_DAYS = int(os.environ.get("OVERDUE_AFTER_DAYS", "30"))
    RESET_TOKEN_EXPIRY_MINUTES = int(os.environ.get("RESET_TOKEN_EXPIRY_MINUTES", "30"))

    # Login lockout: N failures inside the window lock the identifier
    LOGIN_MAX_FAILED_ATTEMPTS = int(os.environ.get("LOGIN_MAX_FAILED_ATTEMPTS", "10"))
    LOGIN_LOCKOUT_WINDOW_MINUTES = int(os.environ.get("LOGIN_LOCKOUT_WINDOW_MINUTES", "15"))
    LOGIN_LOCKOUT_MINUTES = int(os.environ.get("LOGIN_LOCKOUT_MINUTES", "15"))


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = "test"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    STRIPE_SECRET_KEY = ""
    STRIPE_WEBHOOK_SECRET = ""
    SENDGRID_API_KEY = ""
    ADMIN_SEED_USERNAMES = []
    LOGIN_MAX_FAILED_ATTEMPTS = 3
    LOG_LEVEL = "WARNING"
