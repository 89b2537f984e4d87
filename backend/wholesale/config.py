# backend/wholesale/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/wholesale.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location (Postgres in production)
        "sqlite:///wholesale.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Comma-separated browser origins allowed to call the API
    CORS_ALLOWED_ORIGINS = tuple(
        o.strip() for o in os.environ.get(
            "CORS_ALLOWED_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000"
        ).split(",") if o.strip()
    )

    # Shop-facing labels used in SMS text
    BUSINESS_NAME = os.environ.get("BUSINESS_NAME", "S.B Distribution")
    CURRENCY_LABEL = os.environ.get("CURRENCY_LABEL", "LKR")

    # SMS gateway (Text.lk v3). Without a token every send reports failure.
    NOTIFICATIONS_ENABLED = _env_bool("NOTIFICATIONS_ENABLED", True)
    SMS_API_TOKEN = os.environ.get("SMS_API_TOKEN")
    SMS_SENDER_ID = os.environ.get("SMS_SENDER_ID", "MotionRep")
    SMS_BASE_URL = os.environ.get("SMS_BASE_URL", "https://app.text.lk/api/v3")
    SMS_DEFAULT_COUNTRY_CODE = os.environ.get("SMS_DEFAULT_COUNTRY_CODE", "94")
    SMS_TIMEOUT_SECONDS = float(os.environ.get("SMS_TIMEOUT_SECONDS", "10"))


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    NOTIFICATIONS_ENABLED = True
    SMS_API_TOKEN = None
