# stampwallet/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///stampwallet.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Ledger core
    TRANSACTION_TTL_SECONDS = _env_int("STAMPWALLET_TRANSACTION_TTL_SECONDS", 15 * 60)
    TRANSACTION_CODE_LENGTH = _env_int("STAMPWALLET_TRANSACTION_CODE_LENGTH", 10)
    TRANSACTION_CODE_ALPHABET = os.environ.get("STAMPWALLET_TRANSACTION_CODE_ALPHABET", "0123456789")
    MAX_MENU_IMAGES_PER_BUSINESS = _env_int("STAMPWALLET_MAX_MENU_IMAGES_PER_BUSINESS", 10)
    STORE_REQUEST_TIMEOUT_SECONDS = _env_int("STAMPWALLET_STORE_REQUEST_TIMEOUT_SECONDS", 10)

    # Auth
    SESSION_TTL_SECONDS = _env_int("STAMPWALLET_SESSION_TTL_SECONDS", 7 * 24 * 3600)
    EMAIL_TOKEN_TTL_SECONDS = _env_int("STAMPWALLET_EMAIL_TOKEN_TTL_SECONDS", 24 * 3600)

    # Files
    FILE_STORAGE_PATH = os.environ.get("STAMPWALLET_FILE_STORAGE_PATH", os.path.join("instance", "files"))
    FILE_UPLOAD_LIMIT_BYTES = 1_000_000

    # Email (unset SMTP_HOST -> emails are logged instead of sent)
    SMTP_HOST = os.environ.get("SMTP_HOST")
    SMTP_PORT = _env_int("SMTP_PORT", 465)
    SMTP_USERNAME = os.environ.get("SMTP_USERNAME")
    SMTP_PASSWORD = os.environ.get("SMTP_PASSWORD")
    SMTP_SENDER = os.environ.get("SMTP_SENDER", "noreply@stampwallet.local")
    VERIFICATION_EMAIL_SUBJECT = "Confirm your StampWallet account"

    BACKEND_URL = os.environ.get("STAMPWALLET_BACKEND_URL", "http://localhost:5000/")
