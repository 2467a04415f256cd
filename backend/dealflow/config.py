# backend/dealflow/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/dealflow.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///dealflow.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Vocabulary new deals are pinned to unless the caller asks for another one
    DEFAULT_STATUS_VOCABULARY = os.environ.get("DEFAULT_STATUS_VOCABULARY", "extended")

    # Terminal "paid" status that payment approval moves a deal into, per vocabulary
    EXTENDED_PAID_STATUS = os.environ.get("EXTENDED_PAID_STATUS", "complete")
    LEGACY_PAID_STATUS = os.environ.get("LEGACY_PAID_STATUS", "paid")

    # Pin status written to a linked pin once its deal's payment is approved
    PIN_INSTALLED_STATUS = os.environ.get("PIN_INSTALLED_STATUS", "installed")

    # Pins always go through the address guard; deals only when enabled
    ADDRESS_GUARD_ON_DEALS = _env_bool("ADDRESS_GUARD_ON_DEALS", True)

    DB_RETRY_ATTEMPTS = int(os.environ.get("DB_RETRY_ATTEMPTS", "3"))

    CORS_ALLOWED_ORIGINS = tuple(
        o.strip()
        for o in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173,http://localhost:4173,http://127.0.0.1:4173",
        ).split(",")
        if o.strip()
    )
