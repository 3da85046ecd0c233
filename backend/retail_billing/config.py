# backend/retail_billing/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/retail_billing.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///retail_billing.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Identity is established by the upstream auth gateway
    AUTH_USER_HEADER = os.environ.get("AUTH_USER_HEADER", "X-User-Id")
    AUTH_GATEWAY_SECRET = os.environ.get("AUTH_GATEWAY_SECRET") or None

    # 1 loyalty point per 10.00 of invoice total
    LOYALTY_CENTS_PER_POINT = _env_int("LOYALTY_CENTS_PER_POINT", 1000)
    INVOICE_NUMBER_ATTEMPTS = _env_int("INVOICE_NUMBER_ATTEMPTS", 10)

    CORS_ALLOWED_ORIGINS = [
        origin.strip()
        for origin in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:3000,http://127.0.0.1:3000",
        ).split(",")
        if origin.strip()
    ]
