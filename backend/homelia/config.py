# backend/homelia/config.py
from __future__ import annotations
import os


def _csv_env(name: str, default: str) -> set[str]:
    raw = os.environ.get(name, default)
    return {item.strip() for item in raw.split(",") if item.strip()}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/homelia.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///homelia.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # JWT access/refresh tokens
    JWT_SECRET = os.environ.get("JWT_SECRET", "dev-jwt-secret-change-me")
    JWT_ALGORITHM = os.environ.get("JWT_ALG", "HS256")
    JWT_ACCESS_EXPIRES_MINUTES = int(os.environ.get("JWT_ACCESS_EXPIRES_MINUTES", "60"))
    JWT_REFRESH_EXPIRES_DAYS = int(os.environ.get("JWT_REFRESH_EXPIRES_DAYS", "30"))

    # bcrypt cost factor (tests lower it)
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))

    # Seller details used for GST (Maharashtra)
    SELLER_NAME = os.environ.get("SELLER_NAME", "Homelia Laminates")
    SELLER_GSTIN = os.environ.get("SELLER_GSTIN", "")
    SELLER_STATE_CODE = os.environ.get("SELLER_STATE_CODE", "27")

    # Laminates (HSN 4823) carry a flat 18% GST
    GST_RATE_PERCENT = 18

    # ORD-2025-000001
    DOCUMENT_NUMBER_PAD = 6

    QUOTE_VALIDITY_DAYS = int(os.environ.get("QUOTE_VALIDITY_DAYS", "15"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    CORS_ALLOWED_ORIGINS = _csv_env(
        "CORS_ALLOWED_ORIGINS",
        "http://localhost:5173,http://127.0.0.1:5173,http://localhost:4173,http://127.0.0.1:4173",
    )

    DEFAULT_ADMIN_EMAIL = os.environ.get("ADMIN_EMAIL", "admin@homelia.in")
