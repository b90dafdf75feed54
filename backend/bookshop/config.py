from __future__ import annotations
import os


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/bookshop.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///bookshop.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Static bypass code that lets a cashier exceed the percent ceiling.
    DISCOUNT_OVERRIDE_CODE = os.environ.get("DISCOUNT_OVERRIDE_CODE", "ADMIN123")
    CASHIER_MAX_DISCOUNT_BPS = int(os.environ.get("CASHIER_MAX_DISCOUNT_BPS", "1000"))

    RECEIPT_NUMBER_PREFIX = os.environ.get("RECEIPT_NUMBER_PREFIX", "RCPT")
    RECEIPT_NUMBER_START = int(os.environ.get("RECEIPT_NUMBER_START", "1000"))

    # False: completing a purchase fails when a line exceeds current stock.
    # True: the sale goes through and stock is floor-clamped at zero.
    ALLOW_OVERSELL = _env_flag("ALLOW_OVERSELL", False)

    UPCOMING_PAYMENT_DAYS = int(os.environ.get("UPCOMING_PAYMENT_DAYS", "7"))
    CURRENCY_SYMBOL = os.environ.get("CURRENCY_SYMBOL", "GH₵")

    CORS_ALLOWED_ORIGINS = {
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:4173",
        "http://127.0.0.1:4173",
    }
