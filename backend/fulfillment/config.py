# backend/fulfillment/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/fulfillment.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///fulfillment.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Inventory
    LOW_STOCK_THRESHOLD = int(os.environ.get("LOW_STOCK_THRESHOLD", "5"))
    IMPORT_ERROR_LIMIT = 50

    # Abandoned reservations are released by the timeout sweep after this window
    RESERVATION_TIMEOUT_MINUTES = int(os.environ.get("RESERVATION_TIMEOUT_MINUTES", "15"))

    # Wallet
    DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "SAR")

    # Release-on-failure retries before the failure is logged for the sweep
    COMPENSATION_RETRY_ATTEMPTS = 5
