# backend/salonpos/config.py
from __future__ import annotations
import os


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/salonpos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///salonpos.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # 1 point per 100 spent; 1 point redeems 1 currency unit
    LOYALTY_ACCRUAL_RATE = float(os.environ.get("LOYALTY_ACCRUAL_RATE", "0.01"))

    DEFAULT_SERVICE_CHARGE_RATE = float(os.environ.get("DEFAULT_SERVICE_CHARGE_RATE", "0"))

    FINALIZE_RETRY_ATTEMPTS = int(os.environ.get("FINALIZE_RETRY_ATTEMPTS", "3"))
    FINALIZE_RETRY_BACKOFF = float(os.environ.get("FINALIZE_RETRY_BACKOFF", "0.1"))

    EXPIRING_BATCH_WINDOW_DAYS = int(os.environ.get("EXPIRING_BATCH_WINDOW_DAYS", "30"))
