# backend/salonpos/routes/system.py
"""
Liveness and version endpoints for the host's load balancer.
"""

import sys
import time

from flask import Blueprint, current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Batch, Sale
from salonpos.time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)

API_VERSION = "0.1.0"


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


def check_database_health() -> dict:
    """Round-trip the database with two aggregate reads."""
    started = time.perf_counter()
    try:
        sales = db.session.query(func.count(Sale.id)).scalar()
        open_batches = (
            db.session.query(func.count(Batch.id))
            .filter(Batch.remaining_quantity > 0)
            .scalar()
        )
    except Exception:
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {"status": "unhealthy", "latency_ms": _elapsed_ms(started), "error": "Database error"}

    return {
        "status": "healthy",
        "latency_ms": _elapsed_ms(started),
        "details": {"sales": sales, "open_batches": open_batches},
    }


@system_bp.get("/health")
def health():
    """200 when the database answers, 503 otherwise."""
    started = time.perf_counter()
    database = check_database_health()
    healthy = database["status"] == "healthy"

    body = {
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": _elapsed_ms(started),
        "checks": {"database": database},
    }
    return body, 200 if healthy else 503


@system_bp.get("/version")
def version():
    return {
        "api_version": API_VERSION,
        "environment": "development" if current_app.debug else "production",
        "python_version": sys.version.split()[0],
        "server_time": to_utc_z(utcnow()),
    }
