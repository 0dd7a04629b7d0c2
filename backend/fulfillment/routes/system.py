# backend/fulfillment/routes/system.py
"""
System health endpoint.

Reports database reachability and inventory/order backlog that the
maintenance sweeps are expected to drain.
"""

import time
from flask import Blueprint, current_app, jsonify

from ..extensions import db
from ..models import CardOrder, CardUnit
from ..models.cards import UNIT_RESERVED
from ..models.orders import ORDER_PAID

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and the reservation/payment backlog.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        reserved_units = db.session.query(CardUnit).filter_by(status=UNIT_RESERVED).count()
        paid_undelivered = db.session.query(CardOrder).filter_by(status=ORDER_PAID).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "reserved_units": reserved_units,
                "paid_undelivered_orders": paid_undelivered,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


@system_bp.get("/api/health")
def health():
    database = check_database_health()
    status_code = 200 if database["status"] == "healthy" else 503
    return jsonify({"status": database["status"], "checks": {"database": database}}), status_code
