# backend/wholesale/routes/system.py
"""
System health endpoint.

Reports database reachability and whether the SMS gateway is configured.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Order, Shop, User
from ..services import notification_service
from wholesale.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        counts = {
            "users": db.session.query(User).count(),
            "shops": db.session.query(Shop).count(),
            "orders": db.session.query(Order).count(),
        }
        elapsed_ms = (time.time() - start_time) * 1000
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2), "details": counts}
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {"status": "unhealthy", "latency_ms": round(elapsed_ms, 2), "error": "Database error"}


def check_notification_health() -> dict:
    """Degraded (not unhealthy) when SMS is off: the ledger works without it."""
    if not current_app.config.get("NOTIFICATIONS_ENABLED", True):
        return {"status": "degraded", "warning": "Notifications disabled"}

    gateway = notification_service.get_gateway()
    if isinstance(gateway, notification_service.TextLkGateway) and not gateway.api_token:
        return {"status": "degraded", "warning": "SMS API token not configured"}
    return {"status": "healthy"}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    notification_health = check_notification_health()

    checks = [database_health, notification_health]
    if any(c["status"] == "unhealthy" for c in checks):
        overall_status, http_status = "unhealthy", 503
    elif any(c["status"] == "degraded" for c in checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "notifications": notification_health,
        },
    }
    return response, http_status
