# backend/stockledger/routes/system.py
"""
System health and version endpoints.

Public, unauthenticated and outside the /api envelope so load balancers
can poll them directly.
"""

import sys
import time

from flask import Blueprint, current_app

from ..extensions import db
from ..models import Branch, SessionToken, StockRecord
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__)

API_VERSION = "1.0.0"


def check_database_health() -> dict:
    """Database connectivity plus basic row counts."""
    start_time = time.time()
    try:
        branch_count = db.session.query(Branch).count()
        stock_record_count = db.session.query(StockRecord).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "branches": branch_count,
                "stock_records": stock_record_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_session_service_health() -> dict:
    start_time = time.time()
    try:
        active_sessions = db.session.query(SessionToken).filter(
            SessionToken.is_revoked.is_(False),
            SessionToken.expires_at >= utcnow(),
        ).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"active_sessions": active_sessions},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Session service health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Session service error"
        }


def check_stock_cache_health() -> dict:
    cache = current_app.extensions.get("stock_view_cache")
    if cache is None:
        return {"status": "degraded", "warning": "Stock view cache not initialized"}
    return {"status": "healthy", "details": {"ttl_seconds": cache.ttl_seconds}}


@system_bp.get("/health")
def health():
    """
    Health check.

    Returns:
    - 200: healthy or degraded
    - 503: one or more components unhealthy
    """
    start_time = time.time()

    checks = {
        "database": check_database_health(),
        "session_service": check_session_service_health(),
        "stock_cache": check_stock_cache_health(),
    }

    statuses = [check["status"] for check in checks.values()]
    if "unhealthy" in statuses:
        overall_status, http_status = "unhealthy", 503
    elif "degraded" in statuses:
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": checks,
    }, http_status


@system_bp.get("/version")
def version():
    """Non-sensitive deployment info; no secrets, credentials or paths."""
    env = "production" if not current_app.debug else "development"

    return {
        "api_version": API_VERSION,
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": utcnow().isoformat() + "Z",
    }
