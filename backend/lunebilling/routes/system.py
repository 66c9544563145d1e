# backend/lunebilling/routes/system.py
"""
System health and version endpoints.
"""

import sys
import time

from flask import Blueprint, current_app

from ..extensions import db
from ..models import Office, Device, Invoice, SessionToken
from lunebilling.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity with a count per core table.
    """
    start_time = time.time()
    try:
        details = {
            "dental_offices": db.session.query(Office).count(),
            "lune_machines": db.session.query(Device).count(),
            "invoices": db.session.query(Invoice).count(),
        }
        elapsed_ms = (time.time() - start_time) * 1000
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2), "details": details}
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {"status": "unhealthy", "latency_ms": round(elapsed_ms, 2), "error": "Database error"}


def check_session_service_health() -> dict:
    start_time = time.time()
    try:
        now = utcnow()
        active_sessions = db.session.query(SessionToken).filter(
            SessionToken.is_revoked.is_(False),
            SessionToken.expires_at >= now,
        ).count()
        expired_sessions = db.session.query(SessionToken).filter(
            SessionToken.is_revoked.is_(False),
            SessionToken.expires_at < now,
        ).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "active_sessions": active_sessions,
                "expired_pending_cleanup": expired_sessions,
            },
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Session service health check failed")
        return {"status": "unhealthy", "latency_ms": round(elapsed_ms, 2), "error": "Session service error"}


def check_integrations() -> dict:
    """Payment and email integrations run in mock/log mode when unconfigured."""
    gateway = current_app.extensions["payment_gateway"]
    sender = current_app.extensions["email_sender"]
    degraded = gateway.is_mock or sender.is_log_only
    return {
        "status": "degraded" if degraded else "healthy",
        "details": {
            "payment_gateway": "mock" if gateway.is_mock else "stripe",
            "email_sender": "log" if sender.is_log_only else "sendgrid",
        },
    }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded (integrations in mock mode)
    - 503: database or session storage unreachable
    """
    start_time = time.time()

    checks = {
        "database": check_database_health(),
        "session_service": check_session_service_health(),
        "integrations": check_integrations(),
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
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": checks,
    }, http_status


@system_bp.get("/version")
def version():
    env = "production" if not current_app.debug else "development"
    return {
        "api_version": "1.0.0",
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": to_utc_z(utcnow()),
    }
