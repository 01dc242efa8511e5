# backend/app/routes/system.py
"""
System health and version endpoints.

/health runs each check in isolation so one failing table never hides the
state of the others. Used by load balancers and deploy scripts.
"""

import sys
import time
from typing import Callable

from flask import Blueprint, current_app

from ..extensions import db
from ..models import NfcTag, RateLimitBucket, SessionToken, TapEvent, Visitor
from app.time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)

API_VERSION = "1.0.0"


def _timed_check(name: str, probe: Callable[[], dict]) -> dict:
    started = time.perf_counter()
    try:
        details = probe()
        status = {"status": "healthy", "details": details}
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Health check failed: %s", name)
        status = {"status": "unhealthy", "error": f"{name} unavailable"}
    status["latency_ms"] = round((time.perf_counter() - started) * 1000, 2)
    return status


def _tap_store_details() -> dict:
    return {
        "tags": db.session.query(NfcTag).count(),
        "tap_events": db.session.query(TapEvent).count(),
        "visitors": db.session.query(Visitor).count(),
    }


def _session_store_details() -> dict:
    now = utcnow()
    live = db.session.query(SessionToken).filter(SessionToken.is_revoked == False)  # noqa: E712
    return {
        "active_sessions": live.filter(SessionToken.expires_at >= now).count(),
        "expired_pending_cleanup": live.filter(SessionToken.expires_at < now).count(),
    }


def _rate_limit_details() -> dict:
    return {
        "expired_buckets": db.session.query(RateLimitBucket)
        .filter(RateLimitBucket.reset_at <= utcnow())
        .count(),
    }


@system_bp.get("/health")
def health():
    """
    200 when every check passes, 503 otherwise.
    """
    started = time.perf_counter()
    checks = {
        "database": _timed_check("database", _tap_store_details),
        "session_service": _timed_check("session store", _session_store_details),
        "rate_limits": _timed_check("rate limit store", _rate_limit_details),
    }
    healthy = all(check["status"] == "healthy" for check in checks.values())

    body = {
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.perf_counter() - started) * 1000, 2),
        "checks": checks,
    }
    return body, 200 if healthy else 503


@system_bp.get("/version")
def version():
    # Never expose secrets, paths or config values here
    return {
        "service": "grocery-tap",
        "api_version": API_VERSION,
        "environment": "development" if current_app.debug else "production",
        "python_version": sys.version.split()[0],
        "server_time": to_utc_z(utcnow()),
    }
