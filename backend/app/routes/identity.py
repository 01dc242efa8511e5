# Overview: Flask API routes for anonymous identity; ping, claim and attach-recent.

# backend/app/routes/identity.py
from flask import Blueprint, current_app, g, request

from ..decorators import optional_auth, require_auth
from ..extensions import db
from ..responses import internal_error, json_error, ok
from ..services import claim_service, fingerprint_service, rate_limit_service, visitor_service
from ..validation import RateLimitedError, optional_string, parse_anon_visitor_id, require_string


identity_bp = Blueprint("identity", __name__, url_prefix="/api/identity")


@identity_bp.post("/ping")
def ping_route():
    """
    Presence refresh for an anonymous id. Never counts as a tap.

    Body: {"anonVisitorId": uuid}
    """
    try:
        data = request.get_json(silent=True) or {}
        anon_id = parse_anon_visitor_id(data.get("anonVisitorId"))
        fingerprint = fingerprint_service.client_fingerprint(request.headers)

        visitor = visitor_service.ping_visitor(anon_id, fingerprint.ip_hash, fingerprint.user_agent)
        return ok({
            "visitorId": visitor.id,
            "anonVisitorId": visitor.anon_visitor_id,
            "userId": visitor.user_id,
            "tapCount": visitor.tap_count,
        })

    except Exception as e:
        db.session.rollback()
        mapped = json_error(e)
        if mapped:
            return mapped
        current_app.logger.exception("Failed to ping visitor")
        return internal_error()


@identity_bp.post("/claim")
@require_auth
def claim_route():
    """
    Claim this device's anonymous history for the signed-in user.

    Body: {"anonVisitorId": uuid, "method"?: "login"|"signup"|"manual"|"session"}

    409 ALREADY_CLAIMED when the history belongs to another account.
    """
    try:
        data = request.get_json(silent=True) or {}
        anon_id = parse_anon_visitor_id(data.get("anonVisitorId"))
        method = optional_string(data, "method", max_length=16) or "manual"
        fingerprint = fingerprint_service.client_fingerprint(request.headers)

        result = claim_service.claim(
            anon_id,
            g.current_user.id,
            method,
            ip_hash=fingerprint.ip_hash,
            user_agent=fingerprint.user_agent,
        )
        return ok(result.to_dict())

    except Exception as e:
        db.session.rollback()
        mapped = json_error(e)
        if mapped:
            return mapped
        current_app.logger.exception("Failed to claim visitor")
        return internal_error()


@identity_bp.post("/attach-recent")
@optional_auth
def attach_recent_route():
    """
    Attach the last few unattributed taps carrying a tap session hint.

    Body: {"tapSessionId": str, "anonVisitorId"?: uuid}

    Throttled per client IP hash.
    """
    try:
        fingerprint = fingerprint_service.client_fingerprint(request.headers)
        status = rate_limit_service.hit(
            f"attach:{fingerprint.ip_hash or 'unknown'}",
            current_app.config.get("ATTACH_RATE_LIMIT", 20),
            current_app.config.get("ATTACH_RATE_WINDOW_SECONDS", 600),
        )
        if not status.allowed:
            raise RateLimitedError("Too many attach attempts", status.retry_after_seconds)

        data = request.get_json(silent=True) or {}
        tap_session_id = require_string(data, "tapSessionId", max_length=128)
        anon_id = parse_anon_visitor_id(data.get("anonVisitorId"), required=False)
        session_user = g.current_user

        result = claim_service.attach_recent(
            tap_session_id,
            anon_id,
            session_user.id if session_user else None,
            window_minutes=current_app.config.get("ATTACH_RECENT_WINDOW_MINUTES", 10),
            max_events=current_app.config.get("ATTACH_RECENT_MAX_EVENTS", 10),
        )
        return ok(result.to_dict())

    except Exception as e:
        db.session.rollback()
        mapped = json_error(e)
        if mapped:
            return mapped
        current_app.logger.exception("Failed to attach recent taps")
        return internal_error()
