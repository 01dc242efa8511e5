# Overview: Flask routes for NFC tag taps; always redirects, plus the client identify call.

# backend/app/routes/tap.py
from flask import Blueprint, current_app, redirect, request

from ..extensions import db
from ..responses import internal_error, json_error, ok
from ..services import fingerprint_service, tap_service
from ..services.preference_service import HOME_PATH
from ..services.tap_service import TapRejected
from ..validation import optional_anon_visitor_id, optional_string, parse_anon_visitor_id


tap_bp = Blueprint("tap", __name__)


def _anon_id_from_request() -> str | None:
    # Header wins over the query parameter unless it is malformed
    return (
        optional_anon_visitor_id(request.headers.get("X-Anon-Visitor-Id"))
        or optional_anon_visitor_id(request.args.get("vid"))
    )


@tap_bp.get("/t/<batch_slug>/<tag_uuid>")
def tap_route(batch_slug: str, tag_uuid: str):
    """
    Public tap entry point.

    Never returns an error page: unknown or disabled tags redirect to an
    error landing state, and any failure after the tag is validated still
    redirects home with the attribution params.
    """
    try:
        tag = tap_service.resolve_tag(batch_slug, tag_uuid)
    except TapRejected as e:
        current_app.logger.info("Tap rejected: %s (batch=%s)", e.error_code, batch_slug)
        return redirect(tap_service.build_redirect(HOME_PATH, error=e.error_code), code=302)
    except Exception:
        current_app.logger.exception("Failed to resolve tapped tag")
        db.session.rollback()
        return redirect(tap_service.build_redirect(HOME_PATH, batch_slug, tag_uuid), code=302)

    try:
        outcome = tap_service.record_tap(
            tag,
            fingerprint_service.client_fingerprint(request.headers),
            _anon_id_from_request(),
            request,
            session_hint=request.headers.get("X-Tap-Session-Id") or request.args.get("tsid"),
        )
        location = tap_service.build_redirect(outcome.landing_path, batch_slug, tag_uuid)
    except Exception:
        current_app.logger.exception("Failed to record tap")
        db.session.rollback()
        location = tap_service.build_redirect(HOME_PATH, batch_slug, tag_uuid)

    return redirect(location, code=302)


@tap_bp.post("/api/tap/identify")
def identify_route():
    """
    Tie a just-recorded tap to the client's anonymous id.

    Body: {"anonVisitorId": uuid, "srcBatch"?: slug, "srcTag"?: uuid}
    """
    try:
        data = request.get_json(silent=True) or {}
        anon_id = parse_anon_visitor_id(data.get("anonVisitorId"))
        fingerprint = fingerprint_service.client_fingerprint(request.headers)

        result = tap_service.identify_tap(
            anon_id,
            optional_string(data, "srcBatch", max_length=64),
            optional_string(data, "srcTag", max_length=36),
            fingerprint.ip_hash,
            fingerprint.user_agent,
            window_minutes=current_app.config.get("IDENTIFY_RELINK_WINDOW_MINUTES", 5),
        )
        return ok(result)

    except Exception as e:
        db.session.rollback()
        mapped = json_error(e)
        if mapped:
            return mapped
        current_app.logger.exception("Failed to identify tap")
        return internal_error()
