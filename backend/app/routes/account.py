# Overview: Flask API routes for account preferences; parses input and returns JSON responses.

# backend/app/routes/account.py
from flask import Blueprint, current_app, g, request

from ..decorators import require_auth
from ..extensions import db
from ..responses import internal_error, json_error, ok
from ..services import preference_service
from ..validation import ValidationError


account_bp = Blueprint("account", __name__, url_prefix="/api/account")


def _preference_payload(pref) -> dict:
    return {
        "nfcLandingMode": pref.nfc_landing_mode,
        "nfcLandingPath": pref.nfc_landing_path,
    }


@account_bp.get("/preferences")
@require_auth
def get_preferences_route():
    try:
        pref = preference_service.get_or_create_preference(g.current_user.id)
        return ok(_preference_payload(pref))
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to load preferences")
        return internal_error()


@account_bp.post("/preferences")
@require_auth
def set_preferences_route():
    """
    Body: {"nfcLandingMode": "home"|"list"|"custom", "nfcLandingPath"?: "/..."}
    """
    try:
        data = request.get_json(silent=True) or {}
        mode = data.get("nfcLandingMode")
        if not isinstance(mode, str):
            raise ValidationError("nfcLandingMode is required")

        pref = preference_service.set_preference(g.current_user.id, mode, data.get("nfcLandingPath"))
        return ok(_preference_payload(pref))

    except Exception as e:
        db.session.rollback()
        mapped = json_error(e)
        if mapped:
            return mapped
        current_app.logger.exception("Failed to save preferences")
        return internal_error()
