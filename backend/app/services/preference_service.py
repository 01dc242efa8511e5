# Overview: Service-layer operations for landing preferences; encapsulates business logic and database work.

from __future__ import annotations

from ..extensions import db
from ..models import UserPreference
from ..models.preferences import LANDING_MODES
from ..validation import ValidationError


HOME_PATH = "/"
LIST_PATH = "/list"

# Internal routes a tap must never land on
BLOCKED_PREFIXES = ("/api", "/admin", "/t", "/_next")


def validate_custom_path(path: str | None) -> str:
    """
    Validate a user-chosen landing path.

    Must be a same-site absolute path ("/..."), not protocol-relative, and
    outside the API, admin, tap and asset routes.
    """
    if not path or not isinstance(path, str):
        raise ValidationError("Custom mode requires a path")
    path = path.strip()
    if not path.startswith("/"):
        raise ValidationError("Path must start with /")
    if path.startswith("//") or "\\" in path:
        raise ValidationError("Path must be a local path")
    for prefix in BLOCKED_PREFIXES:
        if path == prefix or path.startswith(prefix + "/") or path.startswith(prefix + "?"):
            raise ValidationError(f"Path cannot start with {prefix}")
    if len(path) > 255:
        raise ValidationError("Path must be at most 255 characters")
    return path


def get_preference(user_id: int) -> UserPreference | None:
    return db.session.query(UserPreference).filter_by(user_id=user_id).first()


def get_or_create_preference(user_id: int) -> UserPreference:
    pref = get_preference(user_id)
    if pref is None:
        pref = UserPreference(user_id=user_id, nfc_landing_mode="home", nfc_landing_path=HOME_PATH)
        db.session.add(pref)
        db.session.commit()
    return pref


def set_preference(user_id: int, mode: str, path: str | None = None) -> UserPreference:
    if mode not in LANDING_MODES:
        raise ValidationError(f"nfcLandingMode must be one of: {', '.join(LANDING_MODES)}")

    if mode == "home":
        path = HOME_PATH
    elif mode == "list":
        path = LIST_PATH
    else:
        path = validate_custom_path(path)

    pref = get_preference(user_id)
    if pref is None:
        pref = UserPreference(user_id=user_id)
        db.session.add(pref)
    pref.nfc_landing_mode = mode
    pref.nfc_landing_path = path
    db.session.commit()
    return pref


def landing_path_for(user_id: int | None) -> str:
    """
    Where a tap by user_id should land. Anonymous tappers land home; stored
    custom paths are re-validated and fall back home if no longer valid.
    """
    if user_id is None:
        return HOME_PATH
    pref = get_preference(user_id)
    if pref is None:
        return HOME_PATH
    if pref.nfc_landing_mode == "list":
        return LIST_PATH
    if pref.nfc_landing_mode == "custom":
        try:
            return validate_custom_path(pref.nfc_landing_path)
        except ValidationError:
            return HOME_PATH
    return HOME_PATH
