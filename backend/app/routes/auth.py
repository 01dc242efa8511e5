# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/app/routes/auth.py
"""
Authentication API routes

SECURITY FEATURES:
- Password strength validation on registration
- Login throttling to prevent brute-force attacks
- Account lockout after repeated failed attempts
- Session management with bearer token or HttpOnly cookie

Register and login optionally take the device's anonVisitorId and claim its
history for the account. A claim conflict never fails the sign-in; it is
reported as claimWarning.
"""

from flask import Blueprint, request, current_app, g

from ..decorators import require_auth
from ..extensions import db
from ..responses import error, internal_error, json_error, ok
from ..services import auth_service, claim_service, fingerprint_service
from ..services import login_throttle_service, session_service
from ..services.auth_service import PasswordValidationError
from ..services.session_service import SESSION_ABSOLUTE_TIMEOUT
from ..validation import optional_anon_visitor_id


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _claim_on_sign_in(anon_visitor_id, user_id: int, method: str, fingerprint) -> dict:
    """Claim outcome fields merged into the sign-in response."""
    if not anon_visitor_id:
        return {}
    try:
        result = claim_service.claim(
            anon_visitor_id,
            user_id,
            method,
            ip_hash=fingerprint.ip_hash,
            user_agent=fingerprint.user_agent,
        )
        return {"claim": result.to_dict()}
    except claim_service.ClaimConflictError as e:
        db.session.rollback()
        return {"claimWarning": {"code": e.code, "message": str(e)}}
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to claim visitor during %s", method)
        return {"claimWarning": {"code": "INTERNAL_ERROR", "message": "History could not be linked"}}


def _session_response(user, method: str, fingerprint, anon_visitor_id, status: int):
    session, token = session_service.create_session(
        user_id=user.id,
        user_agent=fingerprint.user_agent,
        ip_hash=fingerprint.ip_hash,
    )
    data = {
        "user": user.to_dict(),
        "token": token,
        "session": session.to_dict(),
    }
    data.update(_claim_on_sign_in(anon_visitor_id, user.id, method, fingerprint))

    response, status = ok(data, status)
    response.set_cookie(
        current_app.config.get("SESSION_COOKIE_NAME_TOKEN", "session_token"),
        token,
        max_age=int(SESSION_ABSOLUTE_TIMEOUT.total_seconds()),
        httponly=True,
        samesite="Lax",
        secure=bool(current_app.config.get("SESSION_COOKIE_SECURE", False)),
    )
    return response, status


@auth_bp.post("/register")
def register_route():
    """
    Create an account and sign it in.

    Body: {"email", "password", "name"?, "anonVisitorId"?}
    """
    try:
        data = request.get_json(silent=True) or {}
        email = data.get("email")
        password = data.get("password")
        if not all([email, password]):
            return error("email and password required", "VALIDATION_ERROR", 400)

        fingerprint = fingerprint_service.client_fingerprint(request.headers)
        user = auth_service.create_user(email, password, name=data.get("name"))

        current_app.logger.info("User registered: user=%s", user.id)
        return _session_response(
            user, "signup", fingerprint, optional_anon_visitor_id(data.get("anonVisitorId")), 201
        )

    except PasswordValidationError as e:
        db.session.rollback()
        return error(str(e), "VALIDATION_ERROR", 400)
    except ValueError as e:
        db.session.rollback()
        return error(str(e), "VALIDATION_ERROR", 400)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to register user")
        return internal_error()


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Body: {"email", "password", "anonVisitorId"?}

    SECURITY:
    - Checks for account lockout before attempting authentication
    - Records failed attempts for throttling
    - Records successful logins for audit trail
    """
    try:
        data = request.get_json(silent=True) or {}
        email = data.get("email")
        password = data.get("password")
        if not all([email, password]) or not isinstance(email, str):
            return error("email and password required", "VALIDATION_ERROR", 400)

        identifier = auth_service.normalize_email(email)
        fingerprint = fingerprint_service.client_fingerprint(request.headers)

        is_locked, seconds_remaining = login_throttle_service.is_account_locked(identifier)
        if is_locked:
            return error(
                "Account temporarily locked due to too many failed login attempts",
                "RATE_LIMITED",
                429,
                retry_after_seconds=seconds_remaining,
            )

        user = auth_service.authenticate(identifier, password)

        if not user:
            failed_count = login_throttle_service.record_failed_attempt(
                identifier=identifier,
                ip_hash=fingerprint.ip_hash,
                user_agent=fingerprint.user_agent,
            )
            remaining = login_throttle_service.MAX_FAILED_ATTEMPTS - failed_count
            if remaining <= 0:
                return error(
                    "Account locked due to too many failed login attempts",
                    "RATE_LIMITED",
                    429,
                    retry_after_seconds=int(login_throttle_service.LOCKOUT_DURATION.total_seconds()),
                )
            if remaining <= 3:
                return error(
                    "Invalid credentials",
                    "UNAUTHORIZED",
                    401,
                    warning=f"{remaining} attempts remaining before account lockout",
                )
            return error("Invalid credentials", "UNAUTHORIZED", 401)

        login_throttle_service.record_successful_login(
            user_id=user.id,
            identifier=identifier,
            ip_hash=fingerprint.ip_hash,
            user_agent=fingerprint.user_agent,
        )

        return _session_response(
            user, "login", fingerprint, optional_anon_visitor_id(data.get("anonVisitorId")), 200
        )

    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to login user")
        return internal_error()


@auth_bp.post("/logout")
@require_auth
def logout_route():
    """
    Revoke the presented session token and clear the cookie.

    WHY: Explicit logout prevents token reuse.
    """
    try:
        session_service.revoke_session(g.session_token, reason="User logout")
        response, status = ok({"message": "Logout successful"})
        response.delete_cookie(current_app.config.get("SESSION_COOKIE_NAME_TOKEN", "session_token"))
        return response, status

    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to logout user")
        return internal_error()


@auth_bp.get("/me")
@require_auth
def me_route():
    user = g.current_user
    return ok({
        "user": user.to_dict(),
        "visitors": [v.to_dict() for v in user.visitors],
    })
