# Overview: Request and role decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import session_service


def _error(message: str, code: str, status: int):
    return jsonify({"success": False, "error": message, "code": code}), status


def require_auth(f):
    """
    Require an authenticated session.

    Accepts "Authorization: Bearer <token>" or the session cookie. Sets:
    - g.current_user: The authenticated User object
    - g.session_context: The full SessionContext object

    Returns 401 if the token is missing, invalid, expired or revoked, or the
    user account is deactivated.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = session_service.token_from_request(request)
        if not token:
            return _error("Authentication required", "UNAUTHORIZED", 401)

        context = session_service.validate_session(token)
        if not context:
            return _error("Invalid or expired token", "UNAUTHORIZED", 401)

        g.current_user = context.user
        g.session_context = context
        g.session_token = token

        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """
    Require the admin role. Must be applied after @require_auth.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = getattr(g, "current_user", None)
        if user is None:
            return _error("Authentication required", "UNAUTHORIZED", 401)
        if not user.is_admin:
            return _error("Admin access required", "FORBIDDEN", 403)
        return f(*args, **kwargs)

    return decorated_function


def optional_auth(f):
    """
    Resolve the session if one is presented, without requiring it.

    Sets g.current_user to the User or None. An invalid token is treated as
    anonymous rather than rejected.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        g.current_user = None
        token = session_service.token_from_request(request)
        if token:
            context = session_service.validate_session(token)
            if context:
                g.current_user = context.user
                g.session_context = context
                g.session_token = token
        return f(*args, **kwargs)

    return decorated_function
