# Overview: JSON envelope helpers shared by the API routes.

from __future__ import annotations

from flask import jsonify

from .validation import ConflictError, NotFoundError, RateLimitedError, ValidationError


def ok(data=None, status: int = 200, **extra):
    body = {"success": True, "data": data}
    body.update(extra)
    return jsonify(body), status


def error(message: str, code: str, status: int, **extra):
    body = {"success": False, "error": message, "code": code}
    body.update(extra)
    return jsonify(body), status


def json_error(exc: Exception):
    """Map a domain exception to its JSON response; None if it is not one."""
    if isinstance(exc, ValidationError):
        return error(str(exc), exc.code, 400)
    if isinstance(exc, NotFoundError):
        return error(str(exc), exc.code, 404)
    if isinstance(exc, ConflictError):
        return error(str(exc), exc.code, 409)
    if isinstance(exc, RateLimitedError):
        response, status = error(str(exc), exc.code, 429, retry_after_seconds=exc.retry_after_seconds)
        if exc.retry_after_seconds:
            response.headers["Retry-After"] = str(exc.retry_after_seconds)
        return response, status
    return None


def internal_error():
    return error("Internal server error", "INTERNAL_ERROR", 500)
