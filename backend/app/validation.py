from __future__ import annotations

import uuid
from typing import Any


class ValidationError(ValueError):
    """400-level input problem."""

    code = "VALIDATION_ERROR"


class NotFoundError(LookupError):
    """404-level missing batch, tag, user or event set."""

    code = "NOT_FOUND"


class ConflictError(ValueError):
    """409-level business rule conflict."""

    code = "CONFLICT"


class RateLimitedError(Exception):
    """429-level throttle rejection."""

    code = "RATE_LIMITED"

    def __init__(self, message: str, retry_after_seconds: int | None = None):
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


def parse_anon_visitor_id(value: Any, *, required: bool = True) -> str | None:
    """
    Normalize a client-generated anonymous visitor id.

    Clients generate a UUIDv4 and keep it in local storage. Anything that is
    not a UUID string is rejected so that garbage never becomes a Visitor key.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError("anonVisitorId is required")
        return None
    if not isinstance(value, str):
        raise ValidationError("anonVisitorId must be a valid UUID")
    try:
        return str(uuid.UUID(value.strip()))
    except ValueError:
        raise ValidationError("anonVisitorId must be a valid UUID")


def optional_anon_visitor_id(value: Any) -> str | None:
    """Lenient variant for the public tap path: malformed ids are dropped."""
    try:
        return parse_anon_visitor_id(value, required=False)
    except ValidationError:
        return None


def require_string(payload: dict, key: str, *, max_length: int = 255) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{key} is required")
    value = value.strip()
    if len(value) > max_length:
        raise ValidationError(f"{key} must be at most {max_length} characters")
    return value


def optional_string(payload: dict, key: str, *, max_length: int = 255) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    value = value.strip()
    if not value:
        return None
    if len(value) > max_length:
        raise ValidationError(f"{key} must be at most {max_length} characters")
    return value
