"""
Login Throttling Service

WHY: Prevent brute-force password attacks by limiting failed login attempts.
After too many failures, the account is temporarily locked.

- Tracks failed attempts per email via LOGIN_FAILED security events
- Lockout after MAX_FAILED_ATTEMPTS failures within LOCKOUT_WINDOW
- Lockout lasts LOCKOUT_DURATION from the most recent failure
"""

from datetime import timedelta
from ..extensions import db
from ..models import SecurityEvent, User
from . import audit_service
from app.time_utils import utcnow


MAX_FAILED_ATTEMPTS = 10
LOCKOUT_WINDOW = timedelta(minutes=15)
LOCKOUT_DURATION = timedelta(minutes=15)


def _failed_attempts_query(identifier: str):
    return db.session.query(SecurityEvent).filter(
        SecurityEvent.event_type == "LOGIN_FAILED",
        SecurityEvent.action == identifier,
    )


def get_recent_failed_attempts(identifier: str) -> int:
    """Count LOGIN_FAILED events for identifier within LOCKOUT_WINDOW."""
    cutoff = utcnow() - LOCKOUT_WINDOW
    return _failed_attempts_query(identifier).filter(SecurityEvent.occurred_at >= cutoff).count()


def is_account_locked(identifier: str) -> tuple[bool, int | None]:
    """
    Returns:
    - (True, seconds_remaining) if locked
    - (False, None) if not locked
    """
    if get_recent_failed_attempts(identifier) < MAX_FAILED_ATTEMPTS:
        return False, None

    most_recent = _failed_attempts_query(identifier).order_by(SecurityEvent.occurred_at.desc()).first()
    if most_recent:
        lockout_end = most_recent.occurred_at + LOCKOUT_DURATION
        now = utcnow()
        if now < lockout_end:
            return True, int((lockout_end - now).total_seconds())

    return False, None


def record_failed_attempt(
    identifier: str,
    ip_hash: str | None = None,
    user_agent: str | None = None,
    reason: str = "Invalid credentials"
) -> int:
    """
    Record a failed login attempt.

    Returns the total number of recent failed attempts.
    """
    user = db.session.query(User).filter_by(email=identifier).first()
    audit_service.log_security_event(
        user_id=user.id if user else None,
        event_type="LOGIN_FAILED",
        success=False,
        resource="/api/auth/login",
        action=identifier,
        reason=reason,
        ip_hash=ip_hash,
        user_agent=user_agent,
    )
    return get_recent_failed_attempts(identifier)


def record_successful_login(
    user_id: int,
    identifier: str,
    ip_hash: str | None = None,
    user_agent: str | None = None
) -> None:
    audit_service.log_security_event(
        user_id=user_id,
        event_type="LOGIN_SUCCESS",
        success=True,
        resource="/api/auth/login",
        action=identifier,
        ip_hash=ip_hash,
        user_agent=user_agent,
    )
