# Overview: Service-layer operations for the security audit trail.

from __future__ import annotations

from datetime import timedelta

from ..extensions import db
from ..models import SecurityEvent
from app.time_utils import utcnow


def log_security_event(
    user_id: int | None,
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    ip_hash: str | None = None,
    user_agent: str | None = None,
    commit: bool = True,
) -> SecurityEvent:
    """
    Append a security event.

    event_type examples:
    - LOGIN_FAILED / LOGIN_SUCCESS / LOGOUT
    - CLAIM_CONFLICT (an anonymous history already belongs to someone else)
    - ATTACH_CONFLICT
    - ADMIN_MANUAL_LINK / ADMIN_VISITOR_UNLINK
    """
    event = SecurityEvent(
        user_id=user_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        ip_hash=ip_hash,
        user_agent=user_agent[:512] if user_agent else None,
        occurred_at=utcnow(),
    )
    db.session.add(event)
    if commit:
        db.session.commit()
    return event


def cleanup_security_events(retention_days: int = 90) -> int:
    """Delete security events older than the retention window. Returns count deleted."""
    cutoff = utcnow() - timedelta(days=retention_days)
    deleted = db.session.query(SecurityEvent).filter(
        SecurityEvent.occurred_at < cutoff
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted
