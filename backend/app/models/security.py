from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z, utcnow


class SecurityEvent(db.Model):
    """
    Security event audit log.

    WHY: Track login failures, claim conflicts and admin overrides of
    attribution. Claim conflicts in particular are never surfaced to anyone
    but the claiming user, so this table is where they become visible.

    IMMUTABLE: Never update or delete. Append-only for audit integrity.
    """
    __tablename__ = "security_events"
    __table_args__ = (
        db.Index("ix_security_events_user_type", "user_id", "event_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)  # Nullable for anonymous

    # LOGIN_FAILED, LOGIN_SUCCESS, CLAIM_CONFLICT, ADMIN_MANUAL_LINK, ...
    event_type = db.Column(db.String(64), nullable=False, index=True)
    resource = db.Column(db.String(128), nullable=True)
    action = db.Column(db.String(255), nullable=True, index=True)

    success = db.Column(db.Boolean, nullable=False, index=True)
    reason = db.Column(db.Text, nullable=True)

    ip_hash = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)

    occurred_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)

    user = db.relationship("User", backref=db.backref("security_events", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "event_type": self.event_type,
            "resource": self.resource,
            "action": self.action,
            "success": self.success,
            "reason": self.reason,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class RateLimitBucket(db.Model):
    """
    Counter-with-expiry keyed by client identifier.

    Lives in the shared database rather than process memory so every server
    instance sees the same counts. Losing rows is harmless: the throttle is
    defense in depth, not a correctness mechanism.
    """
    __tablename__ = "rate_limit_buckets"
    __table_args__ = (
        db.UniqueConstraint("key", name="uq_rate_limit_buckets_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(128), nullable=False)
    count = db.Column(db.Integer, nullable=False, default=0)
    reset_at = db.Column(db.DateTime, nullable=False, index=True)
