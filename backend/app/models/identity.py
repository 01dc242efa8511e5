from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from ..extensions import db
from app.time_utils import to_utc_z, utcnow


@dataclass(frozen=True)
class Unclaimed:
    """Visitor has not been associated with any account."""


@dataclass(frozen=True)
class ClaimedBy:
    """Visitor history belongs to user_id."""
    user_id: int


ClaimState = Union[Unclaimed, ClaimedBy]


class Visitor(db.Model):
    """
    Durable anonymous identity keyed by a client-generated id.

    user_id is stored as a nullable column but is read through claim_state.
    The only legal transition is Unclaimed -> ClaimedBy(user); moving back
    to Unclaimed is an admin override outside the claim engine.
    """
    __tablename__ = "visitors"
    __table_args__ = (
        db.UniqueConstraint("anon_visitor_id", name="uq_visitors_anon_visitor_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    anon_visitor_id = db.Column(db.String(36), nullable=False, index=True)

    first_seen_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    last_seen_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    ip_hash_last_seen = db.Column(db.String(64), nullable=True)
    user_agent_last_seen = db.Column(db.String(512), nullable=True)

    # Genuine taps only; identity pings never increment this.
    tap_count = db.Column(db.Integer, nullable=False, default=0)
    last_tag_id = db.Column(db.Integer, db.ForeignKey("nfc_tags.id"), nullable=True)
    last_batch_id = db.Column(db.Integer, db.ForeignKey("tag_batches.id"), nullable=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    user = db.relationship("User", backref=db.backref("visitors", lazy=True))

    @property
    def claim_state(self) -> ClaimState:
        if self.user_id is None:
            return Unclaimed()
        return ClaimedBy(self.user_id)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "anon_visitor_id": self.anon_visitor_id,
            "first_seen_at": to_utc_z(self.first_seen_at),
            "last_seen_at": to_utc_z(self.last_seen_at),
            "tap_count": self.tap_count,
            "last_tag_id": self.last_tag_id,
            "last_batch_id": self.last_batch_id,
            "user_id": self.user_id,
        }


class IdentityClaim(db.Model):
    """
    Audit row for a successful claim of a visitor by a user.

    Idempotent on (user_id, visitor_id): re-claims refresh the row.
    """
    __tablename__ = "identity_claims"
    __table_args__ = (
        db.UniqueConstraint("user_id", "visitor_id", name="uq_identity_claims_user_visitor"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    visitor_id = db.Column(db.Integer, db.ForeignKey("visitors.id"), nullable=False, index=True)
    claimed_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    method = db.Column(db.String(16), nullable=False)
    tap_events_linked = db.Column(db.Integer, nullable=False, default=0)
    my_list_claimed = db.Column(db.Boolean, nullable=False, default=False)
    reclaimed_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "visitor_id": self.visitor_id,
            "claimed_at": to_utc_z(self.claimed_at),
            "method": self.method,
            "tap_events_linked": self.tap_events_linked,
            "my_list_claimed": self.my_list_claimed,
            "reclaimed_at": to_utc_z(self.reclaimed_at),
        }
