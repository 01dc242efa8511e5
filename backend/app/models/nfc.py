from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z, utcnow


TAG_STATUSES = ("active", "disabled")
DEVICE_HINTS = ("mobile", "desktop", "tablet")

# link_method values written onto TapEvent. Claims additionally record their
# context label ("login", "signup", "manual", "session").
LINK_TAG = "tag_linked"
LINK_SESSION = "session"
LINK_ANON_VISITOR = "anonVisitorId"
LINK_MANUAL_ADMIN = "manualAdminLink"
LINK_RECENT_TAP_SESSION = "recentTapSession"


class TagBatch(db.Model):
    """
    A named print run of physical tags (usually one per store).

    Slug is part of every tag URL, so it is immutable once created; only
    name and description may change.
    """
    __tablename__ = "tag_batches"
    __table_args__ = (
        db.UniqueConstraint("slug", name="uq_tag_batches_slug"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    slug = db.Column(db.String(64), nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False)
    description = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "slug": self.slug,
            "name": self.name,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
        }


class NfcTag(db.Model):
    """
    One physical tag.

    linked_user_id pins every tap on this tag to one user ("Alice's fridge")
    and outranks all other attribution signals.
    """
    __tablename__ = "nfc_tags"
    __table_args__ = (
        db.UniqueConstraint("public_uuid", name="uq_nfc_tags_public_uuid"),
        db.CheckConstraint("status IN ('active', 'disabled')", name="tag_status_valid"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    public_uuid = db.Column(db.String(36), nullable=False, index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("tag_batches.id"), nullable=False, index=True)
    label = db.Column(db.String(128), nullable=True)
    status = db.Column(db.String(16), nullable=False, default="active")
    linked_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    batch = db.relationship("TagBatch", backref=db.backref("tags", lazy=True))
    linked_user = db.relationship("User")

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "public_uuid": self.public_uuid,
            "batch_id": self.batch_id,
            "batch_slug": self.batch.slug if self.batch else None,
            "label": self.label,
            "status": self.status,
            "linked_user_id": self.linked_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class TapEvent(db.Model):
    """
    One scan of one tag.

    IMMUTABLE: append-only audit log. Rows are never deleted. The linkage
    fields (visitor_id, user_id, linked_at, link_method) are filled in only
    while they are still null; every writer filters on that.
    """
    __tablename__ = "tap_events"
    __table_args__ = (
        db.Index("ix_tap_events_tag_visitor_time", "tag_id", "anon_visitor_id", "occurred_at"),
        db.Index("ix_tap_events_tag_fingerprint_time", "tag_id", "ip_hash", "occurred_at"),
        db.Index("ix_tap_events_session_hint_time", "session_hint", "occurred_at"),
        db.CheckConstraint("device_hint IN ('mobile', 'desktop', 'tablet')", name="tap_device_hint_valid"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tag_id = db.Column(db.Integer, db.ForeignKey("nfc_tags.id"), nullable=False, index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("tag_batches.id"), nullable=False, index=True)
    occurred_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)

    # Request fingerprint (raw IP is never stored)
    ip_hash = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)
    accept_language = db.Column(db.String(255), nullable=True)
    referer = db.Column(db.String(1024), nullable=True)
    device_hint = db.Column(db.String(16), nullable=False, default="desktop")

    anon_visitor_id = db.Column(db.String(36), nullable=True, index=True)
    session_hint = db.Column(db.String(128), nullable=True)

    is_duplicate = db.Column(db.Boolean, nullable=False, default=False, index=True)
    duplicate_of_id = db.Column(db.Integer, db.ForeignKey("tap_events.id"), nullable=True)

    # Linkage
    visitor_id = db.Column(db.Integer, db.ForeignKey("visitors.id"), nullable=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    linked_at = db.Column(db.DateTime, nullable=True)
    link_method = db.Column(db.String(32), nullable=True)
    tapper_had_session = db.Column(db.Boolean, nullable=False, default=False)

    tag = db.relationship("NfcTag", backref=db.backref("tap_events", lazy="dynamic"))
    batch = db.relationship("TagBatch")
    duplicate_of = db.relationship("TapEvent", remote_side=[id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tag_id": self.tag_id,
            "batch_id": self.batch_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "device_hint": self.device_hint,
            "user_agent": self.user_agent,
            "accept_language": self.accept_language,
            "referer": self.referer,
            "anon_visitor_id": self.anon_visitor_id,
            "is_duplicate": self.is_duplicate,
            "duplicate_of_id": self.duplicate_of_id,
            "visitor_id": self.visitor_id,
            "user_id": self.user_id,
            "linked_at": to_utc_z(self.linked_at),
            "link_method": self.link_method,
            "tapper_had_session": self.tapper_had_session,
        }
