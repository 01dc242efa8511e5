from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z, utcnow


LANDING_MODES = ("home", "list", "custom")


class UserPreference(db.Model):
    """Where a signed-in user lands after tapping a tag."""
    __tablename__ = "user_preferences"
    __table_args__ = (
        db.UniqueConstraint("user_id", name="uq_user_preferences_user_id"),
        db.CheckConstraint("nfc_landing_mode IN ('home', 'list', 'custom')", name="landing_mode_valid"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    nfc_landing_mode = db.Column(db.String(16), nullable=False, default="home")
    nfc_landing_path = db.Column(db.String(255), nullable=True, default="/")
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    user = db.relationship("User", backref=db.backref("preference", uselist=False))

    def to_dict(self) -> dict:
        return {
            "nfc_landing_mode": self.nfc_landing_mode,
            "nfc_landing_path": self.nfc_landing_path,
            "updated_at": to_utc_z(self.updated_at),
        }
