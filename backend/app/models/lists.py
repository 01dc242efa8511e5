from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z, utcnow


class MyList(db.Model):
    """
    A persisted grocery selection.

    Ownership is exclusive: a list belongs to a Visitor or to a User, never
    both. Claiming either transfers the visitor's list to the user (owner
    flips) or merges its items into the user's existing list, in which case
    the emptied source keeps its visitor owner and points at the target.
    """
    __tablename__ = "my_lists"
    __table_args__ = (
        db.CheckConstraint(
            "(owner_visitor_id IS NULL) <> (owner_user_id IS NULL)",
            name="my_list_single_owner",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    owner_visitor_id = db.Column(db.Integer, db.ForeignKey("visitors.id"), nullable=True, index=True)
    owner_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    source_tag_id = db.Column(db.Integer, db.ForeignKey("nfc_tags.id"), nullable=True)
    source_batch_id = db.Column(db.Integer, db.ForeignKey("tag_batches.id"), nullable=True)

    claimed_at = db.Column(db.DateTime, nullable=True)
    merged_into_id = db.Column(db.Integer, db.ForeignKey("my_lists.id"), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    items = db.relationship(
        "MyListItem",
        backref="list",
        lazy=True,
        order_by="MyListItem.last_added_at.desc()",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_visitor_id": self.owner_visitor_id,
            "owner_user_id": self.owner_user_id,
            "claimed_at": to_utc_z(self.claimed_at),
            "merged_into_id": self.merged_into_id,
            "items": [item.to_dict() for item in self.items],
        }


class MyListItem(db.Model):
    __tablename__ = "my_list_items"
    __table_args__ = (
        db.UniqueConstraint("list_id", "item_key", name="uq_my_list_items_list_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    list_id = db.Column(db.Integer, db.ForeignKey("my_lists.id"), nullable=False, index=True)
    item_key = db.Column(db.String(128), nullable=False)
    item_label = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    times_purchased = db.Column(db.Integer, nullable=False, default=0)
    last_added_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    purchased_at = db.Column(db.DateTime, nullable=True)
    source_tag_id = db.Column(db.Integer, db.ForeignKey("nfc_tags.id"), nullable=True)
    source_batch_id = db.Column(db.Integer, db.ForeignKey("tag_batches.id"), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_key": self.item_key,
            "item_label": self.item_label,
            "quantity": self.quantity,
            "times_purchased": self.times_purchased,
            "last_added_at": to_utc_z(self.last_added_at),
            "purchased_at": to_utc_z(self.purchased_at),
            "source_tag_id": self.source_tag_id,
            "source_batch_id": self.source_batch_id,
        }
