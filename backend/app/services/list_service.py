# Overview: Service-layer operations for MyList; encapsulates business logic and database work.

"""
MyList - visitor/user grocery selections

OWNERSHIP: a list belongs to a Visitor (anonymous) or a User, never both.
A claimed visitor reads and writes its user's list.

MERGE POLICY (claim time, visitor list -> existing user list):
- union by item_key; nothing is dropped
- quantity, times_purchased, last_added_at: max of both
- purchase state (purchased_at) comes from whichever item saw the most
  recent activity (later last_added_at); the user's item wins ties
- label and source attribution stay with the user's item; source tag/batch
  are back-filled from the visitor's item when the user's item has none
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from ..extensions import db
from ..models import MyList, MyListItem, Visitor
from ..validation import NotFoundError, ValidationError
from app.time_utils import utcnow


_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class ListClaimOutcome:
    claimed: bool
    target_list_id: int | None
    items_moved: int
    items_merged: int


def item_key_for(label: str) -> str:
    return _WHITESPACE.sub("-", label.strip().lower())


def get_user_list(user_id: int) -> MyList | None:
    return (
        db.session.query(MyList)
        .filter_by(owner_user_id=user_id)
        .order_by(MyList.updated_at.desc())
        .first()
    )


def get_visitor_list(visitor_id: int) -> MyList | None:
    return (
        db.session.query(MyList)
        .filter(MyList.owner_visitor_id == visitor_id, MyList.merged_into_id.is_(None))
        .order_by(MyList.updated_at.desc())
        .first()
    )


def get_or_create_list_for_visitor(
    visitor: Visitor,
    source_tag_id: int | None = None,
    source_batch_id: int | None = None,
) -> MyList:
    """The list a visitor should see: its user's once claimed, else its own."""
    if visitor.user_id is not None:
        my_list = get_user_list(visitor.user_id)
        if my_list is None:
            my_list = MyList(owner_user_id=visitor.user_id)
            db.session.add(my_list)
            db.session.flush()
        return my_list

    my_list = get_visitor_list(visitor.id)
    if my_list is None:
        my_list = MyList(
            owner_visitor_id=visitor.id,
            source_tag_id=source_tag_id,
            source_batch_id=source_batch_id,
        )
        db.session.add(my_list)
        db.session.flush()
    return my_list


def add_item(
    my_list: MyList,
    item_label: str,
    source_tag_id: int | None = None,
    source_batch_id: int | None = None,
) -> MyListItem:
    """Add an item, or bump quantity and un-purchase it if already present."""
    label = item_label.strip()
    if not label:
        raise ValidationError("itemLabel is required")
    key = item_key_for(label)

    item = db.session.query(MyListItem).filter_by(list_id=my_list.id, item_key=key).first()
    now = utcnow()
    if item is None:
        item = MyListItem(
            list_id=my_list.id,
            item_key=key,
            item_label=label,
            quantity=1,
            last_added_at=now,
            source_tag_id=source_tag_id,
            source_batch_id=source_batch_id,
        )
        db.session.add(item)
    else:
        item.quantity = (item.quantity or 0) + 1
        item.last_added_at = now
        item.purchased_at = None
    my_list.updated_at = now
    db.session.flush()
    return item


def _get_item(my_list: MyList, item_id: int) -> MyListItem:
    item = db.session.query(MyListItem).filter_by(id=item_id, list_id=my_list.id).first()
    if item is None:
        raise NotFoundError("Item not found")
    return item


def mark_purchased(my_list: MyList, item_id: int) -> MyListItem:
    item = _get_item(my_list, item_id)
    item.purchased_at = utcnow()
    item.times_purchased = (item.times_purchased or 0) + 1
    db.session.flush()
    return item


def change_quantity(my_list: MyList, item_id: int, delta: int) -> MyListItem:
    item = _get_item(my_list, item_id)
    item.quantity = max(1, (item.quantity or 1) + delta)
    db.session.flush()
    return item


def remove_item(my_list: MyList, item_id: int) -> None:
    item = _get_item(my_list, item_id)
    db.session.delete(item)
    db.session.flush()


def merge_item_into(target: MyListItem, source: MyListItem) -> None:
    """Fold source into target per the merge policy above."""
    target.quantity = max(target.quantity or 0, source.quantity or 0)
    target.times_purchased = max(target.times_purchased or 0, source.times_purchased or 0)
    if source.last_added_at > target.last_added_at:
        target.purchased_at = source.purchased_at
        target.last_added_at = source.last_added_at
    if target.source_tag_id is None:
        target.source_tag_id = source.source_tag_id
    if target.source_batch_id is None:
        target.source_batch_id = source.source_batch_id


def claim_visitor_list(visitor: Visitor, user_id: int) -> ListClaimOutcome:
    """
    Hand the visitor's anonymous list to user_id.

    No user list yet: the visitor list changes owner. Otherwise its items are
    merged into the user's list and the emptied source records where they
    went. Flushes only; runs inside the claim transaction.
    """
    source = get_visitor_list(visitor.id)
    if source is None:
        return ListClaimOutcome(False, None, 0, 0)

    now = utcnow()
    target = get_user_list(user_id)
    if target is None:
        source.owner_visitor_id = None
        source.owner_user_id = user_id
        source.claimed_at = now
        db.session.flush()
        return ListClaimOutcome(True, source.id, len(source.items), 0)

    existing = {item.item_key: item for item in target.items}
    moved = merged = 0
    for item in list(source.items):
        match = existing.get(item.item_key)
        if match is None:
            item.list = target
            existing[item.item_key] = item
            moved += 1
        else:
            merge_item_into(match, item)
            db.session.delete(item)
            merged += 1

    source.claimed_at = now
    source.merged_into_id = target.id
    target.updated_at = now
    db.session.flush()
    db.session.expire(source, ["items"])
    db.session.expire(target, ["items"])
    return ListClaimOutcome(True, target.id, moved, merged)
