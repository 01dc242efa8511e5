# Overview: Service-layer operations for visitors; encapsulates business logic and database work.

"""
Visitor Store

A Visitor is created on the first tap or identity ping for an anonymous id
and refreshed on every later one.

TAP vs PING: pings happen on every page load to keep presence fresh; only
genuine taps (a tag_id is supplied) increment tap_count. Getting this wrong
inflates every visitor-facing count.
"""

from __future__ import annotations

import uuid

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Visitor
from app.time_utils import utcnow


def get_visitor_by_anon_id(anon_visitor_id: str) -> Visitor | None:
    return db.session.query(Visitor).filter_by(anon_visitor_id=anon_visitor_id).first()


def _apply_seen(
    visitor: Visitor,
    *,
    tag_id: int | None,
    batch_id: int | None,
    ip_hash: str | None,
    user_agent: str | None,
    tap_increment: int,
) -> None:
    visitor.last_seen_at = utcnow()
    if tap_increment:
        # SQL-side increment so concurrent taps never lose a count
        visitor.tap_count = Visitor.tap_count + tap_increment
    if tag_id:
        visitor.last_tag_id = tag_id
    if batch_id:
        visitor.last_batch_id = batch_id
    if ip_hash:
        visitor.ip_hash_last_seen = ip_hash
    if user_agent:
        visitor.user_agent_last_seen = user_agent


def upsert_visitor(
    anon_visitor_id: str,
    tag_id: int | None = None,
    batch_id: int | None = None,
    *,
    ip_hash: str | None = None,
    user_agent: str | None = None,
    tap_increment: int | None = None,
) -> Visitor:
    """
    Create or refresh the Visitor for anon_visitor_id.

    tap_count moves by one when tag_id is given (a genuine tap) and not at
    all otherwise. tap_increment overrides that for callers that attach
    several already-recorded taps at once.

    Flushes but does not commit; the caller owns the transaction.
    """
    increment = tap_increment if tap_increment is not None else (1 if tag_id else 0)

    visitor = get_visitor_by_anon_id(anon_visitor_id)
    if visitor is None:
        now = utcnow()
        candidate = Visitor(
            anon_visitor_id=anon_visitor_id,
            first_seen_at=now,
            last_seen_at=now,
            tap_count=increment,
            last_tag_id=tag_id,
            last_batch_id=batch_id,
            ip_hash_last_seen=ip_hash,
            user_agent_last_seen=user_agent,
        )
        nested = db.session.begin_nested()
        try:
            db.session.add(candidate)
            nested.commit()
            return candidate
        except IntegrityError:
            # Another request created the same visitor first; update theirs.
            nested.rollback()
            visitor = get_visitor_by_anon_id(anon_visitor_id)
            if visitor is None:
                raise

    _apply_seen(
        visitor,
        tag_id=tag_id,
        batch_id=batch_id,
        ip_hash=ip_hash,
        user_agent=user_agent,
        tap_increment=increment,
    )
    db.session.flush()
    return visitor


def ping_visitor(
    anon_visitor_id: str,
    ip_hash: str | None = None,
    user_agent: str | None = None,
) -> Visitor:
    """Presence refresh from the client; never counts as a tap."""
    visitor = upsert_visitor(anon_visitor_id, ip_hash=ip_hash, user_agent=user_agent)
    db.session.commit()
    return visitor


def ensure_visitor_for_user(user_id: int) -> Visitor:
    """
    Return a visitor already claimed by user_id, creating one with a fresh
    anonymous id if the user has none. Used by admin overrides.
    """
    visitor = (
        db.session.query(Visitor)
        .filter_by(user_id=user_id)
        .order_by(Visitor.last_seen_at.desc())
        .first()
    )
    if visitor:
        return visitor

    now = utcnow()
    visitor = Visitor(
        anon_visitor_id=str(uuid.uuid4()),
        user_id=user_id,
        first_seen_at=now,
        last_seen_at=now,
        tap_count=0,
    )
    db.session.add(visitor)
    db.session.flush()
    return visitor
