"""Shared counter-with-expiry throttle backed by the database."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import RateLimitBucket
from app.time_utils import utcnow


@dataclass(frozen=True)
class RateLimitStatus:
    allowed: bool
    remaining: int
    retry_after_seconds: int | None


def hit(key: str, limit: int, window_seconds: int) -> RateLimitStatus:
    """
    Count one attempt for key and report whether it is within limit.

    The first hit of an expired or missing bucket starts a fresh window.
    Commits immediately so attempts count even when the caller later fails.
    """
    now = utcnow()
    window_reset = now + timedelta(seconds=window_seconds)

    rec = (
        db.session.query(RateLimitBucket)
        .filter_by(key=key)
        .with_for_update()
        .first()
    )
    if rec is None:
        nested = db.session.begin_nested()
        try:
            db.session.add(RateLimitBucket(key=key, count=1, reset_at=window_reset))
            nested.commit()
            db.session.commit()
            return RateLimitStatus(True, max(0, limit - 1), None)
        except IntegrityError:
            nested.rollback()
            rec = db.session.query(RateLimitBucket).filter_by(key=key).with_for_update().first()
            if rec is None:
                raise

    if rec.reset_at <= now:
        rec.count = 1
        rec.reset_at = window_reset
        db.session.commit()
        return RateLimitStatus(True, max(0, limit - 1), None)

    if rec.count >= limit:
        retry_after = max(1, int((rec.reset_at - now).total_seconds()))
        db.session.commit()
        return RateLimitStatus(False, 0, retry_after)

    rec.count += 1
    remaining = max(0, limit - rec.count)
    db.session.commit()
    return RateLimitStatus(True, remaining, None)


def cleanup_expired() -> int:
    """Delete buckets whose window has passed. Returns count deleted."""
    deleted = db.session.query(RateLimitBucket).filter(
        RateLimitBucket.reset_at <= utcnow()
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted
