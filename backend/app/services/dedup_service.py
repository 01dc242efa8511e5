# Overview: Service-layer operations for tap deduplication; read-only database work.

"""
Tap Deduplication

A double-tap or rapid re-scan of the same tag should count once. Matching
strategies run in strict priority order and the first one that applies
decides the outcome:

1. anon_visitor_id present -> match on it (survives IP changes on mobile)
2. otherwise ip_hash AND user_agent present -> match on the fingerprint
3. otherwise no dedup is possible

Only non-duplicate rows are candidates, so duplicate chains always point at
the first tap and can never mask a genuinely new one.

The check is read-then-write with no lock: two simultaneous taps may both
miss each other and be recorded as originals. That over-counts slightly and
breaks no invariant.
"""

from __future__ import annotations

from ..extensions import db
from ..models import TapEvent
from app.time_utils import minutes_ago


DEFAULT_WINDOW_MINUTES = 2


def _latest_original(tag_id: int, cutoff, *criteria) -> int | None:
    row = (
        db.session.query(TapEvent.id)
        .filter(
            TapEvent.tag_id == tag_id,
            TapEvent.is_duplicate == False,  # noqa: E712
            TapEvent.occurred_at >= cutoff,
            *criteria,
        )
        .order_by(TapEvent.occurred_at.desc(), TapEvent.id.desc())
        .first()
    )
    return row[0] if row else None


def find_duplicate_tap(
    tag_id: int,
    anon_visitor_id: str | None,
    ip_hash: str | None,
    user_agent: str | None,
    window_minutes: int | float = DEFAULT_WINDOW_MINUTES,
) -> int | None:
    """
    Return the id of the earlier tap this one duplicates, or None.
    """
    cutoff = minutes_ago(window_minutes)

    if anon_visitor_id:
        return _latest_original(tag_id, cutoff, TapEvent.anon_visitor_id == anon_visitor_id)

    if ip_hash and user_agent:
        return _latest_original(
            tag_id,
            cutoff,
            TapEvent.ip_hash == ip_hash,
            TapEvent.user_agent == user_agent,
        )

    return None
