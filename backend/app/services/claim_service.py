# Overview: Service-layer operations for identity claims; encapsulates business logic and database work.

"""
Identity Claim Engine

Reconciles anonymous history into an authenticated account. Callers:
- explicit claim after login/signup (POST /api/identity/claim, auth routes)
- opportunistic claim when a signed-in user taps a tag
- short-lived attach via a tap session hint (attach_recent)
- admin overrides (manual_link_tag, unlink_visitor)

STATE MACHINE: Unclaimed -> ClaimedBy(user) is the only legal transition.
ClaimedBy(A) -> ClaimedBy(B) is a conflict: nothing is merged and no
attribution changes. One anonymous history must never be silently
reassignable between accounts (shared-device takeover).

ATOMICITY: flipping Visitor.user_id, re-linking TapEvents, moving the
MyList and writing the IdentityClaim row commit together.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..models import (
    ClaimedBy,
    ClaimState,
    IdentityClaim,
    NfcTag,
    TapEvent,
    Unclaimed,
    User,
    Visitor,
)
from ..models.nfc import LINK_MANUAL_ADMIN, LINK_RECENT_TAP_SESSION
from ..validation import ConflictError, NotFoundError, ValidationError
from . import audit_service, list_service, visitor_service
from .concurrency import run_in_transaction
from app.time_utils import minutes_ago, utcnow


CLAIM_METHODS = ("login", "signup", "manual", "session")

DECISION_CLAIM = "claim"
DECISION_NOOP = "noop"
DECISION_CONFLICT = "conflict"


class ClaimConflictError(ConflictError):
    """Visitor history already belongs to a different account."""

    code = "ALREADY_CLAIMED"

    def __init__(self, visitor_id: int, message: str = "This device's NFC history is linked to another account"):
        super().__init__(message)
        self.visitor_id = visitor_id


@dataclass(frozen=True)
class ClaimResult:
    visitor_id: int | None
    anon_visitor_id: str
    claimed: bool
    already_claimed: bool
    tap_events_linked: int
    my_list_claimed: bool

    def to_dict(self) -> dict:
        return {
            "visitorId": self.visitor_id,
            "anonVisitorId": self.anon_visitor_id,
            "claimed": self.claimed,
            "alreadyClaimed": self.already_claimed,
            "tapEventsLinked": self.tap_events_linked,
            "myListClaimed": self.my_list_claimed,
        }


@dataclass(frozen=True)
class AttachResult:
    events_found: int
    events_linked: int
    visitor_id: int | None
    user_id: int | None

    def to_dict(self) -> dict:
        return {
            "eventsFound": self.events_found,
            "eventsLinked": self.events_linked,
            "visitorId": self.visitor_id,
            "userId": self.user_id,
        }


def decide_claim(state: ClaimState, user_id: int) -> str:
    """Single place that maps a visitor's claim state to what a claim may do."""
    if isinstance(state, Unclaimed):
        return DECISION_CLAIM
    if isinstance(state, ClaimedBy) and state.user_id == user_id:
        return DECISION_NOOP
    return DECISION_CONFLICT


def _relink_visitor_events(visitor: Visitor, user_id: int, link_method: str) -> int:
    """Attribute every still-unattributed event of this visitor to user_id."""
    now = utcnow()
    linked = (
        db.session.query(TapEvent)
        .filter(
            or_(
                TapEvent.visitor_id == visitor.id,
                TapEvent.anon_visitor_id == visitor.anon_visitor_id,
            ),
            TapEvent.user_id.is_(None),
        )
        .update(
            {
                TapEvent.user_id: user_id,
                TapEvent.linked_at: now,
                TapEvent.link_method: link_method,
            },
            synchronize_session=False,
        )
    )
    db.session.query(TapEvent).filter(
        TapEvent.anon_visitor_id == visitor.anon_visitor_id,
        TapEvent.visitor_id.is_(None),
    ).update({TapEvent.visitor_id: visitor.id}, synchronize_session=False)
    return linked


def _record_claim(visitor: Visitor, user_id: int, method: str, linked: int, list_claimed: bool) -> None:
    now = utcnow()
    row = db.session.query(IdentityClaim).filter_by(user_id=user_id, visitor_id=visitor.id).first()
    if row is None:
        db.session.add(IdentityClaim(
            user_id=user_id,
            visitor_id=visitor.id,
            claimed_at=now,
            method=method,
            tap_events_linked=linked,
            my_list_claimed=list_claimed,
        ))
    else:
        row.reclaimed_at = now
        row.tap_events_linked = (row.tap_events_linked or 0) + linked
        row.my_list_claimed = row.my_list_claimed or list_claimed


def claim(
    anon_visitor_id: str,
    user_id: int,
    method: str = "manual",
    *,
    ip_hash: str | None = None,
    user_agent: str | None = None,
) -> ClaimResult:
    """
    Claim the visitor identified by anon_visitor_id for user_id.

    - no such visitor: zero-effect success (a user with no prior taps)
    - unclaimed: claim, re-link events, hand over the list
    - already claimed by user_id: idempotent success
    - claimed by someone else: ClaimConflictError, nothing changes

    Raises ValidationError for an unknown method.
    """
    if method not in CLAIM_METHODS:
        raise ValidationError(f"method must be one of: {', '.join(CLAIM_METHODS)}")

    def _op() -> ClaimResult:
        visitor = (
            db.session.query(Visitor)
            .filter_by(anon_visitor_id=anon_visitor_id)
            .with_for_update()
            .first()
        )
        if visitor is None:
            return ClaimResult(None, anon_visitor_id, False, False, 0, False)

        decision = decide_claim(visitor.claim_state, user_id)
        if decision == DECISION_CONFLICT:
            raise ClaimConflictError(visitor.id)

        if decision == DECISION_CLAIM:
            visitor.user_id = user_id
            db.session.flush()

        linked = _relink_visitor_events(visitor, user_id, method)
        list_outcome = list_service.claim_visitor_list(visitor, user_id)
        _record_claim(visitor, user_id, method, linked, list_outcome.claimed)

        return ClaimResult(
            visitor_id=visitor.id,
            anon_visitor_id=anon_visitor_id,
            claimed=True,
            already_claimed=decision == DECISION_NOOP,
            tap_events_linked=linked,
            my_list_claimed=list_outcome.claimed,
        )

    try:
        result = run_in_transaction(_op)
    except ClaimConflictError as e:
        audit_service.log_security_event(
            user_id=user_id,
            event_type="CLAIM_CONFLICT",
            success=False,
            resource="visitor",
            action=f"claim:{method}",
            reason=f"Visitor {e.visitor_id} already claimed by another account",
            ip_hash=ip_hash,
            user_agent=user_agent,
        )
        raise

    current_app.logger.info(
        "Identity claim: visitor=%s user=%s method=%s linked=%s list=%s noop=%s",
        result.visitor_id, user_id, method, result.tap_events_linked,
        result.my_list_claimed, result.already_claimed,
    )
    return result


def attach_recent(
    tap_session_id: str,
    anon_visitor_id: str | None = None,
    session_user_id: int | None = None,
    *,
    window_minutes: int | float = 10,
    max_events: int = 10,
) -> AttachResult:
    """
    Attach very recent, still-unattributed taps carrying a session hint.

    Scoped to the last max_events events within window_minutes so a guessed
    or leaked hint can only reach a handful of taps. Without an anonymous id
    the events are only counted.

    User link target: the visitor's claimed user; for an unclaimed visitor,
    the signed-in caller. A signed-in caller whose visitor belongs to someone
    else gets ClaimConflictError. Visitor claim state itself never changes
    here; full history transfer is the explicit claim's job.
    """
    cutoff = minutes_ago(window_minutes)

    def _recent_events():
        return (
            db.session.query(TapEvent)
            .filter(
                TapEvent.session_hint == tap_session_id,
                TapEvent.occurred_at >= cutoff,
                TapEvent.visitor_id.is_(None),
            )
            .order_by(TapEvent.occurred_at.desc(), TapEvent.id.desc())
            .limit(max_events)
            .all()
        )

    events = _recent_events()
    if not events:
        raise NotFoundError("No recent tap events found for this session ID")

    if not anon_visitor_id:
        return AttachResult(len(events), 0, None, None)

    def _op() -> AttachResult:
        recent = _recent_events()
        if not recent:
            raise NotFoundError("No recent tap events found for this session ID")

        existing = visitor_service.get_visitor_by_anon_id(anon_visitor_id)
        target_user_id = existing.user_id if existing else None
        if session_user_id is not None and existing is not None:
            if decide_claim(existing.claim_state, session_user_id) == DECISION_CONFLICT:
                raise ClaimConflictError(existing.id)
        if target_user_id is None:
            target_user_id = session_user_id

        originals = sum(1 for event in recent if not event.is_duplicate)
        visitor = visitor_service.upsert_visitor(anon_visitor_id, tap_increment=originals)

        now = utcnow()
        for event in recent:
            event.visitor_id = visitor.id
            if event.anon_visitor_id is None:
                event.anon_visitor_id = anon_visitor_id
            if target_user_id is not None and event.user_id is None:
                event.user_id = target_user_id
                event.linked_at = now
                event.link_method = LINK_RECENT_TAP_SESSION
        db.session.flush()
        return AttachResult(len(recent), len(recent), visitor.id, target_user_id)

    try:
        return run_in_transaction(_op)
    except ClaimConflictError as e:
        audit_service.log_security_event(
            user_id=session_user_id,
            event_type="ATTACH_CONFLICT",
            success=False,
            resource="visitor",
            action="attach-recent",
            reason=f"Visitor {e.visitor_id} already claimed by another account",
        )
        raise


def manual_link_tag(tag_uuid: str, user_email: str, admin_user_id: int) -> dict:
    """
    Admin override: attribute every unattributed tap on a tag to a user.

    Deliberately bypasses the conflict check. Ensures the user has a
    Visitor so the taps show up in visitor-level analytics.
    """
    tag = db.session.query(NfcTag).filter_by(public_uuid=tag_uuid).first()
    if tag is None:
        raise NotFoundError("Tag not found")

    user = db.session.query(User).filter(db.func.lower(User.email) == user_email.strip().lower()).first()
    if user is None:
        raise NotFoundError("User not found")

    def _op() -> dict:
        visitor = visitor_service.ensure_visitor_for_user(user.id)
        unlinked = (
            db.session.query(TapEvent)
            .filter(TapEvent.tag_id == tag.id, TapEvent.user_id.is_(None))
            .all()
        )
        now = utcnow()
        originals = 0
        for event in unlinked:
            event.user_id = user.id
            event.linked_at = now
            event.link_method = LINK_MANUAL_ADMIN
            if event.visitor_id is None:
                event.visitor_id = visitor.id
            if not event.is_duplicate:
                originals += 1

        if unlinked:
            visitor.tap_count = Visitor.tap_count + originals
            visitor.last_tag_id = tag.id
            visitor.last_batch_id = tag.batch_id
        db.session.flush()

        audit_service.log_security_event(
            user_id=admin_user_id,
            event_type="ADMIN_MANUAL_LINK",
            success=True,
            resource=f"tag:{tag.public_uuid}",
            action="manual-link-taps",
            reason=f"Linked {len(unlinked)} taps to user {user.id}",
            commit=False,
        )
        return {
            "tagUuid": tag.public_uuid,
            "tagLabel": tag.label,
            "userId": user.id,
            "userEmail": user.email,
            "visitorId": visitor.id,
            "tapsLinked": len(unlinked),
        }

    return run_in_transaction(_op)


def unlink_visitor(visitor_id: int, admin_user_id: int) -> Visitor:
    """
    Admin override: return a visitor to Unclaimed.

    Events already attributed keep their user; this only stops future taps
    from inheriting the claim.
    """
    visitor = db.session.get(Visitor, visitor_id)
    if visitor is None:
        raise NotFoundError("Visitor not found")

    previous = visitor.user_id
    visitor.user_id = None
    audit_service.log_security_event(
        user_id=admin_user_id,
        event_type="ADMIN_VISITOR_UNLINK",
        success=True,
        resource=f"visitor:{visitor.id}",
        action="unlink",
        reason=f"Previously claimed by user {previous}" if previous else "Visitor was not claimed",
        commit=False,
    )
    db.session.commit()
    return visitor
