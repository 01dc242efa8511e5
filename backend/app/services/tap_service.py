# Overview: Service-layer operations for tap ingestion; encapsulates business logic and database work.

"""
Tap Ingestion Pipeline

One physical tap = one GET on /t/<batch_slug>/<tag_uuid>. The pipeline:

 1-3  resolve batch, resolve tag (must belong to batch), require active
 4    fingerprint the request
 5-6  dedup check, then persist the TapEvent (duplicates included)
 7    best-effort session lookup
 8    upsert the visitor when the client sent an anonymous id
 9    link target: tag.linked_user_id > session user > visitor's claimed user
 10   opportunistic claim of an unclaimed visitor by the session user
 11   best-effort landing path from the user's preference
 12   redirect carrying srcBatch/srcTag

Steps 1-3 are the only hard exits (TapRejected). Everything after the tag
is validated degrades: the TapEvent is committed first, so a failure in a
later step loses attribution, never the audit row, and the tapper is still
redirected.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable
from urllib.parse import urlencode

from flask import current_app

from ..extensions import db
from ..models import NfcTag, TagBatch, TapEvent, Visitor
from ..models.nfc import LINK_ANON_VISITOR, LINK_SESSION, LINK_TAG
from ..validation import NotFoundError
from . import claim_service, dedup_service, preference_service, session_service, visitor_service
from .fingerprint_service import ClientFingerprint
from app.time_utils import minutes_ago, utcnow


ERROR_BATCH_NOT_FOUND = "batch-not-found"
ERROR_TAG_NOT_FOUND = "tag-not-found"
ERROR_TAG_DISABLED = "tag-disabled"

SESSION_HINT_MAX_LENGTH = 128


class TapRejected(Exception):
    """Tap cannot be recorded at all; carries the error landing code."""

    def __init__(self, error_code: str):
        super().__init__(error_code)
        self.error_code = error_code


@dataclass(frozen=True)
class StepResult:
    ok: bool
    value: Any = None
    error: str | None = None


@dataclass
class TapOutcome:
    tap_event_id: int
    is_duplicate: bool
    visitor_id: int | None
    user_id: int | None
    link_method: str | None
    tapper_had_session: bool
    landing_path: str


def best_effort(step: str, fn: Callable[[], Any], default: Any = None) -> StepResult:
    """
    Run one degradable pipeline step.

    Failure is logged and rolled back, and the caller gets
    StepResult(ok=False, value=default) instead of an exception.
    """
    try:
        return StepResult(ok=True, value=fn())
    except Exception as e:
        db.session.rollback()
        current_app.logger.warning("Tap step %s failed: %s", step, e, exc_info=True)
        return StepResult(ok=False, value=default, error=str(e))


def resolve_tag(batch_slug: str, tag_uuid: str) -> NfcTag:
    """Steps 1-3. Raises TapRejected for unknown or disabled tags."""
    batch = db.session.query(TagBatch).filter_by(slug=batch_slug).first()
    if batch is None:
        raise TapRejected(ERROR_BATCH_NOT_FOUND)

    tag = db.session.query(NfcTag).filter_by(public_uuid=tag_uuid).first()
    if tag is None or tag.batch_id != batch.id:
        raise TapRejected(ERROR_TAG_NOT_FOUND)

    if not tag.is_active:
        raise TapRejected(ERROR_TAG_DISABLED)

    return tag


def normalize_session_hint(value: str | None) -> str | None:
    if not value:
        return None
    value = value.strip()
    if not value:
        return None
    return value[:SESSION_HINT_MAX_LENGTH]


def _link_target(tag: NfcTag, session_user_id: int | None, visitor: Visitor | None) -> tuple[int | None, str | None]:
    if tag.linked_user_id is not None:
        return tag.linked_user_id, LINK_TAG
    if session_user_id is not None:
        return session_user_id, LINK_SESSION
    if visitor is not None and visitor.user_id is not None:
        return visitor.user_id, LINK_ANON_VISITOR
    return None, None


def record_tap(
    tag: NfcTag,
    fingerprint: ClientFingerprint,
    anon_visitor_id: str | None,
    request,
    session_hint: str | None = None,
) -> TapOutcome:
    """
    Steps 4-11 for an already validated tag.

    The request is only used for the session lookup (bearer header or
    cookie).
    """
    window = current_app.config.get("TAP_DEDUP_WINDOW_MINUTES", dedup_service.DEFAULT_WINDOW_MINUTES)
    duplicate_of_id = dedup_service.find_duplicate_tap(
        tag.id,
        anon_visitor_id,
        fingerprint.ip_hash,
        fingerprint.user_agent,
        window_minutes=window,
    )

    event = TapEvent(
        tag_id=tag.id,
        batch_id=tag.batch_id,
        occurred_at=utcnow(),
        ip_hash=fingerprint.ip_hash,
        user_agent=fingerprint.user_agent,
        accept_language=fingerprint.accept_language,
        referer=fingerprint.referer,
        device_hint=fingerprint.device_hint,
        anon_visitor_id=anon_visitor_id,
        session_hint=normalize_session_hint(session_hint),
        is_duplicate=duplicate_of_id is not None,
        duplicate_of_id=duplicate_of_id,
    )
    db.session.add(event)
    db.session.commit()
    event_id = event.id
    is_duplicate = event.is_duplicate

    current_app.logger.info(
        "Tap recorded: event=%s tag=%s duplicate=%s device=%s",
        event_id, tag.public_uuid, is_duplicate, fingerprint.device_hint,
    )

    session_step = best_effort("session", lambda: session_service.resolve_request_user_id(request))
    session_user_id = session_step.value

    tag_id = tag.id
    batch_id = tag.batch_id
    tag_linked_user_id = tag.linked_user_id

    def _attribute() -> TapOutcome:
        event_row = db.session.get(TapEvent, event_id)
        visitor = None
        if anon_visitor_id:
            # Duplicates refresh presence but never count as a tap
            visitor = visitor_service.upsert_visitor(
                anon_visitor_id,
                tag_id=tag_id,
                batch_id=batch_id,
                ip_hash=fingerprint.ip_hash,
                user_agent=fingerprint.user_agent,
                tap_increment=0 if is_duplicate else 1,
            )
            if event_row.visitor_id is None:
                event_row.visitor_id = visitor.id

        user_id, link_method = _link_target(tag, session_user_id, visitor)
        event_row.tapper_had_session = session_user_id is not None
        if user_id is not None and event_row.user_id is None:
            event_row.user_id = user_id
            event_row.linked_at = utcnow()
            event_row.link_method = link_method
        db.session.commit()

        return TapOutcome(
            tap_event_id=event_id,
            is_duplicate=is_duplicate,
            visitor_id=visitor.id if visitor else None,
            user_id=event_row.user_id,
            link_method=event_row.link_method,
            tapper_had_session=event_row.tapper_had_session,
            landing_path=preference_service.HOME_PATH,
        )

    attribute_step = best_effort("attribution", _attribute)
    if attribute_step.ok:
        outcome = attribute_step.value
    else:
        outcome = TapOutcome(event_id, is_duplicate, None, None, None, session_user_id is not None, preference_service.HOME_PATH)

    if (
        session_user_id is not None
        and anon_visitor_id
        and outcome.visitor_id is not None
        and tag_linked_user_id in (None, session_user_id)
    ):
        best_effort(
            "opportunistic-claim",
            lambda: _opportunistic_claim(anon_visitor_id, session_user_id, fingerprint),
        )

    landing_step = best_effort(
        "landing-preference",
        lambda: preference_service.landing_path_for(session_user_id),
        default=preference_service.HOME_PATH,
    )
    outcome.landing_path = landing_step.value or preference_service.HOME_PATH
    return outcome


def _opportunistic_claim(anon_visitor_id: str, user_id: int, fingerprint: ClientFingerprint):
    """
    A signed-in user's tap claims their own anonymous history. A visitor
    already claimed by someone else is left alone.
    """
    visitor = visitor_service.get_visitor_by_anon_id(anon_visitor_id)
    if visitor is None or visitor.user_id is not None:
        return None
    try:
        return claim_service.claim(
            anon_visitor_id,
            user_id,
            method="session",
            ip_hash=fingerprint.ip_hash,
            user_agent=fingerprint.user_agent,
        )
    except claim_service.ClaimConflictError:
        current_app.logger.info("Opportunistic claim skipped: visitor already claimed")
        return None


def build_redirect(path: str, batch_slug: str | None = None, tag_uuid: str | None = None, error: str | None = None) -> str:
    """Landing URL with attribution params; absolute when PUBLIC_BASE_URL is set."""
    params = []
    if error:
        params.append(("error", error))
    if batch_slug:
        params.append(("srcBatch", batch_slug))
    if tag_uuid:
        params.append(("srcTag", tag_uuid))

    location = path or preference_service.HOME_PATH
    if params:
        separator = "&" if "?" in location else "?"
        location = f"{location}{separator}{urlencode(params)}"

    base = (current_app.config.get("PUBLIC_BASE_URL") or "").rstrip("/")
    return f"{base}{location}" if base else location


def identify_tap(
    anon_visitor_id: str,
    src_batch: str | None,
    src_tag: str | None,
    ip_hash: str | None,
    user_agent: str | None,
    window_minutes: int | float = 5,
) -> dict:
    """
    Client follow-up after a redirect: tie the tap it just made to its
    anonymous id.

    The tap redirect cannot see local storage, so the tap was usually
    recorded without an anonymous id. Re-links events with no visitor, the
    same ip_hash (and user agent, when known) and the same tag, inside a
    short window. Claimed visitors also pass their user to events with none.
    """
    tag = None
    if src_batch and src_tag:
        batch = db.session.query(TagBatch).filter_by(slug=src_batch).first()
        if batch is None:
            raise NotFoundError("Batch not found")
        tag = db.session.query(NfcTag).filter_by(public_uuid=src_tag, batch_id=batch.id).first()
        if tag is None:
            raise NotFoundError("Tag not found")

    visitor = visitor_service.upsert_visitor(
        anon_visitor_id,
        tag_id=tag.id if tag else None,
        batch_id=tag.batch_id if tag else None,
        ip_hash=ip_hash,
        user_agent=user_agent,
    )

    linked = 0
    if ip_hash:
        query = db.session.query(TapEvent).filter(
            TapEvent.visitor_id.is_(None),
            TapEvent.ip_hash == ip_hash,
            TapEvent.occurred_at >= minutes_ago(window_minutes),
            db.or_(TapEvent.anon_visitor_id.is_(None), TapEvent.anon_visitor_id == anon_visitor_id),
        )
        if user_agent:
            query = query.filter(TapEvent.user_agent == user_agent)
        if tag is not None:
            query = query.filter(TapEvent.tag_id == tag.id)

        now = utcnow()
        for event in query.all():
            event.visitor_id = visitor.id
            if event.anon_visitor_id is None:
                event.anon_visitor_id = anon_visitor_id
            if visitor.user_id is not None and event.user_id is None:
                event.user_id = visitor.user_id
                event.linked_at = now
                event.link_method = LINK_ANON_VISITOR
            linked += 1

    db.session.commit()

    return {
        "visitorId": visitor.id,
        "anonVisitorId": visitor.anon_visitor_id,
        "userId": visitor.user_id,
        "tapCount": visitor.tap_count,
        "tagResolved": tag is not None,
        "tapEventsLinked": linked,
    }
