# Overview: Service-layer operations for tag batches, tags and tap analytics.

"""
Tag Management

Batches and tags are admin-managed. A tag's public UUID and its batch slug
make up the URL burned into the physical tag, so neither is ever edited
after creation; tags are disabled rather than deleted.
"""

from __future__ import annotations

import re
import uuid

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import NfcTag, TagBatch, TapEvent, User
from ..models.nfc import TAG_STATUSES
from ..validation import ConflictError, NotFoundError, ValidationError
from app.time_utils import parse_iso_datetime, to_utc_z


SLUG_PATTERN = re.compile(r"^[a-z0-9][a-z0-9-]{0,63}$")
MAX_TAGS_PER_REQUEST = 500
MAX_EVENTS_PER_PAGE = 500


def tag_path(tag: NfcTag) -> str:
    return f"/t/{tag.batch.slug}/{tag.public_uuid}"


def get_batch(slug: str) -> TagBatch:
    batch = db.session.query(TagBatch).filter_by(slug=slug).first()
    if batch is None:
        raise NotFoundError("Batch not found")
    return batch


def get_tag(tag_uuid: str) -> NfcTag:
    tag = db.session.query(NfcTag).filter_by(public_uuid=tag_uuid).first()
    if tag is None:
        raise NotFoundError("Tag not found")
    return tag


def list_batches() -> list[dict]:
    counts = dict(
        db.session.query(NfcTag.batch_id, func.count(NfcTag.id))
        .group_by(NfcTag.batch_id)
        .all()
    )
    batches = db.session.query(TagBatch).order_by(TagBatch.created_at.desc(), TagBatch.id.desc()).all()
    result = []
    for batch in batches:
        row = batch.to_dict()
        row["tag_count"] = counts.get(batch.id, 0)
        result.append(row)
    return result


def create_batch(slug: str, name: str, description: str | None = None) -> TagBatch:
    slug = slug.strip().lower()
    if not SLUG_PATTERN.match(slug):
        raise ValidationError("slug must be lowercase letters, digits and dashes")

    if db.session.query(TagBatch).filter_by(slug=slug).first():
        raise ConflictError("Batch slug already exists")

    batch = TagBatch(slug=slug, name=name.strip(), description=description)
    db.session.add(batch)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Batch slug already exists")
    return batch


def update_batch(slug: str, name: str | None = None, description: str | None = None) -> TagBatch:
    batch = get_batch(slug)
    if name is not None:
        if not name.strip():
            raise ValidationError("name cannot be empty")
        batch.name = name.strip()
    if description is not None:
        batch.description = description
    db.session.commit()
    return batch


def generate_tags(batch_slug: str, count: int = 1, label: str | None = None) -> list[NfcTag]:
    """
    Mint count new active tags in a batch. With count > 1 a label is
    suffixed with a running number ("Dairy aisle #2").
    """
    if count < 1 or count > MAX_TAGS_PER_REQUEST:
        raise ValidationError(f"count must be between 1 and {MAX_TAGS_PER_REQUEST}")
    batch = get_batch(batch_slug)

    tags = []
    for index in range(count):
        tag_label = label
        if label and count > 1:
            tag_label = f"{label} #{index + 1}"
        tag = NfcTag(public_uuid=str(uuid.uuid4()), batch_id=batch.id, label=tag_label, status="active")
        db.session.add(tag)
        tags.append(tag)
    db.session.commit()
    return tags


def list_tags(batch_slug: str | None = None, status: str | None = None) -> list[NfcTag]:
    query = db.session.query(NfcTag)
    if batch_slug:
        query = query.filter(NfcTag.batch_id == get_batch(batch_slug).id)
    if status:
        if status not in TAG_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(TAG_STATUSES)}")
        query = query.filter(NfcTag.status == status)
    return query.order_by(NfcTag.created_at.desc(), NfcTag.id.desc()).all()


_UNSET = object()


def update_tag(
    tag_uuid: str,
    *,
    status: str | None = None,
    label=_UNSET,
    linked_user_email=_UNSET,
) -> NfcTag:
    """
    Change a tag's status, label or linked user.

    linked_user_email=None clears the link; omitting it leaves the link as is.
    Past taps keep whatever attribution they already have.
    """
    tag = get_tag(tag_uuid)

    if status is not None:
        if status not in TAG_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(TAG_STATUSES)}")
        tag.status = status

    if label is not _UNSET:
        tag.label = label.strip() if label else None

    if linked_user_email is not _UNSET:
        if linked_user_email is None:
            tag.linked_user_id = None
        else:
            user = db.session.query(User).filter(
                func.lower(User.email) == str(linked_user_email).strip().lower()
            ).first()
            if user is None:
                raise NotFoundError("User not found")
            tag.linked_user_id = user.id

    db.session.commit()
    return tag


def list_tap_events(
    tag_uuid: str | None = None,
    batch_slug: str | None = None,
    since: str | None = None,
    include_duplicates: bool = True,
    limit: int = 100,
) -> list[TapEvent]:
    query = db.session.query(TapEvent)
    if tag_uuid:
        query = query.filter(TapEvent.tag_id == get_tag(tag_uuid).id)
    if batch_slug:
        query = query.filter(TapEvent.batch_id == get_batch(batch_slug).id)
    if since:
        try:
            since_dt = parse_iso_datetime(since)
        except ValueError:
            raise ValidationError("since must be an ISO-8601 datetime")
        query = query.filter(TapEvent.occurred_at >= since_dt)
    if not include_duplicates:
        query = query.filter(TapEvent.is_duplicate == False)  # noqa: E712

    limit = max(1, min(limit, MAX_EVENTS_PER_PAGE))
    return query.order_by(TapEvent.occurred_at.desc(), TapEvent.id.desc()).limit(limit).all()


def tag_analytics(tag_uuid: str) -> dict:
    """
    Per-tag counters. Duplicates are reported separately and never counted
    as taps; unique visitors counts distinct anonymous ids on originals.
    """
    tag = get_tag(tag_uuid)
    base = db.session.query(TapEvent).filter(TapEvent.tag_id == tag.id)
    originals = base.filter(TapEvent.is_duplicate == False)  # noqa: E712

    total_taps = originals.count()
    duplicates = base.filter(TapEvent.is_duplicate == True).count()  # noqa: E712
    unique_visitors = (
        originals.filter(TapEvent.anon_visitor_id.isnot(None))
        .with_entities(func.count(func.distinct(TapEvent.anon_visitor_id)))
        .scalar()
    ) or 0
    linked_taps = originals.filter(TapEvent.user_id.isnot(None)).count()
    unique_users = (
        originals.filter(TapEvent.user_id.isnot(None))
        .with_entities(func.count(func.distinct(TapEvent.user_id)))
        .scalar()
    ) or 0
    with_session = originals.filter(TapEvent.tapper_had_session == True).count()  # noqa: E712

    by_device = dict(
        originals.with_entities(TapEvent.device_hint, func.count(TapEvent.id))
        .group_by(TapEvent.device_hint)
        .all()
    )
    by_link_method = dict(
        originals.filter(TapEvent.link_method.isnot(None))
        .with_entities(TapEvent.link_method, func.count(TapEvent.id))
        .group_by(TapEvent.link_method)
        .all()
    )
    first_tap = originals.with_entities(func.min(TapEvent.occurred_at)).scalar()
    last_tap = originals.with_entities(func.max(TapEvent.occurred_at)).scalar()

    return {
        "tag": tag.to_dict(),
        "total_taps": total_taps,
        "duplicate_taps": duplicates,
        "unique_visitors": unique_visitors,
        "linked_taps": linked_taps,
        "unique_users": unique_users,
        "taps_with_session": with_session,
        "by_device": by_device,
        "by_link_method": by_link_method,
        "first_tap_at": to_utc_z(first_tap),
        "last_tap_at": to_utc_z(last_tap),
    }
