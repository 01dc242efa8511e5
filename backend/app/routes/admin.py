# Overview: Flask API routes for admin operations; parses input and returns JSON responses.

# backend/app/routes/admin.py
"""
Admin routes for tags and attribution.

Provides endpoints for:
- Batch management (list, create, view, rename)
- Tag management (list, mint, view, disable, label, link to a user)
- Tap event browsing and per-tag analytics
- Attribution overrides (manual link of a tag's taps, visitor unlink)

All endpoints require an authenticated admin.
"""

from flask import Blueprint, request, g, current_app

from ..extensions import db
from ..responses import internal_error, json_error, ok
from ..services import claim_service, tag_service
from ..decorators import require_auth, require_admin
from ..validation import ValidationError, optional_string, require_string

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


def _handle(e: Exception, action: str):
    db.session.rollback()
    mapped = json_error(e)
    if mapped:
        return mapped
    current_app.logger.exception("Failed to %s", action)
    return internal_error()


def _tag_payload(tag) -> dict:
    row = tag.to_dict()
    row["path"] = tag_service.tag_path(tag)
    return row


def _bool_arg(name: str, default: bool) -> bool:
    raw = request.args.get(name)
    if raw is None:
        return default
    return raw.lower() in ("1", "true", "yes")


# =============================================================================
# BATCHES
# =============================================================================

@admin_bp.get("/batches")
@require_auth
@require_admin
def list_batches_route():
    try:
        batches = tag_service.list_batches()
        return ok({"batches": batches, "count": len(batches)})
    except Exception as e:
        return _handle(e, "list batches")


@admin_bp.post("/batches")
@require_auth
@require_admin
def create_batch_route():
    """
    Body: {"slug", "name", "description"?}
    """
    try:
        data = request.get_json(silent=True) or {}
        batch = tag_service.create_batch(
            require_string(data, "slug", max_length=64),
            require_string(data, "name", max_length=128),
            optional_string(data, "description", max_length=2000),
        )
        return ok(batch.to_dict(), 201)
    except Exception as e:
        return _handle(e, "create batch")


@admin_bp.get("/batches/<slug>")
@require_auth
@require_admin
def get_batch_route(slug: str):
    try:
        batch = tag_service.get_batch(slug)
        tags = tag_service.list_tags(batch_slug=slug)
        data = batch.to_dict()
        data["tags"] = [_tag_payload(t) for t in tags]
        return ok(data)
    except Exception as e:
        return _handle(e, "load batch")


@admin_bp.patch("/batches/<slug>")
@require_auth
@require_admin
def update_batch_route(slug: str):
    try:
        data = request.get_json(silent=True) or {}
        batch = tag_service.update_batch(
            slug,
            name=data.get("name"),
            description=data.get("description"),
        )
        return ok(batch.to_dict())
    except Exception as e:
        return _handle(e, "update batch")


# =============================================================================
# TAGS
# =============================================================================

@admin_bp.get("/tags")
@require_auth
@require_admin
def list_tags_route():
    """
    Query params:
    - batch: batch slug
    - status: active | disabled
    """
    try:
        tags = tag_service.list_tags(request.args.get("batch"), request.args.get("status"))
        return ok({"tags": [_tag_payload(t) for t in tags], "count": len(tags)})
    except Exception as e:
        return _handle(e, "list tags")


@admin_bp.post("/tags")
@require_auth
@require_admin
def create_tags_route():
    """
    Body: {"batchSlug", "count"?: int, "label"?}
    """
    try:
        data = request.get_json(silent=True) or {}
        count = data.get("count", 1)
        if not isinstance(count, int) or isinstance(count, bool):
            raise ValidationError("count must be an integer")

        tags = tag_service.generate_tags(
            require_string(data, "batchSlug", max_length=64),
            count,
            optional_string(data, "label", max_length=100),
        )
        return ok({"tags": [_tag_payload(t) for t in tags], "count": len(tags)}, 201)
    except Exception as e:
        return _handle(e, "create tags")


@admin_bp.get("/tags/<tag_uuid>")
@require_auth
@require_admin
def get_tag_route(tag_uuid: str):
    try:
        return ok(_tag_payload(tag_service.get_tag(tag_uuid)))
    except Exception as e:
        return _handle(e, "load tag")


@admin_bp.patch("/tags/<tag_uuid>")
@require_auth
@require_admin
def update_tag_route(tag_uuid: str):
    """
    Body (all optional): {"status", "label", "linkedUserEmail"}

    "linkedUserEmail": null clears the link.
    """
    try:
        data = request.get_json(silent=True) or {}
        kwargs = {}
        if "status" in data:
            kwargs["status"] = data["status"]
        if "label" in data:
            kwargs["label"] = data["label"]
        if "linkedUserEmail" in data:
            kwargs["linked_user_email"] = data["linkedUserEmail"]

        tag = tag_service.update_tag(tag_uuid, **kwargs)
        current_app.logger.info("Tag updated by admin %s: %s %s", g.current_user.id, tag_uuid, sorted(kwargs))
        return ok(_tag_payload(tag))
    except Exception as e:
        return _handle(e, "update tag")


# =============================================================================
# TAP EVENTS & ANALYTICS
# =============================================================================

@admin_bp.get("/tap-events")
@require_auth
@require_admin
def list_tap_events_route():
    """
    Query params:
    - tag: tag public uuid
    - batch: batch slug
    - since: ISO-8601 datetime
    - include_duplicates: bool (default true)
    - limit: int (default 100, max 500)
    """
    try:
        events = tag_service.list_tap_events(
            tag_uuid=request.args.get("tag"),
            batch_slug=request.args.get("batch"),
            since=request.args.get("since"),
            include_duplicates=_bool_arg("include_duplicates", True),
            limit=request.args.get("limit", 100, type=int),
        )
        return ok({"events": [e.to_dict() for e in events], "count": len(events)})
    except Exception as e:
        return _handle(e, "list tap events")


@admin_bp.get("/analytics/tag/<tag_uuid>")
@require_auth
@require_admin
def tag_analytics_route(tag_uuid: str):
    try:
        return ok(tag_service.tag_analytics(tag_uuid))
    except Exception as e:
        return _handle(e, "load tag analytics")


# =============================================================================
# ATTRIBUTION OVERRIDES
# =============================================================================

@admin_bp.post("/manual-link-taps")
@require_auth
@require_admin
def manual_link_taps_route():
    """
    Attribute every unattributed tap on a tag to a user.

    Body: {"tagUuid", "userEmail"}
    """
    try:
        data = request.get_json(silent=True) or {}
        result = claim_service.manual_link_tag(
            require_string(data, "tagUuid", max_length=36),
            require_string(data, "userEmail", max_length=255),
            g.current_user.id,
        )
        return ok(result)
    except Exception as e:
        return _handle(e, "manually link taps")


@admin_bp.post("/visitors/<int:visitor_id>/unlink")
@require_auth
@require_admin
def unlink_visitor_route(visitor_id: int):
    try:
        visitor = claim_service.unlink_visitor(visitor_id, g.current_user.id)
        return ok(visitor.to_dict())
    except Exception as e:
        return _handle(e, "unlink visitor")
