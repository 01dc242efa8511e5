# Overview: Flask API routes for MyList; parses input and returns JSON responses.

# backend/app/routes/lists.py
"""
MyList API

The caller is identified by its session (signed-in users always use their
own list) or by anonVisitorId from the X-Anon-Visitor-Id header, the vid
query parameter or the JSON body. A claimed visitor sees its user's list.
"""

from flask import Blueprint, current_app, g, request

from ..decorators import optional_auth
from ..extensions import db
from ..models import MyList, NfcTag
from ..responses import internal_error, json_error, ok
from ..services import fingerprint_service, list_service, visitor_service
from ..validation import NotFoundError, ValidationError, parse_anon_visitor_id, require_string


lists_bp = Blueprint("lists", __name__, url_prefix="/api/list")

ITEM_ACTIONS = ("purchase", "increment", "decrement")


def _payload() -> dict:
    return request.get_json(silent=True) or {}


def _anon_id(data: dict) -> str | None:
    raw = request.headers.get("X-Anon-Visitor-Id") or request.args.get("vid") or data.get("anonVisitorId")
    return parse_anon_visitor_id(raw, required=False)


def _list_for_caller(data: dict, *, create: bool, source_tag: NfcTag | None = None) -> MyList | None:
    user = g.current_user
    if user is not None:
        my_list = list_service.get_user_list(user.id)
        if my_list is None and create:
            my_list = MyList(owner_user_id=user.id)
            db.session.add(my_list)
            db.session.flush()
        return my_list

    anon_id = _anon_id(data)
    if anon_id is None:
        raise ValidationError("anonVisitorId is required")

    if create:
        fingerprint = fingerprint_service.client_fingerprint(request.headers)
        visitor = visitor_service.upsert_visitor(anon_id, ip_hash=fingerprint.ip_hash, user_agent=fingerprint.user_agent)
        return list_service.get_or_create_list_for_visitor(
            visitor,
            source_tag.id if source_tag else None,
            source_tag.batch_id if source_tag else None,
        )

    visitor = visitor_service.get_visitor_by_anon_id(anon_id)
    if visitor is None:
        return None
    if visitor.user_id is not None:
        return list_service.get_user_list(visitor.user_id)
    return list_service.get_visitor_list(visitor.id)


def _item_id(data: dict) -> int:
    raw = data.get("itemId", request.args.get("itemId"))
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationError("itemId is required")


def _list_response(my_list: MyList | None):
    if my_list is None:
        return ok({"list": None, "items": []})
    db.session.refresh(my_list)
    return ok({"list": my_list.to_dict(), "items": [item.to_dict() for item in my_list.items]})


def _handle(e: Exception, action: str):
    db.session.rollback()
    mapped = json_error(e)
    if mapped:
        return mapped
    current_app.logger.exception("Failed to %s list", action)
    return internal_error()


@lists_bp.get("/my")
@optional_auth
def get_my_list_route():
    try:
        return _list_response(_list_for_caller({}, create=False))
    except Exception as e:
        return _handle(e, "load")


@lists_bp.post("/my")
@optional_auth
def add_item_route():
    """
    Body: {"itemLabel": str, "anonVisitorId"?: uuid, "srcTag"?: tag uuid}
    """
    try:
        data = _payload()
        label = require_string(data, "itemLabel", max_length=255)

        source_tag = None
        if data.get("srcTag"):
            source_tag = db.session.query(NfcTag).filter_by(public_uuid=str(data["srcTag"])).first()

        my_list = _list_for_caller(data, create=True, source_tag=source_tag)
        list_service.add_item(
            my_list,
            label,
            source_tag.id if source_tag else None,
            source_tag.batch_id if source_tag else None,
        )
        db.session.commit()
        return _list_response(my_list)
    except Exception as e:
        return _handle(e, "add to")


@lists_bp.put("/my")
@optional_auth
def update_item_route():
    """
    Body: {"itemId": int, "action": "purchase"|"increment"|"decrement"}
    """
    try:
        data = _payload()
        item_id = _item_id(data)
        action = data.get("action")
        if action not in ITEM_ACTIONS:
            raise ValidationError(f"action must be one of: {', '.join(ITEM_ACTIONS)}")

        my_list = _list_for_caller(data, create=False)
        if my_list is None:
            raise NotFoundError("List not found")

        if action == "purchase":
            list_service.mark_purchased(my_list, item_id)
        elif action == "increment":
            list_service.change_quantity(my_list, item_id, 1)
        else:
            list_service.change_quantity(my_list, item_id, -1)
        db.session.commit()
        return _list_response(my_list)
    except Exception as e:
        return _handle(e, "update")


@lists_bp.delete("/my")
@optional_auth
def remove_item_route():
    try:
        data = _payload()
        item_id = _item_id(data)
        my_list = _list_for_caller(data, create=False)
        if my_list is None:
            raise NotFoundError("List not found")

        list_service.remove_item(my_list, item_id)
        db.session.commit()
        return _list_response(my_list)
    except Exception as e:
        return _handle(e, "remove from")
