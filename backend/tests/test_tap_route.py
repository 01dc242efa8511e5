"""
Tap redirect tests.

Verifies:
- Unknown batch/tag and disabled tags redirect to error states without recording
- Every validated tap is recorded, duplicates included, and always redirects
- Link precedence: tag link > session user > visitor's claimed user
- Opportunistic claim of an unclaimed visitor by a signed-in tapper
- Landing preferences and graceful degradation of best-effort steps
"""

from urllib.parse import parse_qs, urlsplit

import pytest

from app.extensions import db
from app.models import IdentityClaim, TapEvent, Visitor
from app.services import preference_service, session_service, tap_service, visitor_service


ANON = "11111111-1111-4111-8111-111111111111"
OTHER_ANON = "22222222-2222-4222-8222-222222222222"
TAG_UUID = "aaaaaaaa-0000-4000-8000-000000000001"
TAP_PATH = f"/t/store-1/{TAG_UUID}"


def _location(resp):
    parts = urlsplit(resp.headers["Location"])
    return parts.path, {k: v[0] for k, v in parse_qs(parts.query).items()}


def _events():
    db.session.expire_all()
    return db.session.query(TapEvent).order_by(TapEvent.id).all()


class TestTagValidation:

    def test_unknown_batch(self, client, tag):
        resp = client.get(f"/t/nope/{TAG_UUID}")
        assert resp.status_code == 302
        path, params = _location(resp)
        assert path == "/"
        assert params["error"] == "batch-not-found"
        assert _events() == []

    def test_unknown_tag(self, client, tag):
        resp = client.get("/t/store-1/bbbbbbbb-0000-4000-8000-000000000009")
        assert resp.status_code == 302
        assert _location(resp)[1]["error"] == "tag-not-found"
        assert _events() == []

    def test_tag_from_another_batch(self, client, db_session, tag):
        from app.models import TagBatch

        other = TagBatch(slug="store-2", name="Store 2")
        db_session.add(other)
        db_session.commit()

        resp = client.get(f"/t/store-2/{TAG_UUID}")
        assert resp.status_code == 302
        assert _location(resp)[1]["error"] == "tag-not-found"
        assert _events() == []

    def test_disabled_tag(self, client, make_tag):
        make_tag(TAG_UUID, status="disabled")
        resp = client.get(TAP_PATH)
        assert resp.status_code == 302
        assert _location(resp)[1]["error"] == "tag-disabled"
        assert _events() == []


class TestAnonymousTaps:

    def test_plain_tap_is_recorded_and_redirected(self, client, tag):
        resp = client.get(TAP_PATH, headers={"User-Agent": "Mozilla/5.0 (iPhone) Mobile"})

        assert resp.status_code == 302
        path, params = _location(resp)
        assert path == "/"
        assert params == {"srcBatch": "store-1", "srcTag": TAG_UUID}

        [event] = _events()
        assert event.tag_id == tag.id
        assert event.batch_id == tag.batch_id
        assert event.user_id is None
        assert event.visitor_id is None
        assert event.tapper_had_session is False
        assert event.is_duplicate is False
        assert event.device_hint == "mobile"

    def test_anon_header_creates_visitor(self, client, tag):
        client.get(TAP_PATH, headers={"X-Anon-Visitor-Id": ANON})

        [event] = _events()
        visitor = visitor_service.get_visitor_by_anon_id(ANON)
        assert visitor.tap_count == 1
        assert visitor.last_tag_id == tag.id
        assert event.anon_visitor_id == ANON
        assert event.visitor_id == visitor.id
        assert event.user_id is None

    def test_query_param_fallback(self, client, tag):
        client.get(f"{TAP_PATH}?vid={ANON}")
        [event] = _events()
        assert event.anon_visitor_id == ANON

    def test_header_wins_over_query(self, client, tag):
        client.get(f"{TAP_PATH}?vid={OTHER_ANON}", headers={"X-Anon-Visitor-Id": ANON})
        [event] = _events()
        assert event.anon_visitor_id == ANON

    def test_malformed_header_falls_back_to_query(self, client, tag):
        client.get(f"{TAP_PATH}?vid={ANON}", headers={"X-Anon-Visitor-Id": "garbage"})
        [event] = _events()
        assert event.anon_visitor_id == ANON
        assert event.visitor_id == visitor_service.get_visitor_by_anon_id(ANON).id

    def test_malformed_anon_id_is_ignored(self, client, tag):
        resp = client.get(TAP_PATH, headers={"X-Anon-Visitor-Id": "not-a-uuid"})
        assert resp.status_code == 302
        [event] = _events()
        assert event.anon_visitor_id is None
        assert db.session.query(Visitor).count() == 0

    def test_duplicate_tap_recorded_but_not_counted(self, client, tag):
        client.get(TAP_PATH, headers={"X-Anon-Visitor-Id": ANON})
        resp = client.get(TAP_PATH, headers={"X-Anon-Visitor-Id": ANON})
        assert resp.status_code == 302

        first, second = _events()
        assert first.is_duplicate is False
        assert second.is_duplicate is True
        assert second.duplicate_of_id == first.id
        assert second.visitor_id == first.visitor_id
        assert visitor_service.get_visitor_by_anon_id(ANON).tap_count == 1

    def test_fingerprint_duplicate(self, client, tag):
        headers = {"X-Forwarded-For": "203.0.113.7", "User-Agent": "UA-1"}
        client.get(TAP_PATH, headers=headers)
        client.get(TAP_PATH, headers=headers)

        first, second = _events()
        assert second.duplicate_of_id == first.id
        assert first.ip_hash is not None
        assert first.ip_hash != "203.0.113.7"

    def test_session_hint_is_stored(self, client, tag):
        client.get(TAP_PATH, headers={"X-Tap-Session-Id": "sess-123"})
        [event] = _events()
        assert event.session_hint == "sess-123"

    def test_absolute_redirect_with_public_base_url(self, client, app, tag, monkeypatch):
        monkeypatch.setitem(app.config, "PUBLIC_BASE_URL", "https://groceries.example/")
        resp = client.get(TAP_PATH)
        assert resp.headers["Location"].startswith("https://groceries.example/?")


class TestLinkPrecedence:

    def test_session_user_links(self, client, tag, user, user_headers):
        client.get(TAP_PATH, headers=user_headers)
        [event] = _events()
        assert event.user_id == user.id
        assert event.link_method == "session"
        assert event.tapper_had_session is True
        assert event.linked_at is not None

    def test_tag_link_beats_session(self, client, make_tag, user, other_user, user_headers):
        make_tag(TAG_UUID, linked_user_id=other_user.id)
        client.get(TAP_PATH, headers=user_headers)

        [event] = _events()
        assert event.user_id == other_user.id
        assert event.link_method == "tag_linked"
        assert event.tapper_had_session is True

    def test_claimed_visitor_links_without_session(self, client, db_session, tag, user):
        visitor_service.ping_visitor(ANON)
        visitor = visitor_service.get_visitor_by_anon_id(ANON)
        visitor.user_id = user.id
        db_session.commit()

        client.get(TAP_PATH, headers={"X-Anon-Visitor-Id": ANON})
        [event] = _events()
        assert event.user_id == user.id
        assert event.link_method == "anonVisitorId"
        assert event.tapper_had_session is False

    def test_tag_link_beats_visitor_claimed_by_someone_else(self, client, db_session, make_tag, user, other_user):
        visitor_service.ping_visitor(ANON)
        visitor = visitor_service.get_visitor_by_anon_id(ANON)
        visitor.user_id = other_user.id
        db_session.commit()
        make_tag(TAG_UUID, linked_user_id=user.id)

        client.get(TAP_PATH, headers={"X-Anon-Visitor-Id": ANON})
        [event] = _events()
        assert event.user_id == user.id
        assert event.link_method == "tag_linked"
        assert event.tapper_had_session is False
        assert event.visitor_id == visitor.id
        assert visitor_service.get_visitor_by_anon_id(ANON).user_id == other_user.id

    def test_session_beats_visitor_claim(self, client, db_session, tag, user, other_user, user_headers):
        visitor_service.ping_visitor(ANON)
        visitor = visitor_service.get_visitor_by_anon_id(ANON)
        visitor.user_id = other_user.id
        db_session.commit()

        client.get(TAP_PATH, headers={**user_headers, "X-Anon-Visitor-Id": ANON})
        [event] = _events()
        assert event.user_id == user.id
        assert event.link_method == "session"
        # The visitor stays with its existing owner
        assert visitor_service.get_visitor_by_anon_id(ANON).user_id == other_user.id


class TestOpportunisticClaim:

    def test_signed_in_tap_claims_anonymous_history(self, client, tag, user, user_headers, make_tap):
        visitor_service.upsert_visitor(ANON, tag.id, tag.batch_id)
        db.session.commit()
        earlier = make_tap(tag, minutes_ago=30, anon_visitor_id=ANON)

        client.get(TAP_PATH, headers={**user_headers, "X-Anon-Visitor-Id": ANON})

        db.session.expire_all()
        visitor = visitor_service.get_visitor_by_anon_id(ANON)
        assert visitor.user_id == user.id
        earlier = db.session.get(TapEvent, earlier.id)
        assert earlier.user_id == user.id
        assert earlier.link_method == "session"
        claim = db.session.query(IdentityClaim).filter_by(user_id=user.id).one()
        assert claim.method == "session"

    def test_first_tap_of_new_visitor_is_claimed(self, client, tag, user, user_headers):
        client.get(TAP_PATH, headers={**user_headers, "X-Anon-Visitor-Id": ANON})
        db.session.expire_all()
        assert visitor_service.get_visitor_by_anon_id(ANON).user_id == user.id

    def test_tag_linked_to_someone_else_blocks_claim(self, client, make_tag, user, other_user, user_headers):
        make_tag(TAG_UUID, linked_user_id=other_user.id)
        client.get(TAP_PATH, headers={**user_headers, "X-Anon-Visitor-Id": ANON})
        db.session.expire_all()
        assert visitor_service.get_visitor_by_anon_id(ANON).user_id is None


class TestLanding:

    def test_list_preference(self, client, tag, user, user_headers):
        preference_service.set_preference(user.id, "list")
        resp = client.get(TAP_PATH, headers=user_headers)
        path, params = _location(resp)
        assert path == "/list"
        assert params["srcTag"] == TAG_UUID

    def test_custom_preference(self, client, tag, user, user_headers):
        preference_service.set_preference(user.id, "custom", "/recipes/weeknight")
        resp = client.get(TAP_PATH, headers=user_headers)
        assert _location(resp)[0] == "/recipes/weeknight"

    def test_invalid_stored_custom_path_falls_back_home(self, client, db_session, tag, user, user_headers):
        pref = preference_service.set_preference(user.id, "custom", "/recipes")
        pref.nfc_landing_path = "/api/secret"
        db_session.commit()

        resp = client.get(TAP_PATH, headers=user_headers)
        assert _location(resp)[0] == "/"

    def test_anonymous_tapper_lands_home(self, client, tag, user):
        preference_service.set_preference(user.id, "list")
        resp = client.get(TAP_PATH)
        assert _location(resp)[0] == "/"


class TestGracefulDegradation:

    def test_session_lookup_failure_still_records(self, client, tag, user_headers, monkeypatch):
        def boom(request):
            raise RuntimeError("session store down")

        monkeypatch.setattr(session_service, "resolve_request_user_id", boom)
        resp = client.get(TAP_PATH, headers=user_headers)

        assert resp.status_code == 302
        [event] = _events()
        assert event.user_id is None
        assert event.tapper_had_session is False

    def test_preference_failure_lands_home(self, client, tag, user, user_headers, monkeypatch):
        def boom(user_id):
            raise RuntimeError("preferences unavailable")

        monkeypatch.setattr(preference_service, "landing_path_for", boom)
        resp = client.get(TAP_PATH, headers=user_headers)

        assert resp.status_code == 302
        assert _location(resp)[0] == "/"
        [event] = _events()
        assert event.user_id == user.id

    def test_unexpected_error_still_redirects(self, client, tag, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("database exploded")

        monkeypatch.setattr(tap_service, "record_tap", boom)
        resp = client.get(TAP_PATH)

        assert resp.status_code == 302
        path, params = _location(resp)
        assert path == "/"
        assert params == {"srcBatch": "store-1", "srcTag": TAG_UUID}


class TestCookieSession:

    def test_login_cookie_attributes_tap(self, client, tag, user):
        resp = client.post("/api/auth/login", json={"email": user.email, "password": "Password123!"})
        assert resp.status_code == 200

        client.get(TAP_PATH)
        [event] = _events()
        assert event.user_id == user.id
        assert event.tapper_had_session is True


@pytest.mark.parametrize("hint,expected", [(None, None), ("  ", None), ("x" * 200, "x" * 128)])
def test_normalize_session_hint(hint, expected):
    assert tap_service.normalize_session_hint(hint) == expected
