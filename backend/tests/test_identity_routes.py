"""
Identity endpoint tests.

Verifies:
- Ping refreshes presence without counting taps
- Anonymous ids are validated (400 VALIDATION_ERROR)
- Claim requires a session and reports ALREADY_CLAIMED conflicts as 409
- Attach-recent is public but throttled per client
- Identify ties a just-recorded tap to the client's anonymous id
"""

from app.extensions import db
from app.models import TapEvent
from app.services import claim_service, visitor_service


ANON = "11111111-1111-4111-8111-111111111111"
TAG_UUID = "aaaaaaaa-0000-4000-8000-000000000001"


class TestPing:

    def test_ping_creates_visitor(self, client, db_session):
        resp = client.post("/api/identity/ping", json={"anonVisitorId": ANON})
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["success"] is True
        assert body["data"]["anonVisitorId"] == ANON
        assert body["data"]["userId"] is None
        assert body["data"]["tapCount"] == 0

    def test_repeated_pings_do_not_count_taps(self, client, tag):
        client.get(f"/t/store-1/{TAG_UUID}", headers={"X-Anon-Visitor-Id": ANON})
        for _ in range(3):
            resp = client.post("/api/identity/ping", json={"anonVisitorId": ANON})
        assert resp.get_json()["data"]["tapCount"] == 1

    def test_uppercase_uuid_is_normalized(self, client, db_session):
        resp = client.post("/api/identity/ping", json={"anonVisitorId": ANON.upper()})
        assert resp.get_json()["data"]["anonVisitorId"] == ANON

    def test_malformed_id(self, client, db_session):
        resp = client.post("/api/identity/ping", json={"anonVisitorId": "abc"})
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "VALIDATION_ERROR"

    def test_missing_id(self, client, db_session):
        resp = client.post("/api/identity/ping", json={})
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "VALIDATION_ERROR"


class TestClaimEndpoint:

    def test_requires_auth(self, client, db_session):
        resp = client.post("/api/identity/claim", json={"anonVisitorId": ANON})
        assert resp.status_code == 401
        assert resp.get_json()["code"] == "UNAUTHORIZED"

    def test_claims_visitor(self, client, tag, user, user_headers, make_tap):
        visitor_service.ping_visitor(ANON)
        make_tap(tag, minutes_ago=3, anon_visitor_id=ANON)

        resp = client.post(
            "/api/identity/claim",
            json={"anonVisitorId": ANON, "method": "login"},
            headers=user_headers,
        )
        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["claimed"] is True
        assert data["tapEventsLinked"] == 1

        db.session.expire_all()
        assert visitor_service.get_visitor_by_anon_id(ANON).user_id == user.id

    def test_conflict_is_409(self, client, db_session, user, other_headers):
        visitor_service.ping_visitor(ANON)
        claim_service.claim(ANON, user.id, "login")

        resp = client.post("/api/identity/claim", json={"anonVisitorId": ANON}, headers=other_headers)
        assert resp.status_code == 409
        body = resp.get_json()
        assert body["success"] is False
        assert body["code"] == "ALREADY_CLAIMED"

    def test_invalid_method(self, client, db_session, user_headers):
        resp = client.post(
            "/api/identity/claim",
            json={"anonVisitorId": ANON, "method": "magic"},
            headers=user_headers,
        )
        assert resp.status_code == 400

    def test_revoked_token_rejected(self, client, db_session, user, login_token):
        from app.services import session_service

        token = login_token(user)
        session_service.revoke_session(token)
        resp = client.post(
            "/api/identity/claim",
            json={"anonVisitorId": ANON},
            headers={"Authorization": f"Bearer {token}"},
        )
        assert resp.status_code == 401


class TestAttachRecent:

    def test_links_hinted_taps(self, client, tag):
        client.get(f"/t/store-1/{TAG_UUID}", headers={"X-Tap-Session-Id": "hint-9"})

        resp = client.post("/api/identity/attach-recent", json={"tapSessionId": "hint-9", "anonVisitorId": ANON})
        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["eventsLinked"] == 1

        db.session.expire_all()
        event = db.session.query(TapEvent).one()
        assert event.anon_visitor_id == ANON
        assert event.visitor_id == data["visitorId"]

    def test_signed_in_caller_becomes_link_target(self, client, tag, user, user_headers):
        client.get(f"/t/store-1/{TAG_UUID}", headers={"X-Tap-Session-Id": "hint-9"})

        resp = client.post(
            "/api/identity/attach-recent",
            json={"tapSessionId": "hint-9", "anonVisitorId": ANON},
            headers=user_headers,
        )
        assert resp.get_json()["data"]["userId"] == user.id

    def test_unknown_hint_is_404(self, client, db_session):
        resp = client.post("/api/identity/attach-recent", json={"tapSessionId": "missing"})
        assert resp.status_code == 404
        assert resp.get_json()["code"] == "NOT_FOUND"

    def test_missing_hint_is_400(self, client, db_session):
        resp = client.post("/api/identity/attach-recent", json={})
        assert resp.status_code == 400

    def test_throttled(self, client, app, db_session, monkeypatch):
        monkeypatch.setitem(app.config, "ATTACH_RATE_LIMIT", 2)
        headers = {"X-Forwarded-For": "203.0.113.50"}
        for _ in range(2):
            resp = client.post("/api/identity/attach-recent", json={"tapSessionId": "x"}, headers=headers)
            assert resp.status_code == 404

        resp = client.post("/api/identity/attach-recent", json={"tapSessionId": "x"}, headers=headers)
        assert resp.status_code == 429
        assert resp.get_json()["code"] == "RATE_LIMITED"
        assert int(resp.headers["Retry-After"]) > 0

        other = client.post(
            "/api/identity/attach-recent",
            json={"tapSessionId": "x"},
            headers={"X-Forwarded-For": "203.0.113.51"},
        )
        assert other.status_code == 404


class TestIdentifyEndpoint:

    def test_identify_after_tap(self, client, tag):
        headers = {"X-Forwarded-For": "203.0.113.7", "User-Agent": "UA-1"}
        client.get(f"/t/store-1/{TAG_UUID}", headers=headers)

        resp = client.post(
            "/api/tap/identify",
            json={"anonVisitorId": ANON, "srcBatch": "store-1", "srcTag": TAG_UUID},
            headers=headers,
        )
        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["tagResolved"] is True
        assert data["tapEventsLinked"] == 1

        db.session.expire_all()
        event = db.session.query(TapEvent).one()
        assert event.visitor_id == data["visitorId"]
        assert event.anon_visitor_id == ANON

    def test_unknown_batch_is_404(self, client, tag):
        resp = client.post(
            "/api/tap/identify",
            json={"anonVisitorId": ANON, "srcBatch": "nope", "srcTag": TAG_UUID},
        )
        assert resp.status_code == 404
        assert resp.get_json()["code"] == "NOT_FOUND"
        assert visitor_service.get_visitor_by_anon_id(ANON) is None

    def test_malformed_id_is_400(self, client, db_session):
        resp = client.post("/api/tap/identify", json={"anonVisitorId": "123"})
        assert resp.status_code == 400
