"""
MyList tests.

Verifies:
- Anonymous visitors keep a list keyed by anonVisitorId
- Signed-in users always read and write their own list
- Item actions: add (re-add bumps quantity), purchase, increment, decrement, remove
- Merge policy for colliding items at claim time
"""

from datetime import timedelta

import pytest

from app.models import MyListItem
from app.services import claim_service, list_service, visitor_service
from app.time_utils import utcnow


ANON = "11111111-1111-4111-8111-111111111111"
TAG_UUID = "aaaaaaaa-0000-4000-8000-000000000001"
ANON_HEADERS = {"X-Anon-Visitor-Id": ANON}


def _items(resp):
    return {item["item_key"]: item for item in resp.get_json()["data"]["items"]}


class TestAnonymousList:

    def test_empty_list(self, client, db_session):
        resp = client.get("/api/list/my", headers=ANON_HEADERS)
        assert resp.status_code == 200
        assert resp.get_json()["data"] == {"list": None, "items": []}

    def test_anon_id_required(self, client, db_session):
        resp = client.get("/api/list/my")
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "VALIDATION_ERROR"

    def test_add_item_creates_visitor_and_list(self, client, tag):
        resp = client.post(
            "/api/list/my",
            json={"itemLabel": "  Oat Milk ", "srcTag": TAG_UUID},
            headers=ANON_HEADERS,
        )
        assert resp.status_code == 200
        data = resp.get_json()["data"]
        item = _items(resp)["oat-milk"]
        assert item["item_label"] == "Oat Milk"
        assert item["quantity"] == 1
        assert item["source_tag_id"] == tag.id

        visitor = visitor_service.get_visitor_by_anon_id(ANON)
        assert data["list"]["owner_visitor_id"] == visitor.id
        assert visitor.tap_count == 0

    def test_anon_id_from_body_or_query(self, client, db_session):
        client.post("/api/list/my", json={"itemLabel": "Eggs", "anonVisitorId": ANON})
        resp = client.get(f"/api/list/my?vid={ANON}")
        assert list(_items(resp)) == ["eggs"]

    def test_readd_bumps_quantity_and_unpurchases(self, client, db_session):
        resp = client.post("/api/list/my", json={"itemLabel": "Eggs"}, headers=ANON_HEADERS)
        item_id = _items(resp)["eggs"]["id"]
        client.put("/api/list/my", json={"itemId": item_id, "action": "purchase"}, headers=ANON_HEADERS)

        resp = client.post("/api/list/my", json={"itemLabel": "eggs"}, headers=ANON_HEADERS)
        item = _items(resp)["eggs"]
        assert item["quantity"] == 2
        assert item["purchased_at"] is None
        assert item["times_purchased"] == 1

    def test_blank_label(self, client, db_session):
        resp = client.post("/api/list/my", json={"itemLabel": "   "}, headers=ANON_HEADERS)
        assert resp.status_code == 400


class TestItemActions:

    @pytest.fixture
    def item_id(self, client, db_session):
        resp = client.post("/api/list/my", json={"itemLabel": "Bread"}, headers=ANON_HEADERS)
        return _items(resp)["bread"]["id"]

    def test_purchase(self, client, item_id):
        resp = client.put("/api/list/my", json={"itemId": item_id, "action": "purchase"}, headers=ANON_HEADERS)
        item = _items(resp)["bread"]
        assert item["purchased_at"] is not None
        assert item["times_purchased"] == 1

    def test_increment_and_decrement(self, client, item_id):
        client.put("/api/list/my", json={"itemId": item_id, "action": "increment"}, headers=ANON_HEADERS)
        resp = client.put("/api/list/my", json={"itemId": item_id, "action": "increment"}, headers=ANON_HEADERS)
        assert _items(resp)["bread"]["quantity"] == 3

        for _ in range(5):
            resp = client.put("/api/list/my", json={"itemId": item_id, "action": "decrement"}, headers=ANON_HEADERS)
        assert _items(resp)["bread"]["quantity"] == 1

    def test_unknown_action(self, client, item_id):
        resp = client.put("/api/list/my", json={"itemId": item_id, "action": "eat"}, headers=ANON_HEADERS)
        assert resp.status_code == 400

    def test_unknown_item(self, client, item_id):
        resp = client.put("/api/list/my", json={"itemId": item_id + 100, "action": "purchase"}, headers=ANON_HEADERS)
        assert resp.status_code == 404

    def test_remove_by_query(self, client, item_id):
        resp = client.delete(f"/api/list/my?itemId={item_id}", headers=ANON_HEADERS)
        assert resp.status_code == 200
        assert _items(resp) == {}

    def test_other_visitor_cannot_touch_item(self, client, item_id):
        other = {"X-Anon-Visitor-Id": "22222222-2222-4222-8222-222222222222"}
        client.post("/api/list/my", json={"itemLabel": "Jam"}, headers=other)
        resp = client.delete(f"/api/list/my?itemId={item_id}", headers=other)
        assert resp.status_code == 404

    def test_missing_list(self, client, db_session):
        resp = client.put("/api/list/my", json={"itemId": 1, "action": "purchase"}, headers=ANON_HEADERS)
        assert resp.status_code == 404


class TestSignedInList:

    def test_user_list_ignores_anon_id(self, client, user, user_headers):
        client.post("/api/list/my", json={"itemLabel": "Anon thing"}, headers=ANON_HEADERS)
        resp = client.post("/api/list/my", json={"itemLabel": "Coffee"}, headers={**user_headers, **ANON_HEADERS})

        data = resp.get_json()["data"]
        assert data["list"]["owner_user_id"] == user.id
        assert list(_items(resp)) == ["coffee"]

    def test_claimed_visitor_sees_user_list(self, client, user, user_headers):
        client.post("/api/list/my", json={"itemLabel": "Coffee"}, headers=user_headers)
        visitor_service.ping_visitor(ANON)
        claim_service.claim(ANON, user.id, "manual")

        resp = client.get("/api/list/my", headers=ANON_HEADERS)
        assert list(_items(resp)) == ["coffee"]


class TestMergeItemInto:

    def _item(self, **fields):
        base = dict(item_key="eggs", item_label="Eggs", quantity=1, times_purchased=0, last_added_at=utcnow())
        base.update(fields)
        return MyListItem(**base)

    def test_max_quantity_and_purchases(self):
        target = self._item(quantity=2, times_purchased=1)
        source = self._item(quantity=5, times_purchased=0)
        list_service.merge_item_into(target, source)
        assert target.quantity == 5
        assert target.times_purchased == 1

    def test_newer_source_carries_purchase_state(self):
        now = utcnow()
        target = self._item(last_added_at=now - timedelta(days=1), purchased_at=now - timedelta(days=1))
        source = self._item(last_added_at=now, purchased_at=None)
        list_service.merge_item_into(target, source)
        assert target.purchased_at is None
        assert target.last_added_at == now

    def test_target_wins_ties(self):
        now = utcnow()
        target = self._item(last_added_at=now, purchased_at=now)
        source = self._item(last_added_at=now, purchased_at=None)
        list_service.merge_item_into(target, source)
        assert target.purchased_at == now

    def test_backfills_attribution(self):
        target = self._item(source_tag_id=None, source_batch_id=None)
        source = self._item(source_tag_id=7, source_batch_id=3)
        list_service.merge_item_into(target, source)
        assert (target.source_tag_id, target.source_batch_id) == (7, 3)

    def test_item_key_normalization(self):
        assert list_service.item_key_for("  Greek   Yogurt ") == "greek-yogurt"
