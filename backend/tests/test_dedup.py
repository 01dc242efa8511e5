"""
Tap deduplication tests.

Verifies:
- Anonymous id matching inside the window
- Fingerprint (ip_hash + user_agent) matching when no anonymous id
- Strategy priority: an anonymous id never falls back to the fingerprint
- Only originals are candidates, and only on the same tag
"""

from app.services.dedup_service import find_duplicate_tap


ANON = "11111111-1111-4111-8111-111111111111"
OTHER_ANON = "22222222-2222-4222-8222-222222222222"
IP = "a" * 64
UA = "Mozilla/5.0 (iPhone) Mobile"


class TestAnonVisitorStrategy:

    def test_matches_recent_tap_by_same_visitor(self, tag, make_tap):
        first = make_tap(tag, minutes_ago=1, anon_visitor_id=ANON)
        assert find_duplicate_tap(tag.id, ANON, None, None) == first.id

    def test_outside_window_is_not_duplicate(self, tag, make_tap):
        make_tap(tag, minutes_ago=3, anon_visitor_id=ANON)
        assert find_duplicate_tap(tag.id, ANON, None, None) is None

    def test_custom_window(self, tag, make_tap):
        first = make_tap(tag, minutes_ago=3, anon_visitor_id=ANON)
        assert find_duplicate_tap(tag.id, ANON, None, None, window_minutes=5) == first.id

    def test_different_visitor_is_not_duplicate(self, tag, make_tap):
        make_tap(tag, minutes_ago=1, anon_visitor_id=OTHER_ANON)
        assert find_duplicate_tap(tag.id, ANON, None, None) is None

    def test_different_tag_is_not_duplicate(self, tag, make_tag, make_tap):
        other_tag = make_tag()
        make_tap(other_tag, minutes_ago=1, anon_visitor_id=ANON)
        assert find_duplicate_tap(tag.id, ANON, None, None) is None

    def test_anon_id_does_not_fall_back_to_fingerprint(self, tag, make_tap):
        # Same device fingerprint, but the earlier tap had no anonymous id
        make_tap(tag, minutes_ago=1, ip_hash=IP, user_agent=UA)
        assert find_duplicate_tap(tag.id, ANON, IP, UA) is None


class TestFingerprintStrategy:

    def test_matches_ip_and_user_agent(self, tag, make_tap):
        first = make_tap(tag, minutes_ago=1, ip_hash=IP, user_agent=UA)
        assert find_duplicate_tap(tag.id, None, IP, UA) == first.id

    def test_requires_both_ip_and_user_agent(self, tag, make_tap):
        make_tap(tag, minutes_ago=1, ip_hash=IP, user_agent=UA)
        assert find_duplicate_tap(tag.id, None, IP, None) is None
        assert find_duplicate_tap(tag.id, None, None, UA) is None

    def test_user_agent_must_match(self, tag, make_tap):
        make_tap(tag, minutes_ago=1, ip_hash=IP, user_agent=UA)
        assert find_duplicate_tap(tag.id, None, IP, "Other UA") is None

    def test_nothing_to_match_on(self, tag, make_tap):
        make_tap(tag, minutes_ago=1)
        assert find_duplicate_tap(tag.id, None, None, None) is None


class TestOriginalsOnly:

    def test_points_at_original_not_duplicate(self, tag, make_tap):
        original = make_tap(tag, minutes_ago=1.5, anon_visitor_id=ANON)
        make_tap(
            tag,
            minutes_ago=0.5,
            anon_visitor_id=ANON,
            is_duplicate=True,
            duplicate_of_id=original.id,
        )
        assert find_duplicate_tap(tag.id, ANON, None, None) == original.id

    def test_duplicate_alone_is_never_a_candidate(self, tag, make_tap):
        original = make_tap(tag, minutes_ago=5, anon_visitor_id=ANON)
        make_tap(
            tag,
            minutes_ago=1,
            anon_visitor_id=ANON,
            is_duplicate=True,
            duplicate_of_id=original.id,
        )
        assert find_duplicate_tap(tag.id, ANON, None, None) is None

    def test_most_recent_original_wins(self, tag, make_tap):
        make_tap(tag, minutes_ago=1.5, anon_visitor_id=ANON)
        latest = make_tap(tag, minutes_ago=0.5, anon_visitor_id=ANON)
        assert find_duplicate_tap(tag.id, ANON, None, None) == latest.id
