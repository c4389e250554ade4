"""Tests for current-session identification."""

from datetime import UTC, datetime, timedelta

from timekeep.core.modules.session.current import client_ip, identify_current_session, resolve_current_session_id
from timekeep.core.modules.session.models import Session

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)
CHROME = "Mozilla/5.0 Chrome/120"
FIREFOX = "Mozilla/5.0 Firefox/121"


def make_session(user_agent=CHROME, ip_address="203.0.113.7", idle_minutes=0):
    return Session(
        user_id="u1",
        login_time=NOW - timedelta(hours=1),
        last_activity=NOW - timedelta(minutes=idle_minutes),
        expires_at=NOW + timedelta(hours=7),
        user_agent=user_agent,
        ip_address=ip_address,
    )


class TestIdentifyCurrentSession:
    """Tests for exact user agent and IP matching."""

    def test_matches_exact_user_agent_and_ip(self):
        """Test that the session with the same UA and IP is current."""
        current = make_session()
        other = make_session(user_agent=FIREFOX)
        assert identify_current_session([other, current], CHROME, "203.0.113.7") is current

    def test_no_match_returns_none(self):
        """Test that nothing is returned when no session matches both fields."""
        sessions = [make_session(ip_address="198.51.100.1"), make_session(user_agent=FIREFOX)]
        assert identify_current_session(sessions, CHROME, "203.0.113.7") is None

    def test_prefix_is_not_a_match(self):
        """Test that matching is exact string equality."""
        assert identify_current_session([make_session()], "Mozilla/5.0", "203.0.113.7") is None

    def test_most_recent_activity_wins(self):
        """Test that among several matches the most recently active one is picked."""
        older = make_session(idle_minutes=30)
        newer = make_session(idle_minutes=1)
        assert identify_current_session([older, newer], CHROME, "203.0.113.7") is newer

    def test_tie_keeps_store_order(self):
        """Test that equal activity resolves to the first session in store order."""
        first = make_session(idle_minutes=5)
        second = make_session(idle_minutes=5)
        assert identify_current_session([first, second], CHROME, "203.0.113.7") is first

    def test_empty_list(self):
        """Test that a user without sessions has no current session."""
        assert identify_current_session([], CHROME, "203.0.113.7") is None


class TestResolveCurrentSessionId:
    """Tests for the explicit session id taking precedence."""

    def test_explicit_id_wins_over_heuristic(self):
        """Test that a supplied session id naming a user session is used."""
        heuristic = make_session()
        explicit = make_session(user_agent=FIREFOX)
        result = resolve_current_session_id([heuristic, explicit], CHROME, "203.0.113.7", str(explicit.id))
        assert result == explicit.id

    def test_unknown_explicit_id_falls_back(self):
        """Test that an id not among the user's sessions is ignored."""
        session = make_session()
        result = resolve_current_session_id([session], CHROME, "203.0.113.7", "not-a-session")
        assert result == session.id

    def test_no_match_returns_none(self):
        """Test that None is returned without explicit id or match."""
        assert resolve_current_session_id([make_session()], FIREFOX, "203.0.113.7") is None


class TestClientIp:
    """Tests for client address resolution from proxy headers."""

    def test_first_forwarded_hop(self):
        """Test that the first X-Forwarded-For entry is the client."""
        headers = {"x-forwarded-for": "203.0.113.7, 10.0.0.1, 10.0.0.2", "x-real-ip": "10.0.0.9"}
        assert client_ip(headers, "10.0.0.3") == "203.0.113.7"

    def test_real_ip_then_cloudflare(self):
        """Test the fallback order of the single-address headers."""
        assert client_ip({"x-real-ip": "198.51.100.2", "cf-connecting-ip": "198.51.100.3"}) == "198.51.100.2"
        assert client_ip({"cf-connecting-ip": "198.51.100.3"}) == "198.51.100.3"

    def test_socket_peer_fallback(self):
        """Test that the peer address is used without proxy headers."""
        assert client_ip({}, "192.0.2.10") == "192.0.2.10"
        assert client_ip({}) == "unknown"
