"""Tests for session validity and retention rules."""

from datetime import UTC, datetime, timedelta

from timekeep.core.modules.session.models import DeleteReason, Session
from timekeep.core.modules.session.policy import (
    is_cleanup_candidate,
    is_session_valid,
    is_timed_out,
    should_delete_session,
)

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


def make_session(**overrides):
    values = {
        "user_id": "u1",
        "login_time": NOW - timedelta(hours=1),
        "last_activity": NOW - timedelta(minutes=5),
        "expires_at": NOW + timedelta(hours=7),
        "session_timeout": 480,
        "created_at": NOW - timedelta(hours=1),
    }
    values.update(overrides)
    return Session(**values)


class TestIsSessionValid:
    """Tests for the three-part validity rule."""

    def test_fresh_session_is_valid(self):
        """Test that an active, unexpired, recently used session is valid."""
        assert is_session_valid(make_session(), NOW)

    def test_inactive_session_is_invalid(self):
        """Test that the soft-delete flag makes a session invalid."""
        assert not is_session_valid(make_session(is_active=False), NOW)

    def test_past_deadline_is_invalid(self):
        """Test that a session at or past expires_at is invalid."""
        assert not is_session_valid(make_session(expires_at=NOW), NOW)

    def test_idle_at_479_minutes_is_valid(self):
        """Test that 479 idle minutes on a 480 minute timeout is still valid."""
        session = make_session(last_activity=NOW - timedelta(minutes=479))
        assert not is_timed_out(session, NOW)
        assert is_session_valid(session, NOW)

    def test_idle_exactly_at_timeout_is_valid(self):
        """Test that the timeout boundary itself is inclusive."""
        assert is_session_valid(make_session(last_activity=NOW - timedelta(minutes=480)), NOW)

    def test_idle_at_481_minutes_is_invalid(self):
        """Test that 481 idle minutes on a 480 minute timeout is invalid."""
        session = make_session(last_activity=NOW - timedelta(minutes=481))
        assert is_timed_out(session, NOW)
        assert not is_session_valid(session, NOW)

    def test_timeout_is_per_session(self):
        """Test that each session's own captured timeout is used."""
        session = make_session(session_timeout=15, last_activity=NOW - timedelta(minutes=16))
        assert not is_session_valid(session, NOW)


class TestShouldDeleteSession:
    """Tests for the sweep decision and its reason priority."""

    def test_keeps_valid_session(self):
        """Test that a valid young session is kept."""
        decision = should_delete_session(make_session(), NOW)
        assert not decision.delete
        assert decision.reason is None

    def test_past_deadline_is_expired(self):
        """Test that a session past expires_at is deleted as expired."""
        decision = should_delete_session(make_session(expires_at=NOW - timedelta(seconds=1)), NOW)
        assert decision.delete
        assert decision.reason == DeleteReason.EXPIRED

    def test_deadline_wins_over_inactive_flag(self):
        """Test that the absolute deadline is reported before the inactive flag."""
        decision = should_delete_session(make_session(expires_at=NOW, is_active=False), NOW)
        assert decision.reason == DeleteReason.EXPIRED

    def test_inactive_session(self):
        """Test that a soft-deleted session is deleted as inactive."""
        decision = should_delete_session(make_session(is_active=False), NOW)
        assert decision.delete
        assert decision.reason == DeleteReason.INACTIVE

    def test_timed_out_session_is_expired(self):
        """Test that a session idle past its timeout is deleted as expired."""
        decision = should_delete_session(make_session(last_activity=NOW - timedelta(minutes=481)), NOW)
        assert decision.reason == DeleteReason.EXPIRED

    def test_orphan_ceiling(self):
        """Test that a 31 day old active session with no expiry breach is orphaned."""
        session = make_session(
            created_at=NOW - timedelta(days=31),
            login_time=NOW - timedelta(days=31),
            last_activity=NOW - timedelta(minutes=1),
            expires_at=NOW + timedelta(days=1),
            session_timeout=43200,
        )
        decision = should_delete_session(session, NOW)
        assert decision.delete
        assert decision.reason == DeleteReason.ORPHANED

    def test_exactly_thirty_days_is_not_orphaned(self):
        """Test that the age ceiling only applies to sessions older than 30 days."""
        session = make_session(
            created_at=NOW - timedelta(days=30),
            login_time=NOW - timedelta(days=30),
            last_activity=NOW - timedelta(minutes=1),
            expires_at=NOW + timedelta(days=1),
            session_timeout=43200,
        )
        assert not should_delete_session(session, NOW).delete
        assert should_delete_session(session, NOW + timedelta(seconds=1)).reason == DeleteReason.ORPHANED

    def test_orphan_days_configurable(self):
        """Test that the age ceiling can be changed."""
        session = make_session(created_at=NOW - timedelta(days=3), login_time=NOW - timedelta(days=3))
        session.last_activity = NOW
        session.expires_at = NOW + timedelta(days=1)
        assert should_delete_session(session, NOW, orphan_days=2).reason == DeleteReason.ORPHANED
        assert not should_delete_session(session, NOW, orphan_days=30).delete


class TestIsCleanupCandidate:
    """Tests for the logout-time cleanup filter."""

    def test_valid_session_is_not_candidate(self):
        """Test that valid sessions survive cleanup."""
        assert not is_cleanup_candidate(make_session(), NOW)

    def test_invalid_sessions_are_candidates(self):
        """Test that inactive, expired and timed-out sessions are removed."""
        assert is_cleanup_candidate(make_session(is_active=False), NOW)
        assert is_cleanup_candidate(make_session(expires_at=NOW), NOW)
        assert is_cleanup_candidate(make_session(last_activity=NOW - timedelta(minutes=481)), NOW)
