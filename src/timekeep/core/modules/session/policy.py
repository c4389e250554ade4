"""Pure validity and retention rules for sessions."""

from datetime import datetime, timedelta

from timekeep.core.modules.session.models import DeleteDecision, DeleteReason, Session

ORPHAN_SESSION_DAYS = 30


def is_timed_out(session: Session, now: datetime) -> bool:
    """True when the session has been idle longer than its own rolling timeout."""
    return now - session.last_activity > timedelta(minutes=session.session_timeout)


def is_session_valid(session: Session, now: datetime) -> bool:
    """A session is valid iff active, before its absolute deadline and within its rolling timeout."""
    return session.is_active and now < session.expires_at and not is_timed_out(session, now)


def should_delete_session(session: Session, now: datetime, orphan_days: int = ORPHAN_SESSION_DAYS) -> DeleteDecision:
    """Decide whether the maintenance sweep removes a session.

    Checks run in priority order: absolute deadline, inactive flag, rolling
    timeout, then the age ceiling which applies regardless of activity.
    """
    if session.expires_at <= now:
        return DeleteDecision(delete=True, reason=DeleteReason.EXPIRED)

    if not session.is_active:
        return DeleteDecision(delete=True, reason=DeleteReason.INACTIVE)

    if is_timed_out(session, now):
        return DeleteDecision(delete=True, reason=DeleteReason.EXPIRED)

    created_at = min(session.created_at, session.login_time)
    if created_at < now - timedelta(days=orphan_days):
        return DeleteDecision(delete=True, reason=DeleteReason.ORPHANED)

    return DeleteDecision(delete=False)


def is_cleanup_candidate(session: Session, now: datetime) -> bool:
    """Sessions removed opportunistically at logout: inactive, past deadline, or idle too long."""
    return session.expires_at <= now or not session.is_active or is_timed_out(session, now)
