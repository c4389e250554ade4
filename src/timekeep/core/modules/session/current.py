"""Heuristic identification of the session serving the current request."""

from collections.abc import Mapping, Sequence
from uuid import UUID

from timekeep.core.modules.session.models import Session


def identify_current_session(sessions: Sequence[Session], user_agent: str, ip_address: str) -> Session | None:
    """Pick the session whose stored user agent and IP exactly match the request.

    Several matches (two tabs behind one NAT) resolve to the most recently
    active one; equal activity keeps the store's iteration order. The match
    is not collision-free, so an explicit session id is preferred when the
    client sends one.
    """
    matching = [s for s in sessions if s.user_agent == user_agent and s.ip_address == ip_address]
    if not matching:
        return None
    # max() returns the first maximal element, preserving store order on ties
    return max(matching, key=lambda s: s.last_activity)


def resolve_current_session_id(
    sessions: Sequence[Session],
    user_agent: str,
    ip_address: str,
    explicit_session_id: str | None = None,
) -> UUID | None:
    """Explicit session id (when it names one of the sessions) wins over the heuristic."""
    if explicit_session_id:
        explicit = next((s for s in sessions if str(s.id) == explicit_session_id), None)
        if explicit is not None:
            return explicit.id

    current = identify_current_session(sessions, user_agent, ip_address)
    return current.id if current is not None else None


def client_ip(headers: Mapping[str, str], fallback: str | None = None) -> str:
    """Resolve the caller's address from proxy headers, falling back to the socket peer."""
    forwarded_for = headers.get("x-forwarded-for")
    if forwarded_for:
        # May contain a chain of proxies; the first entry is the original client
        return forwarded_for.split(",")[0].strip()
    return headers.get("x-real-ip") or headers.get("cf-connecting-ip") or fallback or "unknown"
