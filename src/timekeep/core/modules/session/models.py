"""Session management models."""

from datetime import datetime
from enum import StrEnum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from timekeep.core.db import MongoModel
from timekeep.utils import now

DEFAULT_SESSION_TIMEOUT_MINUTES = 480


class SessionLocation(BaseModel):
    city: str
    country: str


class Session(MongoModel):
    """One authenticated client instance.

    Indexed on user_id (by-user lookups) and expires_at (TTL, with a grace
    period so the store never reaps a record before its deadline).
    """

    user_id: str
    login_time: datetime
    last_activity: datetime
    expires_at: datetime
    is_active: bool = True
    session_timeout: int = DEFAULT_SESSION_TIMEOUT_MINUTES  # minutes, copied from settings at creation
    ip_address: str = "unknown"
    user_agent: str = "Unknown"
    location: SessionLocation | None = None
    credential_id: str | None = None  # jti (or sub_iat) of the credential that created the session
    created_at: datetime = Field(default_factory=now)
    updated_at: datetime = Field(default_factory=now)
    expired_at: datetime | None = None
    invalidation_reason: str | None = None


class ClientInfo(BaseModel):
    """Request metadata used to recognise the caller's own session."""

    user_agent: str
    ip_address: str
    session_id: str | None = None  # explicit X-Session-Id header


class InvalidationReason(StrEnum):
    TIMED_OUT = "session_timeout"
    EXPIRED = "session_expired"
    SINGLE_SESSION_POLICY = "single_session_policy"
    PASSWORD_CHANGED = "password_changed"
    ADMIN_ACTION = "admin_action"
    SECURITY_UPDATE = "security_update"


class SessionValidationResult(BaseModel):
    has_active_sessions: bool
    session_count: int
    expired_count: int = 0
    error_message: str | None = None


class DeleteReason(StrEnum):
    EXPIRED = "expired"
    INACTIVE = "inactive"
    ORPHANED = "orphaned"


class DeleteDecision(BaseModel):
    delete: bool
    reason: DeleteReason | None = None


class CleanupResult(BaseModel):
    """Counters reported by the maintenance sweep."""

    total_sessions: int = 0
    expired_sessions: int = 0
    inactive_sessions: int = 0
    orphaned_sessions: int = 0
    deleted_sessions: int = 0
    errors: int = 0


class SessionView(BaseModel):
    """Session as shown to its owner (API representation)."""

    id: UUID = Field(..., description="Session ID")
    ip_address: str = Field(..., description="Client IP address at login")
    user_agent: str = Field(..., description="Client user agent")
    login_time: datetime = Field(..., description="When the session was created")
    last_activity: datetime = Field(..., description="Last recorded activity")
    is_current: bool = Field(..., description="Whether this is the session making the request")
    location: SessionLocation | None = Field(None, description="Approximate location derived from the IP address")

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @classmethod
    def from_domain(cls, session: Session, is_current: bool = False) -> "SessionView":
        """Create view model from domain model."""
        return cls(
            id=session.id,
            ip_address=session.ip_address,
            user_agent=session.user_agent,
            login_time=session.login_time,
            last_activity=session.last_activity,
            is_current=is_current,
            location=session.location,
        )
