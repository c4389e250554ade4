"""Per-user security policy and password history."""

from datetime import datetime, timedelta

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from timekeep.core.db import MongoModel
from timekeep.utils import now

DEFAULT_SESSION_TIMEOUT = 480  # minutes
DEFAULT_MAX_FAILED_ATTEMPTS = 5
DEFAULT_LOCKOUT_DURATION = 30  # minutes
PASSWORD_HISTORY_RETENTION_DAYS = 365


class UserSecuritySettings(MongoModel):
    """Security policy of one user.

    Indexed on user_id - unique. Created lazily with defaults, never deleted.
    """

    user_id: str
    session_timeout: int = DEFAULT_SESSION_TIMEOUT
    allow_multiple_sessions: bool = True
    max_failed_attempts: int = DEFAULT_MAX_FAILED_ATTEMPTS
    lockout_duration: int = DEFAULT_LOCKOUT_DURATION
    require_password_change_every: int = 0  # days, 0 = never
    password_last_changed: datetime = Field(default_factory=now)
    failed_login_attempts: int = 0
    account_locked_until: datetime | None = None
    created_at: datetime = Field(default_factory=now)
    updated_at: datetime = Field(default_factory=now)

    @property
    def password_expires_at(self) -> datetime | None:
        if self.require_password_change_every <= 0:
            return None
        return self.password_last_changed + timedelta(days=self.require_password_change_every)

    def is_locked(self, at: datetime) -> bool:
        return self.account_locked_until is not None and self.account_locked_until > at


def default_security_settings(user_id: str) -> UserSecuritySettings:
    """Permissive defaults, also served when the settings store cannot be read (fail-open)."""
    return UserSecuritySettings(user_id=user_id)


class PasswordHistoryEntry(MongoModel):
    """A previous password, kept to prevent reuse.

    Unique on (user_id, created_at); TTL on expires_at.
    """

    user_id: str
    created_at: datetime = Field(default_factory=now)
    password_hash: str  # bcrypt hash
    expires_at: datetime = Field(default_factory=lambda: now() + timedelta(days=PASSWORD_HISTORY_RETENTION_DAYS))


class SecuritySettingsView(BaseModel):
    """Security settings (API representation)."""

    session_timeout: int = Field(..., description="Rolling session timeout in minutes")
    allow_multiple_sessions: bool = Field(..., description="Whether concurrent sessions are allowed")
    require_password_change_every: int = Field(..., description="Password rotation period in days, 0 = never")
    password_change_required: bool = Field(..., description="Whether the password rotation period has elapsed")
    password_last_changed: datetime = Field(..., description="When the password was last changed")
    password_expires_at: datetime | None = Field(None, description="When the password must be rotated")
    max_failed_login_attempts: int = Field(..., description="Failed attempts before lockout")
    account_lockout_duration: int = Field(..., description="Lockout duration in minutes")

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @classmethod
    def from_domain(cls, settings: UserSecuritySettings) -> "SecuritySettingsView":
        expires_at = settings.password_expires_at
        return cls(
            session_timeout=settings.session_timeout,
            allow_multiple_sessions=settings.allow_multiple_sessions,
            require_password_change_every=settings.require_password_change_every,
            password_change_required=expires_at is not None and expires_at <= now(),
            password_last_changed=settings.password_last_changed,
            password_expires_at=expires_at,
            max_failed_login_attempts=settings.max_failed_attempts,
            account_lockout_duration=settings.lockout_duration,
        )
