from abc import ABC
from enum import StrEnum


class UserError(ABC, Exception):
    """Base class for user-related errors.

    All errors that inherit from UserError will have their messages
    displayed to the user. These errors should not contain any
    sensitive information.
    """

    code = "BAD_REQUEST"
    status_code = 400
    default_message = "Bad request"

    def __init__(self, message: str | None = None, code: str | None = None) -> None:
        super().__init__(message or self.default_message)
        if code is not None:
            self.code = code


class ValidationError(UserError):
    """Raised when user input fails validation."""

    code = "INVALID_REQUEST"
    default_message = "Invalid request"


class AuthenticationError(UserError):
    """Raised when a request is not authorized to proceed.

    The message is always generic; the failure reason is logged only.
    """

    code = "UNAUTHORIZED"
    status_code = 401
    default_message = "Unauthorized"


class AccessDeniedError(UserError):
    """Raised when a user tries to act on another user's resources."""

    code = "UNAUTHORIZED_PROFILE_ACCESS"
    status_code = 403
    default_message = "Access denied"


class UnauthorizedAccessError(AccessDeniedError):
    pass


class NotFoundError(UserError):
    """Raised when a requested resource is not found."""

    code = "NOT_FOUND"
    status_code = 404
    default_message = "Document not found"


class SessionNotFoundError(NotFoundError):
    """Raised when a session does not exist, is inactive or has expired."""

    code = "SESSION_NOT_FOUND"
    default_message = "Session not found"


class CannotTerminateCurrentSessionError(UserError):
    code = "CANNOT_TERMINATE_CURRENT_SESSION"
    default_message = "You cannot terminate your current session"


class PasswordPolicyError(ValidationError):
    code = "PASSWORD_POLICY_VIOLATION"


class PasswordReusedError(ValidationError):
    code = "PASSWORD_RECENTLY_USED"
    default_message = "Password cannot be one of your recent passwords"


class InvalidCurrentPasswordError(ValidationError):
    code = "INVALID_CURRENT_PASSWORD"
    default_message = "Current password is incorrect"


class AccountLockedError(UserError):
    code = "ACCOUNT_LOCKED"
    status_code = 423
    default_message = "Account is temporarily locked due to failed login attempts"


class RateLimitedError(UserError):
    code = "RATE_LIMITED"
    status_code = 429
    default_message = "Too many requests"


class StoreUnavailableError(UserError):
    """Raised when the session store cannot be read."""

    code = "STORE_UNAVAILABLE"
    status_code = 503
    default_message = "Storage temporarily unavailable"


class IdentityProviderError(UserError):
    code = "IDENTITY_PROVIDER_ERROR"
    status_code = 502
    default_message = "Identity provider request failed"


class DenyReason(StrEnum):
    """Internal failure kinds of the authorization path.

    These are logged, never returned to the caller.
    """

    MISSING_TOKEN = "missing_token"
    TOKEN_INVALID = "token_invalid"
    TOKEN_EXPIRED = "token_expired"
    NO_ACTIVE_SESSION = "no_active_session"
    SESSION_EXPIRED = "session_expired"
    EXISTING_SESSIONS = "existing_sessions"
    STORE_UNAVAILABLE = "store_unavailable"
    INTERNAL_ERROR = "internal_error"
