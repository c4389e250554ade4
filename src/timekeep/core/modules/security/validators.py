import re

from timekeep.errors import PasswordPolicyError, ValidationError

MIN_SESSION_TIMEOUT = 15  # minutes
MAX_SESSION_TIMEOUT = 43200  # 30 days
MAX_PASSWORD_CHANGE_EVERY = 365  # days
MAX_PASSWORD_BYTES = 72  # bcrypt input limit

SPECIAL_CHAR_RE = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]")


def validate_password(password: str) -> None:
    """Validate password meets requirements.

    Requirements:
    - At least 8 characters, at most 72 bytes once UTF-8 encoded
    - At least one letter, one digit and one special character

    Raises:
        PasswordPolicyError: If password doesn't meet requirements
    """
    if len(password) < 8:
        raise PasswordPolicyError("Password must be at least 8 characters long")

    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise PasswordPolicyError("Password must be at most 72 bytes long")

    if not re.search(r"[A-Za-z]", password):
        raise PasswordPolicyError("Password must contain at least one letter")

    if not re.search(r"\d", password):
        raise PasswordPolicyError("Password must contain at least one number")

    if not SPECIAL_CHAR_RE.search(password):
        raise PasswordPolicyError("Password must contain at least one special character")


def validate_session_timeout(minutes: int) -> None:
    if not MIN_SESSION_TIMEOUT <= minutes <= MAX_SESSION_TIMEOUT:
        raise ValidationError("Session timeout must be between 15 minutes and 30 days (43200 minutes)")


def validate_password_change_every(days: int) -> None:
    if not 0 <= days <= MAX_PASSWORD_CHANGE_EVERY:
        raise ValidationError("Password change frequency must be between 0 (never) and 365 days")
