"""Bearer credential validation results."""

from typing import Any

from pydantic import BaseModel, Field

from timekeep.errors import DenyReason


class TokenValidationResult(BaseModel):
    """Outcome of validating a bearer credential.

    A valid result carries the subject and the full claim set; an invalid
    one carries a human-readable reason for the logs.
    """

    valid: bool
    user_id: str | None = None
    claims: dict[str, Any] = Field(default_factory=dict)
    reason: str | None = None
    kind: DenyReason | None = None

    @classmethod
    def ok(cls, user_id: str, claims: dict[str, Any]) -> "TokenValidationResult":
        return cls(valid=True, user_id=user_id, claims=claims)

    @classmethod
    def invalid(cls, reason: str, kind: DenyReason = DenyReason.TOKEN_INVALID) -> "TokenValidationResult":
        return cls(valid=False, reason=reason, kind=kind)
