"""Authorization request and decision models."""

from enum import StrEnum

from pydantic import BaseModel

UNKNOWN = "UNKNOWN"


class Effect(StrEnum):
    ALLOW = "Allow"
    DENY = "Deny"


def parse_method_arn(method_arn: str) -> tuple[str, str]:
    """Split a gateway method ARN into (method, resource path).

    Format: ``arn:aws:execute-api:region:account:api-id/stage/METHOD/resource/path``.
    Anything shorter yields ``("UNKNOWN", "UNKNOWN")``.
    """
    parts = method_arn.split("/")
    if len(parts) < 4:
        return UNKNOWN, UNKNOWN
    return parts[2] or UNKNOWN, "/" + "/".join(parts[3:])


class AuthorizationRequest(BaseModel):
    """Input of the decision engine.

    ``bearer_token`` is the raw ``Authorization`` header value.
    """

    bearer_token: str | None
    method: str
    resource_path: str

    @classmethod
    def from_method_arn(cls, bearer_token: str | None, method_arn: str) -> "AuthorizationRequest":
        method, resource_path = parse_method_arn(method_arn)
        return cls(bearer_token=bearer_token, method=method, resource_path=resource_path)


class AuthorizationDecision(BaseModel):
    """Allow carries the caller context; Deny never carries anything."""

    effect: Effect
    principal_id: str | None = None
    context: dict[str, str] | None = None
    credential_id: str | None = None  # jti, else sub_iat, of the presented token

    @property
    def allowed(self) -> bool:
        return self.effect == Effect.ALLOW

    @classmethod
    def allow(
        cls, principal_id: str, context: dict[str, str], credential_id: str | None = None
    ) -> "AuthorizationDecision":
        return cls(effect=Effect.ALLOW, principal_id=principal_id, context=context, credential_id=credential_id)

    @classmethod
    def deny(cls) -> "AuthorizationDecision":
        return cls(effect=Effect.DENY)
