"""Bearer credential verification against the identity provider's keys."""

from collections.abc import Iterable
from typing import Any

import structlog
from jose import ExpiredSignatureError, JWTError, jwt
from jose.exceptions import JOSEError, JWTClaimsError

from timekeep.core.modules.token.keys import JwksClient, KeyFetchError, SigningKeyNotFound
from timekeep.core.modules.token.models import TokenValidationResult
from timekeep.errors import DenyReason

logger = structlog.get_logger(__name__)


def extract_bearer_token(authorization: str | None) -> str | None:
    """Return the token from an ``Authorization: Bearer <token>`` value, or None if malformed."""
    if not authorization:
        return None
    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer":
        return None
    return parts[1] or None


def credential_identifier(claims: dict[str, Any]) -> str | None:
    """Stable identifier of the credential: its ``jti``, else ``{sub}_{iat}``."""
    jti = claims.get("jti")
    if jti:
        return str(jti)
    if claims.get("sub") and claims.get("iat") is not None:
        return f"{claims['sub']}_{claims['iat']}"
    return None


class TokenValidator:
    """Verifies signature, algorithm, issuer and expiry of bearer credentials.

    Fails closed: every problem yields an invalid result, nothing is raised.
    """

    def __init__(
        self,
        issuer: str,
        jwks_client: JwksClient,
        algorithms: Iterable[str] = ("RS256",),
        audience: str | None = None,
    ) -> None:
        self.issuer = issuer
        self.jwks_client = jwks_client
        self.algorithms = list(algorithms)
        self.audience = audience

    async def validate(self, token: str) -> TokenValidationResult:
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as e:
            return TokenValidationResult.invalid(f"Malformed token header: {e}")

        algorithm = header.get("alg")
        if algorithm not in self.algorithms:
            return TokenValidationResult.invalid(f"Unsupported algorithm: {algorithm}")

        kid = header.get("kid")
        if not kid:
            return TokenValidationResult.invalid("Token header has no key id")

        try:
            key = await self.jwks_client.get_signing_key(kid)
        except (KeyFetchError, SigningKeyNotFound) as e:
            return TokenValidationResult.invalid(str(e))

        try:
            claims = jwt.decode(
                token,
                key,
                algorithms=self.algorithms,
                issuer=self.issuer,
                audience=self.audience,
                options={"verify_aud": self.audience is not None, "verify_at_hash": False},
            )
        except ExpiredSignatureError:
            return TokenValidationResult.invalid("Token has expired", DenyReason.TOKEN_EXPIRED)
        except JWTClaimsError as e:
            return TokenValidationResult.invalid(f"Invalid claims: {e}")
        except JWTError as e:
            return TokenValidationResult.invalid(f"Signature verification failed: {e}")
        except JOSEError as e:
            logger.warning("token_verification_error", error=str(e))
            return TokenValidationResult.invalid(f"Token verification error: {e}")

        # jose skips the issuer check when the claim is absent
        if claims.get("iss") != self.issuer:
            return TokenValidationResult.invalid("Invalid claims: issuer mismatch")

        user_id = claims.get("sub")
        if not user_id:
            return TokenValidationResult.invalid("Invalid token payload: missing subject")

        return TokenValidationResult.ok(str(user_id), claims)
