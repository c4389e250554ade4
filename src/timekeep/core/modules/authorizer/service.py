import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import structlog
from pymongo.asynchronous.database import AsyncDatabase

from timekeep.config import Config
from timekeep.core.core import Service
from timekeep.core.modules.authorizer.models import AuthorizationDecision, AuthorizationRequest
from timekeep.core.modules.token.models import TokenValidationResult
from timekeep.core.modules.token.validator import credential_identifier, extract_bearer_token
from timekeep.errors import DenyReason

logger = structlog.get_logger(__name__)

BOOTSTRAP_PATH_PATTERNS = (
    re.compile(r"^/users/[^/]+/sessions/?$"),
    re.compile(r"^/users/\*/sessions/?$"),
)

ROLE_PRECEDENCE = ("admin", "manager", "employee")
DEFAULT_ROLE = "employee"


def is_bootstrap_request(method: str, resource_path: str) -> bool:
    """True for session creation (``POST /users/{id}/sessions``). Payload is never consulted."""
    if method.upper() != "POST":
        return False
    return any(pattern.match(resource_path) for pattern in BOOTSTRAP_PATH_PATTERNS)


def derive_role(claims: Mapping[str, Any]) -> str:
    """Explicit role claim first, then group membership (admin > manager > employee)."""
    role = claims.get("custom:role")
    if role:
        return str(role)

    groups = claims.get("cognito:groups") or []
    if isinstance(groups, str):
        groups = [groups]
    for candidate in ROLE_PRECEDENCE:
        if candidate in groups:
            return candidate
    return DEFAULT_ROLE


def _claim(claims: Mapping[str, Any], name: str) -> str:
    value = claims.get(name)
    return "" if value is None else str(value)


def build_context(claims: Mapping[str, Any], extra: Mapping[str, Any] | None = None) -> dict[str, str]:
    """Flat string map handed to downstream handlers on Allow."""
    context = {
        "userId": _claim(claims, "sub"),
        "email": _claim(claims, "email"),
        "role": derive_role(claims),
        "teamId": _claim(claims, "custom:teamId"),
        "department": _claim(claims, "custom:department"),
        "authTime": _claim(claims, "auth_time"),
        "issuedAt": _claim(claims, "iat"),
        "expiry": _claim(claims, "exp"),
    }
    if extra:
        context.update({key: str(value) for key, value in extra.items()})
    return context


@dataclass(frozen=True)
class BreakGlass:
    """Force-bootstrap override.

    Armed only when the flag is set together with the acknowledgement phrase.
    While armed, any valid token may create a session without session checks.
    """

    enabled: bool
    acknowledged: bool

    @classmethod
    def from_config(cls, config: Config) -> "BreakGlass":
        return cls(enabled=config.force_bootstrap, acknowledged=config.force_bootstrap_armed)

    @property
    def armed(self) -> bool:
        return self.enabled and self.acknowledged


class AuthorizerService(Service):
    """Per-request allow/deny decision.

    Token check, then either the bootstrap branch (session creation) or the
    normal branch (token plus at least one valid session). Every failure is
    collapsed into a bare Deny; the reason is only logged.
    """

    def __init__(self, database: AsyncDatabase[dict[str, Any]]) -> None:
        super().__init__(database)
        self.break_glass = BreakGlass(enabled=False, acknowledged=False)

    async def on_start(self) -> None:
        self.break_glass = BreakGlass.from_config(self.core.config)
        if self.break_glass.armed:
            logger.error("force_bootstrap_armed", detail="session checks are bypassed for session creation")
        elif self.break_glass.enabled:
            logger.warning("force_bootstrap_ignored", detail="flag set without acknowledgement phrase")

    async def validate_authentication(self, token: str) -> TokenValidationResult:
        """Valid token and at least one valid session."""
        result = await self.core.services.token.validate(token)
        if not result.valid or result.user_id is None:
            return result

        sessions = await self.core.services.session.validate_user_sessions(result.user_id)
        if sessions.error_message is not None:
            return TokenValidationResult.invalid(sessions.error_message, DenyReason.STORE_UNAVAILABLE)
        if not sessions.has_active_sessions and sessions.expired_count:
            return TokenValidationResult.invalid("All sessions have expired", DenyReason.SESSION_EXPIRED)
        if not sessions.has_active_sessions:
            return TokenValidationResult.invalid("No active sessions", DenyReason.NO_ACTIVE_SESSION)
        return result

    async def authorize(self, request: AuthorizationRequest) -> AuthorizationDecision:
        try:
            return await self._authorize(request)
        except Exception as e:
            logger.exception("authorization_failed", reason=DenyReason.INTERNAL_ERROR, error=str(e))
            return AuthorizationDecision.deny()

    async def _authorize(self, request: AuthorizationRequest) -> AuthorizationDecision:
        log = logger.bind(method=request.method, path=request.resource_path)

        token = extract_bearer_token(request.bearer_token)
        if token is None:
            log.info("authorization_denied", reason=DenyReason.MISSING_TOKEN)
            return AuthorizationDecision.deny()

        if not is_bootstrap_request(request.method, request.resource_path):
            result = await self.validate_authentication(token)
            if not result.valid or result.user_id is None:
                log.info("authorization_denied", reason=result.kind, detail=result.reason)
                return AuthorizationDecision.deny()
            return AuthorizationDecision.allow(
                result.user_id, build_context(result.claims), credential_identifier(result.claims)
            )

        result = await self.core.services.token.validate(token)
        if not result.valid or result.user_id is None:
            log.info("authorization_denied", reason=result.kind, detail=result.reason, bootstrap=True)
            return AuthorizationDecision.deny()

        if self.break_glass.armed:
            log.warning("bootstrap_forced", user_id=result.user_id)
            context = build_context(result.claims, {"bootstrap": "true", "reason": "forced"})
            return AuthorizationDecision.allow(result.user_id, context, credential_identifier(result.claims))

        sessions = await self.core.services.session.validate_user_sessions(result.user_id)
        if sessions.error_message is not None:
            log.warning("authorization_denied", reason=DenyReason.STORE_UNAVAILABLE, user_id=result.user_id)
            return AuthorizationDecision.deny()
        if sessions.has_active_sessions:
            log.info(
                "authorization_denied",
                reason=DenyReason.EXISTING_SESSIONS,
                user_id=result.user_id,
                session_count=sessions.session_count,
            )
            return AuthorizationDecision.deny()

        log.info("bootstrap_allowed", user_id=result.user_id)
        context = build_context(result.claims, {"bootstrap": "true", "reason": "no_existing_sessions"})
        return AuthorizationDecision.allow(result.user_id, context, credential_identifier(result.claims))
