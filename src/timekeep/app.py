from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

import structlog
from pymongo.asynchronous.database import AsyncDatabase

from timekeep.config import Config
from timekeep.core.core import Core
from timekeep.core.modules.authorizer.models import AuthorizationDecision, AuthorizationRequest
from timekeep.core.modules.security.models import SecuritySettingsView
from timekeep.core.modules.security.validators import validate_password
from timekeep.core.modules.session.models import CleanupResult, ClientInfo, InvalidationReason, SessionView
from timekeep.core.modules.session.policy import is_session_valid
from timekeep.errors import (
    AccountLockedError,
    AuthenticationError,
    CannotTerminateCurrentSessionError,
    InvalidCurrentPasswordError,
    PasswordReusedError,
    SessionNotFoundError,
    UnauthorizedAccessError,
    ValidationError,
)
from timekeep.utils import is_valid_ip, now

logger = structlog.get_logger(__name__)

MAX_USER_AGENT_LENGTH = 1000
LOGIN_TIME_SKEW = timedelta(minutes=5)


class App:
    """Facade for all application operations, validates permissions before delegating to Core."""

    def __init__(self, config: Config, database: AsyncDatabase[dict[str, Any]] | None = None) -> None:
        self._core = Core(config, database)

    @asynccontextmanager
    async def lifespan(self) -> AsyncGenerator[None]:
        """Application lifespan management - delegates to Core."""
        async with self._core.lifespan():
            yield

    async def authorize(self, authorization: str | None, method: str, resource_path: str) -> AuthorizationDecision:
        """Run the decision engine for one inbound request."""
        request = AuthorizationRequest(bearer_token=authorization, method=method, resource_path=resource_path)
        return await self._core.services.authorizer.authorize(request)

    # === Sessions ===
    async def create_session(
        self,
        caller: AuthorizationDecision,
        user_id: str,
        client: ClientInfo,
        user_agent: str,
        login_time: datetime | None = None,
        ip_address: str | None = None,
    ) -> SessionView:
        """Create a session for the caller (own user id only)."""
        self._ensure_owner(caller, user_id)

        user_agent = user_agent.strip()
        if not user_agent:
            raise ValidationError("userAgent is required")
        if len(user_agent) > MAX_USER_AGENT_LENGTH:
            raise ValidationError("userAgent must be at most 1000 characters")
        if ip_address is not None and not is_valid_ip(ip_address):
            raise ValidationError("ipAddress must be a valid IPv4 or IPv6 address")
        if login_time is not None and login_time.tzinfo is None:
            login_time = login_time.replace(tzinfo=UTC)
        if login_time is not None and abs(now() - login_time) > LOGIN_TIME_SKEW:
            raise ValidationError("loginTime must be within 5 minutes of the current time")

        location = await self._core.services.geo.lookup(client.ip_address)
        session = await self._core.services.session.create_session(
            user_id,
            user_agent=user_agent,
            ip_address=client.ip_address,
            login_time=login_time,
            location=location,
            credential_id=caller.credential_id,
        )
        return SessionView.from_domain(session, is_current=True)

    async def get_sessions(self, caller: AuthorizationDecision, user_id: str, client: ClientInfo) -> list[SessionView]:
        """Active sessions of the user, current first, then most recently active."""
        self._ensure_owner(caller, user_id)
        session_service = self._core.services.session

        sessions = await session_service.get_active_sessions(user_id)
        current_id = await session_service.identify_current(
            user_id, client.user_agent, client.ip_address, client.session_id
        )
        if current_id is not None:
            await session_service.record_activity(current_id)

        views = [SessionView.from_domain(s, is_current=s.id == current_id) for s in sessions]
        views.sort(key=lambda v: v.last_activity, reverse=True)
        views.sort(key=lambda v: not v.is_current)
        return views

    async def terminate_session(
        self, caller: AuthorizationDecision, user_id: str, session_id: UUID, client: ClientInfo
    ) -> None:
        """Hard-delete one of the user's sessions, never the caller's own."""
        self._ensure_owner(caller, user_id)
        session_service = self._core.services.session

        session = await session_service.get_session(session_id)
        if session is None:
            raise SessionNotFoundError
        if session.user_id != user_id:
            raise UnauthorizedAccessError("Cannot terminate another user's session")
        if not is_session_valid(session, now()):
            raise SessionNotFoundError("Session not found or already inactive")

        current_id = await session_service.identify_current(
            user_id, client.user_agent, client.ip_address, client.session_id
        )
        if current_id == session_id:
            raise CannotTerminateCurrentSessionError

        await session_service.terminate_session(session_id)

    async def logout(self, caller: AuthorizationDecision, client: ClientInfo) -> UUID | None:
        """Delete the caller's current session if one is recognised. Idempotent."""
        user_id = self._caller_id(caller)
        session_service = self._core.services.session

        session_id = await session_service.identify_current(
            user_id, client.user_agent, client.ip_address, client.session_id
        )
        if session_id is not None:
            await session_service.delete_session(session_id)
            logger.info("user_logged_out", user_id=user_id, session_id=str(session_id))
        else:
            logger.info("logout_without_session", user_id=user_id)

        await session_service.cleanup_expired_sessions(user_id)
        return session_id

    # === Security settings ===
    async def get_security_settings(self, caller: AuthorizationDecision, user_id: str) -> SecuritySettingsView:
        self._ensure_owner(caller, user_id)
        settings = await self._core.services.security.get_settings(user_id)
        return SecuritySettingsView.from_domain(settings)

    async def update_security_settings(
        self,
        caller: AuthorizationDecision,
        user_id: str,
        session_timeout: int | None = None,
        allow_multiple_sessions: bool | None = None,
        require_password_change_every: int | None = None,
    ) -> SecuritySettingsView:
        """Partial update of the user's security settings."""
        self._ensure_owner(caller, user_id)
        settings = await self._core.services.security.update_settings(
            user_id,
            session_timeout=session_timeout,
            allow_multiple_sessions=allow_multiple_sessions,
            require_password_change_every=require_password_change_every,
        )
        return SecuritySettingsView.from_domain(settings)

    async def change_password(
        self,
        caller: AuthorizationDecision,
        user_id: str,
        current_password: str,
        new_password: str,
        client: ClientInfo,
    ) -> None:
        """Change password through the identity provider, then revoke every other session."""
        self._ensure_owner(caller, user_id)
        security = self._core.services.security

        await security.check_lockout(user_id)
        validate_password(new_password)
        if new_password == current_password:
            raise PasswordReusedError("New password must be different from the current password")
        await security.check_password_change_rate(user_id)

        if not await self._core.services.identity.verify_password(user_id, current_password):
            settings = await security.record_failed_attempt(user_id)
            if settings is not None and settings.is_locked(now()):
                raise AccountLockedError
            raise InvalidCurrentPasswordError

        if await security.is_password_reused(user_id, new_password):
            raise PasswordReusedError

        await self._core.services.identity.set_password(user_id, new_password)
        await security.store_password_history(user_id, new_password)
        await security.mark_password_changed(user_id)
        await security.reset_failed_attempts(user_id)

        session_service = self._core.services.session
        current_id = await session_service.identify_current(
            user_id, client.user_agent, client.ip_address, client.session_id
        )
        keep = [current_id] if current_id is not None else []
        await session_service.invalidate_all_user_sessions(user_id, InvalidationReason.PASSWORD_CHANGED, keep=keep)
        logger.info("password_changed", user_id=user_id)

    # === Maintenance ===
    async def run_session_cleanup(self) -> CleanupResult:
        """Scheduled sweep over the whole session store."""
        return await self._core.services.session.run_cleanup()

    @staticmethod
    def _caller_id(caller: AuthorizationDecision) -> str:
        if not caller.allowed or caller.principal_id is None:
            raise AuthenticationError
        return caller.principal_id

    def _ensure_owner(self, caller: AuthorizationDecision, user_id: str) -> None:
        if self._caller_id(caller) != user_id:
            raise UnauthorizedAccessError("You can only manage your own profile")
