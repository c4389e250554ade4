import asyncio
from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

import structlog
from pymongo.asynchronous.database import AsyncDatabase
from pymongo.errors import PyMongoError

from timekeep.core.core import Service
from timekeep.core.modules.session.current import resolve_current_session_id
from timekeep.core.modules.session.models import (
    CleanupResult,
    DeleteReason,
    InvalidationReason,
    Session,
    SessionLocation,
    SessionValidationResult,
)
from timekeep.core.modules.session.policy import (
    is_cleanup_candidate,
    is_session_valid,
    is_timed_out,
    should_delete_session,
)
from timekeep.core.modules.session.repository import SessionRepository
from timekeep.errors import StoreUnavailableError
from timekeep.utils import now

logger = structlog.get_logger(__name__)


class SessionService(Service):
    """Session lifecycle rules on top of the session store.

    Authorization-critical reads fail closed; housekeeping writes (expiry
    marks, cleanup, bulk invalidation) are logged and never fail the
    request that triggered them.
    """

    def __init__(self, database: AsyncDatabase[dict[str, Any]]) -> None:
        super().__init__(database)
        self.repository = SessionRepository(database.get_collection("sessions"))

    async def on_start(self) -> None:
        """Create indexes on startup."""
        await self.repository.create_indexes(ttl_grace_seconds=self.core.config.session_ttl_grace_hours * 3600)

    async def validate_user_sessions(self, user_id: str) -> SessionValidationResult:
        """Count the user's valid sessions, marking expired and timed-out ones inactive."""
        current_time = now()
        try:
            sessions = await self.repository.find_flagged_active_for_user(user_id)
        except StoreUnavailableError as e:
            logger.error("session_validation_failed", user_id=user_id, error=str(e.__cause__ or e))
            return SessionValidationResult(
                has_active_sessions=False, session_count=0, error_message=f"Session validation error: {e}"
            )

        valid = [s for s in sessions if is_session_valid(s, current_time)]
        stale = [s for s in sessions if not is_session_valid(s, current_time)]

        if stale:
            logger.info("sessions_expired", user_id=user_id, session_ids=[str(s.id) for s in stale])
            await asyncio.gather(*(self._mark_expired(s, current_time) for s in stale))

        return SessionValidationResult(
            has_active_sessions=len(valid) > 0, session_count=len(valid), expired_count=len(stale)
        )

    async def get_active_sessions(self, user_id: str) -> list[Session]:
        """Active, unexpired sessions within their rolling timeout."""
        current_time = now()
        sessions = await self.repository.find_active_for_user(user_id, current_time)
        return [s for s in sessions if not is_timed_out(s, current_time)]

    async def get_session(self, session_id: UUID) -> Session | None:
        return await self.repository.get(session_id)

    async def create_session(
        self,
        user_id: str,
        user_agent: str,
        ip_address: str,
        login_time: datetime | None = None,
        location: SessionLocation | None = None,
        credential_id: str | None = None,
    ) -> Session:
        """Persist a new session, enforcing the single-session policy first."""
        settings = await self.core.services.security.get_settings(user_id)

        if not settings.allow_multiple_sessions:
            await self.invalidate_all_user_sessions(user_id, InvalidationReason.SINGLE_SESSION_POLICY)

        login_time = login_time or now()
        session = Session(
            user_id=user_id,
            login_time=login_time,
            last_activity=login_time,
            expires_at=login_time + timedelta(minutes=settings.session_timeout),
            session_timeout=settings.session_timeout,
            ip_address=ip_address,
            user_agent=user_agent,
            location=location,
            credential_id=credential_id,
        )
        await self.repository.insert(session)
        logger.info("session_created", user_id=user_id, session_id=str(session.id), expires_at=session.expires_at)
        return session

    async def record_activity(self, session_id: UUID) -> None:
        """Heartbeat: advance last_activity, best effort."""
        try:
            await self.repository.touch(session_id, now())
        except PyMongoError as e:
            logger.warning("session_touch_failed", session_id=str(session_id), error=str(e))

    async def terminate_session(self, session_id: UUID) -> bool:
        """Hard-delete a session by id."""
        deleted = await self.repository.delete(session_id)
        logger.info("session_terminated", session_id=str(session_id), deleted=deleted)
        return deleted

    async def delete_session(self, session_id: UUID) -> bool:
        return await self.repository.delete(session_id)

    async def invalidate_all_user_sessions(
        self, user_id: str, reason: str = InvalidationReason.SECURITY_UPDATE, keep: Iterable[UUID] = ()
    ) -> int:
        """Mark every active session of the user inactive, except the ones in ``keep``."""
        try:
            sessions = await self.repository.find_active_for_user(user_id, now())
        except StoreUnavailableError as e:
            logger.error("invalidate_sessions_lookup_failed", user_id=user_id, error=str(e))
            return 0

        keep_ids = set(keep)
        session_ids = [s.id for s in sessions if s.id not in keep_ids]
        if not session_ids:
            return 0
        count = await self.invalidate_specific_sessions(session_ids, reason)
        logger.info("user_sessions_invalidated", user_id=user_id, count=count, reason=str(reason))
        return count

    async def invalidate_specific_sessions(self, session_ids: list[UUID], reason: str = InvalidationReason.ADMIN_ACTION) -> int:
        """Mark the given sessions inactive. Per-item failures are logged and skipped."""
        current_time = now()
        results = await asyncio.gather(
            *(self.repository.mark_inactive(session_id, str(reason), current_time) for session_id in session_ids),
            return_exceptions=True,
        )
        invalidated = 0
        for session_id, result in zip(session_ids, results, strict=True):
            if isinstance(result, Exception):
                logger.error("session_invalidation_failed", session_id=str(session_id), error=str(result))
            else:
                invalidated += 1
        return invalidated

    async def cleanup_expired_sessions(self, user_id: str) -> int:
        """Delete the user's inactive, past-deadline and timed-out sessions. Best effort."""
        try:
            sessions = await self.repository.find_all_for_user(user_id)
            current_time = now()
            expired = [s.id for s in sessions if is_cleanup_candidate(s, current_time)]
            deleted = await self.repository.delete_many(expired)
        except (StoreUnavailableError, PyMongoError) as e:
            logger.warning("session_cleanup_failed", user_id=user_id, error=str(e))
            return 0

        if deleted:
            logger.info("expired_sessions_cleaned", user_id=user_id, deleted=deleted)
        return deleted

    async def identify_current(
        self, user_id: str, user_agent: str, ip_address: str, explicit_session_id: str | None = None
    ) -> UUID | None:
        """Session id representing this caller right now, or None. Never persisted."""
        try:
            sessions = await self.get_active_sessions(user_id)
        except StoreUnavailableError as e:
            logger.warning("current_session_lookup_failed", user_id=user_id, error=str(e))
            return None
        return resolve_current_session_id(sessions, user_agent, ip_address, explicit_session_id)

    # === Maintenance sweep ===
    async def get_all_sessions(self) -> list[Session]:
        """Full paginated scan of the session store."""
        sessions: list[Session] = []
        async for page in self.repository.scan(self.core.config.sweep_page_size):
            sessions.extend(page)
        return sessions

    async def delete_sessions(self, session_ids: list[UUID]) -> int:
        """Delete in throttled batches; a failed batch falls back to per-item deletes.

        Returns the number of sessions deleted. Partial success is not an error.
        """
        config = self.core.config
        batch_size = config.sweep_batch_size
        deleted_count = 0

        for start in range(0, len(session_ids), batch_size):
            batch = session_ids[start : start + batch_size]
            try:
                await self.repository.delete_many(batch)
                deleted_count += len(batch)
                logger.debug("session_batch_deleted", batch=len(batch), deleted=deleted_count, total=len(session_ids))
            except PyMongoError as e:
                logger.warning("session_batch_delete_failed", batch=len(batch), error=str(e))
                for session_id in batch:
                    try:
                        await self.repository.delete(session_id)
                        deleted_count += 1
                    except PyMongoError as item_error:
                        logger.error("session_delete_failed", session_id=str(session_id), error=str(item_error))

            # Throttle between batches to stay under store throughput limits
            if start + batch_size < len(session_ids):
                await asyncio.sleep(config.sweep_batch_delay_seconds)

        return deleted_count

    async def run_cleanup(self) -> CleanupResult:
        """Scheduled sweep: classify every session and delete the ones past retention."""
        result = CleanupResult()
        try:
            sessions = await self.get_all_sessions()
        except StoreUnavailableError as e:
            logger.error("session_sweep_scan_failed", error=str(e))
            result.errors = 1
            return result

        result.total_sessions = len(sessions)
        current_time = now()
        orphan_days = self.core.config.orphan_session_days
        to_delete: list[UUID] = []

        for session in sessions:
            decision = should_delete_session(session, current_time, orphan_days)
            if not decision.delete:
                continue
            to_delete.append(session.id)
            if decision.reason == DeleteReason.EXPIRED:
                result.expired_sessions += 1
            elif decision.reason == DeleteReason.INACTIVE:
                result.inactive_sessions += 1
            elif decision.reason == DeleteReason.ORPHANED:
                result.orphaned_sessions += 1

        if to_delete:
            result.deleted_sessions = await self.delete_sessions(to_delete)
        result.errors += len(to_delete) - result.deleted_sessions

        logger.info("session_sweep_completed", **result.model_dump())
        return result

    async def _mark_expired(self, session: Session, current_time: datetime) -> None:
        reason = InvalidationReason.EXPIRED if session.expires_at <= current_time else InvalidationReason.TIMED_OUT
        try:
            await self.repository.mark_inactive(session.id, reason, current_time)
        except PyMongoError as e:
            logger.warning("session_expiry_mark_failed", session_id=str(session.id), error=str(e))
