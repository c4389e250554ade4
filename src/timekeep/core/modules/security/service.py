from datetime import timedelta
from typing import Any

import bcrypt
import structlog
from pymongo import DESCENDING, ReturnDocument
from pymongo.asynchronous.database import AsyncDatabase
from pymongo.errors import PyMongoError

from timekeep.core.core import Service
from timekeep.core.modules.security.models import PasswordHistoryEntry, UserSecuritySettings, default_security_settings
from timekeep.core.modules.security.validators import validate_password_change_every, validate_session_timeout
from timekeep.errors import AccountLockedError, RateLimitedError, StoreUnavailableError
from timekeep.utils import now

logger = structlog.get_logger(__name__)

BCRYPT_ROUNDS = 12


class SecurityService(Service):
    """Security settings, lockout state and password history per user."""

    def __init__(self, database: AsyncDatabase[dict[str, Any]]) -> None:
        super().__init__(database)
        self._settings = database.get_collection("security_settings")
        self._history = database.get_collection("password_history")

    async def on_start(self) -> None:
        """Create indexes on startup."""
        await self._settings.create_index([("user_id", 1)], unique=True)
        await self._history.create_index([("user_id", 1), ("created_at", DESCENDING)], unique=True)
        # TTL index drops history entries after their retention period
        await self._history.create_index([("expires_at", 1)], expireAfterSeconds=0)

    async def get_settings(self, user_id: str) -> UserSecuritySettings:
        """Get settings, creating them with defaults on first access.

        When the store cannot be read the permissive defaults are returned
        instead; this fail-open path is logged as an error.
        """
        try:
            return await self._get_or_create(user_id)
        except PyMongoError as e:
            logger.error("security_settings_fallback_to_defaults", user_id=user_id, error=str(e))
            return default_security_settings(user_id)

    async def update_settings(
        self,
        user_id: str,
        session_timeout: int | None = None,
        allow_multiple_sessions: bool | None = None,
        require_password_change_every: int | None = None,
    ) -> UserSecuritySettings:
        """Partial update; None values are left unchanged."""
        changes: dict[str, Any] = {}
        if session_timeout is not None:
            validate_session_timeout(session_timeout)
            changes["session_timeout"] = session_timeout
        if allow_multiple_sessions is not None:
            changes["allow_multiple_sessions"] = allow_multiple_sessions
        if require_password_change_every is not None:
            validate_password_change_every(require_password_change_every)
            changes["require_password_change_every"] = require_password_change_every

        try:
            settings = await self._get_or_create(user_id)
            if not changes:
                return settings
            changes["updated_at"] = now()
            doc = await self._settings.find_one_and_update(
                {"user_id": user_id}, {"$set": changes}, return_document=ReturnDocument.AFTER
            )
        except PyMongoError as e:
            raise StoreUnavailableError("Failed to update security settings") from e

        logger.info("security_settings_updated", user_id=user_id, fields=sorted(changes))
        return UserSecuritySettings.model_validate(doc)

    async def check_lockout(self, user_id: str) -> UserSecuritySettings:
        """Raise AccountLockedError while the account is locked."""
        settings = await self.get_settings(user_id)
        if settings.is_locked(now()):
            raise AccountLockedError
        return settings

    async def record_failed_attempt(self, user_id: str) -> UserSecuritySettings | None:
        """Count a failed credential check, locking the account once the limit is reached."""
        current_time = now()
        try:
            await self._get_or_create(user_id)
            doc = await self._settings.find_one_and_update(
                {"user_id": user_id},
                {"$inc": {"failed_login_attempts": 1}, "$set": {"updated_at": current_time}},
                return_document=ReturnDocument.AFTER,
            )
            settings = UserSecuritySettings.model_validate(doc)
            if settings.failed_login_attempts >= settings.max_failed_attempts:
                locked_until = current_time + timedelta(minutes=settings.lockout_duration)
                await self._settings.update_one({"user_id": user_id}, {"$set": {"account_locked_until": locked_until}})
                settings.account_locked_until = locked_until
                logger.warning("account_locked", user_id=user_id, locked_until=locked_until)
        except PyMongoError as e:
            logger.warning("failed_attempt_not_recorded", user_id=user_id, error=str(e))
            return None
        return settings

    async def reset_failed_attempts(self, user_id: str) -> None:
        try:
            await self._settings.update_one(
                {"user_id": user_id},
                {"$set": {"failed_login_attempts": 0, "account_locked_until": None, "updated_at": now()}},
            )
        except PyMongoError as e:
            logger.warning("failed_attempts_reset_failed", user_id=user_id, error=str(e))

    async def mark_password_changed(self, user_id: str) -> None:
        current_time = now()
        try:
            await self._get_or_create(user_id)
            await self._settings.update_one(
                {"user_id": user_id}, {"$set": {"password_last_changed": current_time, "updated_at": current_time}}
            )
        except PyMongoError as e:
            logger.warning("password_change_timestamp_failed", user_id=user_id, error=str(e))

    # === Password history ===
    async def is_password_reused(self, user_id: str, password: str) -> bool:
        """Compare against the most recent history entries. A failed read allows the change."""
        try:
            entries = await self._recent_history(user_id, self.core.config.password_history_size)
        except PyMongoError as e:
            logger.warning("password_history_check_failed", user_id=user_id, error=str(e))
            return False
        return any(bcrypt.checkpw(password.encode("utf-8"), e.password_hash.encode("utf-8")) for e in entries)

    async def store_password_history(self, user_id: str, password: str) -> None:
        """Append a hash of the new password and prune to the retention size. Best effort."""
        keep = self.core.config.password_history_size
        try:
            password_hash = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(BCRYPT_ROUNDS)).decode("utf-8")
            await self._history.insert_one(PasswordHistoryEntry(user_id=user_id, password_hash=password_hash).to_mongo())
            cursor = self._history.find({"user_id": user_id}, {"_id": 1}).sort("created_at", DESCENDING).skip(keep)
            stale_ids = [doc["_id"] async for doc in cursor]
            if stale_ids:
                await self._history.delete_many({"_id": {"$in": stale_ids}})
        except (PyMongoError, ValueError) as e:
            logger.warning("password_history_store_failed", user_id=user_id, error=str(e))

    async def check_password_change_rate(self, user_id: str) -> None:
        """Raise RateLimitedError when the daily password change limit is used up."""
        since = now() - timedelta(days=1)
        try:
            recent = await self._history.count_documents({"user_id": user_id, "created_at": {"$gt": since}})
        except PyMongoError as e:
            logger.warning("password_rate_check_failed", user_id=user_id, error=str(e))
            return
        if recent >= self.core.config.password_changes_per_day:
            raise RateLimitedError("Too many password changes, try again later", code="PASSWORD_CHANGE_RATE_LIMITED")

    async def _recent_history(self, user_id: str, limit: int) -> list[PasswordHistoryEntry]:
        cursor = self._history.find({"user_id": user_id}).sort("created_at", DESCENDING).limit(limit)
        return await PasswordHistoryEntry.list_cursor(cursor)

    async def _get_or_create(self, user_id: str) -> UserSecuritySettings:
        doc = await self._settings.find_one({"user_id": user_id})
        if doc is not None:
            return UserSecuritySettings.model_validate(doc)

        defaults = default_security_settings(user_id).to_mongo()
        defaults.pop("user_id")
        doc = await self._settings.find_one_and_update(
            {"user_id": user_id},
            {"$setOnInsert": defaults},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        logger.debug("security_settings_created", user_id=user_id)
        return UserSecuritySettings.model_validate(doc)
