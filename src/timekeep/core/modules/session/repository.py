"""Session records in the ``sessions`` collection."""

from collections.abc import AsyncIterator
from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from pymongo import ASCENDING, DESCENDING
from pymongo.asynchronous.collection import AsyncCollection
from pymongo.errors import PyMongoError

from timekeep.core.modules.session.models import Session
from timekeep.errors import StoreUnavailableError

logger = structlog.get_logger(__name__)


class SessionRepository:
    """CRUD over session records plus the by-user lookup and the full scan.

    Read failures raise StoreUnavailableError; write failures propagate as
    PyMongoError so callers decide whether they are fatal.
    """

    def __init__(self, collection: AsyncCollection[dict[str, Any]]) -> None:
        self._collection = collection

    async def create_indexes(self, ttl_grace_seconds: int) -> None:
        # Secondary index for by-user lookups, newest login first
        await self._collection.create_index([("user_id", ASCENDING), ("login_time", DESCENDING)])
        # Passive TTL floor: reaps only well after the absolute deadline
        await self._collection.create_index([("expires_at", ASCENDING)], expireAfterSeconds=ttl_grace_seconds)

    async def insert(self, session: Session) -> None:
        await self._collection.insert_one(session.to_mongo())

    async def get(self, session_id: UUID) -> Session | None:
        try:
            doc = await self._collection.find_one({"_id": session_id})
        except PyMongoError as e:
            raise StoreUnavailableError("Failed to get session") from e
        return Session.model_validate(doc) if doc is not None else None

    async def find_active_for_user(self, user_id: str, now: datetime) -> list[Session]:
        """Sessions flagged active and before their absolute deadline (rolling timeout not applied)."""
        query = {"user_id": user_id, "is_active": True, "expires_at": {"$gt": now}}
        try:
            return await Session.list_cursor(self._collection.find(query).sort("login_time", DESCENDING))
        except PyMongoError as e:
            raise StoreUnavailableError("Failed to get active sessions") from e

    async def find_flagged_active_for_user(self, user_id: str) -> list[Session]:
        """Sessions still flagged active, including ones past their deadline that were never marked."""
        query = {"user_id": user_id, "is_active": True}
        try:
            return await Session.list_cursor(self._collection.find(query).sort("login_time", DESCENDING))
        except PyMongoError as e:
            raise StoreUnavailableError("Failed to get active sessions") from e

    async def find_all_for_user(self, user_id: str) -> list[Session]:
        try:
            return await Session.list_cursor(self._collection.find({"user_id": user_id}))
        except PyMongoError as e:
            raise StoreUnavailableError("Failed to get sessions") from e

    async def mark_inactive(self, session_id: UUID, reason: str, now: datetime) -> None:
        await self._collection.update_one(
            {"_id": session_id},
            {"$set": {"is_active": False, "expired_at": now, "updated_at": now, "invalidation_reason": str(reason)}},
        )

    async def touch(self, session_id: UUID, now: datetime) -> bool:
        """Advance last_activity; an older timestamp never overwrites a newer one."""
        result = await self._collection.update_one(
            {"_id": session_id, "last_activity": {"$lt": now}},
            {"$set": {"last_activity": now, "updated_at": now}},
        )
        return result.modified_count > 0

    async def delete(self, session_id: UUID) -> bool:
        result = await self._collection.delete_one({"_id": session_id})
        return result.deleted_count > 0

    async def delete_many(self, session_ids: list[UUID]) -> int:
        if not session_ids:
            return 0
        result = await self._collection.delete_many({"_id": {"$in": session_ids}})
        return result.deleted_count

    async def scan(self, page_size: int = 100) -> AsyncIterator[list[Session]]:
        """Yield every session in pages, keyset-paginated on _id."""
        last_id: UUID | None = None
        while True:
            query: dict[str, Any] = {"_id": {"$gt": last_id}} if last_id is not None else {}
            try:
                page = await Session.list_cursor(self._collection.find(query).sort("_id", ASCENDING).limit(page_size))
            except PyMongoError as e:
                raise StoreUnavailableError("Failed to scan sessions") from e
            if not page:
                return
            yield page
            if len(page) < page_size:
                return
            last_id = page[-1].id
