"""
Session store.

Sessions are opaque random tokens with a sliding expiry. Expired
sessions are deleted the first time anyone reads them and are never
returned.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta

from sqlalchemy import delete, update
from sqlalchemy.ext.asyncio import AsyncSession

from homie.core.models import Session
from homie.core.utils import from_millis, to_millis, utc_now
from homie.storage.database import Database, SessionRow, Store

logger = logging.getLogger(__name__)


class SessionStore(Store):
    """Create, look up, slide and revoke sessions."""

    def __init__(self, database: Database, ttl: timedelta):
        super().__init__(database)
        self.ttl = ttl

    async def create(self, user_id: str, *, db: AsyncSession | None = None) -> Session:
        """Start a new session for a user, expiring one TTL from now."""
        session = Session(
            id=secrets.token_urlsafe(32),
            user_id=user_id,
            expires_at=self._expiry(),
        )

        async with self._session(db) as s:
            s.add(SessionRow(
                id=session.id,
                user_id=session.user_id,
                expires_at=to_millis(session.expires_at),
            ))
            await s.flush()

        logger.debug(f"Session created for user {user_id}")
        return session

    async def get(self, session_id: str) -> Session | None:
        """Read a session. Expired sessions are deleted and reported as absent."""
        async with self._session() as s:
            return await self._load(s, session_id)

    async def refresh(self, session_id: str) -> Session | None:
        """Read a session and push its expiry to now + TTL (sliding expiration)."""
        async with self._session() as s:
            session = await self._load(s, session_id)
            if session is None:
                return None

            expires_at = self._expiry()
            result = await s.execute(
                update(SessionRow)
                .where(SessionRow.id == session_id)
                .values(expires_at=to_millis(expires_at))
            )
            if result.rowcount == 0:
                # Deleted (logout) between the read and the update
                return None
            return session.model_copy(update={"expires_at": expires_at})

    async def delete(self, session_id: str) -> bool:
        """Remove a session. Returns whether one existed."""
        async with self._session() as s:
            result = await s.execute(delete(SessionRow).where(SessionRow.id == session_id))
            return result.rowcount > 0

    def _expiry(self) -> datetime:
        # Stored with millisecond precision
        return from_millis(to_millis(utc_now() + self.ttl))

    async def _load(self, s: AsyncSession, session_id: str) -> Session | None:
        row = await s.get(SessionRow, session_id)
        if row is None:
            return None

        expires_at = from_millis(row.expires_at)
        if expires_at < utc_now():
            await s.execute(delete(SessionRow).where(SessionRow.id == session_id))
            logger.info(f"Expired session removed for user {row.user_id}")
            return None

        return Session(id=row.id, user_id=row.user_id, expires_at=expires_at)
