"""
User store.

Users and, in passkey mode, the public-key credentials attached to them.
"""

from __future__ import annotations

import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from homie.core.models import Credential, User, UserRecord
from homie.core.utils import from_millis, generate_id, to_millis, utc_now
from homie.storage.database import CredentialRow, Store, UserRow

logger = logging.getLogger(__name__)


def _to_record(row: UserRow) -> UserRecord:
    return UserRecord(
        id=row.id,
        name=row.name,
        username=row.username,
        created_at=from_millis(row.created_at),
        password_hash=row.password_hash,
    )


def _to_user(row: UserRow) -> User:
    return User(
        id=row.id,
        name=row.name,
        username=row.username,
        created_at=from_millis(row.created_at),
    )


def _to_credential(row: CredentialRow) -> Credential:
    return Credential(
        id=row.id,
        user_id=row.user_id,
        public_key=row.public_key,
        counter=row.counter,
        transports=list(row.transports or []),
    )


class UserStore(Store):
    """Repository for users and their credentials."""

    async def create(
        self,
        name: str,
        *,
        username: str | None = None,
        password_hash: str | None = None,
        db: AsyncSession | None = None,
    ) -> User:
        """Insert a user. A duplicate username raises IntegrityError."""
        row = UserRow(
            id=generate_id("user"),
            username=username,
            name=name,
            password_hash=password_hash,
            created_at=to_millis(utc_now()),
        )
        async with self._session(db) as s:
            s.add(row)
            await s.flush()
        return _to_user(row)

    async def get_by_id(self, user_id: str) -> User | None:
        async with self._session() as s:
            row = await s.get(UserRow, user_id)
            return _to_user(row) if row else None

    async def get_by_username(self, username: str) -> UserRecord | None:
        """Find a user by username, including the password hash."""
        async with self._session() as s:
            row = await s.scalar(select(UserRow).where(UserRow.username == username))
            return _to_record(row) if row else None

    async def update(self, user_id: str, *, name: str | None = None) -> User | None:
        """Update profile fields. Returns None if the user does not exist."""
        async with self._session() as s:
            row = await s.get(UserRow, user_id)
            if row is None:
                return None
            if name is not None:
                row.name = name
            await s.flush()
            return _to_user(row)

    # -------------------------------------------------------------------------
    # Credentials
    # -------------------------------------------------------------------------

    async def add_credential(
        self,
        user_id: str,
        credential_id: str,
        public_key: bytes,
        counter: int = 0,
        transports: list[str] | None = None,
        *,
        db: AsyncSession | None = None,
    ) -> Credential:
        row = CredentialRow(
            id=credential_id,
            user_id=user_id,
            public_key=public_key,
            counter=counter,
            transports=list(transports or []),
            created_at=to_millis(utc_now()),
        )
        async with self._session(db) as s:
            s.add(row)
            await s.flush()
        return _to_credential(row)

    async def get_credential(self, credential_id: str) -> Credential | None:
        async with self._session() as s:
            row = await s.get(CredentialRow, credential_id)
            return _to_credential(row) if row else None

    async def get_by_credential_id(self, credential_id: str) -> User | None:
        """Resolve the user that owns a credential."""
        async with self._session() as s:
            row = await s.scalar(
                select(UserRow)
                .join(CredentialRow, CredentialRow.user_id == UserRow.id)
                .where(CredentialRow.id == credential_id)
            )
            return _to_user(row) if row else None

    async def update_credential_counter(self, credential_id: str, counter: int) -> bool:
        async with self._session() as s:
            result = await s.execute(
                update(CredentialRow)
                .where(CredentialRow.id == credential_id)
                .values(counter=counter)
            )
            return result.rowcount > 0
