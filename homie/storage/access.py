"""
Access control store.

Maps users to inventories. Every inventory has exactly one owner;
members may open it but never own it. An inventory with no access
record is inaccessible to everyone.
"""

from __future__ import annotations

import logging

from sqlalchemy import delete, exists, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from homie.core.models import InventoryAccess, InventoryMembers, UserSummary
from homie.core.utils import to_millis, utc_now
from homie.storage.database import InventoryMemberRow, InventoryRow, Store, UserRow

logger = logging.getLogger(__name__)


def _member_ids_of(inventory_id: str):
    return select(InventoryMemberRow.user_id).where(InventoryMemberRow.inventory_id == inventory_id)


class AccessControlStore(Store):
    """Owner/member records for inventory documents."""

    async def create_access(
        self,
        inventory_id: str,
        owner_id: str,
        name: str,
        *,
        db: AsyncSession | None = None,
    ) -> InventoryAccess:
        """
        Insert the access record for a freshly minted document.

        A second record for the same inventory id raises IntegrityError.
        """
        async with self._session(db) as s:
            s.add(InventoryRow(
                id=inventory_id,
                name=name,
                owner_id=owner_id,
                created_at=to_millis(utc_now()),
            ))
            await s.flush()

        return InventoryAccess(inventory_id=inventory_id, name=name, owner_id=owner_id)

    async def get_access(self, inventory_id: str) -> InventoryAccess | None:
        async with self._session() as s:
            row = await s.get(InventoryRow, inventory_id)
            if row is None:
                return None
            member_ids = list(await s.scalars(_member_ids_of(inventory_id)))
            return InventoryAccess(
                inventory_id=row.id,
                name=row.name,
                owner_id=row.owner_id,
                member_ids=member_ids,
            )

    async def list_for_user(self, user_id: str) -> list[InventoryAccess]:
        """Every inventory the user owns or is a member of, oldest first."""
        async with self._session() as s:
            member_of = select(InventoryMemberRow.inventory_id).where(
                InventoryMemberRow.user_id == user_id
            )
            rows = list(await s.scalars(
                select(InventoryRow)
                .where(or_(InventoryRow.owner_id == user_id, InventoryRow.id.in_(member_of)))
                .order_by(InventoryRow.created_at, InventoryRow.id)
            ))
            if not rows:
                return []

            members: dict[str, list[str]] = {row.id: [] for row in rows}
            pairs = await s.execute(
                select(InventoryMemberRow.inventory_id, InventoryMemberRow.user_id)
                .where(InventoryMemberRow.inventory_id.in_(members.keys()))
            )
            for inventory_id, member_id in pairs:
                members[inventory_id].append(member_id)

            return [
                InventoryAccess(
                    inventory_id=row.id,
                    name=row.name,
                    owner_id=row.owner_id,
                    member_ids=members[row.id],
                )
                for row in rows
            ]

    async def is_owner(self, user_id: str, inventory_id: str) -> bool:
        async with self._session() as s:
            return bool(await s.scalar(
                select(exists().where(
                    InventoryRow.id == inventory_id,
                    InventoryRow.owner_id == user_id,
                ))
            ))

    async def can_access(self, user_id: str, inventory_id: str) -> bool:
        async with self._session() as s:
            return bool(await s.scalar(
                select(exists().where(
                    InventoryRow.id == inventory_id,
                    or_(
                        InventoryRow.owner_id == user_id,
                        InventoryRow.id.in_(
                            select(InventoryMemberRow.inventory_id).where(
                                InventoryMemberRow.user_id == user_id
                            )
                        ),
                    ),
                ))
            ))

    async def add_member(self, inventory_id: str, user_id: str) -> bool:
        """
        Idempotent upsert of a membership.

        Returns False if the inventory does not exist, True otherwise
        (including when the user already is a member or is the owner).
        """
        try:
            async with self._session() as s:
                inventory = await s.get(InventoryRow, inventory_id)
                if inventory is None:
                    return False
                if inventory.owner_id == user_id:
                    return True
                await s.execute(self._insert_ignoring_duplicates(inventory_id, user_id))
        except IntegrityError as e:
            # Inventory or user vanished between the check and the insert
            logger.warning(f"Could not add {user_id} to {inventory_id}: {e.orig}")
            return False

        logger.info(f"User {user_id} added to inventory {inventory_id}")
        return True

    async def remove_member(self, inventory_id: str, user_id: str) -> bool:
        """Returns False if no such membership existed."""
        async with self._session() as s:
            result = await s.execute(
                delete(InventoryMemberRow).where(
                    InventoryMemberRow.inventory_id == inventory_id,
                    InventoryMemberRow.user_id == user_id,
                )
            )
            removed = result.rowcount > 0

        if removed:
            logger.info(f"User {user_id} removed from inventory {inventory_id}")
        return removed

    async def rename(self, inventory_id: str, name: str) -> InventoryAccess | None:
        async with self._session() as s:
            result = await s.execute(
                update(InventoryRow).where(InventoryRow.id == inventory_id).values(name=name)
            )
            if result.rowcount == 0:
                return None
        return await self.get_access(inventory_id)

    async def delete_access(self, inventory_id: str) -> bool:
        """
        Remove the access record (and its memberships).

        The replicated document itself is left alone.
        """
        async with self._session() as s:
            await s.execute(
                delete(InventoryMemberRow).where(InventoryMemberRow.inventory_id == inventory_id)
            )
            result = await s.execute(delete(InventoryRow).where(InventoryRow.id == inventory_id))
            deleted = result.rowcount > 0

        if deleted:
            logger.info(f"Access record for inventory {inventory_id} deleted")
        return deleted

    async def members_with_names(self, inventory_id: str) -> InventoryMembers | None:
        async with self._session() as s:
            inventory = await s.get(InventoryRow, inventory_id)
            if inventory is None:
                return None
            rows = await s.execute(
                select(UserRow.id, UserRow.name)
                .join(InventoryMemberRow, InventoryMemberRow.user_id == UserRow.id)
                .where(InventoryMemberRow.inventory_id == inventory_id)
                .order_by(UserRow.name, UserRow.id)
            )
            return InventoryMembers(
                owner_id=inventory.owner_id,
                members=[UserSummary(id=uid, name=name) for uid, name in rows],
            )

    async def available_users(self, inventory_id: str, exclude_user_id: str) -> list[UserSummary]:
        """Users that could be added: everyone but the owner, current members and the caller."""
        async with self._session() as s:
            inventory = await s.get(InventoryRow, inventory_id)
            if inventory is None:
                return []
            rows = await s.execute(
                select(UserRow.id, UserRow.name)
                .where(
                    UserRow.id.not_in([inventory.owner_id, exclude_user_id]),
                    UserRow.id.not_in(_member_ids_of(inventory_id)),
                )
                .order_by(UserRow.name, UserRow.id)
            )
            return [UserSummary(id=uid, name=name) for uid, name in rows]

    def _insert_ignoring_duplicates(self, inventory_id: str, user_id: str):
        values = {"inventory_id": inventory_id, "user_id": user_id}
        if self.database.dialect == "postgresql":
            return pg_insert(InventoryMemberRow).values(**values).on_conflict_do_nothing()
        return sqlite_insert(InventoryMemberRow).values(**values).on_conflict_do_nothing()
