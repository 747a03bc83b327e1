"""
Core data models.

These models represent the entities the auth core works with: users,
their credentials, sessions, and the access records that decide who may
open which inventory document.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from homie.core.utils import is_encodable


class CamelModel(BaseModel):
    """Base model that speaks camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @field_validator("*")
    @classmethod
    def reject_unencodable_text(cls, value):
        # JSON allows lone surrogate escapes; nothing downstream can store them
        if not is_encodable(value):
            raise ValueError("must be valid Unicode text")
        return value


# =============================================================================
# Users
# =============================================================================


class UserSummary(CamelModel):
    """Public view of a user, as shown to other users."""

    id: str
    name: str


class User(CamelModel):
    """A registered user."""

    id: str
    name: str
    username: str | None = None  # Absent for passkey-only accounts
    created_at: datetime

    def summary(self) -> UserSummary:
        return UserSummary(id=self.id, name=self.name)


class UserRecord(User):
    """User as stored, including the password hash. Never returned to clients."""

    password_hash: str | None = None


class Credential(CamelModel):
    """A registered WebAuthn public-key credential."""

    id: str  # base64url credential id, generated by the authenticator
    user_id: str
    public_key: bytes
    counter: int = 0
    transports: list[str] = Field(default_factory=list)


# =============================================================================
# Sessions
# =============================================================================


class Session(CamelModel):
    """
    A server-side session.

    `expires_at` slides forward on every authenticated request; a session
    past `expires_at` is treated as absent.
    """

    id: str
    user_id: str
    expires_at: datetime


# =============================================================================
# Inventory Access
# =============================================================================


class InventoryAccess(CamelModel):
    """
    Who may open an inventory document.

    The owner is implicit and never listed among `member_ids`.
    """

    inventory_id: str  # = replicated document id
    name: str
    owner_id: str
    member_ids: list[str] = Field(default_factory=list)

    def is_owner(self, user_id: str) -> bool:
        return self.owner_id == user_id

    def can_access(self, user_id: str) -> bool:
        return self.owner_id == user_id or user_id in self.member_ids

    def summary_for(self, user_id: str) -> InventorySummary:
        return InventorySummary(
            id=self.inventory_id,
            name=self.name,
            is_owner=self.is_owner(user_id),
        )


class InventorySummary(CamelModel):
    """An inventory as listed for one particular user."""

    id: str
    name: str
    is_owner: bool


class InventoryMembers(CamelModel):
    """Owner id plus named members, for display."""

    owner_id: str
    members: list[UserSummary] = Field(default_factory=list)
