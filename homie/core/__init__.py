"""Core types shared across the application."""

from homie.core.errors import (
    HomieError,
    ValidationError,
    AuthenticationError,
    AuthorizationError,
    NotFoundError,
    ConflictError,
)
from homie.core.models import (
    CamelModel,
    User,
    UserRecord,
    UserSummary,
    Credential,
    Session,
    InventoryAccess,
    InventorySummary,
    InventoryMembers,
)

__all__ = [
    # Errors
    "HomieError",
    "ValidationError",
    "AuthenticationError",
    "AuthorizationError",
    "NotFoundError",
    "ConflictError",
    # Models
    "CamelModel",
    "User",
    "UserRecord",
    "UserSummary",
    "Credential",
    "Session",
    "InventoryAccess",
    "InventorySummary",
    "InventoryMembers",
]
