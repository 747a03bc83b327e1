# =============================================================================
# Inventory API Routes
# =============================================================================
#
# All endpoints require a session. Owner-only endpoints answer 403 to
# anyone else, including members: existence is not hidden.
#
#   GET    /api/inventories                          - List mine
#   POST   /api/inventories                          - Create
#   GET    /api/inventories/{id}                     - Read (owner or member)
#   PATCH  /api/inventories/{id}                     - Rename (owner)
#   DELETE /api/inventories/{id}                     - Delete access record (owner)
#   GET    /api/inventories/{id}/members             - Members (owner or member)
#   GET    /api/inventories/{id}/possible-members    - Users to add (owner)
#   POST   /api/inventories/{id}/members             - Add member (owner)
#   DELETE /api/inventories/{id}/members/{user_id}   - Remove member (owner)
#
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from homie.api.deps import Services, get_services
from homie.auth.context import AuthContext
from homie.auth.gate import require_session
from homie.core.errors import AuthorizationError, NotFoundError, ValidationError
from homie.core.models import CamelModel, InventorySummary

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/inventories", tags=["inventories"])

DEFAULT_NEW_INVENTORY_NAME = "New Inventory"


class CreateInventoryRequest(CamelModel):
    name: str | None = None


class UpdateInventoryRequest(CamelModel):
    name: str | None = None


class AddMemberRequest(CamelModel):
    user_id: str = ""


async def _require_owner(services: Services, ctx: AuthContext, inventory_id: str, action: str) -> None:
    if not await services.access.is_owner(ctx.user_id, inventory_id):
        logger.info(f"User {ctx.user_id} refused: {action} on {inventory_id}")
        raise AuthorizationError(f"Only the owner can {action}")


async def _require_access(services: Services, ctx: AuthContext, inventory_id: str) -> None:
    if not await services.access.can_access(ctx.user_id, inventory_id):
        raise NotFoundError("Inventory not found")


# =============================================================================
# Inventories
# =============================================================================

@router.get("")
async def list_inventories(
    ctx: AuthContext = Depends(require_session),
    services: Services = Depends(get_services),
):
    return {"inventories": await services.auth.inventories_for(ctx.user_id)}


@router.post("")
async def create_inventory(
    data: CreateInventoryRequest | None = None,
    ctx: AuthContext = Depends(require_session),
    services: Services = Depends(get_services),
):
    name = ((data.name if data else None) or "").strip() or DEFAULT_NEW_INVENTORY_NAME

    inventory_id = await services.documents.create({"items": {}})
    await services.access.create_access(inventory_id, ctx.user_id, name)
    logger.info(f"User {ctx.user_id} created inventory {inventory_id}")

    return {"inventory": InventorySummary(id=inventory_id, name=name, is_owner=True)}


@router.get("/{inventory_id}")
async def get_inventory(
    inventory_id: str,
    ctx: AuthContext = Depends(require_session),
    services: Services = Depends(get_services),
):
    await _require_access(services, ctx, inventory_id)
    access = await services.access.get_access(inventory_id)
    if access is None:
        raise NotFoundError("Inventory not found")
    return {"inventory": access.summary_for(ctx.user_id)}


@router.patch("/{inventory_id}")
async def update_inventory(
    inventory_id: str,
    data: UpdateInventoryRequest,
    ctx: AuthContext = Depends(require_session),
    services: Services = Depends(get_services),
):
    await _require_owner(services, ctx, inventory_id, "update an inventory")

    if data.name is None:
        raise ValidationError("No valid fields to update")
    name = data.name.strip()
    if not name:
        raise ValidationError("Name cannot be empty")

    access = await services.access.rename(inventory_id, name)
    if access is None:
        raise NotFoundError("Inventory not found")
    return {"inventory": access.summary_for(ctx.user_id)}


@router.delete("/{inventory_id}")
async def delete_inventory(
    inventory_id: str,
    ctx: AuthContext = Depends(require_session),
    services: Services = Depends(get_services),
):
    """Remove the access record. The document itself is left in the repo."""
    await _require_owner(services, ctx, inventory_id, "delete an inventory")
    await services.access.delete_access(inventory_id)
    return {"success": True}


# =============================================================================
# Members
# =============================================================================

@router.get("/{inventory_id}/members")
async def list_members(
    inventory_id: str,
    ctx: AuthContext = Depends(require_session),
    services: Services = Depends(get_services),
):
    await _require_access(services, ctx, inventory_id)
    result = await services.access.members_with_names(inventory_id)
    if result is None:
        raise NotFoundError("Inventory not found")
    return {"ownerId": result.owner_id, "members": result.members}


@router.get("/{inventory_id}/possible-members")
async def list_possible_members(
    inventory_id: str,
    ctx: AuthContext = Depends(require_session),
    services: Services = Depends(get_services),
):
    await _require_owner(services, ctx, inventory_id, "view available users")
    return {"users": await services.access.available_users(inventory_id, ctx.user_id)}


@router.post("/{inventory_id}/members")
async def add_member(
    inventory_id: str,
    data: AddMemberRequest,
    ctx: AuthContext = Depends(require_session),
    services: Services = Depends(get_services),
):
    await _require_owner(services, ctx, inventory_id, "add members")

    user_id = data.user_id.strip()
    if not user_id:
        raise ValidationError("userId is required")
    if await services.users.get_by_id(user_id) is None:
        raise NotFoundError("User not found")

    if not await services.access.add_member(inventory_id, user_id):
        raise NotFoundError("Inventory not found")
    return {"success": True}


@router.delete("/{inventory_id}/members/{user_id}")
async def remove_member(
    inventory_id: str,
    user_id: str,
    ctx: AuthContext = Depends(require_session),
    services: Services = Depends(get_services),
):
    await _require_owner(services, ctx, inventory_id, "remove members")
    if not await services.access.remove_member(inventory_id, user_id):
        raise NotFoundError("Member not found")
    return {"success": True}
