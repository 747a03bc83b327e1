# =============================================================================
# Auth API Routes
# =============================================================================
#
# Endpoints:
#   POST  /auth/register         - Create account (password mode)
#   POST  /auth/login            - Log in (password mode)
#   POST  /auth/register/start   - Begin passkey registration
#   POST  /auth/register/finish  - Complete passkey registration
#   POST  /auth/login/start      - Begin passkey login
#   POST  /auth/login/finish     - Complete passkey login
#   GET   /auth/me               - Current user, or {"user": null}
#   PATCH /auth/me               - Update profile
#   POST  /auth/logout           - End session
#
# Successful register/login calls set the session cookie.
#
# =============================================================================

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request, Response

from homie.api.deps import Services, get_services
from homie.auth.context import AuthContext
from homie.auth.gate import clear_session_cookie, optional_session, require_session, set_session_cookie
from homie.auth.service import LoginResult, Registration
from homie.core.models import CamelModel

router = APIRouter(prefix="/auth", tags=["auth"])


# =============================================================================
# Request Models
# =============================================================================

class RegisterRequest(CamelModel):
    username: str = ""
    name: str = ""
    password: str = ""


class LoginRequest(CamelModel):
    username: str = ""
    password: str = ""


class PasskeyRegisterStartRequest(CamelModel):
    name: str = ""


class PasskeyRegisterFinishRequest(CamelModel):
    temp_id: str
    name: str = ""
    response: dict[str, Any]


class PasskeyLoginFinishRequest(CamelModel):
    temp_id: str
    response: dict[str, Any]


class UpdateMeRequest(CamelModel):
    name: str | None = None


def _registered(request: Request, response: Response, services: Services, result: Registration) -> dict:
    set_session_cookie(request, response, result.session, services.settings)
    return {"user": result.user.summary(), "inventoryId": result.inventory_id}


def _logged_in(request: Request, response: Response, services: Services, result: LoginResult) -> dict:
    set_session_cookie(request, response, result.session, services.settings)
    return {"user": result.user.summary(), "inventories": result.inventories}


# =============================================================================
# Password Ceremonies
# =============================================================================

@router.post("/register")
async def register(
    data: RegisterRequest,
    request: Request,
    response: Response,
    services: Services = Depends(get_services),
):
    """
    Create an account with its default inventory.

    The user, the inventory access record and the session are created in
    one transaction.
    """
    result = await services.auth.register_password(data.username, data.name, data.password)
    return _registered(request, response, services, result)


@router.post("/login")
async def login(
    data: LoginRequest,
    request: Request,
    response: Response,
    services: Services = Depends(get_services),
):
    result = await services.auth.login_password(data.username, data.password)
    return _logged_in(request, response, services, result)


# =============================================================================
# Passkey Ceremonies
# =============================================================================

@router.post("/register/start")
async def passkey_register_start(
    data: PasskeyRegisterStartRequest,
    services: Services = Depends(get_services),
):
    start = await services.auth.start_passkey_registration(data.name)
    return {"options": start.options, "tempId": start.temp_id}


@router.post("/register/finish")
async def passkey_register_finish(
    data: PasskeyRegisterFinishRequest,
    request: Request,
    response: Response,
    services: Services = Depends(get_services),
):
    result = await services.auth.finish_passkey_registration(data.temp_id, data.name, data.response)
    return _registered(request, response, services, result)


@router.post("/login/start")
async def passkey_login_start(services: Services = Depends(get_services)):
    start = await services.auth.start_passkey_login()
    return {"options": start.options, "tempId": start.temp_id}


@router.post("/login/finish")
async def passkey_login_finish(
    data: PasskeyLoginFinishRequest,
    request: Request,
    response: Response,
    services: Services = Depends(get_services),
):
    result = await services.auth.finish_passkey_login(data.temp_id, data.response)
    return _logged_in(request, response, services, result)


# =============================================================================
# Session Endpoints
# =============================================================================

@router.get("/me")
async def get_me(
    ctx: AuthContext | None = Depends(optional_session),
    services: Services = Depends(get_services),
):
    """Current user and their inventories. Anonymous callers get {"user": null}."""
    if ctx is None:
        return {"user": None}

    inventories = await services.auth.inventories_for(ctx.user_id)
    return {"user": ctx.user.summary(), "inventories": inventories}


@router.patch("/me")
async def update_me(
    data: UpdateMeRequest,
    ctx: AuthContext = Depends(require_session),
    services: Services = Depends(get_services),
):
    user = await services.auth.update_profile(ctx.user_id, name=data.name)
    return {"user": user.summary()}


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    services: Services = Depends(get_services),
):
    """End the session. Always succeeds."""
    settings = services.settings
    await services.auth.logout(request.cookies.get(settings.session_cookie_name))
    clear_session_cookie(response, settings)
    return {"success": True}
