"""
Auth gate - cookie sessions for HTTP routes.

Use as a FastAPI dependency:

    @router.get("/things")
    async def list_things(ctx: AuthContext = Depends(require_session)):
        ...

Every request that passes the gate slides the session forward and
rewrites the cookie with the new expiry, so activity keeps you logged
in. Failures raise AuthenticationError; the app's error handler clears
the cookie on the way out.
"""

from __future__ import annotations

import logging

from fastapi import Depends, Request, Response

from homie.api.deps import Services, get_services
from homie.auth.context import AuthContext
from homie.config import Settings
from homie.core.errors import AuthenticationError
from homie.core.models import Session
from homie.integrations.sentry import set_user

logger = logging.getLogger(__name__)

SECURE_SCHEMES = ("https", "wss")


# =============================================================================
# Cookie helpers
# =============================================================================


def set_session_cookie(
    request: Request,
    response: Response,
    session: Session,
    settings: Settings,
) -> None:
    response.set_cookie(
        settings.session_cookie_name,
        session.id,
        max_age=int(settings.session_ttl.total_seconds()),
        path="/",
        httponly=True,
        secure=request.url.scheme in SECURE_SCHEMES,
        samesite="lax",
    )


def clear_session_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(settings.session_cookie_name, path="/")


# =============================================================================
# Dependencies
# =============================================================================


async def _resolve(services: Services, session_id: str) -> AuthContext:
    session = await services.sessions.refresh(session_id)
    if session is None:
        raise AuthenticationError("Session expired")

    user = await services.users.get_by_id(session.user_id)
    if user is None:
        logger.warning(f"Session {session.id[:8]}... points at missing user {session.user_id}")
        raise AuthenticationError("User not found")

    set_user(user.id)
    return AuthContext(session=session, user=user)


async def require_session(
    request: Request,
    response: Response,
    services: Services = Depends(get_services),
) -> AuthContext:
    """Resolve the session cookie or reject with 401."""
    settings = services.settings
    session_id = request.cookies.get(settings.session_cookie_name)
    if not session_id:
        raise AuthenticationError("Unauthorized")

    ctx = await _resolve(services, session_id)
    set_session_cookie(request, response, ctx.session, settings)
    return ctx


async def optional_session(
    request: Request,
    response: Response,
    services: Services = Depends(get_services),
) -> AuthContext | None:
    """Like `require_session`, but a missing or dead session yields None."""
    settings = services.settings
    session_id = request.cookies.get(settings.session_cookie_name)
    if not session_id:
        return None

    try:
        ctx = await _resolve(services, session_id)
    except AuthenticationError:
        clear_session_cookie(response, settings)
        return None

    set_session_cookie(request, response, ctx.session, settings)
    return ctx
