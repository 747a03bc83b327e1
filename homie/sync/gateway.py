"""
WebSocket auth gate.

ASGI middleware that owns every WebSocket upgrade. A connection is
authenticated exactly once, from the session cookie in the handshake,
before the upgrade completes:

- wrong path                  -> 404
- no cookie / unknown session -> 401
- expired session             -> 401
- session for a missing user  -> 401
- anything unexpected         -> 500

Denials are sent as a plain HTTP response when the server supports the
WebSocket denial-response extension, otherwise the socket is closed
before it is accepted. Either way no upgrade is ever completed.

Looking the session up does not slide it: an open socket is not
activity.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from http import HTTPStatus
from typing import TYPE_CHECKING, Any

from starlette.responses import PlainTextResponse
from starlette.status import WS_1008_POLICY_VIOLATION, WS_1011_INTERNAL_ERROR
from starlette.types import ASGIApp, Receive, Scope, Send
from starlette.websockets import WebSocket

from homie.core.models import Session, User

if TYPE_CHECKING:
    from homie.api.deps import Services

logger = logging.getLogger(__name__)

DENIAL_EXTENSION = "websocket.http.response"


@dataclass(eq=False)
class AuthenticatedConnection:
    """An accepted socket plus the principal it was authenticated as."""

    websocket: WebSocket
    session: Session
    user: User

    @property
    def user_id(self) -> str:
        return self.user.id

    async def send_json(self, data: dict[str, Any]) -> None:
        await self.websocket.send_json(data)


class SyncGateway:
    """Authenticate WebSocket upgrades and hand them to the sync server."""

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "websocket":
            await self.app(scope, receive, send)
            return

        websocket = WebSocket(scope, receive=receive, send=send)
        services: Services = scope["app"].state.services

        if scope["path"] != services.settings.sync_path:
            await self._deny(websocket, HTTPStatus.NOT_FOUND)
            return

        try:
            principal = await self._authenticate(websocket, services)
        except Exception:
            logger.exception("WebSocket upgrade error")
            await self._deny(websocket, HTTPStatus.INTERNAL_SERVER_ERROR)
            return

        if principal is None:
            await self._deny(websocket, HTTPStatus.UNAUTHORIZED)
            return

        session, user = principal
        await websocket.accept()
        logger.info(f"Sync connection opened for user {user.id}")

        conn = AuthenticatedConnection(websocket=websocket, session=session, user=user)
        await services.sync.handle(conn)

    async def _authenticate(
        self,
        websocket: WebSocket,
        services: Services,
    ) -> tuple[Session, User] | None:
        session_id = websocket.cookies.get(services.settings.session_cookie_name)
        if not session_id:
            return None

        session = await services.sessions.get(session_id)
        if session is None:
            logger.info("Sync upgrade with unknown or expired session")
            return None

        user = await services.users.get_by_id(session.user_id)
        if user is None:
            logger.warning(f"Sync upgrade for missing user {session.user_id}")
            return None

        return session, user

    async def _deny(self, websocket: WebSocket, status: HTTPStatus) -> None:
        if DENIAL_EXTENSION in websocket.scope.get("extensions", {}):
            await websocket.send_denial_response(
                PlainTextResponse(status.phrase, status_code=status.value)
            )
            return

        code = WS_1011_INTERNAL_ERROR if status >= 500 else WS_1008_POLICY_VIOLATION
        await websocket.close(code=code, reason=status.phrase)
