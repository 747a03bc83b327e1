"""
Reference document-sync server.

Owns an authenticated socket from the moment the gateway hands it over.
Peers join documents and then exchange opaque sync payloads with every
other peer on the same document; the server does not interpret them.

Messages (JSON):
    {"type": "join",  "documentId": "..."}
    {"type": "sync",  "documentId": "...", "data": ...}
    {"type": "leave", "documentId": "..."}

Access is checked when a peer joins a document. Once joined, sync
messages are relayed without further checks.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from starlette.websockets import WebSocketDisconnect

from homie.core.utils import is_encodable
from homie.storage.access import AccessControlStore
from homie.storage.base import DocumentRepo
from homie.sync.gateway import AuthenticatedConnection

logger = logging.getLogger(__name__)


class SyncServer:
    """Relays sync messages between peers of the same document."""

    def __init__(self, access: AccessControlStore, documents: DocumentRepo):
        self.access = access
        self.documents = documents
        self._peers: dict[str, set[AuthenticatedConnection]] = {}

    def peers(self, document_id: str) -> set[AuthenticatedConnection]:
        return set(self._peers.get(document_id, set()))

    async def handle(self, conn: AuthenticatedConnection) -> None:
        """Serve one connection until the client goes away."""
        joined: set[str] = set()
        try:
            while True:
                frame = await conn.websocket.receive()
                if frame["type"] == "websocket.disconnect":
                    break

                message = _parse(frame.get("text"))
                if message is None:
                    await conn.send_json({"type": "error", "error": "Invalid message"})
                    continue
                await self._dispatch(conn, message, joined)
        except WebSocketDisconnect:
            logger.debug(f"Sync peer {conn.user_id} went away mid-send")
        finally:
            logger.info(f"Sync connection closed for user {conn.user_id}")
            for document_id in joined:
                self._remove(document_id, conn)

    async def _dispatch(
        self,
        conn: AuthenticatedConnection,
        message: dict[str, Any],
        joined: set[str],
    ) -> None:
        kind = message.get("type")
        document_id = message.get("documentId")

        if not isinstance(document_id, str) or not document_id:
            await conn.send_json({"type": "error", "error": "documentId is required"})
            return

        if kind == "join":
            await self._join(conn, document_id, joined)
        elif kind == "sync":
            if document_id not in joined:
                await conn.send_json({"type": "error", "documentId": document_id, "error": "Not joined"})
                return
            await self._broadcast(conn, document_id, {
                "type": "sync",
                "documentId": document_id,
                "from": conn.user_id,
                "data": message.get("data"),
            })
        elif kind == "leave":
            joined.discard(document_id)
            self._remove(document_id, conn)
        else:
            await conn.send_json({"type": "error", "error": "Unknown message type"})

    async def _join(self, conn: AuthenticatedConnection, document_id: str, joined: set[str]) -> None:
        if not await self.access.can_access(conn.user_id, document_id):
            logger.info(f"User {conn.user_id} refused join of {document_id}")
            await conn.send_json({"type": "error", "documentId": document_id, "error": "Access denied"})
            return

        joined.add(document_id)
        self._peers.setdefault(document_id, set()).add(conn)
        doc = await self.documents.find(document_id)
        await conn.send_json({"type": "joined", "documentId": document_id, "doc": doc})

    async def _broadcast(
        self,
        sender: AuthenticatedConnection,
        document_id: str,
        payload: dict[str, Any],
    ) -> None:
        for peer in self.peers(document_id):
            if peer is sender:
                continue
            try:
                await peer.send_json(payload)
            except (WebSocketDisconnect, RuntimeError) as e:
                logger.debug(f"Dropping unreachable peer {peer.user_id}: {e}")
                self._remove(document_id, peer)

    def _remove(self, document_id: str, conn: AuthenticatedConnection) -> None:
        peers = self._peers.get(document_id)
        if not peers:
            return
        peers.discard(conn)
        if not peers:
            del self._peers[document_id]


def _parse(text: str | None) -> dict[str, Any] | None:
    """Decode a text frame into a message object. Binary frames and junk give None."""
    if text is None:
        return None
    try:
        message = json.loads(text)
    except ValueError:
        return None
    if not isinstance(message, dict) or not is_encodable(message):
        return None
    return message
