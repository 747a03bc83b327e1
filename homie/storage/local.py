"""
Local implementations for development.

These are in-memory and work without any external services.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import secrets
import time
from typing import Any, Callable

from homie.core.utils import generate_id
from homie.storage.base import ChallengeStore, Document, DocumentRepo, Unsubscribe

logger = logging.getLogger(__name__)


# =============================================================================
# In-Memory Document Repo
# =============================================================================


class InMemoryDocumentRepo(DocumentRepo):
    """
    Plain dictionaries standing in for replicated documents.

    Changes are applied in order with no merging; good enough for a
    single process and for tests.
    """

    def __init__(self):
        self._documents: dict[str, Document] = {}
        self._subscribers: dict[str, list[Callable[[Document], Any]]] = {}

    async def create(self, initial: Document) -> str:
        document_id = generate_id("doc")
        self._documents[document_id] = copy.deepcopy(initial)
        logger.debug(f"Document created: {document_id}")
        return document_id

    async def find(self, document_id: str) -> Document | None:
        doc = self._documents.get(document_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def change(self, document_id: str, fn: Callable[[Document], None]) -> Document:
        if document_id not in self._documents:
            raise KeyError(f"Document not found: {document_id}")

        fn(self._documents[document_id])
        snapshot = copy.deepcopy(self._documents[document_id])

        for callback in list(self._subscribers.get(document_id, [])):
            result = callback(copy.deepcopy(snapshot))
            if asyncio.iscoroutine(result):
                await result

        return snapshot

    def subscribe(self, document_id: str, callback: Callable[[Document], Any]) -> Unsubscribe:
        self._subscribers.setdefault(document_id, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(document_id, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe


# =============================================================================
# In-Memory Challenge Store
# =============================================================================


class InMemoryChallengeStore(ChallengeStore):
    """
    Process-local challenge map.

    Each entry is evicted by an event-loop timer after `ttl_seconds`;
    `pop` also checks the deadline so an entry is never handed out late
    even if the timer has not fired yet.
    """

    def __init__(self, ttl_seconds: float = 300, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[bytes, float, asyncio.TimerHandle]] = {}

    async def put(self, challenge: bytes) -> str:
        temp_id = secrets.token_urlsafe(24)
        loop = asyncio.get_running_loop()
        handle = loop.call_later(self.ttl_seconds, self._evict, temp_id)
        self._entries[temp_id] = (challenge, self._clock() + self.ttl_seconds, handle)
        return temp_id

    async def pop(self, temp_id: str) -> bytes | None:
        entry = self._entries.pop(temp_id, None)
        if entry is None:
            return None

        challenge, deadline, handle = entry
        handle.cancel()
        if self._clock() >= deadline:
            return None
        return challenge

    def _evict(self, temp_id: str) -> None:
        if self._entries.pop(temp_id, None) is not None:
            logger.debug("Challenge expired unused")
