"""
Storage abstraction layer for collaborators outside the relational store.

The inventory documents themselves live in a replicated document store,
and passkey ceremonies need somewhere short-lived to park challenges.
Both sit behind these interfaces so that a single-process development
setup and a shared multi-process deployment look the same to callers.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable


Document = dict[str, Any]
Unsubscribe = Callable[[], None]


# =============================================================================
# Storage Interfaces
# =============================================================================


class DocumentRepo(ABC):
    """
    Replicated inventory documents.

    Documents are opaque to the auth core: it only mints them and hands
    their ids to the access control store.
    """

    @abstractmethod
    async def create(self, initial: Document) -> str:
        """Create a document with the given initial content, return its id."""
        pass

    @abstractmethod
    async def find(self, document_id: str) -> Document | None:
        """Get a snapshot of a document, or None if it does not exist."""
        pass

    @abstractmethod
    async def change(self, document_id: str, fn: Callable[[Document], None]) -> Document:
        """Apply an in-place mutation and return the new snapshot."""
        pass

    @abstractmethod
    def subscribe(self, document_id: str, callback: Callable[[Document], Any]) -> Unsubscribe:
        """Call `callback` with every new snapshot. Returns a function that unsubscribes."""
        pass


class ChallengeStore(ABC):
    """
    Ephemeral ceremony challenges.

    Entries live for a fixed TTL and are consumed on first read.
    A multi-process deployment needs a shared implementation with the
    same contract.
    """

    @abstractmethod
    async def put(self, challenge: bytes) -> str:
        """Store a challenge, return the opaque temp id that retrieves it."""
        pass

    @abstractmethod
    async def pop(self, temp_id: str) -> bytes | None:
        """Retrieve and delete a challenge. None if unknown or expired."""
        pass
