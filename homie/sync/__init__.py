"""Real-time document sync over WebSockets."""

from homie.sync.gateway import AuthenticatedConnection, SyncGateway
from homie.sync.server import SyncServer

__all__ = ["AuthenticatedConnection", "SyncGateway", "SyncServer"]
