"""Storage layer: relational stores plus document and challenge collaborators."""

from homie.storage.base import ChallengeStore, DocumentRepo
from homie.storage.database import Database, Store
from homie.storage.local import InMemoryChallengeStore, InMemoryDocumentRepo
from homie.storage.sessions import SessionStore
from homie.storage.users import UserStore
from homie.storage.access import AccessControlStore

__all__ = [
    "Database",
    "Store",
    "DocumentRepo",
    "ChallengeStore",
    "InMemoryDocumentRepo",
    "InMemoryChallengeStore",
    "SessionStore",
    "UserStore",
    "AccessControlStore",
]
