"""
Application services container.

Built once in the app lifespan and stored on `app.state.services`;
routes get it through `Depends(get_services)`, the WebSocket gateway
reads it straight from the ASGI scope.
"""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request

from homie.auth.credentials import build_verifier
from homie.auth.service import AuthService
from homie.config import Settings
from homie.storage import (
    AccessControlStore,
    ChallengeStore,
    Database,
    DocumentRepo,
    InMemoryChallengeStore,
    InMemoryDocumentRepo,
    SessionStore,
    UserStore,
)
from homie.sync.server import SyncServer


@dataclass
class Services:
    settings: Settings
    database: Database
    users: UserStore
    sessions: SessionStore
    access: AccessControlStore
    documents: DocumentRepo
    challenges: ChallengeStore
    auth: AuthService
    sync: SyncServer


def build_services(
    settings: Settings,
    database: Database | None = None,
    documents: DocumentRepo | None = None,
    challenges: ChallengeStore | None = None,
) -> Services:
    """Wire stores, collaborators and the orchestrator from settings."""
    database = database or Database(settings.database_url)
    documents = documents or InMemoryDocumentRepo()
    challenges = challenges or InMemoryChallengeStore(settings.challenge_ttl_seconds)

    users = UserStore(database)
    sessions = SessionStore(database, settings.session_ttl)
    access = AccessControlStore(database)

    auth = AuthService(
        database=database,
        users=users,
        sessions=sessions,
        access=access,
        documents=documents,
        challenges=challenges,
        verifier=build_verifier(settings),
    )

    return Services(
        settings=settings,
        database=database,
        users=users,
        sessions=sessions,
        access=access,
        documents=documents,
        challenges=challenges,
        auth=auth,
        sync=SyncServer(access, documents),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
