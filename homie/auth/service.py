"""
Registration and login orchestration.

Composes the credential verifier, the session store, the access control
store and the document repo into the two things a client can ask for:

- a new user, with a default inventory and a session, created atomically
- an existing user, proven by credential, getting a fresh session

Password mode is single-shot. Passkey mode is a two-phase ceremony tied
together by a short-lived temp id in the challenge store.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import IntegrityError

from homie.auth.credentials import (
    CredentialVerificationError,
    CredentialVerifier,
    PasskeyVerifier,
    PasswordVerifier,
    VerifiedCredential,
)
from homie.core.errors import AuthenticationError, ConflictError, NotFoundError, ValidationError
from homie.core.models import InventorySummary, Session, User
from homie.storage.access import AccessControlStore
from homie.storage.base import ChallengeStore, DocumentRepo
from homie.storage.database import Database
from homie.storage.sessions import SessionStore
from homie.storage.users import UserStore

logger = logging.getLogger(__name__)

DEFAULT_INVENTORY_NAME = "Inventory"

# Every passkey failure after the challenge lookup reads the same to the client
AUTH_FAILED = "Authentication failed"


@dataclass
class Registration:
    user: User
    inventory_id: str
    session: Session


@dataclass
class LoginResult:
    user: User
    session: Session
    inventories: list[InventorySummary]


@dataclass
class CeremonyStart:
    options: dict[str, Any]
    temp_id: str


class AuthService:
    """Registration/login orchestrator."""

    def __init__(
        self,
        database: Database,
        users: UserStore,
        sessions: SessionStore,
        access: AccessControlStore,
        documents: DocumentRepo,
        challenges: ChallengeStore,
        verifier: CredentialVerifier,
    ):
        self.database = database
        self.users = users
        self.sessions = sessions
        self.access = access
        self.documents = documents
        self.challenges = challenges
        self.verifier = verifier

    @property
    def mode(self) -> str:
        return self.verifier.mode

    # =========================================================================
    # Password mode
    # =========================================================================

    async def register_password(self, username: str, name: str, password: str) -> Registration:
        verifier = self._password_verifier()

        username = (username or "").strip()
        if not username:
            raise ValidationError("Username is required")
        name = self._clean_name(name)
        if not password or not verifier.is_acceptable(password):
            raise ValidationError(f"Password must be at least {verifier.min_length} characters")

        if await self.users.get_by_username(username):
            logger.info(f"Registration refused, username taken: {username}")
            raise ConflictError("Username already taken")

        password_hash = await verifier.hash(password)
        return await self._create_user_with_inventory(
            name, username=username, password_hash=password_hash
        )

    async def login_password(self, username: str, password: str) -> LoginResult:
        verifier = self._password_verifier()

        username = (username or "").strip()
        if not username or not password:
            raise ValidationError("Username and password are required")

        record = await self.users.get_by_username(username)
        if record is None or not await verifier.verify(password, record.password_hash):
            logger.info(f"Failed login for username {username}")
            raise AuthenticationError("Invalid username or password")

        user = User.model_validate(record.model_dump(exclude={"password_hash"}))
        return await self._login(user)

    # =========================================================================
    # Passkey mode
    # =========================================================================

    async def start_passkey_registration(self, name: str) -> CeremonyStart:
        verifier = self._passkey_verifier()
        name = self._clean_name(name)

        options, challenge = verifier.registration_options(name)
        temp_id = await self.challenges.put(challenge)
        return CeremonyStart(options=options, temp_id=temp_id)

    async def finish_passkey_registration(
        self,
        temp_id: str,
        name: str,
        response: dict[str, Any],
    ) -> Registration:
        verifier = self._passkey_verifier()
        name = self._clean_name(name)
        challenge = await self._consume_challenge(temp_id)

        try:
            credential = verifier.verify_registration(response, challenge)
        except CredentialVerificationError as e:
            logger.warning(f"Passkey registration failed: {e}")
            raise AuthenticationError(AUTH_FAILED) from e

        return await self._create_user_with_inventory(name, credential=credential)

    async def start_passkey_login(self) -> CeremonyStart:
        verifier = self._passkey_verifier()

        options, challenge = verifier.authentication_options()
        temp_id = await self.challenges.put(challenge)
        return CeremonyStart(options=options, temp_id=temp_id)

    async def finish_passkey_login(self, temp_id: str, response: dict[str, Any]) -> LoginResult:
        verifier = self._passkey_verifier()
        challenge = await self._consume_challenge(temp_id)

        credential_id = response.get("id") if isinstance(response, dict) else None
        if not credential_id or not isinstance(credential_id, str):
            logger.warning("Passkey login without a credential id")
            raise AuthenticationError(AUTH_FAILED)

        user = await self.users.get_by_credential_id(credential_id)
        credential = await self.users.get_credential(credential_id)
        if user is None or credential is None or credential.user_id != user.id:
            logger.warning("Passkey login with an unknown credential")
            raise AuthenticationError(AUTH_FAILED)

        try:
            new_counter = verifier.verify_authentication(response, challenge, credential)
        except CredentialVerificationError as e:
            logger.warning(f"Passkey login failed for user {user.id}: {e}")
            raise AuthenticationError(AUTH_FAILED) from e

        # Authenticators that do not count report 0 every time
        if (new_counter or credential.counter) and new_counter <= credential.counter:
            logger.warning(
                f"Possible credential replay for user {user.id}: "
                f"counter {new_counter} <= stored {credential.counter}"
            )
            raise AuthenticationError(AUTH_FAILED)

        await self.users.update_credential_counter(credential.id, new_counter)
        return await self._login(user)

    # =========================================================================
    # Shared
    # =========================================================================

    async def inventories_for(self, user_id: str) -> list[InventorySummary]:
        records = await self.access.list_for_user(user_id)
        return [r.summary_for(user_id) for r in records]

    async def update_profile(self, user_id: str, name: str | None = None) -> User:
        if name is None:
            raise ValidationError("No valid fields to update")
        name = name.strip()
        if not name:
            raise ValidationError("Name cannot be empty")

        user = await self.users.update(user_id, name=name)
        if user is None:
            raise NotFoundError("User not found")
        return user

    async def logout(self, session_id: str | None) -> None:
        if session_id and await self.sessions.delete(session_id):
            logger.debug("Session ended by logout")

    async def _login(self, user: User) -> LoginResult:
        session = await self.sessions.create(user.id)
        inventories = await self.inventories_for(user.id)
        logger.info(f"User {user.id} logged in")
        return LoginResult(user=user, session=session, inventories=inventories)

    async def _create_user_with_inventory(
        self,
        name: str,
        *,
        username: str | None = None,
        password_hash: str | None = None,
        credential: VerifiedCredential | None = None,
    ) -> Registration:
        """
        Create User, InventoryAccess and Session in one transaction.

        The document is minted first, outside the transaction. If anything
        after that fails, no user, access record or session survives; the
        orphaned empty document is harmless.
        """
        inventory_id = await self.documents.create({"items": {}})

        try:
            async with self.database.transaction() as db:
                user = await self.users.create(
                    name, username=username, password_hash=password_hash, db=db
                )
                if credential is not None:
                    await self.users.add_credential(
                        user.id,
                        credential.credential_id,
                        credential.public_key,
                        credential.sign_count,
                        credential.transports,
                        db=db,
                    )
                await self.access.create_access(
                    inventory_id, user.id, DEFAULT_INVENTORY_NAME, db=db
                )
                session = await self.sessions.create(user.id, db=db)
        except IntegrityError as e:
            # Lost a race with a concurrent registration
            if username and await self.users.get_by_username(username):
                raise ConflictError("Username already taken") from e
            if credential and await self.users.get_credential(credential.credential_id):
                logger.warning("Passkey registration with an already registered credential")
                raise AuthenticationError(AUTH_FAILED) from e
            raise

        logger.info(f"User {user.id} registered with inventory {inventory_id}")
        return Registration(user=user, inventory_id=inventory_id, session=session)

    async def _consume_challenge(self, temp_id: str) -> bytes:
        challenge = await self.challenges.pop(temp_id) if temp_id else None
        if challenge is None:
            raise AuthenticationError("Challenge expired or invalid")
        return challenge

    def _clean_name(self, name: str) -> str:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Name is required")
        return name

    def _password_verifier(self) -> PasswordVerifier:
        if not isinstance(self.verifier, PasswordVerifier):
            raise ValidationError("Password authentication is not enabled")
        return self.verifier

    def _passkey_verifier(self) -> PasskeyVerifier:
        if not isinstance(self.verifier, PasskeyVerifier):
            raise ValidationError("Passkey authentication is not enabled")
        return self.verifier
