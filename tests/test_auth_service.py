"""
Tests for the registration/login orchestrator.

The interesting guarantees: registration is all-or-nothing, and every
passkey failure looks the same from the outside.
"""

import pytest
from sqlalchemy import func, select
from webauthn.helpers import base64url_to_bytes

from homie.auth.credentials import PasswordVerifier, build_verifier
from homie.core.errors import AuthenticationError, ConflictError, ValidationError
from homie.storage.database import InventoryRow, SessionRow, UserRow

from conftest import PASSWORD, FakePasskeyVerifier, SoftAuthenticator


async def _count(database, model) -> int:
    async with database.transaction() as db:
        return await db.scalar(select(func.count()).select_from(model))


@pytest.fixture
def auth(services):
    return services.auth


@pytest.fixture
def passkey_auth(services):
    services.auth.verifier = FakePasskeyVerifier()
    return services.auth


# =============================================================================
# Password Registration
# =============================================================================


class TestPasswordRegistration:
    @pytest.mark.asyncio
    async def test_creates_user_inventory_and_session(self, auth, services):
        result = await auth.register_password("alice", "Alice", PASSWORD)

        assert result.user.name == "Alice"
        assert result.user.username == "alice"
        assert await services.access.is_owner(result.user.id, result.inventory_id)
        assert (await services.sessions.get(result.session.id)).user_id == result.user.id
        assert await services.documents.find(result.inventory_id) == {"items": {}}

    @pytest.mark.asyncio
    async def test_trims_input(self, auth):
        result = await auth.register_password("  alice ", " Alice  ", PASSWORD)

        assert result.user.username == "alice"
        assert result.user.name == "Alice"

    @pytest.mark.asyncio
    async def test_password_is_hashed(self, auth, users):
        await auth.register_password("alice", "Alice", PASSWORD)

        record = await users.get_by_username("alice")
        assert record.password_hash != PASSWORD
        assert ":" in record.password_hash

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "username,name,password,message",
        [
            ("", "Alice", PASSWORD, "Username is required"),
            ("   ", "Alice", PASSWORD, "Username is required"),
            ("alice", "", PASSWORD, "Name is required"),
            ("alice", "Alice", "short", "Password must be at least 8 characters"),
            ("alice", "Alice", "", "Password must be at least 8 characters"),
        ],
    )
    async def test_validation(self, auth, database, username, name, password, message):
        with pytest.raises(ValidationError, match=message):
            await auth.register_password(username, name, password)

        assert await _count(database, UserRow) == 0

    @pytest.mark.asyncio
    async def test_duplicate_username_leaves_no_orphans(self, auth, database):
        await auth.register_password("alice", "Alice", PASSWORD)

        with pytest.raises(ConflictError, match="Username already taken"):
            await auth.register_password("alice", "Other Alice", PASSWORD)

        assert await _count(database, UserRow) == 1
        assert await _count(database, InventoryRow) == 1
        assert await _count(database, SessionRow) == 1

    @pytest.mark.asyncio
    async def test_concurrent_duplicate_is_a_conflict(self, auth, database, monkeypatch):
        await auth.register_password("alice", "Alice", PASSWORD)

        # The uniqueness pre-check misses a registration that lands just after it
        real_lookup = auth.users.get_by_username
        calls = []

        async def racy_lookup(username):
            calls.append(username)
            return None if len(calls) == 1 else await real_lookup(username)

        monkeypatch.setattr(auth.users, "get_by_username", racy_lookup)

        with pytest.raises(ConflictError):
            await auth.register_password("alice", "Alice again", PASSWORD)

        assert await _count(database, UserRow) == 1
        assert await _count(database, InventoryRow) == 1

    @pytest.mark.asyncio
    async def test_failure_after_user_insert_rolls_back(self, auth, database, monkeypatch):
        async def broken_create(user_id, *, db=None):
            raise RuntimeError("session table unavailable")

        monkeypatch.setattr(auth.sessions, "create", broken_create)

        with pytest.raises(RuntimeError):
            await auth.register_password("alice", "Alice", PASSWORD)

        assert await _count(database, UserRow) == 0
        assert await _count(database, InventoryRow) == 0
        assert await _count(database, SessionRow) == 0

        # And the username is still free
        monkeypatch.undo()
        result = await auth.register_password("alice", "Alice", PASSWORD)
        assert result.user.username == "alice"


# =============================================================================
# Password Login
# =============================================================================


class TestPasswordLogin:
    @pytest.mark.asyncio
    async def test_login_returns_fresh_session_and_inventories(self, auth):
        registered = await auth.register_password("alice", "Alice", PASSWORD)

        result = await auth.login_password("alice", PASSWORD)

        assert result.user.id == registered.user.id
        assert result.session.id != registered.session.id
        assert [(i.id, i.is_owner) for i in result.inventories] == [(registered.inventory_id, True)]

    @pytest.mark.asyncio
    async def test_concurrent_logins_get_distinct_sessions(self, auth):
        await auth.register_password("alice", "Alice", PASSWORD)

        first = await auth.login_password("alice", PASSWORD)
        second = await auth.login_password("alice", PASSWORD)

        assert first.session.id != second.session.id

    @pytest.mark.asyncio
    async def test_wrong_password_and_unknown_user_look_the_same(self, auth):
        await auth.register_password("alice", "Alice", PASSWORD)

        with pytest.raises(AuthenticationError) as wrong:
            await auth.login_password("alice", "wrong-password")
        with pytest.raises(AuthenticationError) as unknown:
            await auth.login_password("nobody", PASSWORD)

        assert wrong.value.message == unknown.value.message == "Invalid username or password"

    @pytest.mark.asyncio
    async def test_missing_fields(self, auth):
        with pytest.raises(ValidationError, match="Username and password are required"):
            await auth.login_password("alice", "")

    @pytest.mark.asyncio
    async def test_password_ceremony_refused_in_passkey_mode(self, passkey_auth):
        with pytest.raises(ValidationError, match="Password authentication is not enabled"):
            await passkey_auth.register_password("alice", "Alice", PASSWORD)
        with pytest.raises(ValidationError, match="Password authentication is not enabled"):
            await passkey_auth.login_password("alice", PASSWORD)


# =============================================================================
# Passkey Ceremonies
# =============================================================================


async def _register_passkey(auth, name="Alice", credential_id="cred-alice", sign_count=0):
    start = await auth.start_passkey_registration(name)
    return await auth.finish_passkey_registration(
        start.temp_id, name, {"id": credential_id, "signCount": sign_count}
    )


async def _login_passkey(auth, credential_id="cred-alice", sign_count=0, ok=True):
    start = await auth.start_passkey_login()
    return await auth.finish_passkey_login(
        start.temp_id, {"id": credential_id, "signCount": sign_count, "ok": ok}
    )


class TestPasskeyRegistration:
    @pytest.mark.asyncio
    async def test_start_returns_options_and_temp_id(self, passkey_auth):
        start = await passkey_auth.start_passkey_registration("Alice")

        assert start.temp_id
        assert start.options["rp"]["id"] == "localhost"
        assert start.options["user"]["name"] == "Alice"
        assert start.options["challenge"]

    @pytest.mark.asyncio
    async def test_finish_creates_user_credential_inventory_session(self, passkey_auth, services):
        result = await _register_passkey(passkey_auth)

        assert result.user.username is None
        credential = await services.users.get_credential("cred-alice")
        assert credential.user_id == result.user.id
        assert credential.transports == ["internal"]
        assert await services.access.is_owner(result.user.id, result.inventory_id)
        assert await services.sessions.get(result.session.id) is not None

    @pytest.mark.asyncio
    async def test_finish_verifies_against_stored_challenge(self, passkey_auth, services):
        start = await passkey_auth.start_passkey_registration("Alice")
        await passkey_auth.finish_passkey_registration(start.temp_id, "Alice", {"id": "cred-alice"})

        assert passkey_auth.verifier.seen_challenges == [base64url_to_bytes(start.options["challenge"])]

    @pytest.mark.asyncio
    async def test_temp_id_is_single_use(self, passkey_auth):
        start = await passkey_auth.start_passkey_registration("Alice")
        await passkey_auth.finish_passkey_registration(start.temp_id, "Alice", {"id": "cred-1"})

        with pytest.raises(AuthenticationError, match="Challenge expired or invalid"):
            await passkey_auth.finish_passkey_registration(start.temp_id, "Alice", {"id": "cred-2"})

    @pytest.mark.asyncio
    async def test_unknown_temp_id(self, passkey_auth):
        with pytest.raises(AuthenticationError, match="Challenge expired or invalid"):
            await passkey_auth.finish_passkey_registration("bogus", "Alice", {"id": "cred-1"})

    @pytest.mark.asyncio
    async def test_bad_attestation_creates_nothing(self, passkey_auth, database):
        start = await passkey_auth.start_passkey_registration("Alice")

        with pytest.raises(AuthenticationError, match="^Authentication failed$"):
            await passkey_auth.finish_passkey_registration(
                start.temp_id, "Alice", {"id": "cred-1", "ok": False}
            )

        assert await _count(database, UserRow) == 0

    @pytest.mark.asyncio
    async def test_duplicate_credential_rolls_back(self, passkey_auth, database):
        await _register_passkey(passkey_auth, "Alice", "cred-shared")

        with pytest.raises(AuthenticationError, match="^Authentication failed$"):
            await _register_passkey(passkey_auth, "Mallory", "cred-shared")

        assert await _count(database, UserRow) == 1
        assert await _count(database, InventoryRow) == 1

    @pytest.mark.asyncio
    async def test_passkey_ceremony_refused_in_password_mode(self, auth):
        assert isinstance(auth.verifier, PasswordVerifier)

        with pytest.raises(ValidationError, match="Passkey authentication is not enabled"):
            await auth.start_passkey_registration("Alice")
        with pytest.raises(ValidationError, match="Passkey authentication is not enabled"):
            await auth.start_passkey_login()


class TestPasskeyLogin:
    @pytest.mark.asyncio
    async def test_login(self, passkey_auth, services):
        registered = await _register_passkey(passkey_auth)

        result = await _login_passkey(passkey_auth, sign_count=1)

        assert result.user.id == registered.user.id
        assert [i.id for i in result.inventories] == [registered.inventory_id]
        assert (await services.users.get_credential("cred-alice")).counter == 1

    @pytest.mark.asyncio
    async def test_non_counting_authenticator(self, passkey_auth):
        await _register_passkey(passkey_auth)

        await _login_passkey(passkey_auth, sign_count=0)
        result = await _login_passkey(passkey_auth, sign_count=0)

        assert result.session.id

    @pytest.mark.asyncio
    async def test_counter_regression_is_rejected(self, passkey_auth, services):
        await _register_passkey(passkey_auth)
        await _login_passkey(passkey_auth, sign_count=5)

        with pytest.raises(AuthenticationError, match="^Authentication failed$"):
            await _login_passkey(passkey_auth, sign_count=5)
        with pytest.raises(AuthenticationError, match="^Authentication failed$"):
            await _login_passkey(passkey_auth, sign_count=3)

        assert (await services.users.get_credential("cred-alice")).counter == 5

    @pytest.mark.asyncio
    async def test_failures_are_indistinguishable(self, passkey_auth):
        await _register_passkey(passkey_auth)

        with pytest.raises(AuthenticationError) as unknown:
            await _login_passkey(passkey_auth, credential_id="cred-nobody")
        with pytest.raises(AuthenticationError) as bad_signature:
            await _login_passkey(passkey_auth, ok=False)
        with pytest.raises(AuthenticationError) as no_id:
            start = await passkey_auth.start_passkey_login()
            await passkey_auth.finish_passkey_login(start.temp_id, {})

        assert unknown.value.message == bad_signature.value.message == no_id.value.message

    @pytest.mark.asyncio
    async def test_expired_challenge(self, passkey_auth, services):
        await _register_passkey(passkey_auth)
        start = await passkey_auth.start_passkey_login()
        await services.challenges.pop(start.temp_id)

        with pytest.raises(AuthenticationError, match="Challenge expired or invalid"):
            await passkey_auth.finish_passkey_login(start.temp_id, {"id": "cred-alice"})


class TestRealPasskeyCeremonies:
    @pytest.fixture
    def real_passkey_auth(self, services, passkey_settings):
        services.auth.verifier = build_verifier(passkey_settings)
        return services.auth

    @pytest.mark.asyncio
    async def test_registered_credential_is_the_one_login_resolves(self, real_passkey_auth, services):
        authenticator = SoftAuthenticator()

        start = await real_passkey_auth.start_passkey_registration("Alice")
        registered = await real_passkey_auth.finish_passkey_registration(
            start.temp_id, "Alice", authenticator.create(start.options)
        )

        stored = await services.users.get_credential(authenticator.credential_id)
        assert stored.user_id == registered.user.id
        assert stored.transports == ["internal"]

        start = await real_passkey_auth.start_passkey_login()
        result = await real_passkey_auth.finish_passkey_login(start.temp_id, authenticator.get(start.options))

        assert result.user.id == registered.user.id
        assert (await services.users.get_credential(authenticator.credential_id)).counter == 1

    @pytest.mark.asyncio
    async def test_wrong_origin_is_a_generic_failure(self, real_passkey_auth, database):
        authenticator = SoftAuthenticator(origin="https://evil.test")
        start = await real_passkey_auth.start_passkey_registration("Alice")

        with pytest.raises(AuthenticationError, match="^Authentication failed$"):
            await real_passkey_auth.finish_passkey_registration(
                start.temp_id, "Alice", authenticator.create(start.options)
            )

        assert await _count(database, UserRow) == 0

    @pytest.mark.asyncio
    async def test_assertion_from_another_key_is_rejected(self, real_passkey_auth):
        owner = SoftAuthenticator()
        start = await real_passkey_auth.start_passkey_registration("Alice")
        await real_passkey_auth.finish_passkey_registration(start.temp_id, "Alice", owner.create(start.options))

        impostor = SoftAuthenticator()
        impostor.raw_id = owner.raw_id
        start = await real_passkey_auth.start_passkey_login()

        with pytest.raises(AuthenticationError, match="^Authentication failed$"):
            await real_passkey_auth.finish_passkey_login(start.temp_id, impostor.get(start.options))


# =============================================================================
# Profile / Logout
# =============================================================================


class TestProfile:
    @pytest.mark.asyncio
    async def test_update_name(self, auth):
        registered = await auth.register_password("alice", "Alice", PASSWORD)

        user = await auth.update_profile(registered.user.id, name="  Alice B ")

        assert user.name == "Alice B"

    @pytest.mark.asyncio
    async def test_empty_name(self, auth):
        registered = await auth.register_password("alice", "Alice", PASSWORD)

        with pytest.raises(ValidationError, match="Name cannot be empty"):
            await auth.update_profile(registered.user.id, name="   ")
        with pytest.raises(ValidationError, match="No valid fields to update"):
            await auth.update_profile(registered.user.id)

    @pytest.mark.asyncio
    async def test_logout(self, auth, sessions):
        registered = await auth.register_password("alice", "Alice", PASSWORD)

        await auth.logout(registered.session.id)
        await auth.logout(registered.session.id)
        await auth.logout(None)

        assert await sessions.get(registered.session.id) is None
