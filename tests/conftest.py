"""
Shared fixtures.

Store tests get a fresh SQLite file per test. API tests get a TestClient
whose app owns that same file for the duration of the test.
"""

from __future__ import annotations

import hashlib
import json
import secrets
from datetime import timedelta
from typing import Any

import cbor2
import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from fastapi.testclient import TestClient
from webauthn.helpers import bytes_to_base64url

from homie.api.app import create_app
from homie.api.deps import build_services
from homie.auth.credentials import PasskeyVerifier, VerifiedCredential, CredentialVerificationError
from homie.config import Settings
from homie.core.models import Credential
from homie.core.utils import utc_now
from homie.storage import AccessControlStore, Database, SessionStore, UserStore

PASSWORD = "password123"

# Authenticator data flags
FLAG_UP = 0x01
FLAG_UV = 0x04
FLAG_AT = 0x40


# =============================================================================
# Settings / Clock
# =============================================================================


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'homie.db'}",
        data_dir=str(tmp_path),
        cors_origins="http://testserver",
    )


class Clock:
    """Controllable stand-in for `utc_now` in the session store."""

    def __init__(self):
        self.now = utc_now().replace(microsecond=0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock(monkeypatch):
    clock = Clock()
    monkeypatch.setattr("homie.storage.sessions.utc_now", clock)
    return clock


# =============================================================================
# Stores
# =============================================================================


@pytest_asyncio.fixture
async def database(settings):
    db = Database(settings.database_url)
    await db.create_tables()
    yield db
    await db.dispose()


@pytest.fixture
def users(database):
    return UserStore(database)


@pytest.fixture
def sessions(database):
    return SessionStore(database, timedelta(days=7))


@pytest.fixture
def access(database):
    return AccessControlStore(database)


@pytest.fixture
def services(settings, database):
    return build_services(settings, database=database)


# =============================================================================
# Passkeys
# =============================================================================


class FakePasskeyVerifier(PasskeyVerifier):
    """
    Real option generation, scripted verification.

    `response["ok"]` decides whether a response verifies; login responses
    carry the sign count the authenticator would report.
    """

    def __init__(self):
        super().__init__(rp_id="localhost", rp_name="Homie", origin="http://localhost:5173")
        self.seen_challenges: list[bytes] = []

    def verify_registration(self, response: dict[str, Any], challenge: bytes) -> VerifiedCredential:
        self.seen_challenges.append(challenge)
        if not response.get("ok", True):
            raise CredentialVerificationError("bad attestation")
        return VerifiedCredential(
            credential_id=response["id"],
            public_key=b"public-key-" + response["id"].encode(),
            sign_count=response.get("signCount", 0),
            transports=["internal"],
        )

    def verify_authentication(self, response: dict[str, Any], challenge: bytes, credential: Credential) -> int:
        self.seen_challenges.append(challenge)
        if not response.get("ok", True):
            raise CredentialVerificationError("bad signature")
        return response.get("signCount", 0)


class SoftAuthenticator:
    """
    A software passkey: one P-256 key pair answering real WebAuthn ceremonies.

    Attestation is "none"; every assertion bumps the sign count.
    """

    def __init__(self, rp_id: str = "localhost", origin: str = "http://localhost:5173"):
        self.rp_id = rp_id
        self.origin = origin
        self.raw_id = secrets.token_bytes(16)
        self.sign_count = 0
        self._key = ec.generate_private_key(ec.SECP256R1())

    @property
    def credential_id(self) -> str:
        return bytes_to_base64url(self.raw_id)

    def create(self, options: dict[str, Any]) -> dict[str, Any]:
        """Answer navigator.credentials.create()."""
        numbers = self._key.public_key().public_numbers()
        cose_key = cbor2.dumps({
            1: 2,  # kty: EC2
            3: -7,  # alg: ES256
            -1: 1,  # crv: P-256
            -2: numbers.x.to_bytes(32, "big"),
            -3: numbers.y.to_bytes(32, "big"),
        })
        auth_data = (
            self._auth_data(FLAG_UP | FLAG_UV | FLAG_AT)
            + bytes(16)  # aaguid
            + len(self.raw_id).to_bytes(2, "big")
            + self.raw_id
            + cose_key
        )
        attestation = cbor2.dumps({"fmt": "none", "attStmt": {}, "authData": auth_data})
        client_data = self._client_data("webauthn.create", options["challenge"])

        return {
            "id": self.credential_id,
            "rawId": self.credential_id,
            "type": "public-key",
            "response": {
                "clientDataJSON": bytes_to_base64url(client_data),
                "attestationObject": bytes_to_base64url(attestation),
                "transports": ["internal"],
            },
        }

    def get(self, options: dict[str, Any]) -> dict[str, Any]:
        """Answer navigator.credentials.get()."""
        self.sign_count += 1
        auth_data = self._auth_data(FLAG_UP | FLAG_UV)
        client_data = self._client_data("webauthn.get", options["challenge"])
        signature = self._key.sign(
            auth_data + hashlib.sha256(client_data).digest(),
            ec.ECDSA(hashes.SHA256()),
        )

        return {
            "id": self.credential_id,
            "rawId": self.credential_id,
            "type": "public-key",
            "response": {
                "clientDataJSON": bytes_to_base64url(client_data),
                "authenticatorData": bytes_to_base64url(auth_data),
                "signature": bytes_to_base64url(signature),
            },
        }

    def _auth_data(self, flags: int) -> bytes:
        rp_id_hash = hashlib.sha256(self.rp_id.encode()).digest()
        return rp_id_hash + bytes([flags]) + self.sign_count.to_bytes(4, "big")

    def _client_data(self, kind: str, challenge: str) -> bytes:
        return json.dumps({"type": kind, "challenge": challenge, "origin": self.origin}).encode()


@pytest.fixture
def passkey_settings(settings):
    return settings.model_copy(update={"auth_mode": "passkey"})


# =============================================================================
# API
# =============================================================================


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


def register(client: TestClient, username: str, name: str | None = None, password: str = PASSWORD) -> dict:
    """Register through the API and return {"user", "inventoryId", "session"}."""
    response = client.post(
        "/auth/register",
        json={"username": username, "name": name or username.title(), "password": password},
    )
    assert response.status_code == 200, response.text
    body = response.json()
    body["session"] = response.cookies["session"]
    return body


def act_as(client: TestClient, session_id: str | None) -> None:
    """Make the client send only the given session cookie."""
    client.cookies.clear()
    if session_id:
        client.cookies.set("session", session_id)
