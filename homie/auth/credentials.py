"""
Credential verification.

One capability, two variants, picked by `settings.auth_mode`:

- PasswordVerifier: username + scrypt-hashed password
- PasskeyVerifier: WebAuthn registration/authentication ceremonies

The session and access-control plumbing is shared; only the proof of
identity differs.
"""

from __future__ import annotations

import json
import logging
from abc import ABC
from dataclasses import dataclass, field
from typing import Any

from webauthn import (
    generate_authentication_options,
    generate_registration_options,
    options_to_json,
    verify_authentication_response,
    verify_registration_response,
)
from webauthn.helpers import bytes_to_base64url
from webauthn.helpers.exceptions import (
    InvalidAuthenticationResponse,
    InvalidCBORData,
    InvalidJSONStructure,
    InvalidRegistrationResponse,
)
from webauthn.helpers.structs import (
    AuthenticatorSelectionCriteria,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from homie.auth.passwords import hash_password_async, verify_password_async
from homie.config import Settings
from homie.core.models import Credential

logger = logging.getLogger(__name__)


_WEBAUTHN_ERRORS = (
    InvalidRegistrationResponse,
    InvalidAuthenticationResponse,
    InvalidJSONStructure,
    InvalidCBORData,
    ValueError,
    KeyError,
    TypeError,
)


class CredentialVerificationError(Exception):
    """A credential or assertion did not verify. Details are for logs only."""
    pass


@dataclass
class VerifiedCredential:
    """A freshly registered public-key credential."""

    credential_id: str  # base64url
    public_key: bytes
    sign_count: int
    transports: list[str] = field(default_factory=list)


class CredentialVerifier(ABC):
    """Base for the configured way users prove who they are."""

    mode: str = ""


# =============================================================================
# Password
# =============================================================================


class PasswordVerifier(CredentialVerifier):
    """Username + password."""

    mode = "password"

    def __init__(self, min_length: int = 8):
        self.min_length = min_length

    def is_acceptable(self, password: str) -> bool:
        return len(password) >= self.min_length

    async def hash(self, password: str) -> str:
        return await hash_password_async(password)

    async def verify(self, password: str, password_hash: str | None) -> bool:
        if not password_hash:
            return False
        return await verify_password_async(password, password_hash)


# =============================================================================
# Passkey (WebAuthn)
# =============================================================================


class PasskeyVerifier(CredentialVerifier):
    """
    WebAuthn via py_webauthn.

    Credentials are discoverable (resident keys), so login does not need
    to know the username up front: the authenticator offers a credential
    and we resolve the user from its id.
    """

    mode = "passkey"

    def __init__(self, rp_id: str, rp_name: str, origin: str):
        self.rp_id = rp_id
        self.rp_name = rp_name
        self.origin = origin

    def registration_options(self, name: str) -> tuple[dict[str, Any], bytes]:
        """Returns (options for navigator.credentials.create, challenge)."""
        options = generate_registration_options(
            rp_id=self.rp_id,
            rp_name=self.rp_name,
            user_name=name,
            user_display_name=name,
            authenticator_selection=AuthenticatorSelectionCriteria(
                resident_key=ResidentKeyRequirement.REQUIRED,
                user_verification=UserVerificationRequirement.PREFERRED,
            ),
        )
        return json.loads(options_to_json(options)), options.challenge

    def verify_registration(self, response: dict[str, Any], challenge: bytes) -> VerifiedCredential:
        try:
            verified = verify_registration_response(
                credential=response,
                expected_challenge=challenge,
                expected_rp_id=self.rp_id,
                expected_origin=self.origin,
            )
        except _WEBAUTHN_ERRORS as e:
            raise CredentialVerificationError(f"Registration response rejected: {e}") from e

        transports = response.get("response", {}).get("transports") or []
        return VerifiedCredential(
            credential_id=bytes_to_base64url(verified.credential_id),
            public_key=verified.credential_public_key,
            sign_count=verified.sign_count,
            transports=[str(t) for t in transports],
        )

    def authentication_options(self) -> tuple[dict[str, Any], bytes]:
        """Returns (options for navigator.credentials.get, challenge)."""
        options = generate_authentication_options(
            rp_id=self.rp_id,
            user_verification=UserVerificationRequirement.PREFERRED,
        )
        return json.loads(options_to_json(options)), options.challenge

    def verify_authentication(
        self,
        response: dict[str, Any],
        challenge: bytes,
        credential: Credential,
    ) -> int:
        """Verify an assertion against a stored credential. Returns the new sign count."""
        try:
            verified = verify_authentication_response(
                credential=response,
                expected_challenge=challenge,
                expected_rp_id=self.rp_id,
                expected_origin=self.origin,
                credential_public_key=credential.public_key,
                credential_current_sign_count=credential.counter,
                require_user_verification=False,
            )
        except _WEBAUTHN_ERRORS as e:
            raise CredentialVerificationError(f"Assertion rejected: {e}") from e

        return verified.new_sign_count


def build_verifier(settings: Settings) -> CredentialVerifier:
    """Pick the verifier for the configured auth mode."""
    if settings.auth_mode == "passkey":
        return PasskeyVerifier(
            rp_id=settings.webauthn_rp_id,
            rp_name=settings.webauthn_rp_name,
            origin=settings.webauthn_origin,
        )
    return PasswordVerifier(min_length=settings.password_min_length)
