"""
Authentication for Homie.

- credentials: how users prove who they are (password or passkey)
- service: registration/login orchestration
- gate: cookie session dependencies for HTTP routes
- routes: the /auth API

The gate and routes depend on the API layer and are imported from their
own modules.
"""

from homie.auth.context import AuthContext
from homie.auth.credentials import (
    CredentialVerifier,
    CredentialVerificationError,
    PasswordVerifier,
    PasskeyVerifier,
    VerifiedCredential,
    build_verifier,
)
from homie.auth.service import AuthService, CeremonyStart, LoginResult, Registration

__all__ = [
    "AuthContext",
    "CredentialVerifier",
    "CredentialVerificationError",
    "PasswordVerifier",
    "PasskeyVerifier",
    "VerifiedCredential",
    "build_verifier",
    "AuthService",
    "CeremonyStart",
    "LoginResult",
    "Registration",
]
