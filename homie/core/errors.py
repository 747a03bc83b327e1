"""
Error taxonomy.

Every expected failure is a HomieError subclass carrying the HTTP status
it maps to. Anything else is an internal error and is reported to the
client without detail.
"""

from __future__ import annotations


class HomieError(Exception):
    """Base exception for expected, client-visible failures."""

    status_code: int = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(HomieError):
    """Malformed or missing input."""

    status_code = 400


class AuthenticationError(HomieError):
    """Missing, invalid or expired session, or bad credentials."""

    status_code = 401


class AuthorizationError(HomieError):
    """Valid session, insufficient privilege."""

    status_code = 403


class NotFoundError(HomieError):
    """The inventory, member or user does not exist."""

    status_code = 404


class ConflictError(HomieError):
    """Unique constraint violated (e.g. username already taken)."""

    status_code = 409
