# =============================================================================
# Password Hashing
# =============================================================================
#
# scrypt with a random 16-byte salt, stored as "salt:hash" (both hex).
# The salt is fed to scrypt as its hex text, so hashes written by the
# earlier Node server keep verifying.
#
# =============================================================================

from __future__ import annotations

import asyncio
import hashlib
import secrets

SALT_LENGTH = 16
KEY_LENGTH = 64

# Node's crypto.scrypt defaults
SCRYPT_N = 16384
SCRYPT_R = 8
SCRYPT_P = 1


def _derive(password: str, salt: str) -> bytes:
    return hashlib.scrypt(
        password.encode("utf-8"),
        salt=salt.encode("utf-8"),
        n=SCRYPT_N,
        r=SCRYPT_R,
        p=SCRYPT_P,
        dklen=KEY_LENGTH,
    )


def hash_password(password: str) -> str:
    """
    Hash a password using scrypt.

    Returns: salt:hash format string
    """
    salt = secrets.token_hex(SALT_LENGTH)
    return f"{salt}:{_derive(password, salt).hex()}"


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash in constant time."""
    try:
        salt, stored_hash = password_hash.split(":")
        expected = bytes.fromhex(stored_hash)
    except (ValueError, AttributeError):
        return False
    return secrets.compare_digest(_derive(password, salt), expected)


async def hash_password_async(password: str) -> str:
    """`hash_password` off the event loop."""
    return await asyncio.to_thread(hash_password, password)


async def verify_password_async(password: str, password_hash: str) -> bool:
    """`verify_password` off the event loop."""
    return await asyncio.to_thread(verify_password, password, password_hash)
