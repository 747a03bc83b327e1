"""
Shared utility functions.

This module contains common utilities used across the codebase.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any


def generate_id(prefix: str = "") -> str:
    """
    Generate a unique ID with optional prefix.

    Args:
        prefix: Optional prefix (e.g., "user", "inv")

    Returns:
        A unique ID like "user_a1b2c3d4e5f6a7b8"
    """
    uid = uuid.uuid4().hex[:16]
    return f"{prefix}_{uid}" if prefix else uid


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def to_millis(value: datetime) -> int:
    """Convert an aware datetime to epoch milliseconds."""
    return (value - EPOCH) // timedelta(milliseconds=1)


def from_millis(value: int) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return EPOCH + timedelta(milliseconds=value)


def is_encodable(value: Any) -> bool:
    """True unless a string somewhere in `value` cannot be encoded as UTF-8 (e.g. a lone surrogate)."""
    if isinstance(value, str):
        try:
            value.encode("utf-8")
        except UnicodeEncodeError:
            return False
        return True
    if isinstance(value, dict):
        return all(is_encodable(k) and is_encodable(v) for k, v in value.items())
    if isinstance(value, (list, tuple)):
        return all(is_encodable(v) for v in value)
    return True
