from __future__ import annotations


class AuthStateError(Exception):
    """Base error for the encrypted auth-state store."""


class FormatError(AuthStateError, ValueError):
    """Serialized bytes or a supplied document do not match the state schema."""


class IntegrityError(AuthStateError, ValueError):
    """An envelope failed authentication (corrupted, truncated or foreign secret)."""


class StorageError(AuthStateError):
    """The storage backend failed to read or write the envelope."""


__all__ = [
    "AuthStateError",
    "FormatError",
    "IntegrityError",
    "StorageError",
]
