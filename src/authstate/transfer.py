"""
One-shot backup/restore of the encrypted artifact.

These helpers bypass the scheduler and the write lock: they are meant for
offline use while no session has the file open.
"""

from __future__ import annotations

import os
from typing import Any, Dict, Mapping

from .backends import LocalFileBackend
from .cipher import decrypt, encrypt, load_secret
from .errors import StorageError
from .models import StoredState, deserialize, from_document, serialize, to_document


def export_auth_state(path: os.PathLike[str] | str, secret: str | bytes) -> StoredState:
    """Decrypt the artifact at `path`.

    Raises StorageError if the file is missing or unreadable, IntegrityError
    on a wrong secret or tampering, FormatError on malformed content.
    """
    envelope = LocalFileBackend(path).load()
    if envelope is None:
        raise StorageError(f"No auth state file at {path}")
    return deserialize(decrypt(load_secret(secret), envelope))


def export_document(path: os.PathLike[str] | str, secret: str | bytes) -> Dict[str, Any]:
    """Like `export_auth_state`, as a plain JSON-compatible document."""
    return to_document(export_auth_state(path, secret))


def import_auth_state(
    path: os.PathLike[str] | str,
    secret: str | bytes,
    state: StoredState | Mapping[str, Any],
) -> None:
    """Encrypt `state` (a model or a plain document) and write it atomically."""
    if not isinstance(state, StoredState):
        state = from_document(state)
    envelope = encrypt(load_secret(secret), serialize(state))
    LocalFileBackend(path).save(envelope)


__all__ = ["export_auth_state", "export_document", "import_auth_state"]
