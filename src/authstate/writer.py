from __future__ import annotations

import logging
import threading
from typing import Callable

from .backends import StorageBackend
from .cipher import Cipher
from .models import StoredState, serialize


logger = logging.getLogger(__name__)


class WriteSerializer:
    """
    Commit path: snapshot -> serialize -> encrypt -> backend.save.

    Holds one lock for the whole sequence so at most one write is in flight;
    a second `commit()` waits for the first and then persists a newer
    snapshot. A failed commit raises to the caller and leaves memory alone.
    """

    def __init__(
        self,
        snapshot: Callable[[], StoredState],
        cipher: Cipher,
        backend: StorageBackend,
    ) -> None:
        self._snapshot = snapshot
        self._cipher = cipher
        self._backend = backend
        self._lock = threading.Lock()
        self._commits = 0

    @property
    def commits(self) -> int:
        """Number of successful commits so far."""
        return self._commits

    @property
    def backend(self) -> StorageBackend:
        return self._backend

    def commit(self) -> None:
        with self._lock:
            state = self._snapshot()
            envelope = self._cipher.encrypt(serialize(state))
            logger.debug("Writing %d byte auth state to %s", len(envelope), self._backend.describe())
            self._backend.save(envelope)
            self._commits += 1


__all__ = ["WriteSerializer"]
