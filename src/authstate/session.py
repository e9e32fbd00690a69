from __future__ import annotations

import logging
from concurrent.futures import Future
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from authcommon.debounce import DebouncedCommitScheduler

from .backends import StorageBackend
from .cipher import Cipher
from .config import AuthStateConfig
from .credentials import Credentials, init_credentials
from .errors import AuthStateError
from .models import KeyCategory, StoredState, deserialize
from .store import AuthStateStore
from .writer import WriteSerializer


logger = logging.getLogger(__name__)


class Lifecycle(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    CLOSED = "closed"


class KeyStore:
    """The `get`/`set` surface handed to the protocol layer."""

    def __init__(self, store: AuthStateStore) -> None:
        self._store = store

    def get(self, category: KeyCategory | str, ids: Iterable[str]) -> Dict[str, Any]:
        return self._store.get(category, ids)

    def set(self, updates: Mapping[KeyCategory | str, Mapping[str, Any]]) -> None:
        self._store.set(updates)

    def clear(self) -> None:
        self._store.clear()


def load_stored_state(
    backend: StorageBackend,
    cipher: Cipher,
    *,
    init_credentials: Callable[[], Credentials] = init_credentials,
) -> StoredState:
    """Read and decrypt the envelope, or start fresh when there is none.

    Only a missing envelope counts as first run. A present envelope that
    fails authentication raises IntegrityError, one that decrypts to
    garbage raises FormatError, and backend failures raise StorageError.
    Silently replacing an unreadable envelope would lose the session.
    """
    envelope = backend.load()
    if envelope is None:
        logger.info("No auth state at %s; initializing fresh credentials", backend.describe())
        return StoredState.fresh(init_credentials)
    state = deserialize(cipher.decrypt(envelope))
    logger.info(
        "Loaded auth state from %s (%d key entries)", backend.describe(), state.keys.count()
    )
    return state


class EncryptedAuthState:
    """
    Encrypted, debounced auth state for one client session.

    Lifecycle: UNINITIALIZED -> LOADING -> READY -> CLOSED. `open()` loads
    (or initializes) the state; afterwards every key update and every
    `save_creds()` schedules a debounced commit. `close()` flushes whatever
    is pending and waits for it.

    Usage
        with open_auth_state(config) as auth:
            auth.keys.set({"session": {"alice.0": blob}})
            auth.creds.registered = True
            auth.save_creds()
    """

    def __init__(
        self,
        config: AuthStateConfig,
        *,
        init_credentials: Callable[[], Credentials] = init_credentials,
        on_error: Optional[Callable[[BaseException], None]] = None,
    ) -> None:
        self._config = config
        self._init_credentials = init_credentials
        self._backend = config.backend()
        self._cipher = Cipher(config.secret)
        self._on_error = on_error
        self._lifecycle = Lifecycle.UNINITIALIZED
        self._store: Optional[AuthStateStore] = None
        self._writer: Optional[WriteSerializer] = None
        self._scheduler: Optional[DebouncedCommitScheduler] = None
        self._keys: Optional[KeyStore] = None

    @property
    def lifecycle(self) -> Lifecycle:
        return self._lifecycle

    @property
    def backend(self) -> StorageBackend:
        return self._backend

    @property
    def store(self) -> AuthStateStore:
        return self._require_ready_part(self._store)

    @property
    def writer(self) -> WriteSerializer:
        return self._require_ready_part(self._writer)

    @property
    def scheduler(self) -> DebouncedCommitScheduler:
        return self._require_ready_part(self._scheduler)

    @property
    def creds(self) -> Credentials:
        return self.store.credentials()

    @property
    def keys(self) -> KeyStore:
        return self._require_ready_part(self._keys)

    def open(self) -> "EncryptedAuthState":
        if self._lifecycle is not Lifecycle.UNINITIALIZED:
            raise AuthStateError(f"Cannot open auth state in state {self._lifecycle.value}")
        self._lifecycle = Lifecycle.LOADING
        try:
            state = load_stored_state(
                self._backend, self._cipher, init_credentials=self._init_credentials
            )
        except Exception:
            self._lifecycle = Lifecycle.UNINITIALIZED
            raise
        store = AuthStateStore(state)
        writer = WriteSerializer(store.snapshot, self._cipher, self._backend)
        scheduler = DebouncedCommitScheduler(
            writer.commit, delay=self._config.write_delay, on_error=self._on_error
        )
        store.set_listener(scheduler.notify)
        self._store, self._writer, self._scheduler = store, writer, scheduler
        self._keys = KeyStore(store)
        self._lifecycle = Lifecycle.READY
        return self

    def save_creds(self) -> Future:
        """Schedule a debounced commit after credentials changed.

        The returned Future resolves once the commit that covers this call
        has finished; `.result()` raises its error, if any.
        """
        return self.scheduler.notify()

    def replace_credentials(self, creds: Credentials) -> Future:
        # The store's dirty listener is scheduler.notify; its Future comes back
        return self.store.replace_credentials(creds)

    def flush(self) -> None:
        """Commit now in the calling thread and wait; raises on failure.

        Also waits for a timer-driven commit that is already running and
        raises its error.
        """
        self.scheduler.drain(force=True)

    def close(self) -> None:
        """Write anything pending, then release the backend.

        Raises the final commit's error; the state is CLOSED either way.
        """
        if self._lifecycle is not Lifecycle.READY:
            return
        store, scheduler = self.store, self.scheduler
        # Late sets through a retained KeyStore must not schedule writes
        store.set_listener(None)
        try:
            scheduler.drain()
        finally:
            self._lifecycle = Lifecycle.CLOSED
            close_backend = getattr(self._backend, "close", None)
            if callable(close_backend):
                close_backend()

    def __enter__(self) -> "EncryptedAuthState":
        if self._lifecycle is Lifecycle.UNINITIALIZED:
            self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _require_ready_part(self, part):
        if self._lifecycle is not Lifecycle.READY or part is None:
            raise AuthStateError(f"Auth state is not ready (state: {self._lifecycle.value})")
        return part


def open_auth_state(
    config: AuthStateConfig,
    *,
    init_credentials: Callable[[], Credentials] = init_credentials,
    on_error: Optional[Callable[[BaseException], None]] = None,
) -> EncryptedAuthState:
    """Load (or initialize) the auth state described by `config`."""
    return EncryptedAuthState(
        config, init_credentials=init_credentials, on_error=on_error
    ).open()


__all__ = [
    "EncryptedAuthState",
    "KeyStore",
    "Lifecycle",
    "load_stored_state",
    "open_auth_state",
]
