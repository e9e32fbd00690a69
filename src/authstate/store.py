from __future__ import annotations

import copy
import logging
import threading
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from pydantic import BaseModel

from .credentials import Credentials
from .models import KeyCategory, StoredState, parse_category, validate_value


logger = logging.getLogger(__name__)


def _is_delete(value: Any) -> bool:
    """None and empty values mean "remove this id"."""
    if value is None:
        return True
    if isinstance(value, (bytes, bytearray, str, dict)) and len(value) == 0:
        return True
    return False


def _detached(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_copy(deep=True)
    if isinstance(value, (dict, list)):
        return copy.deepcopy(value)
    return value


class AuthStateStore:
    """
    Authoritative in-memory copy of the persisted state.

    - `get` never raises; unknown ids map to None and values are copies.
    - `set` applies a whole batch under one lock and then calls `on_dirty`
      exactly once, so a burst of key updates becomes a single notification.
    - `snapshot` deep-copies under the same lock, so it can never observe a
      half-applied batch.

    The store does no I/O; persistence is wired in through `on_dirty`.
    """

    def __init__(
        self,
        state: StoredState,
        *,
        on_dirty: Optional[Callable[[], Any]] = None,
    ) -> None:
        self._state = state
        self._on_dirty = on_dirty
        self._lock = threading.RLock()

    def set_listener(self, on_dirty: Optional[Callable[[], Any]]) -> None:
        self._on_dirty = on_dirty

    # -------- Key material --------
    def get(self, category: KeyCategory | str, ids: Iterable[str]) -> Dict[str, Any]:
        """Look up `ids`; absent ids (or an unknown category) map to None.

        Values are copies, so mutating them never touches the stored state.
        """
        try:
            cat = KeyCategory(category)
        except ValueError:
            logger.debug("get() for unknown key category %r", category)
            return {i: None for i in ids}
        with self._lock:
            bucket = self._state.keys.bucket(cat)
            return {i: _detached(bucket.get(i)) for i in ids}

    def set(self, updates: Mapping[KeyCategory | str, Mapping[str, Any]]) -> None:
        """Apply a batch of upserts/deletes.

        `updates` maps category -> {id -> value}. A None or empty value
        deletes the id. Every value is validated before anything is changed;
        a FormatError leaves the store untouched.
        """
        plan = []
        for category, entries in updates.items():
            cat = parse_category(category)
            for key_id, value in entries.items():
                plan.append((cat, key_id, None if _is_delete(value) else validate_value(cat, value)))
        if not plan:
            return

        with self._lock:
            for cat, key_id, value in plan:
                bucket = self._state.keys.bucket(cat)
                if value is None:
                    bucket.pop(key_id, None)
                else:
                    bucket[key_id] = value
        logger.debug("Applied %d key update(s)", len(plan))
        self._notify()

    def clear(self) -> None:
        """Drop all key material; credentials are kept."""
        with self._lock:
            for cat in KeyCategory:
                self._state.keys.bucket(cat).clear()
        self._notify()

    # -------- Credentials --------
    def credentials(self) -> Credentials:
        """The live credentials object.

        The protocol layer mutates it in place and then requests a save.
        """
        return self._state.creds

    def replace_credentials(self, creds: Credentials) -> Any:
        """Swap in `creds`; returns whatever the dirty listener returned."""
        with self._lock:
            self._state.creds = creds
        return self._notify()

    # -------- Persistence --------
    def snapshot(self) -> StoredState:
        with self._lock:
            return self._state.model_copy(deep=True)

    def _notify(self) -> Any:
        if self._on_dirty is None:
            return None
        return self._on_dirty()


__all__ = ["AuthStateStore"]
