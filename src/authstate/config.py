from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .backends import LocalFileBackend, StorageBackend
from .cipher import load_secret


# Environment variable names for convenience configuration
ENV_FILE = "AUTH_STATE_FILE"
ENV_SECRET = "AUTH_STATE_SECRET"
ENV_WRITE_DELAY_MS = "AUTH_STATE_WRITE_DELAY_MS"

DEFAULT_WRITE_DELAY_MS = 1000


@dataclass
class AuthStateConfig:
    """
    Options for an encrypted auth state.

    Fields
    - file_path: local destination of the envelope (also used to name the
      default backend).
    - secret: raw 32-byte key, or its base64 text. No key derivation.
    - write_delay_ms: debounce window between the last change and the write.
    - storage_backend: where the envelope lives; defaults to a
      LocalFileBackend at `file_path`.
    """

    file_path: Path
    secret: bytes = field(repr=False)
    write_delay_ms: int = DEFAULT_WRITE_DELAY_MS
    storage_backend: Optional[StorageBackend] = None

    def __post_init__(self) -> None:
        self.file_path = Path(self.file_path)
        self.secret = load_secret(self.secret)
        if self.write_delay_ms < 0:
            raise ValueError("write_delay_ms must be >= 0")

    @property
    def write_delay(self) -> float:
        """Debounce window in seconds."""
        return self.write_delay_ms / 1000.0

    def backend(self) -> StorageBackend:
        if self.storage_backend is not None:
            return self.storage_backend
        return LocalFileBackend(self.file_path)

    # -------- Construction helpers --------
    @classmethod
    def from_env(cls, *, storage_backend: Optional[StorageBackend] = None) -> "AuthStateConfig":
        path = os.environ.get(ENV_FILE)
        secret = os.environ.get(ENV_SECRET)
        if not path or not secret:
            missing = [name for name, val in [(ENV_FILE, path), (ENV_SECRET, secret)] if not val]
            raise RuntimeError(
                f"Missing required environment variables for auth state: {', '.join(missing)}"
            )
        raw_delay = os.environ.get(ENV_WRITE_DELAY_MS)
        try:
            delay = int(raw_delay) if raw_delay else DEFAULT_WRITE_DELAY_MS
        except ValueError as ex:
            raise RuntimeError(f"{ENV_WRITE_DELAY_MS} must be an integer, got {raw_delay!r}") from ex
        return cls(
            file_path=Path(path),
            secret=load_secret(secret),
            write_delay_ms=delay,
            storage_backend=storage_backend,
        )


__all__ = [
    "AuthStateConfig",
    "DEFAULT_WRITE_DELAY_MS",
    "ENV_FILE",
    "ENV_SECRET",
    "ENV_WRITE_DELAY_MS",
]
