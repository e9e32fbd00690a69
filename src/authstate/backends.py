"""
Storage backends for the encrypted envelope.

Every backend exposes the same two calls:

- `save(data)`: persist the envelope bytes or raise StorageError.
- `load()`: return the last saved bytes, or None when nothing was saved yet.

`LocalFileBackend` replaces the destination atomically (temp file + fsync +
rename). Remote variants delegate durability to the service behind them.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Callable, Optional, Protocol, runtime_checkable

from authcommon.http_blob import BlobError, HttpBlobClient

from .errors import StorageError


logger = logging.getLogger(__name__)

TMP_SUFFIX = ".tmp"


@runtime_checkable
class StorageBackend(Protocol):
    def save(self, data: bytes) -> None: ...

    def load(self) -> Optional[bytes]: ...

    def describe(self) -> str: ...


def _fsync_dir(path: Path) -> None:
    # Not supported on every platform (e.g. Windows); durability of the
    # rename is best-effort there.
    try:
        fd = os.open(str(path), os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass
    finally:
        os.close(fd)


class LocalFileBackend:
    """
    Single file on local disk, replaced atomically.

    A commit writes `<path>.tmp`, fsyncs it and renames it over `<path>`.
    The rename is the only moment the destination changes, so a crash at
    any earlier point leaves the previous version intact. Parent
    directories are created on first save.
    """

    def __init__(self, path: os.PathLike[str] | str, *, fsync: bool = True) -> None:
        self._path = Path(path)
        self._fsync = fsync

    @property
    def path(self) -> Path:
        return self._path

    @property
    def tmp_path(self) -> Path:
        return self._path.with_name(self._path.name + TMP_SUFFIX)

    def describe(self) -> str:
        return f"file://{self._path}"

    def load(self) -> Optional[bytes]:
        try:
            return self._path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as ex:
            raise StorageError(f"Failed to read {self._path}") from ex

    def save(self, data: bytes) -> None:
        tmp = self.tmp_path
        try:
            if not self._path.parent.exists():
                logger.info("Creating auth state directory %s", self._path.parent)
                self._path.parent.mkdir(parents=True, exist_ok=True)
            with tmp.open("wb") as handle:
                handle.write(data)
                handle.flush()
                if self._fsync:
                    os.fsync(handle.fileno())
            os.replace(tmp, self._path)
        except OSError as ex:
            self._discard_tmp()
            raise StorageError(f"Failed to write {self._path}") from ex
        if self._fsync:
            _fsync_dir(self._path.parent)

    def _discard_tmp(self) -> None:
        try:
            self.tmp_path.unlink()
        except FileNotFoundError:
            pass
        except OSError:
            logger.warning("Could not remove temporary file %s", self.tmp_path)


class CallbackBlobBackend:
    """Remote blob store reached through caller-supplied save/load callables."""

    def __init__(
        self,
        save: Callable[[bytes], object],
        load: Callable[[], Optional[bytes]],
        *,
        name: str = "callback",
    ) -> None:
        self._save = save
        self._load = load
        self._name = name

    def describe(self) -> str:
        return f"blob://{self._name}"

    def save(self, data: bytes) -> None:
        try:
            self._save(data)
        except Exception as ex:
            raise StorageError(f"Remote save failed ({self._name})") from ex

    def load(self) -> Optional[bytes]:
        try:
            data = self._load()
        except Exception as ex:
            raise StorageError(f"Remote load failed ({self._name})") from ex
        return bytes(data) if data is not None else None


class HttpBlobBackend:
    """Envelope stored behind an HTTP URL (GET to load, PUT to save)."""

    def __init__(self, client: HttpBlobClient) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "HttpBlobBackend":
        return cls(HttpBlobClient(url, **kwargs))

    def describe(self) -> str:
        return self._client.url

    def save(self, data: bytes) -> None:
        try:
            self._client.put(data)
        except BlobError as ex:
            raise StorageError(f"Failed to upload auth state to {self._client.url}") from ex

    def load(self) -> Optional[bytes]:
        try:
            return self._client.get()
        except BlobError as ex:
            raise StorageError(f"Failed to download auth state from {self._client.url}") from ex

    def close(self) -> None:
        self._client.close()


__all__ = [
    "CallbackBlobBackend",
    "HttpBlobBackend",
    "LocalFileBackend",
    "StorageBackend",
    "TMP_SUFFIX",
]
