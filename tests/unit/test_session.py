from __future__ import annotations

import threading
import time

import pytest

from authstate import backends
from authstate.backends import CallbackBlobBackend, LocalFileBackend
from authstate.cipher import encrypt
from authstate.config import AuthStateConfig
from authstate.credentials import init_credentials
from authstate.errors import AuthStateError, FormatError, IntegrityError, StorageError
from authstate.session import EncryptedAuthState, Lifecycle, open_auth_state
from authstate.transfer import export_auth_state


def _config(tmp_path, secret, *, delay_ms: int = 10_000, backend=None) -> AuthStateConfig:
    return AuthStateConfig(
        file_path=tmp_path / "auth" / "creds.bin",
        secret=secret,
        write_delay_ms=delay_ms,
        storage_backend=backend,
    )


def test_fresh_start_from_missing_path(tmp_path, secret):
    calls = []

    def factory():
        calls.append(1)
        return init_credentials()

    auth = open_auth_state(_config(tmp_path, secret), init_credentials=factory)
    assert auth.lifecycle is Lifecycle.READY
    assert calls == [1]
    assert auth.store.snapshot().keys.count() == 0
    assert auth.keys.get("session", ["x"]) == {"x": None}
    # Nothing is written until something changes
    assert not (tmp_path / "auth" / "creds.bin").exists()
    auth.close()


def test_not_ready_before_open(tmp_path, secret):
    auth = EncryptedAuthState(_config(tmp_path, secret))
    assert auth.lifecycle is Lifecycle.UNINITIALIZED
    with pytest.raises(AuthStateError):
        auth.keys


def test_state_survives_restart(tmp_path, secret):
    cfg = _config(tmp_path, secret)
    with open_auth_state(cfg) as auth:
        auth.keys.set({"session": {"alice.0": b"\x00\x01"}, "pre-key": {"1": {"public": b"p", "private": b"s"}}})
        auth.creds.registered = True
        auth.save_creds()
        reg_id = auth.creds.registration_id

    with open_auth_state(cfg) as again:
        assert again.keys.get("session", ["alice.0"]) == {"alice.0": b"\x00\x01"}
        assert again.keys.get("pre-key", ["1"])["1"].private == b"s"
        assert again.creds.registered is True
        assert again.creds.registration_id == reg_id


def test_burst_of_sets_is_coalesced_into_one_write(tmp_path, secret):
    cfg = _config(tmp_path, secret, delay_ms=100)
    auth = open_auth_state(cfg)
    last = 0.0
    for i in range(20):
        auth.keys.set({"session": {f"id-{i}": bytes([i])}})
        last = time.monotonic()
        time.sleep(0.005)

    deadline = time.monotonic() + 3.0
    while auth.writer.commits == 0 and time.monotonic() < deadline:
        time.sleep(0.005)
    done_at = time.monotonic()
    time.sleep(0.2)

    assert auth.writer.commits == 1
    assert done_at - last >= 0.09
    restored = export_auth_state(cfg.file_path, secret)
    assert restored.keys.session == {f"id-{i}": bytes([i]) for i in range(20)}
    auth.close()


def test_delete_is_persisted(tmp_path, secret):
    cfg = _config(tmp_path, secret)
    with open_auth_state(cfg) as auth:
        auth.keys.set({"sender-key": {"g": b"k"}})
        auth.flush()
        auth.keys.set({"sender-key": {"g": None}})
    with open_auth_state(cfg) as again:
        assert again.keys.get("sender-key", ["g"]) == {"g": None}


def test_concurrent_batches_land_in_one_commit(tmp_path, secret):
    cfg = _config(tmp_path, secret)
    auth = open_auth_state(cfg)
    barrier = threading.Barrier(2)

    def batch(prefix: str) -> None:
        barrier.wait()
        auth.keys.set({"session": {f"{prefix}-{j}": b"v" for j in range(100)}})

    threads = [threading.Thread(target=batch, args=(p,)) for p in ("a", "b")]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    auth.flush()

    assert auth.writer.commits == 1
    assert len(export_auth_state(cfg.file_path, secret).keys.session) == 200
    auth.close()


def test_tampered_file_fails_startup(tmp_path, secret):
    cfg = _config(tmp_path, secret)
    with open_auth_state(cfg) as auth:
        auth.keys.set({"session": {"a": b"1"}})

    data = bytearray(cfg.file_path.read_bytes())
    data[-5] ^= 0xFF
    cfg.file_path.write_bytes(bytes(data))

    auth = EncryptedAuthState(cfg)
    with pytest.raises(IntegrityError):
        auth.open()
    assert auth.lifecycle is Lifecycle.UNINITIALIZED


def test_wrong_secret_fails_startup(tmp_path, secret):
    cfg = _config(tmp_path, secret)
    with open_auth_state(cfg) as auth:
        auth.save_creds()
    other = _config(tmp_path, bytes(reversed(secret)))
    with pytest.raises(IntegrityError):
        open_auth_state(other)


def test_garbage_plaintext_fails_startup(tmp_path, secret):
    cfg = _config(tmp_path, secret)
    cfg.file_path.parent.mkdir(parents=True)
    cfg.file_path.write_bytes(encrypt(secret, b"not json at all"))
    with pytest.raises(FormatError):
        open_auth_state(cfg)


def test_crash_before_rename_keeps_previous_state(tmp_path, secret, monkeypatch):
    cfg = _config(tmp_path, secret)
    auth = open_auth_state(cfg)
    auth.keys.set({"session": {"v": b"1"}})
    auth.flush()

    def boom(src, dst):
        raise OSError("power loss")

    monkeypatch.setattr(backends.os, "replace", boom)
    auth.keys.set({"session": {"v": b"2"}})
    with pytest.raises(StorageError):
        auth.flush()
    monkeypatch.undo()

    # Memory keeps the new value, disk keeps the old one
    assert auth.keys.get("session", ["v"]) == {"v": b"2"}
    assert export_auth_state(cfg.file_path, secret).keys.session == {"v": b"1"}

    # The next commit goes through
    auth.flush()
    assert export_auth_state(cfg.file_path, secret).keys.session == {"v": b"2"}
    auth.close()


def test_stray_tmp_file_does_not_affect_load(tmp_path, secret):
    cfg = _config(tmp_path, secret)
    with open_auth_state(cfg) as auth:
        auth.keys.set({"session": {"a": b"1"}})
    LocalFileBackend(cfg.file_path).tmp_path.write_bytes(b"half-written garbage")

    with open_auth_state(cfg) as again:
        assert again.keys.get("session", ["a"]) == {"a": b"1"}


def test_background_commit_failure_is_reported(tmp_path, secret):
    errors = []
    attempts = {"n": 0}
    blob = {}

    def save(data: bytes) -> None:
        attempts["n"] += 1
        if attempts["n"] == 1:
            raise ConnectionError("remote unavailable")
        blob["v"] = data

    backend = CallbackBlobBackend(save, lambda: blob.get("v"))
    auth = open_auth_state(_config(tmp_path, secret, delay_ms=0, backend=backend), on_error=errors.append)

    fut = auth.save_creds()
    with pytest.raises(StorageError):
        fut.result(timeout=3.0)
    assert len(errors) == 1

    auth.keys.set({"session": {"a": b"1"}})
    auth.flush()
    assert "v" in blob
    auth.close()

    with open_auth_state(_config(tmp_path, secret, backend=backend)) as again:
        assert again.keys.get("session", ["a"]) == {"a": b"1"}


def test_replace_credentials_is_persisted(tmp_path, secret):
    cfg = _config(tmp_path, secret)
    fresh = init_credentials()
    with open_auth_state(cfg) as auth:
        auth.replace_credentials(fresh)
    with open_auth_state(cfg) as again:
        assert again.creds == fresh


def test_close_flushes_pending_and_is_idempotent(tmp_path, secret):
    cfg = _config(tmp_path, secret)
    auth = open_auth_state(cfg)
    auth.keys.set({"session": {"late": b"x"}})
    assert auth.scheduler.pending
    auth.close()
    auth.close()
    assert auth.lifecycle is Lifecycle.CLOSED
    assert export_auth_state(cfg.file_path, secret).keys.session == {"late": b"x"}


def test_open_twice_is_rejected(tmp_path, secret):
    auth = open_auth_state(_config(tmp_path, secret))
    with pytest.raises(AuthStateError):
        auth.open()
    auth.close()


def _failing_backend() -> CallbackBlobBackend:
    def save(data: bytes) -> None:
        raise ConnectionError("remote unavailable")

    return CallbackBlobBackend(save, lambda: None)


def test_flush_raises_every_time_against_failing_backend(tmp_path, secret):
    # A zero delay lets timer-driven commits race with flush()
    cfg = _config(tmp_path, secret, delay_ms=0, backend=_failing_backend())
    auth = open_auth_state(cfg)
    for i in range(50):
        auth.keys.set({"session": {f"k{i}": b"v"}})
        with pytest.raises(StorageError):
            auth.flush()


def test_flush_without_changes_still_commits(tmp_path, secret):
    cfg = _config(tmp_path, secret)
    auth = open_auth_state(cfg)
    auth.creds.registered = True
    auth.flush()
    assert auth.writer.commits == 1
    assert export_auth_state(cfg.file_path, secret).creds.registered is True
    auth.close()


def test_close_raises_when_final_commit_fails(tmp_path, secret):
    auth = open_auth_state(_config(tmp_path, secret, backend=_failing_backend()))
    auth.keys.set({"session": {"a": b"1"}})
    with pytest.raises(StorageError):
        auth.close()
    assert auth.lifecycle is Lifecycle.CLOSED


def test_set_after_close_schedules_nothing(tmp_path, secret):
    auth = open_auth_state(_config(tmp_path, secret))
    keys, scheduler, writer = auth.keys, auth.scheduler, auth.writer
    auth.close()
    keys.set({"session": {"late": b"x"}})
    assert not scheduler.pending
    assert writer.commits == 0


def test_close_releases_backend(tmp_path, secret):
    blob = {}

    class ClosingBackend(CallbackBlobBackend):
        closed = 0

        def close(self) -> None:
            ClosingBackend.closed += 1

    backend = ClosingBackend(lambda data: blob.update(v=data), lambda: blob.get("v"))
    auth = open_auth_state(_config(tmp_path, secret, backend=backend))
    auth.keys.set({"session": {"a": b"1"}})
    auth.close()
    auth.close()
    assert ClosingBackend.closed == 1
    assert "v" in blob


def test_replace_credentials_notifies_once(tmp_path, secret):
    auth = open_auth_state(_config(tmp_path, secret))
    calls = []

    def listener():
        calls.append(1)
        return "scheduled"

    auth.store.set_listener(listener)
    assert auth.replace_credentials(init_credentials()) == "scheduled"
    assert calls == [1]
    auth.close()
