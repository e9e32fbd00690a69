"""
JSON helpers that carry raw byte buffers through a text document.

Every `bytes`/`bytearray` value is written as a tagged object

    {"type": "Buffer", "data": "<base64>"}

and turned back into `bytes` on load. Anything else must already be
JSON-compatible. Output is deterministic (sorted keys, compact separators)
so the same state always serializes to the same plaintext.
"""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any, Dict


BUFFER_TAG = "Buffer"


def encode_buffers(value: Any) -> Any:
    """Return a copy of `value` with byte buffers replaced by tagged objects."""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return {"type": BUFFER_TAG, "data": base64.b64encode(bytes(value)).decode("ascii")}
    if isinstance(value, dict):
        return {str(k): encode_buffers(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_buffers(v) for v in value]
    return value


def _revive(obj: Dict[str, Any]) -> Any:
    if obj.get("type") == BUFFER_TAG and set(obj) == {"type", "data"}:
        data = obj["data"]
        if not isinstance(data, str):
            raise ValueError("Buffer data must be a base64 string")
        try:
            return base64.b64decode(data.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError) as ex:
            raise ValueError("Buffer data is not valid base64") from ex
    return obj


def decode_buffers(value: Any) -> Any:
    """Inverse of `encode_buffers` for an already-parsed document."""
    if isinstance(value, dict):
        return _revive({k: decode_buffers(v) for k, v in value.items()})
    if isinstance(value, list):
        return [decode_buffers(v) for v in value]
    return value


def dumps(value: Any) -> bytes:
    return json.dumps(
        encode_buffers(value), separators=(",", ":"), sort_keys=True, ensure_ascii=False
    ).encode("utf-8")


def loads(data: bytes | str) -> Any:
    """Parse JSON text, reviving tagged buffers.

    Raises ValueError (json.JSONDecodeError / UnicodeDecodeError are both
    subclasses) on malformed input.
    """
    if isinstance(data, (bytes, bytearray)):
        data = bytes(data).decode("utf-8")
    return json.loads(data, object_hook=_revive)


__all__ = [
    "BUFFER_TAG",
    "decode_buffers",
    "dumps",
    "encode_buffers",
    "loads",
]
