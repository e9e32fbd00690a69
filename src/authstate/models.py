from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from authcommon import buffer_json

from .credentials import Credentials, KeyPair, init_credentials
from .errors import FormatError


class KeyCategory(str, Enum):
    """Known kinds of key material, named as the protocol layer names them."""

    PRE_KEY = "pre-key"
    SESSION = "session"
    SENDER_KEY = "sender-key"
    SENDER_KEY_MEMORY = "sender-key-memory"
    APP_STATE_SYNC_KEY = "app-state-sync-key"
    APP_STATE_SYNC_VERSION = "app-state-sync-version"


class KeyFingerprint(BaseModel):
    raw_id: Optional[int] = None
    current_index: Optional[int] = None
    device_indexes: List[int] = Field(default_factory=list)


class AppStateSyncKeyData(BaseModel):
    key_data: bytes
    fingerprint: Optional[KeyFingerprint] = None
    timestamp: Optional[int] = None


class ValueMac(BaseModel):
    value_mac: bytes


class LTHashState(BaseModel):
    """Version and rolling hash of one app-state collection."""

    version: int = 0
    hash: bytes = b""
    index_value_map: Dict[str, ValueMac] = Field(default_factory=dict)


# Value shape stored under each category
VALUE_TYPES: Dict[KeyCategory, Any] = {
    KeyCategory.PRE_KEY: KeyPair,
    KeyCategory.SESSION: bytes,
    KeyCategory.SENDER_KEY: bytes,
    KeyCategory.SENDER_KEY_MEMORY: Dict[str, bool],
    KeyCategory.APP_STATE_SYNC_KEY: AppStateSyncKeyData,
    KeyCategory.APP_STATE_SYNC_VERSION: LTHashState,
}

_ADAPTERS: Dict[KeyCategory, TypeAdapter] = {c: TypeAdapter(t) for c, t in VALUE_TYPES.items()}


def parse_category(category: KeyCategory | str) -> KeyCategory:
    try:
        return KeyCategory(category)
    except ValueError as ex:
        raise FormatError(f"Unknown key category: {category!r}") from ex


def validate_value(category: KeyCategory | str, value: Any) -> Any:
    """Coerce `value` into the concrete type for `category`.

    Raises FormatError when the value does not fit.
    """
    cat = parse_category(category)
    try:
        return _ADAPTERS[cat].validate_python(value)
    except ValidationError as ex:
        raise FormatError(f"Invalid value for category {cat.value!r}") from ex


class KeyMaterial(BaseModel):
    """
    Per-category key material: category -> {id -> value}.

    Serialized with the category names as keys (e.g. "pre-key"); Python
    attribute names use underscores.
    """

    model_config = ConfigDict(populate_by_name=True)

    pre_key: Dict[str, KeyPair] = Field(default_factory=dict, alias="pre-key")
    session: Dict[str, bytes] = Field(default_factory=dict, alias="session")
    sender_key: Dict[str, bytes] = Field(default_factory=dict, alias="sender-key")
    sender_key_memory: Dict[str, Dict[str, bool]] = Field(
        default_factory=dict, alias="sender-key-memory"
    )
    app_state_sync_key: Dict[str, AppStateSyncKeyData] = Field(
        default_factory=dict, alias="app-state-sync-key"
    )
    app_state_sync_version: Dict[str, LTHashState] = Field(
        default_factory=dict, alias="app-state-sync-version"
    )

    def bucket(self, category: KeyCategory | str) -> Dict[str, Any]:
        """Return the live id -> value mapping for `category`."""
        return getattr(self, parse_category(category).value.replace("-", "_"))

    def count(self) -> int:
        return sum(len(self.bucket(c)) for c in KeyCategory)


class StoredState(BaseModel):
    """
    The persisted unit: credentials plus all key material.

    This is what gets serialized, encrypted and written atomically; there is
    no partial persistence of a subset of keys.
    """

    creds: Credentials
    keys: KeyMaterial = Field(default_factory=KeyMaterial)

    @classmethod
    def fresh(cls, factory: Callable[[], Credentials] = init_credentials) -> "StoredState":
        """New credentials from `factory` and an empty key map."""
        return cls(creds=factory())


def to_document(state: StoredState) -> Dict[str, Any]:
    """Plain JSON-compatible document with byte buffers tagged."""
    return buffer_json.encode_buffers(state.model_dump(mode="python", by_alias=True))


def from_document(doc: Any) -> StoredState:
    """Validate a plain document (tagged buffers allowed) into StoredState."""
    try:
        return StoredState.model_validate(buffer_json.decode_buffers(doc))
    except ValueError as ex:  # ValidationError and bad Buffer tags
        raise FormatError("Document does not match the auth state schema") from ex


def serialize(state: StoredState) -> bytes:
    return buffer_json.dumps(state.model_dump(mode="python", by_alias=True))


def deserialize(data: bytes) -> StoredState:
    """Parse plaintext produced by `serialize`.

    Raises FormatError on invalid UTF-8, invalid JSON or schema mismatch.
    """
    try:
        raw = buffer_json.loads(data)
    except ValueError as ex:
        raise FormatError("Failed to parse decrypted state JSON") from ex
    try:
        return StoredState.model_validate(raw)
    except ValidationError as ex:
        raise FormatError("Decrypted state does not match the auth state schema") from ex


__all__ = [
    "AppStateSyncKeyData",
    "KeyCategory",
    "KeyFingerprint",
    "KeyMaterial",
    "LTHashState",
    "StoredState",
    "VALUE_TYPES",
    "ValueMac",
    "deserialize",
    "from_document",
    "parse_category",
    "serialize",
    "to_document",
    "validate_value",
]
