from __future__ import annotations

import base64
import os
import secrets
from typing import Any, Dict, List, Optional, Tuple

from cryptography.hazmat.primitives.asymmetric import ed25519, x25519
from pydantic import BaseModel, ConfigDict, Field


class KeyPair(BaseModel):
    """Raw public/private key bytes."""

    public: bytes
    private: bytes


class SignedKeyPair(BaseModel):
    key_pair: KeyPair
    signature: bytes
    key_id: int


class Contact(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    name: Optional[str] = None
    lid: Optional[str] = None


class Credentials(BaseModel):
    """
    Long-term identity and registration data for one client session.

    Created once by `init_credentials()` (or a factory supplied by the protocol
    layer) and afterwards mutated in place by that layer, which then asks the
    store to persist it. Unknown fields are kept so a newer protocol layer can
    add data without a schema change here.
    """

    model_config = ConfigDict(extra="allow", validate_assignment=True)

    noise_key: KeyPair
    pairing_ephemeral_key_pair: KeyPair
    signed_identity_key: KeyPair
    signed_pre_key: SignedKeyPair
    registration_id: int = Field(ge=0)
    adv_secret_key: str
    next_pre_key_id: int = 1
    first_unuploaded_pre_key_id: int = 1
    account_sync_counter: int = 0
    processed_history_messages: List[Dict[str, Any]] = Field(default_factory=list)
    registered: bool = False
    me: Optional[Contact] = None
    platform: Optional[str] = None
    pairing_code: Optional[str] = None


def _x25519_pair() -> KeyPair:
    sk = x25519.X25519PrivateKey.generate()
    return KeyPair(public=sk.public_key().public_bytes_raw(), private=sk.private_bytes_raw())


def _ed25519_pair() -> Tuple[KeyPair, ed25519.Ed25519PrivateKey]:
    sk = ed25519.Ed25519PrivateKey.generate()
    pair = KeyPair(public=sk.public_key().public_bytes_raw(), private=sk.private_bytes_raw())
    return pair, sk


def signed_pre_key(identity: ed25519.Ed25519PrivateKey, key_id: int) -> SignedKeyPair:
    """Generate an X25519 pre-key whose public half is signed by `identity`."""
    pair = _x25519_pair()
    return SignedKeyPair(key_pair=pair, signature=identity.sign(pair.public), key_id=key_id)


def init_credentials() -> Credentials:
    """Fresh identity for a first run: new key pairs, random registration id."""
    identity, identity_sk = _ed25519_pair()
    return Credentials(
        noise_key=_x25519_pair(),
        pairing_ephemeral_key_pair=_x25519_pair(),
        signed_identity_key=identity,
        signed_pre_key=signed_pre_key(identity_sk, 1),
        # 14-bit registration id, never zero
        registration_id=secrets.randbelow(16380) + 1,
        adv_secret_key=base64.b64encode(os.urandom(32)).decode("ascii"),
    )


__all__ = [
    "Contact",
    "Credentials",
    "KeyPair",
    "SignedKeyPair",
    "init_credentials",
    "signed_pre_key",
]
