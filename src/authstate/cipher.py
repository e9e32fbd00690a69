from __future__ import annotations

import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import IntegrityError


KEY_LENGTH = 32  # AES-256
NONCE_LENGTH = 12
TAG_LENGTH = 16


def generate_secret() -> bytes:
    """Return fresh random key bytes suitable for `Cipher`."""
    return AESGCM.generate_key(bit_length=KEY_LENGTH * 8)


def load_secret(key: str | bytes) -> bytes:
    """Normalize a user-provided secret into raw key bytes.

    Accepts raw bytes of exactly KEY_LENGTH, or a standard / urlsafe base64
    string (padding optional) that decodes to KEY_LENGTH bytes. There is no
    key derivation: passwords are rejected by the length check.
    """
    if isinstance(key, (bytes, bytearray)):
        raw = bytes(key)
    else:
        text = key.strip()
        text += "=" * (-len(text) % 4)
        try:
            raw = base64.urlsafe_b64decode(text.replace("+", "-").replace("/", "_"))
        except (binascii.Error, ValueError) as ex:
            raise ValueError("Secret is not valid base64") from ex
    if len(raw) != KEY_LENGTH:
        raise ValueError(f"Secret must be {KEY_LENGTH} bytes, got {len(raw)}")
    return raw


def encrypt(secret: bytes, plaintext: bytes) -> bytes:
    """Seal `plaintext` into an envelope: nonce || ciphertext || tag."""
    nonce = os.urandom(NONCE_LENGTH)
    return nonce + AESGCM(secret).encrypt(nonce, plaintext, None)


def decrypt(secret: bytes, envelope: bytes) -> bytes:
    """Open an envelope produced by `encrypt`.

    Raises IntegrityError when the envelope is truncated, was modified, or
    was sealed under a different secret.
    """
    if len(envelope) < NONCE_LENGTH + TAG_LENGTH:
        raise IntegrityError(
            f"Envelope too short ({len(envelope)} bytes) to hold nonce and tag"
        )
    nonce, sealed = envelope[:NONCE_LENGTH], envelope[NONCE_LENGTH:]
    try:
        return AESGCM(secret).decrypt(nonce, sealed, None)
    except InvalidTag as ex:
        raise IntegrityError("Failed to decrypt state: authentication tag mismatch") from ex


class Cipher:
    """Envelope codec bound to one secret."""

    def __init__(self, secret: str | bytes) -> None:
        self._secret = load_secret(secret)

    def encrypt(self, plaintext: bytes) -> bytes:
        return encrypt(self._secret, plaintext)

    def decrypt(self, envelope: bytes) -> bytes:
        return decrypt(self._secret, envelope)

    def __repr__(self) -> str:
        return "Cipher(aes-256-gcm)"


__all__ = [
    "Cipher",
    "KEY_LENGTH",
    "NONCE_LENGTH",
    "TAG_LENGTH",
    "decrypt",
    "encrypt",
    "generate_secret",
    "load_secret",
]
