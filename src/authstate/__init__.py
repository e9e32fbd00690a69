"""
Encrypted, debounced persistence for session credentials and key material.

The in-memory `StoredState` (credentials + categorized key material) is
serialized to JSON with byte buffers preserved, sealed with AES-256-GCM and
written atomically. Bursts of updates are coalesced into one write by a
debounce timer; writes are serialized by a lock.
"""

from .cipher import Cipher, generate_secret, load_secret
from .config import AuthStateConfig
from .credentials import Credentials, KeyPair, init_credentials
from .errors import AuthStateError, FormatError, IntegrityError, StorageError
from .models import KeyCategory, StoredState
from .session import EncryptedAuthState, Lifecycle, open_auth_state
from .transfer import export_auth_state, export_document, import_auth_state

__all__ = [
    "AuthStateConfig",
    "AuthStateError",
    "Cipher",
    "Credentials",
    "EncryptedAuthState",
    "FormatError",
    "IntegrityError",
    "KeyCategory",
    "KeyPair",
    "Lifecycle",
    "StorageError",
    "StoredState",
    "export_auth_state",
    "export_document",
    "generate_secret",
    "import_auth_state",
    "init_credentials",
    "load_secret",
    "open_auth_state",
]
