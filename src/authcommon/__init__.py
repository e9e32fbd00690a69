"""
Common building blocks for sealed-auth-state.

Modules:
- buffer_json: JSON encoding that keeps raw byte buffers intact
- debounce: trailing-edge commit scheduler backed by threading.Timer
- http_blob: httpx client for storing the envelope behind a blob URL
"""

__all__ = [
    "buffer_json",
    "debounce",
    "http_blob",
]
