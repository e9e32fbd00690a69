from __future__ import annotations

import time
from typing import Dict, Optional

import httpx


class BlobError(RuntimeError):
    """Base error for the blob client."""


class BlobApiError(BlobError):
    """Endpoint answered with a non-retryable HTTP status."""


class HttpBlobClient:
    """
    Minimal client for a single opaque blob behind an HTTP URL.

    Notes
    - `get()` issues GET and returns the body, or None on 404.
    - `put(data)` issues PUT with an octet-stream body.
    - Retries transport errors and 429/5xx with exponential backoff, honoring
      a numeric `Retry-After` header when present.
    - Works with pre-signed object-store URLs or any endpoint that stores the
      request body verbatim. No atomic-replace guarantee is assumed.
    """

    def __init__(
        self,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 15.0,
        max_attempts: int = 5,
        client: Optional[httpx.Client] = None,
    ) -> None:
        if not url:
            raise ValueError("url is required")
        if max_attempts <= 0:
            raise ValueError("max_attempts must be > 0")
        self._url = url
        self._max_attempts = max_attempts
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)
        self._headers = dict(headers or {})

    @property
    def url(self) -> str:
        return self._url

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "HttpBlobClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # --------------- Public API ---------------
    def get(self) -> Optional[bytes]:
        resp = self._request("GET")
        if resp.status_code == 404:
            return None
        return resp.content

    def put(self, data: bytes) -> None:
        headers = {"Content-Type": "application/octet-stream"}
        self._request("PUT", content=data, headers=headers)

    # --------------- Internal ---------------
    def _request(
        self,
        method: str,
        *,
        content: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        merged = {**self._headers, **(headers or {})}
        attempt = 0
        backoff = 0.5
        last_exc: Optional[Exception] = None
        while attempt < self._max_attempts:
            try:
                resp = self._client.request(method, self._url, content=content, headers=merged)
            except (httpx.TimeoutException, httpx.TransportError) as exc:
                last_exc = exc
            else:
                if resp.status_code in (200, 201, 204) or (method == "GET" and resp.status_code == 404):
                    return resp

                if resp.status_code in (429, 500, 502, 503, 504):
                    retry_after = None
                    try:
                        retry_after = float(resp.headers.get("Retry-After", ""))
                    except ValueError:
                        pass
                    delay = retry_after if retry_after is not None else backoff
                    attempt += 1
                    if attempt < self._max_attempts:
                        time.sleep(min(delay, 10.0))
                    backoff = min(backoff * 2, 8.0)
                    last_exc = BlobApiError(f"HTTP {resp.status_code} from blob endpoint")
                    continue

                raise BlobApiError(
                    f"HTTP {resp.status_code} from blob endpoint on {method}: {resp.text[:200]}"
                )

            # Transport error path
            attempt += 1
            if attempt < self._max_attempts:
                time.sleep(backoff)
            backoff = min(backoff * 2, 8.0)

        if last_exc is not None:
            raise BlobError(f"{method} failed after {self._max_attempts} attempts") from last_exc
        raise BlobError(f"{method} failed after retries (unknown error)")


__all__ = [
    "BlobApiError",
    "BlobError",
    "HttpBlobClient",
]
