from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .errors import StorageError


logger = logging.getLogger(__name__)

# Environment variable names for convenience configuration
ENV_BUCKET = "AUTH_STATE_BUCKET"
ENV_KEY = "AUTH_STATE_KEY"
ENV_REGION = "AUTH_STATE_REGION"


@dataclass
class S3ObjectRef:
    bucket: str
    key: str

    def __str__(self) -> str:
        return f"s3://{self.bucket}/{self.key}"


class S3BlobBackend:
    """
    S3 object holding the encrypted envelope.

    Usage
    - Provide bucket/key (or use `from_env()`), optionally an injected client.
    - `load()` returns the object body, or None if the object does not exist.
    - `save(data)` overwrites the object with a single PutObject. S3 replaces
      objects atomically per request, so readers see the old or new body,
      never a mix. Concurrent writers from other processes are not
      coordinated.

    Environment variables (optional)
    - `AUTH_STATE_BUCKET`: S3 bucket for the envelope
    - `AUTH_STATE_KEY`:    S3 key (path) for the envelope
    - `AUTH_STATE_REGION`: AWS region for the client
    """

    def __init__(
        self,
        *,
        bucket: str,
        key: str,
        s3: Optional[object] = None,
        region_name: Optional[str] = None,
    ) -> None:
        self._s3 = s3 or boto3.client("s3", region_name=region_name)
        self._obj = S3ObjectRef(bucket=bucket, key=key)

    # -------- Construction helpers --------
    @classmethod
    def from_env(cls) -> "S3BlobBackend":
        bucket = os.environ.get(ENV_BUCKET)
        key = os.environ.get(ENV_KEY)
        if not bucket or not key:
            missing = [name for name, val in [(ENV_BUCKET, bucket), (ENV_KEY, key)] if not val]
            raise RuntimeError(
                f"Missing required environment variables for S3 auth state: {', '.join(missing)}"
            )
        return cls(bucket=bucket, key=key, region_name=os.environ.get(ENV_REGION) or None)

    def describe(self) -> str:
        return str(self._obj)

    # -------- Core operations --------
    def load(self) -> Optional[bytes]:
        """Fetch the envelope bytes.

        Returns None if the object is missing. Raises StorageError for any
        other S3 failure.
        """
        try:
            resp = self._s3.get_object(Bucket=self._obj.bucket, Key=self._obj.key)
            return resp["Body"].read()
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("NoSuchKey", "404"):
                logger.info("No auth state object at %s", self._obj)
                return None
            raise StorageError(f"Failed to read {self._obj} ({code})") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to read {self._obj}") from e

    def save(self, data: bytes) -> None:
        try:
            self._s3.put_object(
                Bucket=self._obj.bucket,
                Key=self._obj.key,
                Body=data,
                ContentType="application/octet-stream",
            )
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            raise StorageError(f"Failed to write {self._obj} ({code})") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to write {self._obj}") from e


__all__ = ["S3BlobBackend", "S3ObjectRef"]
