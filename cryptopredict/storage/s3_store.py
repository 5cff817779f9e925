"""S3 mirror for registry artifacts and the registry index."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

import boto3
from botocore.exceptions import ClientError, NoCredentialsError, PartialCredentialsError


class S3UnavailableError(RuntimeError):
    """Raised when S3 credentials are unavailable."""


class S3Store:
    """
    Mirror registry files into an S3 bucket.

    The local registry root stays authoritative; the bucket is a replica that
    receives every committed write and removal and serves as a read-through
    source when a file is missing locally.
    """

    def __init__(self, bucket: str, prefix: Optional[str], logger: logging.Logger) -> None:
        self._bucket = bucket
        self._prefix = (prefix or "").strip().strip("/")
        self._logger = logger
        self._client = None

    @classmethod
    def from_env(cls, logger: logging.Logger) -> Optional["S3Store"]:
        bucket = (os.getenv("CRYPTOPREDICT_MODEL_BUCKET") or "").strip()
        if not bucket:
            return None
        prefix = (os.getenv("CRYPTOPREDICT_MODEL_PREFIX") or "").strip()
        return cls(bucket=bucket, prefix=prefix or None, logger=logger)

    @property
    def bucket(self) -> str:
        return self._bucket

    def _get_client(self):
        if self._client is None:
            self._client = boto3.client("s3")
        return self._client

    def _key(self, name: str) -> str:
        cleaned = name.lstrip("/")
        if not self._prefix:
            return cleaned
        return f"{self._prefix}/{cleaned}"

    def _is_not_found(self, exc: Exception) -> bool:
        if not isinstance(exc, ClientError):
            return False
        code = exc.response.get("Error", {}).get("Code", "")
        return code in {"404", "NoSuchKey", "NotFound"}

    def _is_credentials_error(self, exc: Exception) -> bool:
        message = str(exc).lower()
        if "unable to locate credentials" in message:
            return True
        return isinstance(exc, (NoCredentialsError, PartialCredentialsError))

    def _unavailable(self, action: str) -> S3UnavailableError:
        self._logger.warning("S3 credentials unavailable; skipping %s.", action)
        return S3UnavailableError("S3 credentials unavailable.")

    def push(self, local_path: Path, name: str) -> None:
        """Upload ``local_path`` under ``name``."""
        key = self._key(name)
        try:
            self._get_client().upload_file(str(local_path), self._bucket, key)
        except Exception as exc:  # noqa: BLE001
            if self._is_credentials_error(exc):
                raise self._unavailable("upload") from exc
            raise
        self._logger.debug("Mirrored %s to s3://%s/%s", local_path, self._bucket, key)

    def pull(self, name: str, local_path: Path) -> bool:
        """Download ``name`` into ``local_path``; return False when the key is absent."""
        key = self._key(name)
        client = self._get_client()
        try:
            client.head_object(Bucket=self._bucket, Key=key)
        except Exception as exc:  # noqa: BLE001
            if self._is_credentials_error(exc):
                raise self._unavailable("download") from exc
            if self._is_not_found(exc):
                return False
            raise
        local_path = Path(local_path)
        local_path.parent.mkdir(parents=True, exist_ok=True)
        client.download_file(self._bucket, key, str(local_path))
        self._logger.info("Restored %s from s3://%s/%s", local_path, self._bucket, key)
        return True

    def discard(self, name: str) -> None:
        """Delete ``name``; an absent key is not an error."""
        key = self._key(name)
        try:
            self._get_client().delete_object(Bucket=self._bucket, Key=key)
        except Exception as exc:  # noqa: BLE001
            if self._is_credentials_error(exc):
                raise self._unavailable("delete") from exc
            if self._is_not_found(exc):
                return
            raise


__all__ = ["S3Store", "S3UnavailableError"]
