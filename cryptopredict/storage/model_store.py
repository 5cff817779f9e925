"""Filesystem persistence for model artifacts and the registry index."""
from __future__ import annotations

import hashlib
import logging
import os
import uuid
from pathlib import Path
from typing import Any, Callable, List, Optional

from cryptopredict.errors import ArtifactNotFoundError, ModelStoreError
from cryptopredict.storage.s3_store import S3Store

_STAGING_PREFIX = ".staging-"


class ModelStore:
    """
    Byte storage for registry artifacts under a single root directory.

    Every write lands in a staging file next to its destination and is moved
    into place with ``os.replace`` once flushed, so readers either see the
    previous bytes or the complete new bytes. The store knows nothing about
    versions or models; the registry layers those semantics on top.
    """

    def __init__(
        self,
        base_dir: Path,
        logger: logging.Logger,
        mirror: Optional[S3Store] = None,
    ) -> None:
        self.base_dir = Path(base_dir).expanduser()
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self._logger = logger
        self._mirror = mirror

    @staticmethod
    def compute_checksum(data: bytes) -> str:
        """Return the SHA-256 hex digest of ``data``."""
        return hashlib.sha256(data).hexdigest()

    def path_for(self, name: str) -> Path:
        """Resolve a store-relative file name to an absolute path."""
        if not name or Path(name).name != name:
            raise ValueError(f"Store names must be plain file names, got '{name}'.")
        return self.base_dir / name

    def exists(self, name: str) -> bool:
        return self.path_for(name).is_file()

    def write(self, name: str, data: bytes) -> None:
        """Atomically replace ``name`` with ``data``."""

        def _dump(path: Path) -> None:
            with open(path, "wb") as handle:
                handle.write(data)

        self.write_with(name, _dump)

    def write_with(self, name: str, writer: Callable[[Path], Any]) -> bytes:
        """
        Let ``writer`` produce the file at a staging path, then move it into place.

        Returns the committed bytes so callers can digest exactly what was
        persisted.
        """
        target = self.path_for(name)
        staging = self.base_dir / f"{_STAGING_PREFIX}{uuid.uuid4().hex}-{name}"
        try:
            writer(staging)
            with open(staging, "rb+") as handle:
                data = handle.read()
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(staging, target)
        except OSError as exc:
            raise ModelStoreError(f"Failed to write {target}: {exc}") from exc
        finally:
            if staging.exists():
                try:
                    staging.unlink()
                except OSError:
                    self._logger.warning("Could not remove staging file %s", staging)
        self._push(target, name)
        return data

    def read(self, name: str) -> bytes:
        """Return the bytes stored under ``name``."""
        path = self.path_for(name)
        if not path.is_file() and not self._pull(name, path):
            raise ArtifactNotFoundError(f"Artifact {path} does not exist.")
        try:
            with open(path, "rb") as handle:
                return handle.read()
        except FileNotFoundError as exc:
            raise ArtifactNotFoundError(f"Artifact {path} does not exist.") from exc
        except OSError as exc:
            raise ModelStoreError(f"Failed to read {path}: {exc}") from exc

    def remove(self, name: str) -> None:
        """Delete ``name``; absence is not an error."""
        path = self.path_for(name)
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            raise ModelStoreError(f"Failed to delete {path}: {exc}") from exc
        if self._mirror is not None:
            try:
                self._mirror.discard(name)
            except Exception as exc:  # noqa: BLE001
                self._logger.warning("S3 delete failed for %s: %s", name, exc)

    def list_files(self) -> List[str]:
        """Committed file names in the store root, staging files excluded."""
        return sorted(
            path.name
            for path in self.base_dir.iterdir()
            if path.is_file() and not path.name.startswith(_STAGING_PREFIX)
        )

    def _push(self, path: Path, name: str) -> None:
        if self._mirror is None:
            return
        try:
            self._mirror.push(path, name)
        except Exception as exc:  # noqa: BLE001
            self._logger.warning("S3 upload failed for %s: %s", name, exc)

    def _pull(self, name: str, path: Path) -> bool:
        if self._mirror is None:
            return False
        try:
            return self._mirror.pull(name, path)
        except Exception as exc:  # noqa: BLE001
            self._logger.warning("S3 download failed for %s: %s", name, exc)
            return False


__all__ = ["ModelStore"]
