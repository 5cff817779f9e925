"""Versioned, integrity-checked model registry."""
from __future__ import annotations

import hashlib
import importlib
import json
import logging
import tempfile
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional

from cryptopredict.config import RegistryConfig
from cryptopredict.errors import (
    ArtifactNotFoundError,
    ChecksumMismatchError,
    ModelLoadError,
    ModelNotFoundError,
)
from cryptopredict.models.base import TrainableModel
from cryptopredict.storage.model_store import ModelStore
from cryptopredict.storage.s3_store import S3Store
from cryptopredict.utils.text import normalize_symbol, slugify

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_timestamp(raw: str) -> datetime:
    parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _resolve_class(class_path: str) -> type:
    module_path, _, class_name = class_path.rpartition(".")
    if not module_path:
        raise ImportError(f"Invalid class path '{class_path}'")
    module = importlib.import_module(module_path)
    return getattr(module, class_name)


@dataclass(frozen=True)
class ModelMetadata:
    """Training provenance attached to a registered version."""

    architecture: str
    input_size: int
    output_size: int
    training_epochs: int
    final_loss: float
    validation_loss: Optional[float] = None
    accuracy: Optional[float] = None
    hyperparameters: Dict[str, str] = field(default_factory=dict)

    def as_strings(self) -> Dict[str, str]:
        """Flatten into the string map stored on ``ModelVersion.metadata``."""
        flat = {
            "architecture": self.architecture,
            "inputSize": str(self.input_size),
            "outputSize": str(self.output_size),
            "trainingEpochs": str(self.training_epochs),
            "finalLoss": str(self.final_loss),
            "validationLoss": "" if self.validation_loss is None else str(self.validation_loss),
            "accuracy": "" if self.accuracy is None else str(self.accuracy),
        }
        for key, value in self.hyperparameters.items():
            flat[f"hp.{key}"] = str(value)
        return flat


@dataclass(frozen=True)
class ModelVersion:
    """One persisted artifact of a model id."""

    version: str
    model_id: str
    model_type: str
    created_at: datetime
    file_path: str
    checksum: str
    metadata: Dict[str, str] = field(default_factory=dict)

    def sort_key(self) -> tuple:
        return (self.created_at, self.version)

    def to_dict(self) -> Dict[str, object]:
        return {
            "version": self.version,
            "modelId": self.model_id,
            "modelType": self.model_type,
            "createdAt": _format_timestamp(self.created_at),
            "metadata": dict(self.metadata),
            "filePath": self.file_path,
            "checksum": self.checksum,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, object]) -> "ModelVersion":
        return cls(
            version=str(payload["version"]),
            model_id=str(payload["modelId"]),
            model_type=str(payload["modelType"]),
            created_at=_parse_timestamp(str(payload["createdAt"])),
            metadata={str(k): str(v) for k, v in dict(payload.get("metadata") or {}).items()},
            file_path=str(payload["filePath"]),
            checksum=str(payload["checksum"]),
        )


@dataclass
class RegistryReport:
    """Result of comparing the index against the files in the store."""

    missing_artifacts: List[ModelVersion]
    orphaned_files: List[str]

    @property
    def consistent(self) -> bool:
        return not self.missing_artifacts and not self.orphaned_files


class ModelRegistry:
    """
    Register, look up, verify and delete versioned model artifacts.

    The in-memory index maps ``model_id`` to its versions and is persisted to
    ``index_file`` in the store after every mutation. Mutations and index
    reads go through one lock; the artifact is committed to the store before
    the index entry that points at it, so a crash can leave an orphaned file
    (reported by ``verify``) but never an index entry for bytes that were not
    fully written. An entry whose file vanished later loads as
    ``ModelNotFoundError``.
    """

    def __init__(
        self,
        store: ModelStore,
        *,
        index_file: str = "registry.json",
        default_extension: str = "pt",
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._index_file = index_file
        self._default_extension = default_extension
        self._clock = clock
        self._lock = threading.RLock()
        self._versions: Dict[str, List[ModelVersion]] = {}
        self._load_index()

    @classmethod
    def at_path(cls, registry_path: Path, **kwargs) -> "ModelRegistry":
        """Build a registry over a local directory."""
        return cls(ModelStore(Path(registry_path), logger), **kwargs)

    @classmethod
    def from_config(cls, config: RegistryConfig, clock: Clock = utc_now) -> "ModelRegistry":
        """Registry over ``config.model_dir``, mirrored to S3 when a bucket is configured."""
        store = ModelStore(config.model_dir, logger, mirror=S3Store.from_env(logger))
        return cls(
            store,
            index_file=config.index_file,
            default_extension=config.default_extension,
            clock=clock,
        )

    @property
    def store(self) -> ModelStore:
        return self._store

    # Index persistence ---------------------------------------------------

    def _load_index(self) -> None:
        try:
            raw = self._store.read(self._index_file)
        except ArtifactNotFoundError:
            logger.debug("No registry index at %s; starting empty", self._store.path_for(self._index_file))
            return
        try:
            payload = json.loads(raw.decode("utf-8")) or {}
            versions = {
                model_id: [ModelVersion.from_dict(entry) for entry in entries]
                for model_id, entries in payload.items()
            }
        except (ValueError, KeyError, TypeError) as exc:
            raise ValueError(f"Registry index {self._index_file} is malformed: {exc}") from exc
        self._versions = {model_id: entries for model_id, entries in versions.items() if entries}
        logger.info(
            "Loaded registry index | models=%d versions=%d",
            len(self._versions),
            sum(len(entries) for entries in self._versions.values()),
        )

    def _save_index(self) -> None:
        payload = {
            model_id: [entry.to_dict() for entry in entries]
            for model_id, entries in sorted(self._versions.items())
        }
        self._store.write(self._index_file, json.dumps(payload, indent=2).encode("utf-8"))

    # Registration --------------------------------------------------------

    def artifact_name(self, model_id: str, version: str, extension: Optional[str] = None) -> str:
        ext = (extension or self._default_extension).lstrip(".")
        return f"{slugify(model_id)}_v{slugify(version)}.{ext}"

    def _next_version(self, model_id: str, created_at: datetime) -> str:
        base = created_at.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        taken = {entry.version for entry in self._versions.get(model_id, [])}
        candidate = base
        counter = 0
        while candidate in taken:
            counter += 1
            candidate = f"{base}.{counter:03d}"
        return candidate

    def register(
        self,
        model: TrainableModel,
        model_id: str,
        version: Optional[str] = None,
        metadata: Optional[object] = None,
    ) -> ModelVersion:
        """
        Persist ``model`` as a new version of ``model_id``.

        ``version`` defaults to a timestamp-derived string that sorts with
        creation order; an explicit version already present raises
        ``ValueError``. ``metadata`` may be a ``ModelMetadata`` or a plain
        string mapping.
        """
        if isinstance(metadata, ModelMetadata):
            flat = metadata.as_strings()
        else:
            flat = {str(k): str(v) for k, v in dict(metadata or {}).items()}

        with self._lock:
            created_at = self._clock()
            if version is None:
                version = self._next_version(model_id, created_at)
            elif self._find(model_id, version) is not None:
                raise ValueError(f"Version {version} of {model_id} is already registered.")

            extension = getattr(model, "file_extension", None) or self._default_extension
            file_name = self.artifact_name(model_id, version, extension)
            if file_name in self._indexed_files():
                # Distinct ids or versions can slugify to the same name.
                digest = hashlib.sha256(f"{model_id}\x00{version}".encode("utf-8")).hexdigest()[:12]
                file_name = self.artifact_name(model_id, f"{version}_{digest}", extension)
                if file_name in self._indexed_files():
                    raise ValueError(f"Artifact name {file_name} is already in use.")
            data = self._store.write_with(file_name, lambda path: model.save(path))
            entry = ModelVersion(
                version=version,
                model_id=model_id,
                model_type=f"{model.__class__.__module__}.{model.__class__.__qualname__}",
                created_at=created_at,
                metadata=flat,
                file_path=file_name,
                checksum=self._store.compute_checksum(data),
            )
            self._versions.setdefault(model_id, []).append(entry)
            try:
                self._save_index()
            except OSError:
                self._versions[model_id].remove(entry)
                if not self._versions[model_id]:
                    del self._versions[model_id]
                raise

        logger.info(
            "Registered model %s version %s (%s, %d bytes)",
            model_id,
            version,
            file_name,
            len(data),
        )
        return entry

    # Lookup --------------------------------------------------------------

    def _indexed_files(self) -> set:
        return {entry.file_path for entries in self._versions.values() for entry in entries}

    def _find(self, model_id: str, version: str) -> Optional[ModelVersion]:
        for entry in self._versions.get(model_id, []):
            if entry.version == version:
                return entry
        return None

    def get_latest_version(self, model_id: str) -> Optional[ModelVersion]:
        """Newest version by ``created_at``; equal timestamps break on the version string."""
        with self._lock:
            entries = self._versions.get(model_id)
            if not entries:
                return None
            return max(entries, key=ModelVersion.sort_key)

    def get_version(self, model_id: str, version: str) -> Optional[ModelVersion]:
        with self._lock:
            return self._find(model_id, version)

    def list_versions(self, model_id: str) -> List[ModelVersion]:
        with self._lock:
            return sorted(self._versions.get(model_id, []), key=ModelVersion.sort_key, reverse=True)

    def model_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._versions)

    def _matching_ids(self, asset: str) -> List[str]:
        prefix = f"{normalize_symbol(asset)}_"
        return [model_id for model_id in self._versions if model_id.upper().startswith(prefix)]

    def list_models(self, asset: str) -> List[ModelVersion]:
        """Every version of every model id belonging to ``asset``, newest first."""
        with self._lock:
            found = [entry for model_id in self._matching_ids(asset) for entry in self._versions[model_id]]
        return sorted(found, key=ModelVersion.sort_key, reverse=True)

    # Loading -------------------------------------------------------------

    def load_model(self, model_id: str, version: Optional[str] = None) -> TrainableModel:
        """
        Load ``version`` of ``model_id`` (latest when omitted) after verifying
        its checksum. Bytes that fail to deserialize raise ``ModelLoadError``.
        """
        entry = self.get_version(model_id, version) if version is not None else self.get_latest_version(model_id)
        if entry is None:
            raise ModelNotFoundError(model_id, version)

        try:
            data = self._store.read(entry.file_path)
        except ArtifactNotFoundError as exc:
            logger.warning("Index entry %s v%s has no artifact at %s", model_id, entry.version, entry.file_path)
            raise ModelNotFoundError(model_id, entry.version) from exc

        actual = self._store.compute_checksum(data)
        if actual != entry.checksum:
            logger.error(
                "Checksum mismatch for %s v%s: expected=%s actual=%s",
                model_id,
                entry.version,
                entry.checksum[:16],
                actual[:16],
            )
            raise ChecksumMismatchError(entry.checksum, actual, entry.file_path)

        # Deserialize the verified bytes, not whatever the path holds now.
        try:
            cls = _resolve_class(entry.model_type)
            with tempfile.TemporaryDirectory(prefix="cryptopredict-load-") as staging_dir:
                staged = Path(staging_dir) / entry.file_path
                staged.write_bytes(data)
                model = cls.load(staged)
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to deserialize %s v%s: %s", model_id, entry.version, exc)
            raise ModelLoadError(model_id, entry.version, str(exc)) from exc
        logger.info("Loaded model %s version %s", model_id, entry.version)
        return model

    # Deletion ------------------------------------------------------------

    def delete_version(self, model_id: str, version: str) -> None:
        with self._lock:
            entry = self._find(model_id, version)
            if entry is None:
                raise ModelNotFoundError(model_id, version)
            self._store.remove(entry.file_path)
            remaining = [item for item in self._versions[model_id] if item.version != version]
            if remaining:
                self._versions[model_id] = remaining
            else:
                del self._versions[model_id]
            self._save_index()
        logger.info("Deleted model %s version %s", model_id, version)

    def delete_models(self, asset: str) -> int:
        """
        Remove every model id belonging to ``asset``.

        Artifact removal is best-effort per file; the index always drops the
        ids. Returns the number of model ids removed.
        """
        with self._lock:
            matching = self._matching_ids(asset)
            for model_id in matching:
                for entry in self._versions[model_id]:
                    try:
                        self._store.remove(entry.file_path)
                    except OSError as exc:
                        logger.warning("Failed to delete artifact %s: %s", entry.file_path, exc)
                del self._versions[model_id]
            if matching:
                self._save_index()
        logger.info("Deleted all models for %s | model_ids=%d", asset, len(matching))
        return len(matching)

    # Maintenance ---------------------------------------------------------

    def verify(self) -> RegistryReport:
        """Compare index entries with the files present in the store."""
        with self._lock:
            entries = [entry for versions in self._versions.values() for entry in versions]
            referenced = {entry.file_path for entry in entries}
            missing = [entry for entry in entries if not self._store.exists(entry.file_path)]
            orphaned = [
                name
                for name in self._store.list_files()
                if name != self._index_file and name not in referenced
            ]
        if missing or orphaned:
            logger.warning(
                "Registry inconsistent | missing_artifacts=%d orphaned_files=%d",
                len(missing),
                len(orphaned),
            )
        return RegistryReport(missing_artifacts=missing, orphaned_files=orphaned)


__all__ = ["ModelMetadata", "ModelRegistry", "ModelVersion", "RegistryReport", "utc_now"]
