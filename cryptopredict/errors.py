"""Error taxonomy shared by the registry, serving cache and estimators."""
from __future__ import annotations

from typing import Optional


class PredictionError(RuntimeError):
    """Base class for prediction-layer failures."""


class InsufficientDataError(PredictionError):
    """Raised when a fit receives fewer observations than it needs."""

    def __init__(self, required: int, received: int, what: str = "observations") -> None:
        self.required = required
        self.received = received
        super().__init__(f"Insufficient data: need at least {required} {what}, got {received}.")


class ModelNotFoundError(PredictionError):
    """Raised when a (model_id, version) pair is absent from the registry."""

    def __init__(self, model_id: str, version: Optional[str] = None) -> None:
        self.model_id = model_id
        self.version = version
        super().__init__(f"Model not found: {model_id} version {version or 'latest'}")


class ChecksumMismatchError(PredictionError):
    """Raised when artifact bytes on disk no longer match the recorded digest."""

    def __init__(self, expected: str, actual: str, path: Optional[str] = None) -> None:
        self.expected = expected
        self.actual = actual
        self.path = path
        super().__init__(f"Checksum mismatch for {path or 'artifact'}: expected {expected[:16]}..., got {actual[:16]}...")


class ModelLoadError(PredictionError):
    """Raised when verified artifact bytes cannot be turned back into a model."""

    def __init__(self, model_id: str, version: str, reason: str) -> None:
        self.model_id = model_id
        self.version = version
        super().__init__(f"Could not deserialize {model_id} version {version}: {reason}")


class ModelNotAvailableError(PredictionError):
    """Raised when no cached, registered or fallback model exists for a symbol."""

    def __init__(self, symbol: str) -> None:
        self.symbol = symbol
        super().__init__(f"No model available for {symbol}.")


class InvalidFeaturesError(PredictionError):
    """Raised when a request lacks the features a prediction needs."""


class UnsupportedModelTypeError(PredictionError):
    """Raised for request kinds the engine does not serve."""


class ModelStoreError(OSError):
    """Raised when the model store cannot read, write or delete bytes."""


class ArtifactNotFoundError(ModelStoreError):
    """Raised when a requested artifact does not exist in the store."""


__all__ = [
    "ArtifactNotFoundError",
    "ChecksumMismatchError",
    "InsufficientDataError",
    "InvalidFeaturesError",
    "ModelLoadError",
    "ModelNotAvailableError",
    "ModelNotFoundError",
    "ModelStoreError",
    "PredictionError",
    "UnsupportedModelTypeError",
]
