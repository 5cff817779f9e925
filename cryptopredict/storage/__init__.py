"""Artifact persistence for the model registry."""

from cryptopredict.storage.model_store import ModelStore
from cryptopredict.storage.s3_store import S3Store, S3UnavailableError

__all__ = ["ModelStore", "S3Store", "S3UnavailableError"]
