"""Trainable models, the model registry and the GARCH estimator."""
from cryptopredict.models.base import TrainableModel, TrainingResult
from cryptopredict.models.garch_model import (
    ArchGARCHEstimator,
    GARCHParameters,
    GARCHVolatilityEstimator,
    VolatilityPrediction,
    build_estimator,
)
from cryptopredict.models.linear import LinearPriceModel
from cryptopredict.models.registry import ModelMetadata, ModelRegistry, ModelVersion, RegistryReport

__all__ = [
    "ArchGARCHEstimator",
    "GARCHParameters",
    "GARCHVolatilityEstimator",
    "LinearPriceModel",
    "ModelMetadata",
    "ModelRegistry",
    "ModelVersion",
    "RegistryReport",
    "TrainableModel",
    "TrainingResult",
    "VolatilityPrediction",
    "build_estimator",
]
