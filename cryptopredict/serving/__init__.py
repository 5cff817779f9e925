"""Serving layer: per-symbol model cache and prediction engine."""
from cryptopredict.serving.cache import CacheEntry, PredictionServingCache, ResolvedModel
from cryptopredict.serving.engine import PredictionEngine, build_engine
from cryptopredict.serving.schemas import ModelKind, PredictionRequest, PredictionResponse

__all__ = [
    "CacheEntry",
    "ModelKind",
    "PredictionEngine",
    "PredictionRequest",
    "PredictionResponse",
    "PredictionServingCache",
    "ResolvedModel",
    "build_engine",
]
