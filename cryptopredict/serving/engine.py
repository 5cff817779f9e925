"""Prediction engine: dispatches requests to cached models, GARCH or heuristics."""
from __future__ import annotations

import dataclasses
import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Sequence

import numpy as np

from cryptopredict.config import AppConfig, get_config
from cryptopredict.core.features import (
    close_price,
    feature_confidence,
    features_to_vector,
    heuristic_volatility,
    prediction_uncertainty,
    trend_score,
)
from cryptopredict.errors import (
    ChecksumMismatchError,
    InvalidFeaturesError,
    ModelLoadError,
    ModelNotFoundError,
    ModelStoreError,
    UnsupportedModelTypeError,
)
from cryptopredict.models.base import TrainableModel
from cryptopredict.models.garch_model import (
    GARCHVolatilityEstimator,
    VolatilityPrediction,
    build_estimator,
)
from cryptopredict.models.registry import ModelMetadata, ModelRegistry, ModelVersion, utc_now
from cryptopredict.models.selection import instantiate_model
from cryptopredict.serving.cache import PredictionServingCache
from cryptopredict.serving.schemas import ModelKind, PredictionRequest, PredictionResponse

logger = logging.getLogger(__name__)

HEURISTIC_VERSION = "heuristic_fallback"
GARCH_VERSION = "garch_1_1"


class PredictionEngine:
    """
    Serve price, volatility and trend predictions for trading symbols.

    Price requests go through the serving cache; volatility requests use the
    GARCH estimator when enough price history is supplied and the heuristic
    otherwise; trend requests are heuristic. Confidence and uncertainty come
    from the request's own features, never from the model that served it.
    """

    def __init__(
        self,
        cache: PredictionServingCache,
        *,
        config: Optional[AppConfig] = None,
        estimator: Optional[GARCHVolatilityEstimator] = None,
        model_factory: Optional[Callable[[], TrainableModel]] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._config = config or get_config()
        self._cache = cache
        self._estimator = estimator or build_estimator(self._config.garch, clock=clock)
        self._model_factory = model_factory or (
            lambda: instantiate_model(self._config.serving.default_model, self._config.serving.input_size)
        )
        self._clock = clock

    @property
    def cache(self) -> PredictionServingCache:
        return self._cache

    def _response(self, request: PredictionRequest, prediction: float, version: str, confidence: Optional[float] = None) -> PredictionResponse:
        return PredictionResponse(
            prediction=float(prediction),
            confidence=feature_confidence(request.features) if confidence is None else confidence,
            uncertainty=prediction_uncertainty(request.features),
            model_version=version,
            timestamp=self._clock(),
        )

    def predict_price(self, request: PredictionRequest) -> PredictionResponse:
        if close_price(request.features) is None:
            raise InvalidFeaturesError(f"Price request for {request.symbol} has neither 'close' nor 'price'.")
        resolved = self._cache.require(request.asset)
        prediction = resolved.model.predict_single(features_to_vector(request.features))
        logger.debug(
            "Price prediction %s | source=%s version=%s value=%.6f",
            request.asset,
            resolved.source,
            resolved.version,
            prediction,
        )
        return self._response(request, prediction, resolved.version)

    def predict_volatility(
        self,
        request: PredictionRequest,
        price_history: Optional[Sequence[float]] = None,
    ) -> PredictionResponse:
        """GARCH forecast (first step) with enough history, heuristic otherwise."""
        if price_history is not None and len(price_history) >= self._config.garch.min_observations:
            result = self.predict_volatility_series(request.asset, price_history, request.time_horizon)
            return self._response(request, result.predicted_volatility[0], GARCH_VERSION, confidence=result.confidence)
        return self._response(
            request,
            heuristic_volatility(request.features, request.time_horizon),
            HEURISTIC_VERSION,
        )

    def predict_volatility_series(
        self,
        symbol: str,
        prices: Sequence[float],
        horizon_seconds: float,
    ) -> VolatilityPrediction:
        return self._estimator.predict_volatility(symbol, np.asarray(prices, dtype=np.float64), horizon_seconds)

    def classify_trend(self, request: PredictionRequest) -> PredictionResponse:
        return self._response(request, trend_score(request.features), HEURISTIC_VERSION)

    def predict(self, request: PredictionRequest) -> PredictionResponse:
        if request.model_type is ModelKind.PRICE:
            return self.predict_price(request)
        if request.model_type is ModelKind.VOLATILITY:
            return self.predict_volatility(request)
        if request.model_type is ModelKind.TREND:
            return self.classify_trend(request)
        raise UnsupportedModelTypeError(f"Model type {request.model_type.value} is not served.")

    def batch_predict(self, requests: Sequence[PredictionRequest]) -> List[PredictionResponse]:
        """Predict each request in order; the first failure propagates."""
        return [self.predict(request) for request in requests]

    def train_price_model(
        self,
        symbol: str,
        inputs: Sequence[Sequence[float]],
        targets: Sequence[Sequence[float]],
        epochs: int = 1000,
        learning_rate: float = 1e-3,
        model: Optional[TrainableModel] = None,
    ) -> ModelVersion:
        """Train a fresh model, register it as a new version and serve it."""
        model = model if model is not None else self._model_factory()
        result = model.train(inputs, targets, epochs=epochs, learning_rate=learning_rate)
        metadata = ModelMetadata(
            architecture=type(model).__name__,
            input_size=int(getattr(model, "input_size", len(inputs[0]))),
            output_size=int(getattr(model, "output_size", 1)),
            training_epochs=result.epochs,
            final_loss=result.final_loss,
            validation_loss=result.validation_loss,
            hyperparameters={"learning_rate": str(learning_rate), "samples": str(len(inputs))},
        )
        version = self._cache.publish(symbol, model, metadata=metadata)
        logger.info(
            "Trained price model for %s | version=%s final_loss=%.6f",
            symbol,
            version.version,
            result.final_loss,
        )
        return version

    def update_price_model(
        self,
        symbol: str,
        batch: Sequence[Sequence[float]],
        targets: Sequence[Sequence[float]],
        learning_rate: Optional[float] = None,
    ) -> ModelVersion:
        return self._cache.update(symbol, batch, targets, learning_rate=learning_rate)


def build_engine(config: Optional[AppConfig] = None, model_dir: Optional[str] = None) -> PredictionEngine:
    """Wire registry, serving cache and engine from configuration."""
    config = config or get_config()
    registry_config = config.registry
    if model_dir:
        registry_config = dataclasses.replace(registry_config, model_dir=Path(model_dir).expanduser())
    registry = ModelRegistry.from_config(registry_config)
    cache = PredictionServingCache(
        registry,
        use_fallback=config.serving.use_fallback,
        learning_rate=config.serving.online_learning_rate,
    )
    fallback_id = config.serving.fallback_model_id
    if config.serving.use_fallback and registry.get_latest_version(fallback_id) is not None:
        try:
            cache.set_fallback(registry.load_model(fallback_id))
        except (ModelNotFoundError, ChecksumMismatchError, ModelLoadError, ModelStoreError) as exc:
            logger.warning("Shared fallback model %s unavailable: %s", fallback_id, exc)
    return PredictionEngine(cache, config=config)


__all__ = ["GARCH_VERSION", "HEURISTIC_VERSION", "PredictionEngine", "build_engine"]
