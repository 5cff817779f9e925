"""FastAPI surface over the prediction engine and model registry."""
from __future__ import annotations

import logging
import math
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel, Field

from cryptopredict.config import get_config
from cryptopredict.data import PriceHistoryProvider
from cryptopredict.errors import (
    InsufficientDataError,
    InvalidFeaturesError,
    ModelNotAvailableError,
    PredictionError,
    UnsupportedModelTypeError,
)
from cryptopredict.serving.engine import PredictionEngine, build_engine
from cryptopredict.serving.schemas import ModelKind, PredictionRequest

logger = logging.getLogger(__name__)

API_VERSION = "0.1.0"


class PredictionRequestModel(BaseModel):
    symbol: str = Field(..., min_length=1)
    time_horizon: float = Field(..., gt=0, description="Horizon in seconds.")
    features: Dict[str, float] = Field(default_factory=dict)
    model_type: ModelKind = ModelKind.PRICE


class PredictionResponseModel(BaseModel):
    id: str
    symbol: str
    time_horizon: float
    prediction: float
    confidence: float
    uncertainty: float
    model_version: str
    timestamp: str


class BatchPredictionRequestModel(BaseModel):
    requests: List[PredictionRequestModel] = Field(..., min_length=1)


class VolatilityRequestModel(BaseModel):
    symbol: str = Field(..., min_length=1)
    horizon_seconds: float = Field(default=3600.0, gt=0)
    timeframe: str = "5min"
    prices: Optional[List[float]] = None
    max_points: Optional[int] = Field(default=None, gt=0)


class OnlineUpdateRequestModel(BaseModel):
    batch: List[List[float]] = Field(..., min_length=1)
    targets: List[List[float]] = Field(..., min_length=1)
    learning_rate: Optional[float] = Field(default=None, gt=0)


def _to_request(payload: PredictionRequestModel) -> PredictionRequest:
    for name, value in payload.features.items():
        if not math.isfinite(value):
            raise HTTPException(status_code=400, detail=f"Feature '{name}' must be finite.")
    return PredictionRequest(
        symbol=payload.symbol,
        time_horizon=payload.time_horizon,
        features=dict(payload.features),
        model_type=payload.model_type,
    )


def _to_response(request: PredictionRequest, response) -> PredictionResponseModel:
    return PredictionResponseModel(
        id=response.id,
        symbol=request.symbol,
        time_horizon=request.time_horizon,
        prediction=response.prediction,
        confidence=response.confidence,
        uncertainty=response.uncertainty,
        model_version=response.model_version,
        timestamp=response.timestamp.isoformat(),
    )


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, ModelNotAvailableError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (InvalidFeaturesError, UnsupportedModelTypeError, InsufficientDataError, ValueError)):
        return HTTPException(status_code=400, detail=str(exc))
    logger.error("Prediction failed: %s", exc)
    return HTTPException(status_code=500, detail="Prediction failed.")


@lru_cache(maxsize=1)
def _default_engine() -> PredictionEngine:
    return build_engine()


def create_app(engine_factory: Callable[[], PredictionEngine] = _default_engine) -> FastAPI:
    """Build the API; ``engine_factory`` is called per request and should be cheap."""
    app = FastAPI(title="cryptopredict API", version=API_VERSION)

    def get_engine() -> PredictionEngine:
        return engine_factory()

    @app.get("/api/v1/health")
    def health(engine: PredictionEngine = Depends(get_engine)) -> Dict[str, Any]:
        return {
            "status": "healthy",
            "version": API_VERSION,
            "cachedSymbols": engine.cache.cached_symbols(),
            "registeredModels": len(engine.cache.registry.model_ids()),
        }

    @app.get("/api/v1/models")
    def list_models(symbol: Optional[str] = None, engine: PredictionEngine = Depends(get_engine)) -> Dict[str, Any]:
        registry = engine.cache.registry
        if symbol:
            versions = registry.list_models(symbol)
        else:
            versions = [entry for model_id in registry.model_ids() for entry in registry.list_versions(model_id)]
        return {"versions": [entry.to_dict() for entry in versions]}

    @app.post("/api/v1/predict", response_model=PredictionResponseModel)
    def predict(payload: PredictionRequestModel, engine: PredictionEngine = Depends(get_engine)):
        request = _to_request(payload)
        try:
            response = engine.predict(request)
        except PredictionError as exc:
            raise _http_error(exc) from exc
        return _to_response(request, response)

    @app.post("/api/v1/predict/batch", response_model=List[PredictionResponseModel])
    def batch_predict(payload: BatchPredictionRequestModel, engine: PredictionEngine = Depends(get_engine)):
        requests = [_to_request(item) for item in payload.requests]
        try:
            responses = engine.batch_predict(requests)
        except PredictionError as exc:
            raise _http_error(exc) from exc
        return [_to_response(request, response) for request, response in zip(requests, responses)]

    @app.post("/api/v1/volatility")
    def volatility(payload: VolatilityRequestModel, engine: PredictionEngine = Depends(get_engine)) -> Dict[str, Any]:
        prices = payload.prices
        try:
            if prices is None:
                closes = PriceHistoryProvider(get_config().data_cache_dir).load_closes(
                    payload.symbol, payload.timeframe, max_points=payload.max_points
                )
                prices = closes.tolist()
            prediction = engine.predict_volatility_series(payload.symbol, prices, payload.horizon_seconds)
        except (PredictionError, ValueError) as exc:
            raise _http_error(exc) from exc
        return prediction.to_dict()

    @app.post("/api/v1/models/{symbol}/update")
    def online_update(
        symbol: str,
        payload: OnlineUpdateRequestModel,
        engine: PredictionEngine = Depends(get_engine),
    ) -> Dict[str, Any]:
        if len(payload.batch) != len(payload.targets):
            raise HTTPException(status_code=400, detail="batch and targets must have the same length.")
        try:
            version = engine.update_price_model(symbol, payload.batch, payload.targets, payload.learning_rate)
        except (PredictionError, ValueError) as exc:
            raise _http_error(exc) from exc
        return version.to_dict()

    return app


app = create_app()

__all__ = ["app", "create_app"]
