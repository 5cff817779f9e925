"""Request/response containers exchanged with the API layer."""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping

from cryptopredict.utils.text import normalize_symbol


class ModelKind(str, Enum):
    """Kinds of prediction a request can ask for."""

    PRICE = "price_prediction"
    VOLATILITY = "volatility_prediction"
    TREND = "trend_classification"
    PATTERN = "pattern_recognition"


@dataclass(frozen=True)
class PredictionRequest:
    symbol: str
    time_horizon: float
    features: Mapping[str, float] = field(default_factory=dict)
    model_type: ModelKind = ModelKind.PRICE

    @property
    def asset(self) -> str:
        return normalize_symbol(self.symbol)


@dataclass(frozen=True)
class PredictionResponse:
    prediction: float
    confidence: float
    uncertainty: float
    model_version: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "prediction": self.prediction,
            "confidence": self.confidence,
            "uncertainty": self.uncertainty,
            "modelVersion": self.model_version,
            "timestamp": self.timestamp.isoformat(),
        }


__all__ = ["ModelKind", "PredictionRequest", "PredictionResponse"]
