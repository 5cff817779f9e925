"""Price model construction by type label."""
from __future__ import annotations

from typing import Dict, Optional, Type

from cryptopredict.models.base import TrainableModel
from cryptopredict.models.linear import LinearPriceModel
from cryptopredict.models.mlp import MLPPricePredictionModel

MODEL_TYPES: Dict[str, Type[TrainableModel]] = {
    "linear": LinearPriceModel,
    "mlp": MLPPricePredictionModel,
}


def instantiate_model(model_type: str, input_size: int = 18, device: Optional[str] = None) -> TrainableModel:
    """Instantiate the price model class for the provided type label."""
    try:
        cls = MODEL_TYPES[model_type.lower()]
    except KeyError as exc:
        raise ValueError(f"Unknown model type '{model_type}'") from exc
    if cls is MLPPricePredictionModel:
        return cls(input_size=input_size, device=device or "cpu")
    return cls(input_size=input_size)


__all__ = ["MODEL_TYPES", "instantiate_model"]
