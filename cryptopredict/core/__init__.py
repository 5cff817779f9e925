"""Numerical helpers shared by the estimators and the prediction engine."""
from cryptopredict.core.features import (
    build_training_set,
    feature_confidence,
    features_to_vector,
    heuristic_volatility,
    indicator_frame,
    prediction_uncertainty,
    trend_score,
)
from cryptopredict.core.returns import compute_log_returns, horizon_to_steps, interval_to_seconds

__all__ = [
    "build_training_set",
    "compute_log_returns",
    "feature_confidence",
    "features_to_vector",
    "heuristic_volatility",
    "horizon_to_steps",
    "indicator_frame",
    "interval_to_seconds",
    "prediction_uncertainty",
    "trend_score",
]
