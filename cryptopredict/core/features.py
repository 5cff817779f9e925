"""Feature-vector assembly and heuristic scoring for prediction requests."""
from __future__ import annotations

import math
from typing import List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

FEATURE_NAMES = (
    "ret",
    "ret_1d",
    "ret_5d",
    "ret_20d",
    "vol_ratio",
    "vol_delta",
    "roc_14",
    "stoch_k",
    "stoch_d",
    "atr_ratio",
    "bb_width",
    "cum_delta",
    "vwap_distance",
    "rsi",
    "macd",
    "macd_signal",
    "volatility",
    "close",
)
CONFIDENCE_FEATURES = ("price", "volatility", "rsi", "macd")
SECONDS_PER_HOUR = 3600.0


def _get(features: Mapping[str, float], key: str, default: float) -> float:
    value = features.get(key)
    return default if value is None else float(value)


def close_price(features: Mapping[str, float]) -> Optional[float]:
    """``close`` if present, else ``price``."""
    for key in ("close", "price"):
        if features.get(key) is not None:
            return float(features[key])
    return None


def features_to_vector(features: Mapping[str, float]) -> List[float]:
    """
    Build the 18-value model input (ordered as ``FEATURE_NAMES``) from a
    sparse feature map.

    Missing indicators take neutral values: returns fall back to the
    one-bar return, oscillators to their midpoint, ratios to 1 and
    everything else to 0.
    """
    close = close_price(features) or 0.0
    close_prev = _get(features, "close_prev", close)
    ret = math.log(close / close_prev) if close_prev > 0 and close > 0 else 0.0

    volume = _get(features, "volume", 0.0)
    avg_volume = _get(features, "avg_vol_20d", volume)
    vol_ratio = volume / avg_volume if avg_volume > 0 else 1.0

    if close > 0:
        atr_ratio = _get(features, "atr_ratio", _get(features, "atr_14", 0.0) / close)
    else:
        atr_ratio = 0.0

    return [
        ret,
        _get(features, "ret_1d", ret),
        _get(features, "ret_5d", ret),
        _get(features, "ret_20d", ret),
        vol_ratio,
        _get(features, "vol_delta", 0.0),
        _get(features, "roc_14", 0.0),
        _get(features, "stoch_k", 50.0),
        _get(features, "stoch_d", 50.0),
        atr_ratio,
        _get(features, "bb_width", 0.0),
        _get(features, "cum_delta", 0.0),
        _get(features, "vwap_distance", 0.0),
        _get(features, "rsi", 50.0),
        _get(features, "macd", 0.0),
        _get(features, "macd_signal", 0.0),
        _get(features, "volatility", 0.0),
        close,
    ]


def feature_confidence(features: Mapping[str, float]) -> float:
    """Completeness of the core indicators, discounted by volatility."""
    available = sum(1 for key in CONFIDENCE_FEATURES if features.get(key) is not None)
    completeness = available / len(CONFIDENCE_FEATURES)
    penalty = min(1.0, _get(features, "volatility", 0.0) * 2.0)
    return completeness * (1.0 - penalty * 0.3)


def prediction_uncertainty(features: Mapping[str, float]) -> float:
    volatility = _get(features, "volatility", 0.0)
    price_change = abs(_get(features, "price_change", 0.0))
    volume_change = abs(_get(features, "volume_change", 0.0))
    return min(1.0, volatility * 0.5 + (price_change + volume_change) * 0.3)


def heuristic_volatility(features: Mapping[str, float], horizon_seconds: float) -> float:
    hours = horizon_seconds / SECONDS_PER_HOUR
    volatility = _get(features, "volatility", 0.0)
    price_component = abs(_get(features, "price_change", 0.0)) * hours
    volume_component = abs(_get(features, "volume_change", 0.0)) * hours * 0.5
    return max(0.0, volatility * (1.0 + price_component + volume_component))


def trend_score(features: Mapping[str, float]) -> float:
    """Signed trend score in ``[-1, 1]``; positive is bullish."""
    score = (
        _get(features, "trend_strength", 0.0) * 0.4
        + (_get(features, "rsi", 50.0) - 50.0) / 50.0 * 0.3
        + (_get(features, "macd", 0.0) - _get(features, "macd_signal", 0.0)) * 0.3
    )
    return max(-1.0, min(1.0, score))


def indicator_frame(price_frame: pd.DataFrame, window: int = 20) -> pd.DataFrame:
    """
    Per-bar indicator columns understood by ``features_to_vector``.

    Requires ``close``; ``volume`` and ``high``/``low`` are used when present.
    Leading rows are NaN until each rolling window fills.
    """
    if "close" not in price_frame.columns:
        raise KeyError("Price frame has no 'close' column.")
    close = pd.to_numeric(price_frame["close"], errors="coerce").astype(float)
    returns = np.log(close / close.shift(1))
    frame = pd.DataFrame(index=price_frame.index)
    frame["close"] = close
    frame["close_prev"] = close.shift(1)

    if "volume" in price_frame.columns:
        volume = pd.to_numeric(price_frame["volume"], errors="coerce").astype(float)
        frame["volume"] = volume
        frame["avg_vol_20d"] = volume.rolling(window).mean()
        frame["vol_delta"] = volume.pct_change().replace([np.inf, -np.inf], 0.0)

    delta = close.diff()
    gain = delta.clip(lower=0).rolling(14).mean()
    loss = (-delta.clip(upper=0)).rolling(14).mean()
    frame["rsi"] = (100.0 - 100.0 / (1.0 + gain / loss)).fillna(50.0)
    frame["roc_14"] = close.pct_change(14) * 100.0

    macd = close.ewm(span=12, adjust=False).mean() - close.ewm(span=26, adjust=False).mean()
    frame["macd"] = macd
    frame["macd_signal"] = macd.ewm(span=9, adjust=False).mean()

    sma = close.rolling(window).mean()
    std = close.rolling(window).std(ddof=0)
    frame["bb_width"] = 4.0 * std / sma
    frame["volatility"] = returns.rolling(window).std(ddof=0)

    if {"high", "low"}.issubset(price_frame.columns):
        high = pd.to_numeric(price_frame["high"], errors="coerce").astype(float)
        low = pd.to_numeric(price_frame["low"], errors="coerce").astype(float)
        lowest, highest = low.rolling(14).min(), high.rolling(14).max()
        stoch_k = 100.0 * (close - lowest) / (highest - lowest)
        frame["stoch_k"] = stoch_k
        frame["stoch_d"] = stoch_k.rolling(3).mean()
        true_range = pd.concat(
            [high - low, (high - close.shift(1)).abs(), (low - close.shift(1)).abs()],
            axis=1,
        ).max(axis=1)
        frame["atr_14"] = true_range.rolling(14).mean()
    return frame


def build_training_set(
    price_frame: pd.DataFrame,
    horizon_steps: int = 1,
    window: int = 20,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Inputs/targets for price models: the feature vector at bar ``t`` and the
    close at ``t + horizon_steps``.
    """
    if horizon_steps < 1:
        raise ValueError("horizon_steps must be at least 1.")
    frame = indicator_frame(price_frame, window=window)
    target = frame["close"].shift(-horizon_steps)
    usable = frame.replace([np.inf, -np.inf], np.nan).notna().all(axis=1) & target.notna()
    rows = frame.loc[usable]
    if rows.empty:
        raise ValueError("Price history too short to build a training set.")
    inputs = np.asarray([features_to_vector(record) for record in rows.to_dict("records")], dtype=np.float64)
    targets = target.loc[usable].to_numpy(dtype=np.float64).reshape(-1, 1)
    return inputs, targets


__all__ = [
    "CONFIDENCE_FEATURES",
    "FEATURE_NAMES",
    "build_training_set",
    "close_price",
    "indicator_frame",
    "feature_confidence",
    "features_to_vector",
    "heuristic_volatility",
    "prediction_uncertainty",
    "trend_score",
]
