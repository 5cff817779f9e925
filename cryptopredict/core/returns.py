"""Return-series and horizon helpers shared by the volatility estimators."""
from __future__ import annotations

from typing import Dict, Sequence

import numpy as np

_INTERVAL_SECONDS: Dict[str, int] = {
    "1min": 60,
    "5min": 300,
    "15min": 900,
    "30min": 1800,
    "45min": 2700,
    "1h": 3600,
    "2h": 7200,
    "4h": 14400,
    "1day": 86400,
}


def compute_log_returns(prices: Sequence[float]) -> np.ndarray:
    """
    Log returns ``ln(p_t / p_{t-1})`` over consecutive closes.

    A step whose previous (or current) close is not strictly positive emits
    no return, so the output can be shorter than ``len(prices) - 1``.
    """
    closes = np.asarray(prices, dtype=np.float64).ravel()
    if closes.size < 2:
        return np.empty(0, dtype=np.float64)
    previous, current = closes[:-1], closes[1:]
    valid = (previous > 0) & (current > 0) & np.isfinite(previous) & np.isfinite(current)
    return np.log(current[valid] / previous[valid])


def interval_to_seconds(interval: str) -> int:
    """Convert a bar interval string such as ``5min`` or ``1h`` to seconds."""
    try:
        return _INTERVAL_SECONDS[interval.lower()]
    except KeyError as exc:
        raise ValueError(f"Unsupported interval '{interval}'") from exc


def horizon_to_steps(horizon_seconds: float, step_seconds: float = 300) -> int:
    """Number of bars covering ``horizon_seconds``; at least one."""
    if step_seconds <= 0:
        raise ValueError("step_seconds must be positive.")
    steps = horizon_seconds / step_seconds
    if not np.isfinite(steps):
        return 1
    return max(1, int(np.floor(steps + 0.5)))


__all__ = ["compute_log_returns", "horizon_to_steps", "interval_to_seconds"]
