"""Offline training entrypoints for price models."""
from __future__ import annotations

import logging
import os
from typing import Optional

import pandas as pd
from tqdm import tqdm

from cryptopredict.core.features import build_training_set
from cryptopredict.data import PriceHistoryProvider
from cryptopredict.models.registry import ModelVersion
from cryptopredict.models.selection import instantiate_model
from cryptopredict.serving.engine import PredictionEngine

logger = logging.getLogger(__name__)


def _resolve_training_device(device: Optional[str]) -> str:
    """Default to TORCH_DEVICE when no explicit device was provided."""
    if device is None or not str(device).strip():
        return os.getenv("TORCH_DEVICE", "cpu")
    return device


class _TrainingProgress:
    """tqdm bar advancing through the fixed stages of a training run."""

    STAGES = ("Loading price history", "Building features", "Fitting model", "Done")

    def __init__(self, description: str, enabled: bool) -> None:
        self._description = description
        self._enabled = enabled
        self._bar: Optional[tqdm] = None

    def __enter__(self) -> "_TrainingProgress":
        if self._enabled:
            self._bar = tqdm(
                total=len(self.STAGES),
                desc=self._description,
                leave=False,
                dynamic_ncols=True,
                unit="stage",
            )
        return self

    def update(self, stage: str) -> None:
        logger.debug("%s: %s", self._description, stage)
        if self._bar is not None:
            self._bar.set_postfix_str(stage, refresh=False)
            self._bar.update(1)

    def __exit__(self, exc_type, exc, tb) -> bool:
        if self._bar is not None:
            self._bar.close()
            self._bar = None
        return False


def train_price_model(
    symbol: str,
    timeframe: str,
    engine: PredictionEngine,
    *,
    model_type: str = "linear",
    price_frame: Optional[pd.DataFrame] = None,
    data_provider: Optional[PriceHistoryProvider] = None,
    epochs: int = 1000,
    learning_rate: float = 1e-3,
    horizon_steps: int = 1,
    device: Optional[str] = None,
    show_progress: bool = True,
) -> ModelVersion:
    """
    Fit a price model on cached history and publish it as a new version.

    Parameters
    ----------
    horizon_steps:
        Bars between the feature row and the close used as its target.
    show_progress:
        When True, surface a tqdm spinner while the fit runs.
    """
    desc = f"Training {model_type.upper()} [{symbol} @ {timeframe}]"
    with _TrainingProgress(desc, show_progress) as progress:
        progress.update("Loading price history")
        if price_frame is None:
            provider = data_provider or PriceHistoryProvider()
            price_frame = provider.load_frame(symbol, timeframe)

        progress.update("Building features")
        inputs, targets = build_training_set(price_frame, horizon_steps=horizon_steps)

        progress.update("Fitting model")
        model = instantiate_model(model_type, inputs.shape[1], device=_resolve_training_device(device))
        version = engine.train_price_model(
            symbol,
            inputs,
            targets,
            epochs=epochs,
            learning_rate=learning_rate,
            model=model,
        )
        progress.update("Done")
    logger.info(
        "Trained %s price model for %s @ %s | samples=%d version=%s",
        model_type,
        symbol,
        timeframe,
        len(inputs),
        version.version,
    )
    return version


__all__ = ["train_price_model"]
