"""Abstract trainable model interface."""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

import numpy as np


@dataclass
class TrainingResult:
    """Outcome of a training run."""

    final_loss: float
    best_loss: float
    epochs: int
    learning_rate: float
    validation_loss: Optional[float] = None


def as_matrix(values: Sequence[Sequence[float]], width: Optional[int] = None) -> np.ndarray:
    """Coerce nested sequences into a 2-D float64 array, checking the column count."""
    matrix = np.asarray(values, dtype=np.float64)
    if matrix.ndim == 1:
        matrix = matrix.reshape(1, -1)
    if matrix.ndim != 2:
        raise ValueError(f"Expected a 2-D input, got shape {matrix.shape}.")
    if width is not None and matrix.shape[1] != width:
        raise ValueError(f"Expected {width} features per sample, got {matrix.shape[1]}.")
    return matrix


class TrainableModel(ABC):
    """
    Capability interface the registry and serving cache depend on.

    The serving layer never inspects a concrete model: it predicts, trains,
    saves to a path and reconstructs from a path through this surface only.
    """

    file_extension: str = "pt"

    @abstractmethod
    def predict(self, inputs: Sequence[Sequence[float]]) -> np.ndarray:
        """Return one output row per input row."""

    @abstractmethod
    def train(
        self,
        inputs: Sequence[Sequence[float]],
        targets: Sequence[Sequence[float]],
        epochs: int = 1000,
        learning_rate: float = 1e-3,
    ) -> TrainingResult:
        """Fit the model in place."""

    @abstractmethod
    def save(self, path: Path) -> None:
        """Persist the model to ``path``."""

    @classmethod
    @abstractmethod
    def load(cls, path: Path) -> "TrainableModel":
        """Reconstruct a model previously written by ``save``."""

    def predict_single(self, features: Sequence[float]) -> float:
        """Predict the first output for a single feature vector."""
        output = self.predict([list(features)])
        return float(np.asarray(output, dtype=np.float64).ravel()[0])

    def update(
        self,
        batch: Sequence[Sequence[float]],
        targets: Sequence[Sequence[float]],
        learning_rate: float = 1e-4,
    ) -> TrainingResult:
        """Run one incremental training pass over ``batch``."""
        return self.train(batch, targets, epochs=1, learning_rate=learning_rate)


__all__ = ["TrainableModel", "TrainingResult", "as_matrix"]
