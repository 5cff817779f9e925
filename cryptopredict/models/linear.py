"""Linear price model fitted with numpy."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional, Sequence

import numpy as np

from cryptopredict.models.base import TrainableModel, TrainingResult, as_matrix

logger = logging.getLogger(__name__)


class LinearPriceModel(TrainableModel):
    """
    Ridge-regularised linear map from the feature vector to price outputs.

    Inputs are z-scored with statistics captured during ``train`` (or
    ``fit_normalization``), so online updates operate on the same scale as the
    original fit. Artifacts are plain JSON, which keeps the model usable on
    hosts without a tensor framework.
    """

    file_extension = "json"

    def __init__(self, input_size: int = 18, output_size: int = 1, ridge: float = 1e-3) -> None:
        self.input_size = input_size
        self.output_size = output_size
        self.ridge = ridge
        self.weights = np.zeros((input_size, output_size), dtype=np.float64)
        self.bias = np.zeros(output_size, dtype=np.float64)
        self.feature_mean = np.zeros(input_size, dtype=np.float64)
        self.feature_std = np.ones(input_size, dtype=np.float64)

    def fit_normalization(self, samples: Sequence[Sequence[float]]) -> None:
        """Capture per-feature mean/std from training samples."""
        matrix = as_matrix(samples, self.input_size)
        std = matrix.std(axis=0)
        self.feature_mean = matrix.mean(axis=0)
        self.feature_std = np.where(std > 0, std, 1.0)

    def _scale(self, matrix: np.ndarray) -> np.ndarray:
        return (matrix - self.feature_mean) / self.feature_std

    def predict(self, inputs: Sequence[Sequence[float]]) -> np.ndarray:
        matrix = as_matrix(inputs, self.input_size)
        return self._scale(matrix) @ self.weights + self.bias

    def _mse(self, scaled: np.ndarray, targets: np.ndarray) -> float:
        residual = scaled @ self.weights + self.bias - targets
        return float(np.mean(residual**2))

    def train(
        self,
        inputs: Sequence[Sequence[float]],
        targets: Sequence[Sequence[float]],
        epochs: int = 1000,
        learning_rate: float = 1e-3,
        validation_split: float = 0.0,
    ) -> TrainingResult:
        """
        Fit with a closed-form ridge solve when ``epochs > 1``; otherwise take
        a single gradient step, which is what online updates use.
        """
        matrix = as_matrix(inputs, self.input_size)
        target = as_matrix(targets, self.output_size)
        if matrix.shape[0] != target.shape[0]:
            raise ValueError("inputs and targets must have the same number of rows.")

        validation: Optional[tuple] = None
        if validation_split > 0 and matrix.shape[0] >= 10:
            cut = int(matrix.shape[0] * (1.0 - validation_split))
            validation = (matrix[cut:], target[cut:])
            matrix, target = matrix[:cut], target[:cut]

        if epochs > 1:
            self.fit_normalization(matrix)
            scaled = self._scale(matrix)
            design = np.hstack([scaled, np.ones((scaled.shape[0], 1))])
            penalty = self.ridge * np.eye(design.shape[1])
            penalty[-1, -1] = 0.0
            solution = np.linalg.solve(design.T @ design + penalty, design.T @ target)
            self.weights = solution[:-1]
            self.bias = solution[-1]
        else:
            scaled = self._scale(matrix)
            residual = scaled @ self.weights + self.bias - target
            grad_w = 2.0 * scaled.T @ residual / scaled.shape[0]
            grad_b = 2.0 * residual.mean(axis=0)
            self.weights = self.weights - learning_rate * grad_w
            self.bias = self.bias - learning_rate * grad_b

        loss = self._mse(scaled, target)
        validation_loss = None
        if validation is not None:
            validation_loss = self._mse(self._scale(validation[0]), validation[1])
        logger.debug("Linear model fit | rows=%d loss=%.6f", matrix.shape[0], loss)
        return TrainingResult(
            final_loss=loss,
            best_loss=loss,
            epochs=max(epochs, 1),
            learning_rate=learning_rate,
            validation_loss=validation_loss,
        )

    def to_dict(self) -> dict:
        return {
            "input_size": self.input_size,
            "output_size": self.output_size,
            "ridge": self.ridge,
            "weights": self.weights.tolist(),
            "bias": self.bias.tolist(),
            "feature_mean": self.feature_mean.tolist(),
            "feature_std": self.feature_std.tolist(),
        }

    def save(self, path: Path) -> None:
        with open(path, "w", encoding="utf-8") as handle:
            json.dump(self.to_dict(), handle)

    @classmethod
    def load(cls, path: Path) -> "LinearPriceModel":
        with open(path, "r", encoding="utf-8") as handle:
            payload = json.load(handle)
        model = cls(
            input_size=int(payload["input_size"]),
            output_size=int(payload["output_size"]),
            ridge=float(payload.get("ridge", 1e-3)),
        )
        model.weights = np.asarray(payload["weights"], dtype=np.float64).reshape(model.input_size, model.output_size)
        model.bias = np.asarray(payload["bias"], dtype=np.float64)
        model.feature_mean = np.asarray(payload["feature_mean"], dtype=np.float64)
        model.feature_std = np.asarray(payload["feature_std"], dtype=np.float64)
        return model


__all__ = ["LinearPriceModel"]
