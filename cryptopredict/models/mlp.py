"""Multilayer perceptron price model backed by torch."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Sequence, Tuple

import numpy as np
import torch
from torch import nn
from tqdm import tqdm

from cryptopredict.models.base import TrainableModel, TrainingResult, as_matrix

logger = logging.getLogger(__name__)


class MLPPricePredictionModel(TrainableModel):
    """Feed-forward regressor over the 18-feature market vector."""

    file_extension = "pt"
    MODEL_VERSION = 1

    def __init__(
        self,
        input_size: int = 18,
        hidden_sizes: Sequence[int] = (64, 32),
        output_size: int = 1,
        dropout: float = 0.1,
        seed: int = 42,
        device: str = "cpu",
    ) -> None:
        self.input_size = input_size
        self.hidden_sizes: Tuple[int, ...] = tuple(int(size) for size in hidden_sizes)
        self.output_size = output_size
        self.dropout = dropout
        self.seed = seed
        self.device = device
        torch.manual_seed(seed)
        self._net = self._build_network().to(device)
        self._mean = torch.zeros(input_size, dtype=torch.float32)
        self._std = torch.ones(input_size, dtype=torch.float32)

    def _build_network(self) -> nn.Sequential:
        layers = []
        width = self.input_size
        for hidden in self.hidden_sizes:
            layers.extend([nn.Linear(width, hidden), nn.ReLU()])
            if self.dropout > 0:
                layers.append(nn.Dropout(self.dropout))
            width = hidden
        layers.append(nn.Linear(width, self.output_size))
        return nn.Sequential(*layers)

    def set_device(self, device: str) -> None:
        self.device = device
        self._net.to(device)

    def fit_normalization(self, samples: Sequence[Sequence[float]]) -> None:
        """Store per-feature mean/std computed from training samples."""
        matrix = as_matrix(samples, self.input_size)
        std = matrix.std(axis=0)
        self._mean = torch.tensor(matrix.mean(axis=0), dtype=torch.float32)
        self._std = torch.tensor(np.where(std > 0, std, 1.0), dtype=torch.float32)

    def _to_tensor(self, values: Sequence[Sequence[float]], width: int) -> torch.Tensor:
        return torch.tensor(as_matrix(values, width), dtype=torch.float32)

    def _normalize(self, inputs: torch.Tensor) -> torch.Tensor:
        return ((inputs - self._mean) / self._std).to(self.device)

    def predict(self, inputs: Sequence[Sequence[float]]) -> np.ndarray:
        tensor = self._normalize(self._to_tensor(inputs, self.input_size))
        self._net.eval()
        with torch.no_grad():
            output = self._net(tensor)
        return output.cpu().numpy().astype(np.float64)

    def train(
        self,
        inputs: Sequence[Sequence[float]],
        targets: Sequence[Sequence[float]],
        epochs: int = 1000,
        learning_rate: float = 1e-3,
        batch_size: int = 256,
        validation_split: float = 0.0,
        show_progress: bool = False,
    ) -> TrainingResult:
        features = self._to_tensor(inputs, self.input_size)
        labels = self._to_tensor(targets, self.output_size).to(self.device)
        if features.shape[0] != labels.shape[0]:
            raise ValueError("inputs and targets must have the same number of rows.")

        validation: Optional[Tuple[torch.Tensor, torch.Tensor]] = None
        if validation_split > 0 and features.shape[0] >= 10:
            cut = int(features.shape[0] * (1.0 - validation_split))
            validation = (features[cut:], labels[cut:])
            features, labels = features[:cut], labels[:cut]

        scaled = self._normalize(features)
        optimizer = torch.optim.Adam(self._net.parameters(), lr=learning_rate)
        loss_fn = nn.MSELoss()
        best_loss = float("inf")
        final_loss = float("inf")
        rows = scaled.shape[0]

        self._net.train()
        for _ in tqdm(range(epochs), desc="Training MLP", unit="epoch", leave=False, disable=not show_progress):
            permutation = torch.randperm(rows)
            epoch_loss = 0.0
            for start in range(0, rows, batch_size):
                index = permutation[start : start + batch_size]
                optimizer.zero_grad()
                loss = loss_fn(self._net(scaled[index]), labels[index])
                loss.backward()
                optimizer.step()
                epoch_loss += float(loss.item()) * len(index)
            final_loss = epoch_loss / rows
            best_loss = min(best_loss, final_loss)

        validation_loss = None
        if validation is not None:
            self._net.eval()
            with torch.no_grad():
                validation_loss = float(loss_fn(self._net(self._normalize(validation[0])), validation[1]).item())

        logger.info(
            "MLP training finished | epochs=%d final_loss=%.6f best_loss=%.6f",
            epochs,
            final_loss,
            best_loss,
        )
        return TrainingResult(
            final_loss=final_loss,
            best_loss=best_loss,
            epochs=epochs,
            learning_rate=learning_rate,
            validation_loss=validation_loss,
        )

    def update(
        self,
        batch: Sequence[Sequence[float]],
        targets: Sequence[Sequence[float]],
        learning_rate: float = 1e-4,
    ) -> TrainingResult:
        """Single SGD step on a fresh batch."""
        scaled = self._normalize(self._to_tensor(batch, self.input_size))
        labels = self._to_tensor(targets, self.output_size).to(self.device)
        optimizer = torch.optim.SGD(self._net.parameters(), lr=learning_rate)
        loss_fn = nn.MSELoss()
        self._net.train()
        optimizer.zero_grad()
        loss = loss_fn(self._net(scaled), labels)
        loss.backward()
        optimizer.step()
        value = float(loss.item())
        return TrainingResult(final_loss=value, best_loss=value, epochs=1, learning_rate=learning_rate)

    def save(self, path: Path) -> None:
        payload = {
            "schema_version": self.MODEL_VERSION,
            "config": {
                "input_size": self.input_size,
                "hidden_sizes": list(self.hidden_sizes),
                "output_size": self.output_size,
                "dropout": self.dropout,
                "seed": self.seed,
            },
            "state_dict": {key: value.cpu() for key, value in self._net.state_dict().items()},
            "mean": self._mean.clone(),
            "std": self._std.clone(),
        }
        torch.save(payload, path)

    @classmethod
    def load(cls, path: Path) -> "MLPPricePredictionModel":
        payload = torch.load(path, map_location="cpu", weights_only=True)
        config = payload["config"]
        model = cls(
            input_size=int(config["input_size"]),
            hidden_sizes=config["hidden_sizes"],
            output_size=int(config["output_size"]),
            dropout=float(config["dropout"]),
            seed=int(config["seed"]),
        )
        model._net.load_state_dict(payload["state_dict"])
        model._mean = payload["mean"]
        model._std = payload["std"]
        return model


__all__ = ["MLPPricePredictionModel"]
