"""Shared fixtures: temporary registry, controllable clock, synthetic series."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import numpy as np
import pytest
from hypothesis import settings

from cryptopredict.models.linear import LinearPriceModel
from cryptopredict.models.registry import ModelRegistry
from cryptopredict.serving.cache import PredictionServingCache

settings.register_profile("ci", max_examples=100, deadline=None)
settings.register_profile("dev", max_examples=25, deadline=None)
settings.load_profile("dev")

EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock returning ``EPOCH + seconds``; tests move it explicitly."""

    def __init__(self, seconds: float = 0.0) -> None:
        self.now = EPOCH + timedelta(seconds=seconds)

    def __call__(self) -> datetime:
        return self.now

    def set(self, seconds: float) -> None:
        self.now = EPOCH + timedelta(seconds=seconds)

    def advance(self, seconds: float = 1.0) -> None:
        self.now += timedelta(seconds=seconds)


def at(seconds: float) -> datetime:
    return EPOCH + timedelta(seconds=seconds)


def linear_model(bias: float = 0.0, input_size: int = 18) -> LinearPriceModel:
    """Linear model whose prediction is ``bias`` plus a small weighted sum."""
    model = LinearPriceModel(input_size=input_size)
    model.weights = np.linspace(-0.5, 0.5, input_size).reshape(input_size, 1)
    model.bias = np.array([bias])
    return model


class UnreadableModel(LinearPriceModel):
    """Saves like a linear model but cannot be read back."""

    @classmethod
    def load(cls, path):
        raise ValueError("cannot deserialize")


def simulate_garch(
    n: int,
    omega: float,
    alpha: float,
    beta: float,
    mu: float = 0.0,
    seed: int = 7,
) -> np.ndarray:
    rng = np.random.default_rng(seed)
    variance = omega / (1.0 - alpha - beta)
    shock = 0.0
    returns = np.empty(n)
    for t in range(n):
        if t:
            variance = omega + alpha * shock**2 + beta * variance
        shock = np.sqrt(variance) * rng.standard_normal()
        returns[t] = mu + shock
    return returns


def prices_from_returns(returns: np.ndarray, start: float = 100.0) -> np.ndarray:
    return np.concatenate([[start], start * np.exp(np.cumsum(returns))])


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(100)


@pytest.fixture
def registry_root(tmp_path):
    return tmp_path / "registry"


@pytest.fixture
def registry(registry_root, clock) -> ModelRegistry:
    return ModelRegistry.at_path(registry_root, clock=clock)


@pytest.fixture
def cache(registry, clock) -> PredictionServingCache:
    return PredictionServingCache(registry, clock=clock)


@pytest.fixture
def garch_returns() -> np.ndarray:
    return simulate_garch(200, omega=1e-4, alpha=0.1, beta=0.85)


@pytest.fixture
def feature_row() -> list:
    return [0.01 * i for i in range(18)]
