"""Application configuration for the cryptopredict serving layer."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

import yaml

from dotenv import load_dotenv

_PACKAGE_ROOT = Path(__file__).resolve().parent
load_dotenv()
load_dotenv(_PACKAGE_ROOT / ".env")


def _env_bool(key: str, default: bool = True) -> bool:
    """Safely parse a boolean flag from the environment."""
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y"}


def _env_float(key: str, default: float) -> float:
    """Safely parse a float from the environment."""
    raw = os.getenv(key)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(key: str, default: int) -> int:
    """Safely parse an int from the environment."""
    raw = os.getenv(key)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _default_model_dir() -> Path:
    env_dir = os.getenv("CRYPTOPREDICT_MODEL_DIR")
    if env_dir:
        return Path(env_dir).expanduser()
    return Path.home() / ".cryptopredict" / "models"


@dataclass
class RegistryConfig:
    """Where versioned model artifacts and the registry index live."""

    model_dir: Path = field(default_factory=_default_model_dir)
    index_file: str = os.getenv("CRYPTOPREDICT_INDEX_FILE", "registry.json")
    default_extension: str = os.getenv("CRYPTOPREDICT_ARTIFACT_EXT", "pt")


@dataclass
class GARCHConfig:
    """Settings for the GARCH(1,1) volatility estimator."""

    max_iterations: int = _env_int("GARCH_MAX_ITERATIONS", 1000)
    tolerance: float = _env_float("GARCH_TOLERANCE", 1e-6)
    base_learning_rate: float = _env_float("GARCH_LEARNING_RATE", 0.01)
    min_returns: int = _env_int("GARCH_MIN_RETURNS", 50)
    min_observations: int = _env_int("GARCH_MIN_OBSERVATIONS", 100)
    step_seconds: int = _env_int("GARCH_STEP_SECONDS", 300)
    backend: str = os.getenv("GARCH_BACKEND", "native")


@dataclass
class ServingConfig:
    """Runtime settings for the per-symbol serving cache."""

    input_size: int = _env_int("SERVING_INPUT_SIZE", 18)
    online_learning_rate: float = _env_float("SERVING_ONLINE_LR", 1e-4)
    use_fallback: bool = _env_bool("SERVING_USE_FALLBACK", True)
    default_model: str = os.getenv("SERVING_DEFAULT_MODEL", "linear")
    fallback_model_id: str = os.getenv("SERVING_FALLBACK_MODEL_ID", "GENERIC_price_prediction")


@dataclass
class AppConfig:
    """Top-level configuration container."""

    registry: RegistryConfig = field(default_factory=RegistryConfig)
    garch: GARCHConfig = field(default_factory=GARCHConfig)
    serving: ServingConfig = field(default_factory=ServingConfig)
    default_timeframe: str = os.getenv("DEFAULT_TIMEFRAME", "5min")
    data_cache_dir: Optional[str] = os.getenv("CRYPTOPREDICT_DATA_CACHE_DIR")


@dataclass
class SymbolUniverse:
    """Symbols the service keeps warm, plus their default timeframe."""

    symbols: List[str]
    timeframe: str


def _symbol_config_path() -> Path:
    root = _PACKAGE_ROOT.parent
    return root / "config" / "symbols.yml"


@lru_cache(maxsize=1)
def get_symbol_universe() -> SymbolUniverse:
    """Load the served symbol universe from YAML."""
    path = _symbol_config_path()
    if path.exists():
        with open(path, "r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle) or {}
        symbols = [str(symbol) for symbol in payload.get("symbols", [])]
        timeframe = payload.get("defaults", {}).get("timeframe", "5min")
        return SymbolUniverse(symbols=symbols, timeframe=timeframe)
    return SymbolUniverse(symbols=["BTC", "ETH", "SOL", "ADA", "XRP"], timeframe="5min")


def get_config() -> AppConfig:
    """Return a fresh copy of the application configuration."""
    return AppConfig()


__all__ = [
    "AppConfig",
    "GARCHConfig",
    "RegistryConfig",
    "ServingConfig",
    "SymbolUniverse",
    "get_config",
    "get_symbol_universe",
]
