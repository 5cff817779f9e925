"""CSV-backed price history used for volatility fits."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

import pandas as pd

from cryptopredict.utils.text import normalize_symbol, slugify

_DEFAULT_CACHE_DIR = Path(__file__).resolve().parent / "cache"

logger = logging.getLogger(__name__)


class PriceHistoryProvider:
    """
    Read OHLCV history from ``{cache_dir}/{symbol}/{timeframe}.csv``.

    Files carry a ``datetime`` column plus at least ``close``; an explicit CSV
    path can be passed instead of a (symbol, timeframe) pair.
    """

    def __init__(self, cache_dir: Optional[Union[str, Path]] = None) -> None:
        self._cache_dir = Path(cache_dir or _DEFAULT_CACHE_DIR).expanduser().resolve()

    @property
    def cache_dir(self) -> Path:
        return self._cache_dir

    def get_cache_path(self, symbol: str, timeframe: str) -> Path:
        """Return the CSV path for a (symbol, timeframe) pair."""
        return self._cache_dir / slugify(normalize_symbol(symbol)) / f"{slugify(timeframe)}.csv"

    def load_frame(
        self,
        symbol: str,
        timeframe: str,
        *,
        path: Optional[Union[str, Path]] = None,
        max_points: Optional[int] = None,
    ) -> pd.DataFrame:
        csv_path = Path(path) if path is not None else self.get_cache_path(symbol, timeframe)
        if not csv_path.exists():
            raise ValueError(f"No data available for {symbol} @ {timeframe} ({csv_path}).")
        frame = pd.read_csv(csv_path)
        if "close" not in frame.columns:
            raise ValueError(f"{csv_path} has no 'close' column.")
        if "datetime" in frame.columns:
            frame["datetime"] = pd.to_datetime(frame["datetime"], utc=True)
            frame = frame.set_index("datetime").sort_index()
            frame = frame[~frame.index.duplicated(keep="last")]
        logger.debug("Loaded %d rows for %s @ %s from %s", len(frame), symbol, timeframe, csv_path)
        return frame.tail(max_points) if max_points else frame

    def load_closes(
        self,
        symbol: str,
        timeframe: str,
        *,
        path: Optional[Union[str, Path]] = None,
        max_points: Optional[int] = None,
    ) -> pd.Series:
        """Close prices as floats, non-numeric rows dropped."""
        frame = self.load_frame(symbol, timeframe, path=path, max_points=max_points)
        closes = pd.to_numeric(frame["close"], errors="coerce").dropna()
        closes.name = "close"
        return closes

    def save_frame(self, symbol: str, timeframe: str, frame: pd.DataFrame) -> Path:
        """Write ``frame`` to the cache location for (symbol, timeframe)."""
        path = self.get_cache_path(symbol, timeframe)
        path.parent.mkdir(parents=True, exist_ok=True)
        serialisable = frame.copy()
        if isinstance(serialisable.index, pd.DatetimeIndex):
            serialisable.index.name = "datetime"
            serialisable.to_csv(path)
        else:
            serialisable.to_csv(path, index=False)
        return path


__all__ = ["PriceHistoryProvider"]
