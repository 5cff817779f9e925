"""Utility helpers for text normalisation."""
from __future__ import annotations

import re

_QUOTE_SUFFIXES = ("-USD", "/USD", "_USD")


def slugify(value: str) -> str:
    """
    Convert arbitrary model ids/versions into filesystem-safe slugs.

    Artifact file names in the registry root are derived from this helper so
    every writer and reader agrees on the same naming convention.
    """
    cleaned = re.sub(r"[\\/:?\s]+", "_", value.strip())
    cleaned = re.sub(r"[^A-Za-z0-9_.\-]", "", cleaned)
    cleaned = cleaned.strip("_.")
    return cleaned or "artifact"


def normalize_symbol(symbol: str) -> str:
    """Upper-case a trading symbol and drop a USD quote suffix (``btc-usd`` -> ``BTC``)."""
    cleaned = symbol.strip().upper()
    for suffix in _QUOTE_SUFFIXES:
        if cleaned.endswith(suffix) and len(cleaned) > len(suffix):
            return cleaned[: -len(suffix)]
    return cleaned


def price_model_id(symbol: str) -> str:
    """Registry model id of the asset-specific price model."""
    return f"{normalize_symbol(symbol)}_price_prediction"


__all__ = ["normalize_symbol", "price_model_id", "slugify"]
