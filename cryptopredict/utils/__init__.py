"""Utility helpers for naming and plumbing."""

from cryptopredict.utils.text import normalize_symbol, price_model_id, slugify

__all__ = ["normalize_symbol", "price_model_id", "slugify"]
