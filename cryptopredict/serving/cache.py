"""Per-symbol model resolution with staleness detection and online updates."""
from __future__ import annotations

import copy
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from cryptopredict.errors import (
    ChecksumMismatchError,
    ModelLoadError,
    ModelNotAvailableError,
    ModelNotFoundError,
    ModelStoreError,
)
from cryptopredict.models.base import TrainableModel
from cryptopredict.models.registry import ModelRegistry, ModelVersion, utc_now
from cryptopredict.utils.text import normalize_symbol, price_model_id

logger = logging.getLogger(__name__)

FALLBACK_VERSION = "shared_fallback"


@dataclass(frozen=True)
class CacheEntry:
    """Loaded model for one symbol. Replaced wholesale, never mutated."""

    model: TrainableModel
    loaded_at: datetime
    version: str


@dataclass(frozen=True)
class ResolvedModel:
    model: TrainableModel
    version: str
    source: str  # "cache", "registry" or "fallback"


class PredictionServingCache:
    """
    Resolve the model serving each symbol.

    Resolution order is: cached entry while the registry holds nothing newer,
    the registry's latest version, then the shared fallback model (never
    cached under the symbol, so a later registration is picked up on the next
    call). Entries are immutable and swapped with a single dict assignment;
    loads and updates for a symbol run under that symbol's lock so a reader
    sees either the old entry or the complete new one.
    """

    def __init__(
        self,
        registry: ModelRegistry,
        *,
        fallback_model: Optional[TrainableModel] = None,
        use_fallback: bool = True,
        learning_rate: float = 1e-4,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._registry = registry
        self._fallback = fallback_model
        self._use_fallback = use_fallback
        self._learning_rate = learning_rate
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    @property
    def registry(self) -> ModelRegistry:
        return self._registry

    @property
    def fallback_model(self) -> Optional[TrainableModel]:
        return self._fallback

    def set_fallback(self, model: Optional[TrainableModel]) -> None:
        self._fallback = model

    def _lock_for(self, symbol: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(symbol)
            if lock is None:
                lock = threading.RLock()
                self._locks[symbol] = lock
            return lock

    def entry(self, symbol: str) -> Optional[CacheEntry]:
        return self._entries.get(normalize_symbol(symbol))

    def cached_symbols(self) -> List[str]:
        return sorted(self._entries)

    # Staleness -----------------------------------------------------------

    def check_for_update(self, symbol: str) -> bool:
        """
        True when the symbol has no entry, or the registry holds a version
        created strictly after the entry was loaded.
        """
        key = normalize_symbol(symbol)
        entry = self._entries.get(key)
        if entry is None:
            return True
        latest = self._registry.get_latest_version(price_model_id(key))
        return latest is not None and latest.created_at > entry.loaded_at

    # Resolution ----------------------------------------------------------

    def resolve(self, symbol: str) -> Optional[TrainableModel]:
        resolved = self.resolve_entry(symbol)
        return resolved.model if resolved is not None else None

    def resolve_entry(self, symbol: str) -> Optional[ResolvedModel]:
        """Like ``resolve`` but also reports the serving version and where it came from."""
        key = normalize_symbol(symbol)
        entry = self._entries.get(key)
        if entry is not None and not self.check_for_update(key):
            logger.debug("Serving cache hit for %s (version %s)", key, entry.version)
            return ResolvedModel(entry.model, entry.version, "cache")

        with self._lock_for(key):
            # Another caller may have reloaded while this one waited.
            entry = self._entries.get(key)
            if entry is not None and not self.check_for_update(key):
                return ResolvedModel(entry.model, entry.version, "cache")
            entry = self._load(key)
        if entry is not None:
            return ResolvedModel(entry.model, entry.version, "registry")
        return self._resolve_fallback(key)

    def require(self, symbol: str) -> ResolvedModel:
        """``resolve_entry`` that raises ``ModelNotAvailableError`` instead of returning None."""
        resolved = self.resolve_entry(symbol)
        if resolved is None:
            raise ModelNotAvailableError(normalize_symbol(symbol))
        return resolved

    def _load(self, key: str) -> Optional[CacheEntry]:
        model_id = price_model_id(key)
        # Taken before the lookup so a version registered mid-load still
        # compares as newer on the next call.
        loaded_at = self._clock()
        latest = self._registry.get_latest_version(model_id)
        if latest is None:
            self._entries.pop(key, None)
            return None
        try:
            model = self._registry.load_model(model_id, latest.version)
        except (ModelNotFoundError, ChecksumMismatchError, ModelLoadError, ModelStoreError) as exc:
            logger.warning("Could not load %s version %s: %s", model_id, latest.version, exc)
            self._entries.pop(key, None)
            return None
        entry = CacheEntry(model=model, loaded_at=loaded_at, version=latest.version)
        self._entries[key] = entry
        logger.info("Serving cache loaded %s version %s", model_id, latest.version)
        return entry

    def _resolve_fallback(self, key: str) -> Optional[ResolvedModel]:
        if self._use_fallback and self._fallback is not None:
            logger.debug("No registered model for %s; serving shared fallback", key)
            return ResolvedModel(self._fallback, FALLBACK_VERSION, "fallback")
        logger.debug("No model available for %s", key)
        return None

    # Mutation ------------------------------------------------------------

    def publish(
        self,
        symbol: str,
        model: TrainableModel,
        metadata: Optional[object] = None,
    ) -> ModelVersion:
        """Register ``model`` as the newest version for ``symbol`` and serve it."""
        key = normalize_symbol(symbol)
        with self._lock_for(key):
            version = self._registry.register(model, price_model_id(key), metadata=metadata)
            self._entries[key] = CacheEntry(model=model, loaded_at=self._clock(), version=version.version)
        return version

    def update(
        self,
        symbol: str,
        batch: Sequence[Sequence[float]],
        targets: Sequence[Sequence[float]],
        learning_rate: Optional[float] = None,
    ) -> ModelVersion:
        """
        Take one online training step and persist the result as a new version.

        The step runs on a copy of the serving model; the cached handle is
        swapped only after the new version is registered, so no unversioned
        mutation is ever served.
        """
        key = normalize_symbol(symbol)
        rate = self._learning_rate if learning_rate is None else learning_rate
        with self._lock_for(key):
            entry = self._entries.get(key)
            if entry is None or self.check_for_update(key):
                entry = self._load(key)
            if entry is not None:
                base, base_version = entry.model, entry.version
            elif self._use_fallback and self._fallback is not None:
                base, base_version = self._fallback, FALLBACK_VERSION
            else:
                raise ModelNotAvailableError(key)

            candidate = copy.deepcopy(base)
            result = candidate.update(batch, targets, learning_rate=rate)
            metadata = {
                "source": "online_update",
                "baseVersion": base_version,
                "finalLoss": str(result.final_loss),
                "learningRate": str(rate),
                "batchSize": str(len(batch)),
            }
            version = self._registry.register(candidate, price_model_id(key), metadata=metadata)
            self._entries[key] = CacheEntry(model=candidate, loaded_at=self._clock(), version=version.version)

        logger.info(
            "Online update for %s | base=%s new=%s loss=%.6f",
            key,
            base_version,
            version.version,
            result.final_loss,
        )
        return version

    def invalidate(self, symbol: str) -> None:
        """Drop the cached entry; the next resolve goes back to the registry."""
        key = normalize_symbol(symbol)
        with self._lock_for(key):
            self._entries.pop(key, None)

    def clear(self) -> None:
        for key in list(self._entries):
            self.invalidate(key)

    def delete_models(self, symbol: str) -> int:
        """Delete every registered model for ``symbol`` and drop its entry."""
        key = normalize_symbol(symbol)
        with self._lock_for(key):
            removed = self._registry.delete_models(key)
            self._entries.pop(key, None)
        return removed

    def warmup(self, symbols: Iterable[str]) -> Mapping[str, str]:
        """Resolve each symbol once; returns ``symbol -> source`` ("none" when unresolved)."""
        sources: Dict[str, str] = {}
        for symbol in symbols:
            resolved = self.resolve_entry(symbol)
            sources[normalize_symbol(symbol)] = resolved.source if resolved is not None else "none"
        return sources


__all__ = ["CacheEntry", "FALLBACK_VERSION", "PredictionServingCache", "ResolvedModel"]
