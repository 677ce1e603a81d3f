"""Canonical-key result cache.

Maps a configuration's content to the last evaluation outcome so the same
configuration never reaches the backtester twice. Keys are independent of
mapping insertion order; eviction is least-recently-touched first.
"""

from __future__ import annotations

import json
import logging
from collections import OrderedDict
from typing import Any, Generic, Mapping, TypeVar

from src.filter_optimizer.config import DEFAULT_CACHE_SIZE
from src.filter_optimizer.parameters import is_unset

logger = logging.getLogger(__name__)

V = TypeVar("V")


def _canonicalize(value: Any) -> Any:
    """Recursively sort mapping keys; sequences keep their order."""
    if isinstance(value, Mapping):
        return {str(k): _canonicalize(value[k]) for k in sorted(value, key=str)}
    if isinstance(value, (list, tuple)):
        return [_canonicalize(v) for v in value]
    if is_unset(value):
        return None
    return value


def canonical_key(config: Mapping[str, Any]) -> str:
    """Deterministic, field-order-independent serialization of *config*."""
    return json.dumps(
        _canonicalize(config),
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )


class ResultCache(Generic[V]):
    """Bounded LRU table of configuration → outcome.

    ``get`` and ``set`` both count as a touch. Not thread-safe: the
    evaluator owns the cache exclusively.
    """

    def __init__(self, max_size: int = DEFAULT_CACHE_SIZE) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._max_size = max_size
        self._entries: OrderedDict[str, V] = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @staticmethod
    def key(config: Mapping[str, Any]) -> str:
        return canonical_key(config)

    @property
    def max_size(self) -> int:
        return self._max_size

    def has(self, config: Mapping[str, Any]) -> bool:
        """Membership test; does not touch the entry or count a lookup."""
        return self.key(config) in self._entries

    def get(self, config: Mapping[str, Any]) -> V | None:
        """Return the stored outcome and mark it most recently used."""
        k = self.key(config)
        if k not in self._entries:
            self._misses += 1
            return None
        self._entries.move_to_end(k)
        self._hits += 1
        return self._entries[k]

    def set(self, config: Mapping[str, Any], value: V) -> None:
        """Store *value*, evicting the least recently used entry on overflow."""
        k = self.key(config)
        if k in self._entries:
            self._entries.move_to_end(k)
        self._entries[k] = value
        while len(self._entries) > self._max_size:
            evicted, _ = self._entries.popitem(last=False)
            self._evictions += 1
            logger.debug("Evicted cache entry %s", evicted[:80])

    def clear(self) -> None:
        self._entries.clear()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, config: object) -> bool:
        return isinstance(config, Mapping) and self.has(config)

    def get_stats(self) -> dict[str, Any]:
        lookups = self._hits + self._misses
        return {
            "size": len(self._entries),
            "max_size": self._max_size,
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
            "hit_rate": round(self._hits / lookups, 4) if lookups else 0.0,
        }
