"""Bounded memo cache for expression scans.

Dashboards repeat the same PromQL expressions across panels and boards, so
the identifier extractor memoizes its results. This module wraps
:class:`cachetools.LRUCache` behind a small API and keeps hit/miss counters
for debug logging.
"""

from __future__ import annotations

from collections.abc import Hashable
from typing import Callable, Generic, Optional, TypeVar

from cachetools import LRUCache  # type: ignore[import-untyped]

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class Cache(Generic[K, V]):
    """LRU cache with hit/miss accounting.

    Parameters
    ----------
    maxsize: int
        Maximum number of entries to retain. ``0`` disables caching.
        When the cache is full, the least-recently-used entry is discarded.
    """

    def __init__(self, maxsize: int = 1024) -> None:
        self._cache: Optional[LRUCache[K, V]] = (
            LRUCache(maxsize=maxsize) if maxsize > 0 else None
        )
        self.hits = 0
        self.misses = 0

    def get(self, key: K) -> Optional[V]:
        """Return value for `key` or None if missing."""
        if self._cache is None:
            return None
        return self._cache.get(key)

    def set(self, key: K, value: V) -> None:
        """Insert or update `key` with `value`."""
        if self._cache is not None:
            self._cache[key] = value

    def get_or_compute(self, key: K, compute: Callable[[K], V]) -> V:
        """Return the cached value for `key`, computing and storing it on a miss.

        Exceptions raised by `compute` propagate and nothing is stored.
        """
        if self._cache is not None and key in self._cache:
            self.hits += 1
            return self._cache[key]
        self.misses += 1
        value = compute(key)
        self.set(key, value)
        return value

    def __len__(self) -> int:
        return 0 if self._cache is None else len(self._cache)
