"""TTL cache for slowly changing lookups such as the equipment registry."""
from __future__ import annotations

from typing import Callable, Generic, Optional, TypeVar

from cachetools import TTLCache

T = TypeVar("T")


class LookupCache(Generic[T]):
    def __init__(self, ttl: int, maxsize: int = 128) -> None:
        self._cache: TTLCache[str, T] = TTLCache(maxsize=maxsize, ttl=ttl)

    def get(self, key: str) -> Optional[T]:
        return self._cache.get(key)

    def get_or_load(self, key: str, loader: Callable[[], T]) -> T:
        cached = self._cache.get(key)
        if cached is None:
            cached = loader()
            self._cache[key] = cached
        return cached

    def invalidate(self, key: Optional[str] = None) -> None:
        if key is None:
            self._cache.clear()
        else:
            self._cache.pop(key, None)
