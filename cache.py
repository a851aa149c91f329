# cache.py
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    value: T
    stored_at: float


@dataclass(frozen=True)
class CacheLookup(Generic[T]):
    value: Optional[T]
    present: bool
    fresh: bool

    @property
    def stale(self) -> bool:
        return self.present and not self.fresh


class TTLCache(Generic[T]):
    """
    In-process cache for live upstream reads. Built once per app and passed
    to the read layer. Expired entries are kept so they can still be served
    as a fallback when a refresh fails.
    """

    def __init__(self, ttl: float, clock: Callable[[], float] = time.time):
        self.ttl = float(ttl)
        self._clock = clock
        self._store: Dict[str, CacheEntry[T]] = {}

    def lookup(self, key: str) -> CacheLookup[T]:
        entry = self._store.get(key)
        if entry is None:
            return CacheLookup(value=None, present=False, fresh=False)
        fresh = self._clock() - entry.stored_at < self.ttl
        return CacheLookup(value=entry.value, present=True, fresh=fresh)

    def set(self, key: str, value: T) -> None:
        self._store[key] = CacheEntry(value=value, stored_at=self._clock())

    def invalidate(self, key: str) -> None:
        self._store.pop(key, None)

    def clear(self) -> None:
        self._store.clear()
