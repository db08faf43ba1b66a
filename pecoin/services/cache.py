"""In-memory TTL cache with bounded size, shared by every cache in the package."""

from __future__ import annotations

import time
from collections.abc import Callable, Hashable, Iterator
from typing import Generic, TypeVar

from pecoin.api.models import CacheStats

V = TypeVar("V")


class _Entry(Generic[V]):
    __slots__ = ("value", "inserted_at", "ttl")

    def __init__(self, value: V, inserted_at: float, ttl: float) -> None:
        self.value = value
        self.inserted_at = inserted_at
        self.ttl = ttl


class TTLCache(Generic[V]):
    """Time-expiring key-value store with eviction on overflow.

    An entry is valid while ``now - inserted_at < ttl``. Expired entries are
    never returned but stay in the map until swept by ``cleanup`` or by
    eviction. When ``max_entries`` is exceeded the oldest insertions go first;
    with ``purge_expired_first`` all expired entries are dropped before any
    valid one is touched.
    """

    def __init__(
        self,
        ttl: float,
        max_entries: int | None = None,
        purge_expired_first: bool = False,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.ttl = ttl
        self.max_entries = max_entries
        self.purge_expired_first = purge_expired_first
        self._clock = clock
        self._store: dict[Hashable, _Entry[V]] = {}

    def _now(self) -> float:
        return self._clock() if self._clock is not None else time.monotonic()

    def _valid(self, entry: _Entry[V], now: float) -> bool:
        return now - entry.inserted_at < entry.ttl

    def get(self, key: Hashable) -> V | None:
        entry = self._store.get(key)
        if entry is None:
            return None
        if not self._valid(entry, self._now()):
            return None
        return entry.value

    def __contains__(self, key: Hashable) -> bool:
        entry = self._store.get(key)
        return entry is not None and self._valid(entry, self._now())

    def set(self, key: Hashable, value: V, ttl: float | None = None) -> None:
        # Overwrite moves the key to the back of the insertion order.
        self._store.pop(key, None)
        self._store[key] = _Entry(value, self._now(), self.ttl if ttl is None else ttl)
        if self.max_entries is not None and len(self._store) > self.max_entries:
            self._evict()

    def _evict(self) -> None:
        if self.purge_expired_first:
            self.cleanup()
        overflow = len(self._store) - self.max_entries
        if overflow <= 0:
            return
        for key in list(self._store)[:overflow]:
            del self._store[key]

    def invalidate(self, key: Hashable) -> bool:
        return self._store.pop(key, None) is not None

    def invalidate_by_prefix(self, pattern: str) -> int:
        """Drop every key whose string form starts with ``pattern``."""
        doomed = [k for k in self._store if str(k).startswith(pattern)]
        for k in doomed:
            del self._store[k]
        return len(doomed)

    def cleanup(self) -> int:
        """Sweep expired entries, returning how many were removed."""
        now = self._now()
        doomed = [k for k, e in self._store.items() if not self._valid(e, now)]
        for k in doomed:
            del self._store[k]
        return len(doomed)

    def clear(self) -> None:
        self._store.clear()

    def keys(self) -> list[Hashable]:
        """Keys of valid entries, oldest first."""
        now = self._now()
        return [k for k, e in self._store.items() if self._valid(e, now)]

    def items(self) -> Iterator[tuple[Hashable, V, float]]:
        """Valid ``(key, value, age_seconds)`` triples, oldest first."""
        now = self._now()
        for k, e in list(self._store.items()):
            if self._valid(e, now):
                yield k, e.value, now - e.inserted_at

    def __len__(self) -> int:
        return len(self._store)

    def stats(self) -> CacheStats:
        now = self._now()
        total = len(self._store)
        valid = sum(1 for e in self._store.values() if self._valid(e, now))
        return CacheStats(
            total_entries=total,
            valid_entries=valid,
            expired_entries=total - valid,
            hit_rate=(valid / total * 100) if total else 0.0,
        )
