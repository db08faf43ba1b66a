"""Cache-split batch fetching: serve hits from cache, fetch misses in one call."""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Hashable
from typing import Generic, TypeVar

from pecoin.api.models import BatchResult, BatchTiming
from pecoin.errors import ExternalFetchError, ExternalFetchTimeout
from pecoin.services.cache import TTLCache

log = logging.getLogger(__name__)

T = TypeVar("T")
V = TypeVar("V")


async def with_timeout(
    call: Awaitable[T],
    timeout: float,
    endpoint: str,
    key_count: int = 0,
) -> T:
    """Await an external call under a time budget, normalizing its failures.

    Timeouts become ``ExternalFetchTimeout``; any other error that is not
    already an ``ExternalFetchError`` is wrapped in one.
    """
    try:
        return await asyncio.wait_for(call, timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise ExternalFetchTimeout(
            f"{endpoint} timed out after {timeout}s", endpoint=endpoint, key_count=key_count
        ) from exc
    except ExternalFetchError:
        raise
    except Exception as exc:
        raise ExternalFetchError(
            f"{endpoint} failed: {exc}", endpoint=endpoint, key_count=key_count
        ) from exc


def dedupe(keys: list[str]) -> list[str]:
    """Drop repeated keys, keeping first-seen order."""
    return list(dict.fromkeys(keys))


class BatchCache(ABC, Generic[V]):
    """Base for caches that look up many keys against one batch endpoint.

    Subclasses supply ``_fetch_batch`` (one external call for all misses) and
    ``_default`` (value for keys the provider did not return). ``scope`` is an
    extra dimension of the cache key, such as the token mint.
    """

    endpoint = "batch"

    def __init__(
        self,
        ttl: float,
        timeout: float,
        max_entries: int | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.timeout = timeout
        self.cache: TTLCache[V] = TTLCache(ttl, max_entries=max_entries, clock=clock)

    @abstractmethod
    async def _fetch_batch(self, keys: list[str], scope: str) -> dict[str, V]:
        ...

    @abstractmethod
    def _default(self) -> V:
        ...

    def _cache_key(self, key: str, scope: str) -> Hashable:
        return key

    def _entry_ttl(self, value: V) -> float | None:
        """Per-entry TTL override; None keeps the cache default."""
        return None

    def partition(self, keys: list[str], scope: str = "") -> tuple[dict[str, V], list[str]]:
        """Split de-duplicated keys into cached values and keys to fetch."""
        cached: dict[str, V] = {}
        to_fetch: list[str] = []
        for key in dedupe(keys):
            value = self.cache.get(self._cache_key(key, scope))
            if value is None:
                to_fetch.append(key)
            else:
                cached[key] = value
        return cached, to_fetch

    async def fetch_many(self, keys: list[str], scope: str = "") -> BatchResult:
        start = time.perf_counter()
        cached, to_fetch = self.partition(keys, scope)
        fetched: dict[str, V] = {}
        error: str | None = None
        fetch_ms = 0

        if to_fetch:
            log.debug(
                "%s: %d cached, %d to fetch", self.endpoint, len(cached), len(to_fetch)
            )
            fetch_start = time.perf_counter()
            try:
                fetched = await with_timeout(
                    self._fetch_batch(to_fetch, scope),
                    self.timeout,
                    self.endpoint,
                    key_count=len(to_fetch),
                )
            except ExternalFetchError as exc:
                error = str(exc)
                log.warning(
                    "%s batch failed for %d keys, serving cache and defaults: %s",
                    self.endpoint, len(to_fetch), exc,
                )
            fetch_ms = int((time.perf_counter() - fetch_start) * 1000)

            for key in to_fetch:
                if key in fetched:
                    value = fetched[key]
                    self.cache.set(self._cache_key(key, scope), value, ttl=self._entry_ttl(value))

        values: dict[str, V] = {}
        for key in dedupe(keys):
            if key in cached:
                values[key] = cached[key]
            elif key in fetched:
                values[key] = fetched[key]
            else:
                values[key] = self._default()

        return BatchResult(
            values=values,
            from_cache=list(cached),
            fetched=[k for k in to_fetch if k in fetched],
            error=error,
            timing=BatchTiming(
                total_ms=int((time.perf_counter() - start) * 1000),
                fetch_ms=fetch_ms,
                requested=len(values),
                from_cache=len(cached),
                from_api=sum(1 for k in to_fetch if k in fetched),
            ),
        )

    def invalidate_key(self, key: str) -> int:
        """Drop the cached entry for ``key``. Scoped caches override this."""
        return int(self.cache.invalidate(self._cache_key(key, "")))

    def clear(self) -> None:
        self.cache.clear()
