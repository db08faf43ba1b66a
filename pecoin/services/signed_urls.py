"""Signed storage URLs for entity logos, cached for less than their real lifetime."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from pecoin.api.models import CacheStats
from pecoin.errors import ExternalFetchError
from pecoin.services.batch import with_timeout
from pecoin.services.cache import TTLCache

log = logging.getLogger(__name__)

# (path, expires_in_seconds) -> absolute signed URL or None
Signer = Callable[[str, int], Awaitable[str | None]]


class SignedUrlCache:
    """Cache of storage key -> signed URL.

    Only successful signatures are remembered. A signer error or an empty
    answer is retried on the next read rather than cached as "no URL".
    """

    def __init__(
        self,
        signer: Signer,
        ttl: float = 6 * 60 * 60,
        url_expiry: int = 7 * 24 * 60 * 60,
        max_entries: int = 500,
        timeout: float = 10.0,
        clock: Callable[[], float] | None = None,
    ) -> None:
        if ttl >= url_expiry:
            raise ValueError("cached URLs must expire before their signature does")
        self._signer = signer
        self.url_expiry = url_expiry
        self.timeout = timeout
        self.cache: TTLCache[str] = TTLCache(
            ttl, max_entries=max_entries, purge_expired_first=True, clock=clock
        )

    async def get_signed_url(self, storage_key: str | None) -> str | None:
        if not storage_key:
            return None
        if storage_key.startswith("http"):
            return storage_key

        cached = self.cache.get(storage_key)
        if cached is not None:
            return cached

        try:
            url = await with_timeout(
                self._signer(storage_key, self.url_expiry),
                self.timeout,
                "storage/sign",
                key_count=1,
            )
        except ExternalFetchError as exc:
            log.warning("Could not sign %s: %s", storage_key, exc)
            return None

        if url:
            self.cache.set(storage_key, url)
        return url or None

    async def get_signed_urls(self, storage_keys: list[str | None]) -> list[str | None]:
        """Sign many keys concurrently; output order matches input order."""
        return list(await asyncio.gather(*(self.get_signed_url(k) for k in storage_keys)))

    def invalidate(self, storage_key: str) -> None:
        """Forget a key after its object was overwritten."""
        if self.cache.invalidate(storage_key):
            log.debug("Invalidated signed URL for %s", storage_key)

    def clear(self) -> None:
        self.cache.clear()

    def stats(self) -> CacheStats:
        return self.cache.stats()
