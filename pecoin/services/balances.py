"""Token and native balance caches with single-call batch refills."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import NamedTuple

from pecoin.api.models import BatchResult
from pecoin.errors import ValidationError
from pecoin.services.batch import BatchCache

log = logging.getLogger(__name__)

TokenBatchFetcher = Callable[[list[str], str], Awaitable[dict[str, float]]]
NativeBatchFetcher = Callable[[list[str]], Awaitable[dict[str, float]]]


class WalletKey(NamedTuple):
    """Cache identity of a token balance. Two mints for one wallet are two entries."""

    wallet: str
    mint: str

    def __str__(self) -> str:
        return f"{self.wallet}:{self.mint}"


def validate_wallets(wallets: object) -> list[str]:
    if not isinstance(wallets, list):
        raise ValidationError("wallets must be an array of addresses")
    for w in wallets:
        if not isinstance(w, str) or not w.strip():
            raise ValidationError("every wallet must be a non-empty string")
    return wallets


class BalanceCache(BatchCache[float]):
    """Fungible-token balances per (wallet, mint).

    Failed or missing wallets come back as 0.0, so callers can rely on every
    requested wallet being present. The failure itself is reported in
    ``BatchResult.error``.
    """

    endpoint = "batchGetTokenBalances"

    def __init__(self, fetch: TokenBatchFetcher, **kwargs) -> None:
        super().__init__(**kwargs)
        self._fetch = fetch

    async def _fetch_batch(self, keys: list[str], scope: str) -> dict[str, float]:
        return await self._fetch(keys, scope)

    def _default(self) -> float:
        return 0.0

    def _cache_key(self, key: str, scope: str) -> WalletKey:
        return WalletKey(key, scope)

    async def get_balances(self, wallets: list[str], mint: str) -> BatchResult:
        validate_wallets(wallets)
        if not isinstance(mint, str) or not mint.strip():
            raise ValidationError("mint address is required")
        if not wallets:
            return BatchResult()
        result = await self.fetch_many(wallets, scope=mint)
        log.info(
            "Token balances: %d from cache, %d fetched, %d requested",
            result.timing.from_cache, result.timing.from_api, result.timing.requested,
        )
        return result

    def invalidate_key(self, key: str) -> int:
        return self.cache.invalidate_by_prefix(f"{key}:")

    def invalidate_all(self) -> int:
        """Drop every balance; used before a scheduled full refresh."""
        removed = len(self.cache)
        self.cache.clear()
        return removed


class NativeBalanceCache(BatchCache[float]):
    """SOL balances per wallet; same algorithm as BalanceCache, own cache and endpoint."""

    endpoint = "batchGetNativeBalances"

    def __init__(self, fetch: NativeBatchFetcher, **kwargs) -> None:
        super().__init__(**kwargs)
        self._fetch = fetch

    async def _fetch_batch(self, keys: list[str], scope: str) -> dict[str, float]:
        return await self._fetch(keys)

    def _default(self) -> float:
        return 0.0

    async def get_balances(self, wallets: list[str]) -> BatchResult:
        validate_wallets(wallets)
        if not wallets:
            return BatchResult()
        return await self.fetch_many(wallets)
