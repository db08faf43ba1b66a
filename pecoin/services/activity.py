"""NFT collection and transaction-history caches for ecosystem participants."""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from pecoin.api.models import BatchResult, NftAsset, TransactionRef
from pecoin.services.balances import validate_wallets
from pecoin.services.batch import BatchCache

AssetsFetcher = Callable[[list[str]], Awaitable[dict[str, list[NftAsset]]]]
SignaturesFetcher = Callable[[list[str]], Awaitable[dict[str, list[TransactionRef]]]]


class NftCollectionCache(BatchCache[list[NftAsset]]):
    """NFTs per wallet. Collections change rarely, so the TTL is long."""

    endpoint = "getAssetsByOwner"

    def __init__(self, fetch: AssetsFetcher, **kwargs) -> None:
        super().__init__(**kwargs)
        self._fetch = fetch

    async def _fetch_batch(self, keys: list[str], scope: str) -> dict[str, list[NftAsset]]:
        return await self._fetch(keys)

    def _default(self) -> list[NftAsset]:
        return []

    async def get_collections(self, wallets: list[str]) -> BatchResult:
        validate_wallets(wallets)
        if not wallets:
            return BatchResult()
        return await self.fetch_many(wallets)


class TransactionCache(BatchCache[list[TransactionRef]]):
    """Recent transactions per wallet.

    An empty history is cached for ``empty_ttl`` only, so a wallet's first
    transfer shows up sooner.
    """

    endpoint = "getSignaturesForAddress"

    def __init__(self, fetch: SignaturesFetcher, empty_ttl: float, **kwargs) -> None:
        super().__init__(**kwargs)
        self._fetch = fetch
        self.empty_ttl = empty_ttl

    async def _fetch_batch(self, keys: list[str], scope: str) -> dict[str, list[TransactionRef]]:
        return await self._fetch(keys)

    def _default(self) -> list[TransactionRef]:
        return []

    def _entry_ttl(self, value: list[TransactionRef]) -> float | None:
        return None if value else self.empty_ttl

    async def get_transactions(self, wallets: list[str]) -> BatchResult:
        validate_wallets(wallets)
        if not wallets:
            return BatchResult()
        return await self.fetch_many(wallets)
