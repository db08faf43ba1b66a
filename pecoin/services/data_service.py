"""Service container: builds every cache once and exposes the read and admin surfaces."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from itertools import count
from typing import Any

import httpx

from pecoin.api.client import SolanaRPCClient, SupabaseClient
from pecoin.api.endpoints import (
    batch_get_assets,
    batch_get_native_balances,
    batch_get_signatures,
    batch_get_token_balances,
    create_signed_url,
    list_participants,
)
from pecoin.api.models import ImageResult, WalletNameInfo
from pecoin.config import Settings
from pecoin.errors import ValidationError
from pecoin.services.activity import NftCollectionCache, TransactionCache
from pecoin.services.balances import BalanceCache, NativeBalanceCache
from pecoin.services.ecosystem import EcosystemCache, EcosystemStats
from pecoin.services.images import ImageCache
from pecoin.services.monitor import IntegrationMonitor, PerformanceMonitor, monitor_api_call
from pecoin.services.names import WalletNameResolver
from pecoin.services.signed_urls import SignedUrlCache

log = logging.getLogger(__name__)


def _require_payload(payload: Any) -> dict:
    if not isinstance(payload, dict):
        raise ValidationError("request body must be a JSON object")
    if "wallets" not in payload or not isinstance(payload["wallets"], list):
        raise ValidationError("wallets array is required")
    return payload


class DataService:
    """Process-wide owner of every cache.

    Construct one at startup and pass it to request handlers; tests build a
    fresh instance with fake clients.
    """

    def __init__(
        self,
        settings: Settings,
        rpc: SolanaRPCClient | None = None,
        store: SupabaseClient | None = None,
        image_transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.settings = settings
        self.rpc = rpc or SolanaRPCClient(settings.rpc_endpoint)
        self.store = store or SupabaseClient(settings.supabase_url, settings.supabase_key)
        self.perf = PerformanceMonitor(max_history=settings.monitor_history, clock=clock)
        self.integration = IntegrationMonitor()
        self._op_ids = count(1)
        self._cleanup_task: asyncio.Task | None = None

        self.balances = BalanceCache(
            self._fetch_token_balances,
            ttl=settings.balance_ttl,
            timeout=settings.balance_timeout,
            max_entries=settings.balance_max_entries,
            clock=clock,
        )
        self.native_balances = NativeBalanceCache(
            self._fetch_native_balances,
            ttl=settings.native_balance_ttl,
            timeout=settings.balance_timeout,
            max_entries=settings.balance_max_entries,
            clock=clock,
        )
        self.nfts = NftCollectionCache(
            self._fetch_assets,
            ttl=settings.nft_ttl,
            timeout=settings.nft_timeout,
            max_entries=settings.activity_max_entries,
            clock=clock,
        )
        self.transactions = TransactionCache(
            self._fetch_signatures,
            empty_ttl=settings.transactions_empty_ttl,
            ttl=settings.transactions_ttl,
            timeout=settings.nft_timeout,
            max_entries=settings.activity_max_entries,
            clock=clock,
        )
        self.signed_urls = SignedUrlCache(
            self._sign,
            ttl=settings.signed_url_ttl,
            url_expiry=settings.signed_url_expiry,
            max_entries=settings.signed_url_max_entries,
            timeout=settings.signed_url_timeout,
            clock=clock,
        )
        self.images = ImageCache(
            ttl=settings.image_ttl,
            max_entries=settings.image_max_entries,
            max_bytes=settings.image_max_bytes,
            timeout=settings.image_timeout,
            transport=image_transport,
            clock=clock,
        )
        self.names = WalletNameResolver(
            self._load_participants,
            ttl=settings.names_ttl,
            participants_ttl=settings.participants_ttl,
            timeout=settings.entity_timeout,
            clock=clock,
        )
        self.ecosystem = EcosystemCache(
            resolver=self.names,
            balances=self.balances,
            nfts=self.nfts,
            transactions=self.transactions,
            mint=settings.pecoin_mint,
        )

    async def close(self) -> None:
        await self.stop_background_tasks()
        await self.rpc.close()
        await self.store.close()
        await self.images.close()

    # ── External collaborators, instrumented ──

    async def _fetch_token_balances(self, wallets: list[str], mint: str) -> dict[str, float]:
        return await monitor_api_call(
            self.integration, "batchGetTokenBalances", "external",
            lambda: batch_get_token_balances(self.rpc, wallets, mint),
        )

    async def _fetch_native_balances(self, wallets: list[str]) -> dict[str, float]:
        return await monitor_api_call(
            self.integration, "batchGetNativeBalances", "external",
            lambda: batch_get_native_balances(self.rpc, wallets),
        )

    async def _fetch_assets(self, wallets: list[str]) -> dict:
        return await monitor_api_call(
            self.integration, "getAssetsByOwner", "external",
            lambda: batch_get_assets(self.rpc, wallets),
        )

    async def _fetch_signatures(self, wallets: list[str]) -> dict:
        return await monitor_api_call(
            self.integration, "getSignaturesForAddress", "external",
            lambda: batch_get_signatures(self.rpc, wallets, self.settings.transactions_limit),
        )

    async def _sign(self, path: str, expires_in: int) -> str | None:
        return await monitor_api_call(
            self.integration, "storage/sign", "internal",
            lambda: create_signed_url(self.store, self.settings.logo_bucket, path, expires_in),
        )

    async def _load_participants(self) -> list:
        return await monitor_api_call(
            self.integration, "listParticipants", "internal",
            lambda: list_participants(self.store),
        )

    def _op_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._op_ids)}"

    # ── Read surfaces ──

    async def token_balances(self, payload: Any) -> dict:
        """Batch balance read: ``{wallets, mint}`` -> ``{balances, timing, ...}``."""
        payload = _require_payload(payload)
        mint = payload.get("mint")
        if not isinstance(mint, str) or not mint.strip():
            raise ValidationError("mint address is required")
        wallets = payload["wallets"]

        result = await self.perf.measure(
            self._op_id("balance"),
            "token balances",
            lambda: self.balances.get_balances(wallets, mint),
            {"wallet_count": len(wallets)},
        )
        return {
            "success": result.error is None,
            "balances": result.values,
            "cached": bool(result.from_cache),
            "error": result.error,
            "timing": result.timing.model_dump(),
        }

    async def native_balances(self, payload: Any) -> dict:
        payload = _require_payload(payload)
        wallets = payload["wallets"]
        result = await self.perf.measure(
            self._op_id("native-balance"),
            "native balances",
            lambda: self.native_balances.get_balances(wallets),
            {"wallet_count": len(wallets)},
        )
        return {
            "success": result.error is None,
            "balances": result.values,
            "cached": bool(result.from_cache),
            "error": result.error,
            "timing": result.timing.model_dump(),
        }

    async def signed_url(self, storage_key: str | None) -> str | None:
        return await self.signed_urls.get_signed_url(storage_key)

    async def signed_urls_for(self, storage_keys: list[str | None]) -> list[str | None]:
        if not isinstance(storage_keys, list):
            raise ValidationError("storage keys must be an array")
        return await self.signed_urls.get_signed_urls(storage_keys)

    async def replace_logo(self, storage_key: str) -> str | None:
        """Call right after a logo object was overwritten; returns a fresh URL."""
        self.signed_urls.invalidate(storage_key)
        return await self.signed_urls.get_signed_url(storage_key)

    async def nft_image(self, url: str) -> ImageResult:
        if not url:
            raise ValidationError("image URL is required")
        return await self.images.fetch(url)

    async def resolve_wallet(self, wallet_address: str) -> WalletNameInfo | None:
        return await self.names.resolve(wallet_address)

    # ── Ecosystem ──

    def ecosystem_stats(self) -> EcosystemStats:
        return self.ecosystem.get_stats()

    async def refresh_ecosystem(self) -> EcosystemStats:
        await self.perf.measure(self._op_id("ecosystem"), "ecosystem refresh", self.ecosystem.refresh)
        return self.ecosystem.get_stats()

    async def refresh_all_balances(self) -> dict:
        """Scheduled refresh: drop every balance, then one batch over all participants."""
        start = time.perf_counter()
        invalidated = self.balances.invalidate_all()
        wallets = sorted({p.wallet_address for p in await self.names.participants()})
        if not wallets:
            log.warning("No participant wallets to refresh")
            return {"refreshed": 0, "invalidated": invalidated, "error": None}
        result = await self.balances.get_balances(wallets, self.settings.pecoin_mint)
        log.info(
            "Refreshed %d balances in %dms",
            len(result.values), int((time.perf_counter() - start) * 1000),
        )
        return {"refreshed": len(result.fetched), "invalidated": invalidated, "error": result.error}

    # ── Admin surface ──

    def _ttl_caches(self) -> dict:
        return {
            "balances": self.balances.cache,
            "native_balances": self.native_balances.cache,
            "nfts": self.nfts.cache,
            "transactions": self.transactions.cache,
            "signed_urls": self.signed_urls.cache,
            "images": self.images.cache,
        }

    def cache_stats(self) -> dict:
        stats: dict[str, Any] = {
            name: cache.stats().model_dump() for name, cache in self._ttl_caches().items()
        }
        stats["images"].update(self.images.stats().model_dump())
        stats["wallet_names"] = self.names.stats().model_dump()
        stats["ecosystem"] = self.ecosystem.get_stats().model_dump()
        stats["performance"] = self.perf.get_stats().model_dump(exclude={"recent_operations"})
        stats["slow_operations"] = [
            m.model_dump() for m in self.perf.slow_operations(self.settings.slow_operation_ms)
        ]
        stats["integration"] = {
            "stats": self.integration.get_stats().model_dump(exclude={"errors"}),
            "recommendation": self.integration.preferred_backend(),
        }
        return stats

    def invalidate(self, pattern: str) -> dict[str, int]:
        """Drop every entry whose key starts with ``pattern``, in every cache.

        Covers the per-address wallet-name lookups too; the participant
        snapshot itself is only reset by ``clear_all``.
        """
        if not isinstance(pattern, str) or not pattern:
            raise ValidationError("pattern is required; use clear_all to empty everything")
        removed = {
            name: cache.invalidate_by_prefix(pattern) for name, cache in self._ttl_caches().items()
        }
        removed["wallet_names"] = self.names.invalidate(pattern)
        log.info("Invalidated %d entries matching %r", sum(removed.values()), pattern)
        return removed

    def cleanup(self) -> dict[str, int]:
        """Sweep expired entries from every cache."""
        removed = {name: cache.cleanup() for name, cache in self._ttl_caches().items()}
        total = sum(removed.values())
        if total:
            log.info("Cleaned up %d expired cache entries", total)
        return removed

    def clear_all(self) -> None:
        for cache in self._ttl_caches().values():
            cache.clear()
        self.names.clear_cache()
        log.info("All caches cleared")

    def start_background_tasks(self) -> None:
        """Periodic expiry sweep plus ecosystem auto-refresh."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._periodic_cleanup())
        self.ecosystem.start_auto_refresh(self.settings.ecosystem_refresh_interval)

    async def _periodic_cleanup(self) -> None:
        while True:
            await asyncio.sleep(self.settings.cleanup_interval)
            self.cleanup()

    async def stop_background_tasks(self) -> None:
        await self.ecosystem.stop_auto_refresh()
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
