"""Tests for EcosystemCache: coalescing, staleness states, partial failures."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from pecoin.api.models import NftAsset, TransactionRef
from pecoin.errors import ExternalFetchError
from pecoin.services.activity import NftCollectionCache, TransactionCache
from pecoin.services.balances import BalanceCache
from pecoin.services.ecosystem import EcosystemCache, Empty, Loading, Ready
from pecoin.services.names import WalletNameResolver

MINT = "MINT"


@pytest.fixture
def loader(participants) -> AsyncMock:
    return AsyncMock(return_value=participants)


@pytest.fixture
def balance_fetch() -> AsyncMock:
    async def _fetch(wallets, mint):
        return {w: 100.0 for w in wallets}

    return AsyncMock(side_effect=_fetch)


@pytest.fixture
def nft_fetch() -> AsyncMock:
    async def _fetch(wallets):
        return {w: [NftAsset(id=f"{w}-nft")] for w in wallets}

    return AsyncMock(side_effect=_fetch)


@pytest.fixture
def tx_fetch() -> AsyncMock:
    async def _fetch(wallets):
        return {w: [TransactionRef(signature=f"{w}-sig")] for w in wallets}

    return AsyncMock(side_effect=_fetch)


@pytest.fixture
def ecosystem(loader, balance_fetch, nft_fetch, tx_fetch, clock) -> EcosystemCache:
    return EcosystemCache(
        resolver=WalletNameResolver(loader, clock=clock),
        balances=BalanceCache(balance_fetch, ttl=120, timeout=5, clock=clock),
        nfts=NftCollectionCache(nft_fetch, ttl=600, timeout=5, clock=clock),
        transactions=TransactionCache(tx_fetch, empty_ttl=60, ttl=120, timeout=5, clock=clock),
        mint=MINT,
        clock=clock,
    )


def test_initial_state_is_empty(ecosystem):
    stats = ecosystem.get_stats()
    assert isinstance(ecosystem.state, Empty)
    assert stats.total_participants == 0
    assert stats.cache_age is None


async def test_refresh_builds_snapshot(ecosystem, balance_fetch, clock):
    await ecosystem.refresh()
    stats = ecosystem.get_stats()
    assert ecosystem.state == Ready()
    assert stats.total_participants == 4
    assert (stats.teams, stats.startups, stats.staff) == (2, 1, 1)
    assert stats.total_balance == 400.0
    assert stats.total_nfts == 4
    assert stats.total_transactions == 4
    assert stats.last_update == clock.now
    balance_fetch.assert_awaited_once()


async def test_concurrent_refreshes_share_one_run(ecosystem, loader, balance_fetch):
    results = await asyncio.gather(*(ecosystem.refresh() for _ in range(5)))
    assert loader.await_count == 1
    assert balance_fetch.await_count == 1
    assert all(r is results[0] for r in results)


async def test_loading_state_during_first_refresh(ecosystem, balance_fetch):
    gate = asyncio.Event()

    async def slow(wallets, mint):
        await gate.wait()
        return {w: 1.0 for w in wallets}

    balance_fetch.side_effect = slow
    task = asyncio.create_task(ecosystem.refresh())
    await asyncio.sleep(0)
    assert isinstance(ecosystem.state, Loading)
    assert ecosystem.refreshing
    gate.set()
    await task
    assert ecosystem.state == Ready()


async def test_stale_snapshot_served_while_revalidating(ecosystem, balance_fetch, clock):
    await ecosystem.refresh()
    before = ecosystem.get_stats()

    gate = asyncio.Event()

    async def slow(wallets, mint):
        await gate.wait()
        return {w: 250.0 for w in wallets}

    balance_fetch.side_effect = slow
    ecosystem.balances.invalidate_all()
    clock.advance(10)
    task = asyncio.create_task(ecosystem.refresh())
    await asyncio.sleep(0)

    during = ecosystem.get_stats()
    assert during.stale is True
    assert during.total_balance == before.total_balance

    gate.set()
    await task
    after = ecosystem.get_stats()
    assert after.stale is False
    assert after.total_balance == 1000.0
    assert after.last_update > before.last_update


async def test_batch_error_keeps_previous_snapshot(ecosystem, balance_fetch):
    await ecosystem.refresh()
    ecosystem.balances.invalidate_all()
    balance_fetch.side_effect = ExternalFetchError("rpc down")

    await ecosystem.refresh()
    stats = ecosystem.get_stats()
    assert stats.total_balance == 400.0
    assert stats.stale is True
    assert "rpc down" in stats.error


async def test_first_refresh_with_batch_error_installs_partial_snapshot(ecosystem, nft_fetch):
    nft_fetch.side_effect = ExternalFetchError("das down")
    await ecosystem.refresh()
    stats = ecosystem.get_stats()
    assert stats.total_participants == 4
    assert stats.total_nfts == 0
    assert isinstance(ecosystem.state, Ready)
    assert ecosystem.state.stale


async def test_unexpected_failure_without_snapshot_is_empty(ecosystem, clock):
    ecosystem.resolver.participants = AsyncMock(side_effect=RuntimeError("bad row"))
    assert await ecosystem.refresh() is None
    assert isinstance(ecosystem.state, Empty)
    assert ecosystem.state.error == "bad row"


async def test_failed_participant_load_without_snapshot_is_empty(ecosystem, loader, balance_fetch):
    loader.side_effect = ExternalFetchError("store down")

    assert await ecosystem.refresh() is None
    assert ecosystem.snapshot is None
    assert isinstance(ecosystem.state, Empty)
    assert "store down" in ecosystem.state.error
    stats = ecosystem.get_stats()
    assert stats.last_update == 0.0
    assert stats.cache_age is None
    balance_fetch.assert_not_awaited()


async def test_failed_participant_load_after_clear_keeps_snapshot(ecosystem, loader, clock):
    await ecosystem.refresh()
    before = ecosystem.get_stats().last_update
    ecosystem.resolver.clear_cache()
    loader.side_effect = ExternalFetchError("store down")
    clock.advance(10)

    await ecosystem.refresh()

    stats = ecosystem.get_stats()
    assert stats.total_participants == 4
    assert stats.total_balance == 400.0
    assert stats.stale is True
    assert "store down" in stats.error
    assert stats.last_update == before


async def test_empty_participant_list_keeps_snapshot(ecosystem, loader, clock):
    await ecosystem.refresh()
    before = ecosystem.get_stats().last_update
    ecosystem.resolver.clear_cache()
    loader.return_value = []
    clock.advance(10)

    await ecosystem.refresh()

    stats = ecosystem.get_stats()
    assert stats.total_participants == 4
    assert stats.stale is True
    assert stats.error == "no participants loaded"
    assert stats.last_update == before


async def test_last_update_never_decreases(ecosystem, clock):
    await ecosystem.refresh()
    first = ecosystem.get_stats().last_update
    clock.advance(-50)
    ecosystem.balances.invalidate_all()
    await ecosystem.refresh()
    assert ecosystem.get_stats().last_update == first


async def test_transactions_can_be_skipped(loader, balance_fetch, nft_fetch, tx_fetch, clock):
    ecosystem = EcosystemCache(
        resolver=WalletNameResolver(loader, clock=clock),
        balances=BalanceCache(balance_fetch, ttl=120, timeout=5, clock=clock),
        nfts=NftCollectionCache(nft_fetch, ttl=600, timeout=5, clock=clock),
        transactions=TransactionCache(tx_fetch, empty_ttl=60, ttl=120, timeout=5, clock=clock),
        mint=MINT,
        include_transactions=False,
        clock=clock,
    )
    await ecosystem.refresh()
    tx_fetch.assert_not_awaited()
    assert ecosystem.get_stats().total_transactions == 0


async def test_participant_views(ecosystem, participants):
    await ecosystem.refresh()
    wallet = participants[2].wallet_address
    data = ecosystem.participant_data(wallet)
    assert data.participant.name == "Rocket Labs"
    assert data.balance == 100.0
    assert [n.id for n in data.nfts] == [f"{wallet}-nft"]

    pairs = ecosystem.participants_with_balances()
    assert [p.name for p, _ in pairs] == [p.name for p in participants]

    unknown = ecosystem.participant_data("nobody")
    assert unknown.participant is None
    assert unknown.balance == 0.0


async def test_load_transactions_on_demand(ecosystem, tx_fetch, participants):
    wallet = participants[0].wallet_address
    txs = await ecosystem.load_transactions_on_demand(wallet)
    assert [t.signature for t in txs] == [f"{wallet}-sig"]
    tx_fetch.assert_awaited_once_with([wallet])

    await ecosystem.refresh()
    await ecosystem.load_transactions_on_demand(wallet)
    # Served from the snapshot; the refresh only fetched the other wallets
    assert wallet not in tx_fetch.await_args_list[-1].args[0]


async def test_refresh_participant_refetches_only_that_wallet(ecosystem, balance_fetch, participants):
    await ecosystem.refresh()
    wallet = participants[1].wallet_address
    await ecosystem.refresh_participant(wallet)
    assert balance_fetch.await_args_list[-1].args == ([wallet], MINT)


async def test_auto_refresh_runs_until_stopped(ecosystem, loader):
    ecosystem.start_auto_refresh(interval=3600)
    for _ in range(100):
        if ecosystem.snapshot is not None:
            break
        await asyncio.sleep(0.01)
    await ecosystem.stop_auto_refresh()
    assert ecosystem.snapshot is not None
    assert ecosystem.get_stats().total_participants == 4
