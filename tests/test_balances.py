"""Tests for BalanceCache and NativeBalanceCache."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from pecoin.errors import ExternalFetchError, ValidationError
from pecoin.services.balances import BalanceCache, NativeBalanceCache, WalletKey


@pytest.fixture
def fetch() -> AsyncMock:
    async def _fetch(wallets, mint):
        return {w: {"W1": 10.0, "W2": 20.0, "W3": 30.0}.get(w, 0.0) for w in wallets}

    return AsyncMock(side_effect=_fetch)


@pytest.fixture
def balances(fetch, clock) -> BalanceCache:
    return BalanceCache(fetch, ttl=120, timeout=5, clock=clock)


async def test_cold_wallets_fetched_in_one_batch(balances, fetch):
    result = await balances.get_balances(["W1", "W2"], "MINT")
    fetch.assert_awaited_once_with(["W1", "W2"], "MINT")
    assert result.values == {"W1": 10.0, "W2": 20.0}
    assert result.timing.from_api == 2
    assert result.error is None


async def test_repeat_within_ttl_makes_no_external_call(balances, fetch, clock):
    first = await balances.get_balances(["W1", "W2"], "MINT")
    clock.advance(30)
    second = await balances.get_balances(["W1", "W2"], "MINT")
    assert fetch.await_count == 1
    assert second.values == first.values
    assert second.timing.from_cache == 2
    assert second.timing.from_api == 0


async def test_only_misses_are_fetched(balances, fetch):
    await balances.get_balances(["W1"], "MINT")
    result = await balances.get_balances(["W1", "W3"], "MINT")
    assert fetch.await_args_list[-1].args == (["W3"], "MINT")
    assert result.values == {"W1": 10.0, "W3": 30.0}
    assert result.from_cache == ["W1"]
    assert result.fetched == ["W3"]


async def test_failed_batch_serves_cache_and_zero(balances, fetch):
    await balances.get_balances(["W1"], "MINT")
    fetch.side_effect = ExternalFetchError("provider down", endpoint="rpc")

    result = await balances.get_balances(["W1", "W3"], "MINT")
    assert result.values == {"W1": 10.0, "W3": 0.0}
    assert "provider down" in result.error
    # The zero is not cached, so the next read tries again
    assert WalletKey("W3", "MINT") not in balances.cache


async def test_unexpected_exception_is_absorbed(balances, fetch):
    fetch.side_effect = RuntimeError("boom")
    result = await balances.get_balances(["W1"], "MINT")
    assert result.values == {"W1": 0.0}
    assert result.error


async def test_timeout_is_absorbed(fetch, clock):
    async def slow(wallets, mint):
        await asyncio.sleep(1)
        return {}

    cache = BalanceCache(AsyncMock(side_effect=slow), ttl=120, timeout=0.01, clock=clock)
    result = await cache.get_balances(["W1"], "MINT")
    assert result.values == {"W1": 0.0}
    assert "timed out" in result.error


async def test_entries_expire_after_ttl(balances, fetch, clock):
    await balances.get_balances(["W1"], "MINT")
    clock.advance(120)
    await balances.get_balances(["W1"], "MINT")
    assert fetch.await_count == 2


async def test_duplicates_are_fetched_once(balances, fetch):
    result = await balances.get_balances(["W1", "W2", "W1"], "MINT")
    fetch.assert_awaited_once_with(["W1", "W2"], "MINT")
    assert list(result.values) == ["W1", "W2"]


async def test_empty_list_makes_no_call(balances, fetch):
    result = await balances.get_balances([], "MINT")
    assert result.values == {}
    fetch.assert_not_awaited()


async def test_wallet_missing_from_response_defaults_to_zero(balances, fetch):
    fetch.side_effect = None
    fetch.return_value = {"W1": 5.0}
    result = await balances.get_balances(["W1", "W9"], "MINT")
    assert result.values == {"W1": 5.0, "W9": 0.0}
    assert result.fetched == ["W1"]


async def test_zero_balance_is_cached(balances, fetch):
    fetch.side_effect = None
    fetch.return_value = {"W0": 0.0}
    await balances.get_balances(["W0"], "MINT")
    await balances.get_balances(["W0"], "MINT")
    assert fetch.await_count == 1


async def test_same_wallet_different_mints_are_separate(balances, fetch):
    await balances.get_balances(["W1"], "MINT")
    await balances.get_balances(["W1"], "OTHER")
    assert fetch.await_count == 2
    assert len(balances.cache) == 2


@pytest.mark.parametrize("wallets", ["W1", None, [""], ["W1", 3]])
async def test_invalid_wallets_rejected(balances, fetch, wallets):
    with pytest.raises(ValidationError):
        await balances.get_balances(wallets, "MINT")
    fetch.assert_not_awaited()


async def test_missing_mint_rejected(balances, fetch):
    with pytest.raises(ValidationError):
        await balances.get_balances(["W1"], "")
    fetch.assert_not_awaited()


async def test_invalidate_key_drops_every_mint(balances):
    await balances.get_balances(["W1", "W2"], "MINT")
    await balances.get_balances(["W1"], "OTHER")
    assert balances.invalidate_key("W1") == 2
    assert WalletKey("W2", "MINT") in balances.cache


async def test_invalidate_all(balances, fetch):
    await balances.get_balances(["W1", "W2"], "MINT")
    assert balances.invalidate_all() == 2
    await balances.get_balances(["W1", "W2"], "MINT")
    assert fetch.await_count == 2


async def test_native_balances_use_own_cache(clock):
    fetch = AsyncMock(return_value={"W1": 1.5})
    native = NativeBalanceCache(fetch, ttl=120, timeout=5, clock=clock)
    first = await native.get_balances(["W1"])
    second = await native.get_balances(["W1"])
    fetch.assert_awaited_once_with(["W1"])
    assert first.values == second.values == {"W1": 1.5}
