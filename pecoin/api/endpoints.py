"""Typed fetch functions for the RPC provider and the entity store."""

from __future__ import annotations

import logging

from pecoin.api.client import SolanaRPCClient, SupabaseClient
from pecoin.api.models import EntityKind, NftAsset, Participant, RpcError, TransactionRef

log = logging.getLogger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000


def _ok(wallet: str, method: str, result: object) -> bool:
    if isinstance(result, RpcError):
        log.warning("%s failed for %s...: %s", method, wallet[:8], result.message)
        return False
    return True


async def batch_get_token_balances(
    rpc: SolanaRPCClient,
    wallets: list[str],
    mint: str,
) -> dict[str, float]:
    """Token balance per wallet for one mint, summed over its token accounts.

    One HTTP round trip for the whole list. Wallets whose item failed are
    left out of the result.
    """
    calls = [
        ("getTokenAccountsByOwner", [w, {"mint": mint}, {"encoding": "jsonParsed"}])
        for w in wallets
    ]
    results = await rpc.batch(calls)
    balances: dict[str, float] = {}
    for wallet, result in zip(wallets, results):
        if not _ok(wallet, "getTokenAccountsByOwner", result):
            continue
        total = 0.0
        for account in (result or {}).get("value") or []:
            amount = (
                account.get("account", {})
                .get("data", {})
                .get("parsed", {})
                .get("info", {})
                .get("tokenAmount", {})
                .get("uiAmount")
            )
            total += amount or 0.0
        balances[wallet] = total
    return balances


async def batch_get_native_balances(
    rpc: SolanaRPCClient,
    wallets: list[str],
) -> dict[str, float]:
    """SOL balance per wallet using a single getMultipleAccounts call."""
    result = await rpc.call("getMultipleAccounts", [wallets, {"encoding": "base64"}])
    accounts = (result or {}).get("value") or []
    balances: dict[str, float] = {}
    for wallet, account in zip(wallets, accounts):
        lamports = account.get("lamports", 0) if account else 0
        balances[wallet] = lamports / LAMPORTS_PER_SOL
    return balances


def _parse_asset(raw: dict) -> NftAsset:
    content = raw.get("content") or {}
    metadata = content.get("metadata") or {}
    links = content.get("links") or {}
    collection = None
    for group in raw.get("grouping") or []:
        if group.get("group_key") == "collection":
            collection = group.get("group_value")
            break
    return NftAsset(
        id=raw.get("id", ""),
        name=metadata.get("name", ""),
        image=links.get("image"),
        collection=collection,
        compressed=bool((raw.get("compression") or {}).get("compressed")),
    )


async def batch_get_assets(
    rpc: SolanaRPCClient,
    wallets: list[str],
    limit: int = 1000,
) -> dict[str, list[NftAsset]]:
    """NFTs owned by each wallet via the DAS getAssetsByOwner method."""
    calls = [
        ("getAssetsByOwner", {"ownerAddress": w, "page": 1, "limit": limit})
        for w in wallets
    ]
    results = await rpc.batch(calls)
    assets: dict[str, list[NftAsset]] = {}
    for wallet, result in zip(wallets, results):
        if not _ok(wallet, "getAssetsByOwner", result):
            continue
        assets[wallet] = [_parse_asset(item) for item in (result or {}).get("items") or []]
    return assets


async def batch_get_signatures(
    rpc: SolanaRPCClient,
    wallets: list[str],
    limit: int = 10,
) -> dict[str, list[TransactionRef]]:
    """Most recent transaction signatures per wallet."""
    calls = [("getSignaturesForAddress", [w, {"limit": limit}]) for w in wallets]
    results = await rpc.batch(calls)
    history: dict[str, list[TransactionRef]] = {}
    for wallet, result in zip(wallets, results):
        if not _ok(wallet, "getSignaturesForAddress", result):
            continue
        history[wallet] = [
            TransactionRef(
                signature=item.get("signature", ""),
                slot=item.get("slot", 0),
                block_time=item.get("blockTime"),
                failed=item.get("err") is not None,
                memo=item.get("memo"),
            )
            for item in result or []
        ]
    return history


async def list_entities(store: SupabaseClient, kind: EntityKind) -> list[Participant]:
    """Entities of one kind that have a wallet address."""
    rows = await store.select(
        kind.table,
        columns="id,name,wallet_address",
        filters={"wallet_address": "not.is.null"},
    )
    participants = []
    for row in rows:
        wallet = row.get("wallet_address")
        if not wallet:
            continue
        entity_id = str(row.get("id", ""))
        participants.append(
            Participant(
                id=entity_id,
                name=row.get("name") or f"{kind.label} {entity_id}",
                wallet_address=wallet,
                type=kind,
            )
        )
    return participants


async def list_participants(store: SupabaseClient) -> list[Participant]:
    """Teams, startups and staff with wallets, in that order."""
    participants: list[Participant] = []
    for kind in EntityKind:
        participants.extend(await list_entities(store, kind))
    return participants


async def create_signed_url(
    store: SupabaseClient,
    bucket: str,
    path: str,
    expires_in: int,
) -> str | None:
    return await store.create_signed_url(bucket, path, expires_in)
