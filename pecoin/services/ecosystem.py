"""Ecosystem-wide snapshot of balances, NFTs and transactions per participant.

Reads never wait on the network: ``get_stats`` always answers from the last
merged snapshot while refreshes run in the background. Concurrent refresh
requests share one in-flight task.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from pecoin.api.models import EntityKind, NftAsset, Participant, TransactionRef
from pecoin.errors import ExternalFetchError
from pecoin.services.activity import NftCollectionCache, TransactionCache
from pecoin.services.balances import BalanceCache
from pecoin.services.names import WalletNameResolver

log = logging.getLogger(__name__)


class Empty(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["empty"] = "empty"
    error: str | None = None


class Loading(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["loading"] = "loading"


class Ready(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["ready"] = "ready"
    stale: bool = False
    error: str | None = None


EcosystemState = Union[Empty, Loading, Ready]


class EcosystemSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    participants: tuple[Participant, ...] = ()
    balances: dict[str, float] = Field(default_factory=dict)
    nfts: dict[str, list[NftAsset]] = Field(default_factory=dict)
    transactions: dict[str, list[TransactionRef]] = Field(default_factory=dict)
    last_update: float = 0.0


class EcosystemStats(BaseModel):
    total_participants: int = 0
    teams: int = 0
    startups: int = 0
    staff: int = 0
    total_balance: float = 0.0
    total_nfts: int = 0
    total_transactions: int = 0
    last_update: float = 0.0
    cache_age: float | None = None
    state: str = "empty"
    stale: bool = False
    error: str | None = None


class ParticipantData(BaseModel):
    participant: Participant | None = None
    balance: float = 0.0
    nfts: list[NftAsset] = Field(default_factory=list)
    transactions: list[TransactionRef] = Field(default_factory=list)
    last_update: float = 0.0


def snapshot_stats(snapshot: EcosystemSnapshot, now: float) -> EcosystemStats:
    """Totals derived from a snapshot. Pure; never stored separately."""
    kinds = [p.type for p in snapshot.participants]
    return EcosystemStats(
        total_participants=len(snapshot.participants),
        teams=kinds.count(EntityKind.TEAM),
        startups=kinds.count(EntityKind.STARTUP),
        staff=kinds.count(EntityKind.STAFF),
        total_balance=sum(snapshot.balances.values()),
        total_nfts=sum(len(v) for v in snapshot.nfts.values()),
        total_transactions=sum(len(v) for v in snapshot.transactions.values()),
        last_update=snapshot.last_update,
        cache_age=(now - snapshot.last_update) if snapshot.last_update else None,
    )


class EcosystemCache:
    """Stale-while-revalidate aggregate over the per-wallet batch caches."""

    def __init__(
        self,
        resolver: WalletNameResolver,
        balances: BalanceCache,
        nfts: NftCollectionCache,
        transactions: TransactionCache,
        mint: str,
        include_transactions: bool = True,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.resolver = resolver
        self.balances = balances
        self.nfts = nfts
        self.transactions = transactions
        self.mint = mint
        self.include_transactions = include_transactions
        self._clock = clock
        self._snapshot: EcosystemSnapshot | None = None
        self._state: EcosystemState = Empty()
        self._refresh_task: asyncio.Task | None = None
        self._auto_task: asyncio.Task | None = None

    def _now(self) -> float:
        return self._clock() if self._clock is not None else time.time()

    @property
    def state(self) -> EcosystemState:
        return self._state

    @property
    def snapshot(self) -> EcosystemSnapshot | None:
        return self._snapshot

    @property
    def refreshing(self) -> bool:
        return self._refresh_task is not None and not self._refresh_task.done()

    def get_stats(self) -> EcosystemStats:
        snapshot = self._snapshot or EcosystemSnapshot()
        stats = snapshot_stats(snapshot, self._now())
        state = self._state
        return stats.model_copy(update={
            "state": state.kind,
            "stale": isinstance(state, Ready) and state.stale,
            "error": getattr(state, "error", None),
        })

    async def refresh(self) -> EcosystemSnapshot | None:
        """Run a full refresh, or join the one already in flight."""
        if not self.refreshing:
            if self._snapshot is None:
                self._state = Loading()
            else:
                self._state = Ready(stale=True)
            self._refresh_task = asyncio.create_task(self._do_refresh())
        else:
            log.debug("Ecosystem refresh already running, joining it")
        # Shielded so one cancelled waiter does not abort the shared refresh.
        return await asyncio.shield(self._refresh_task)

    def _keep_previous(self, error: str) -> EcosystemSnapshot | None:
        log.warning("Ecosystem refresh skipped, keeping previous data: %s", error)
        self._state = Ready(stale=True, error=error) if self._snapshot else Empty(error=error)
        return self._snapshot

    async def _do_refresh(self) -> EcosystemSnapshot | None:
        start = time.perf_counter()
        try:
            try:
                participants = await self.resolver.participants(strict=True)
            except ExternalFetchError as exc:
                return self._keep_previous(f"participant load failed: {exc}")
            if not participants:
                return self._keep_previous("no participants loaded")

            wallets = [p.wallet_address for p in participants]
            errors: list[str] = []

            balance_result = await self.balances.get_balances(wallets, self.mint)
            nft_result = await self.nfts.get_collections(wallets)
            tx_values: dict[str, list[TransactionRef]] = {}
            if self.include_transactions:
                tx_result = await self.transactions.get_transactions(wallets)
                tx_values = tx_result.values
                if tx_result.error:
                    errors.append(tx_result.error)
            errors.extend(e for e in (balance_result.error, nft_result.error) if e)

            previous = self._snapshot
            candidate = EcosystemSnapshot(
                participants=tuple(participants),
                balances=balance_result.values,
                nfts=nft_result.values,
                transactions=tx_values,
                last_update=max(self._now(), previous.last_update if previous else 0.0),
            )
        except Exception as exc:
            log.exception("Ecosystem refresh failed")
            self._state = Ready(stale=True, error=str(exc)) if self._snapshot else Empty(error=str(exc))
            return self._snapshot

        if errors:
            error = "; ".join(errors)
            log.warning("Ecosystem refresh incomplete: %s", error)
            if previous is None:
                self._snapshot = candidate
            self._state = Ready(stale=True, error=error)
            return self._snapshot

        self._snapshot = candidate
        self._state = Ready()
        log.info(
            "Ecosystem refreshed in %dms: %d participants",
            int((time.perf_counter() - start) * 1000), len(participants),
        )
        return candidate

    def start_auto_refresh(self, interval: float) -> None:
        if self._auto_task is not None and not self._auto_task.done():
            return
        self._auto_task = asyncio.create_task(self._auto_refresh(interval))

    async def _auto_refresh(self, interval: float) -> None:
        while True:
            await self.refresh()
            await asyncio.sleep(interval)

    async def stop_auto_refresh(self) -> None:
        if self._auto_task is None:
            return
        self._auto_task.cancel()
        try:
            await self._auto_task
        except asyncio.CancelledError:
            pass
        self._auto_task = None

    def participant_data(self, wallet_address: str) -> ParticipantData:
        snapshot = self._snapshot or EcosystemSnapshot()
        participant = next(
            (p for p in snapshot.participants if p.wallet_address == wallet_address), None
        )
        return ParticipantData(
            participant=participant,
            balance=snapshot.balances.get(wallet_address, 0.0),
            nfts=snapshot.nfts.get(wallet_address, []),
            transactions=snapshot.transactions.get(wallet_address, []),
            last_update=snapshot.last_update,
        )

    def participants_with_balances(self) -> list[tuple[Participant, float]]:
        snapshot = self._snapshot or EcosystemSnapshot()
        return [(p, snapshot.balances.get(p.wallet_address, 0.0)) for p in snapshot.participants]

    async def load_transactions_on_demand(self, wallet_address: str) -> list[TransactionRef]:
        """Transactions for one wallet, from the snapshot when present."""
        snapshot = self._snapshot
        if snapshot and snapshot.transactions.get(wallet_address):
            return snapshot.transactions[wallet_address]
        result = await self.transactions.get_transactions([wallet_address])
        return result.values[wallet_address]

    async def refresh_participant(self, wallet_address: str) -> EcosystemSnapshot | None:
        """Drop one wallet's cached data, then refresh; other wallets stay cached."""
        self.balances.invalidate_key(wallet_address)
        self.nfts.invalidate_key(wallet_address)
        self.transactions.invalidate_key(wallet_address)
        return await self.refresh()
