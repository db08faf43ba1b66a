"""Resolve wallet addresses to participant names for activity views."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from pydantic import BaseModel

from pecoin.api.models import EntityKind, Participant, WalletNameInfo
from pecoin.errors import ExternalFetchError
from pecoin.services.batch import with_timeout
from pecoin.services.cache import TTLCache

log = logging.getLogger(__name__)

ParticipantsLoader = Callable[[], Awaitable[list[Participant]]]

TYPE_BADGES = {
    EntityKind.TEAM: "\U0001f465",
    EntityKind.STARTUP: "\U0001f680",
    EntityKind.STAFF: "\U0001f468\u200d\U0001f4bc",
}


class ResolverStats(BaseModel):
    total: int = 0
    found: int = 0
    not_found: int = 0
    hit_rate: str = "0%"
    participants: int = 0
    snapshot_age_seconds: float | None = None


def format_address(address: str) -> str:
    """Shorten to ``abcd...wxyz`` when longer than 12 characters."""
    if not address or len(address) <= 12:
        return address
    return f"{address[:4]}...{address[-4:]}"


def is_unknown_wallet(address: str | None) -> bool:
    return not address or address == "Unknown" or "Unknown/" in address


class WalletNameResolver:
    """Two-tier wallet -> participant lookup.

    Tier 1 is a snapshot of every participant, reloaded at most once per
    ``participants_ttl``. Tier 2 caches individual lookups, including
    "no such participant" answers, but only when the snapshot was non-empty:
    an empty snapshot usually means the store could not be read yet.
    """

    def __init__(
        self,
        loader: ParticipantsLoader,
        ttl: float = 5 * 60,
        participants_ttl: float = 5 * 60,
        timeout: float = 10.0,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._loader = loader
        self._clock = clock
        self.participants_ttl = participants_ttl
        self.timeout = timeout
        self._participants: list[Participant] = []
        self._by_wallet: dict[str, Participant] = {}
        self._loaded_at: float | None = None
        self._refresh_task: asyncio.Task | None = None
        # values are WalletNameInfo or None (negative entry)
        self._names: TTLCache[tuple[WalletNameInfo | None]] = TTLCache(ttl, clock=clock)

    def _now(self) -> float:
        return self._clock() if self._clock is not None else time.monotonic()

    @property
    def snapshot_stale(self) -> bool:
        return self._loaded_at is None or self._now() - self._loaded_at >= self.participants_ttl

    async def _load_snapshot(self) -> list[Participant]:
        participants = await with_timeout(self._loader(), self.timeout, "listParticipants")
        self._participants = list(participants)
        self._by_wallet = {p.wallet_address: p for p in self._participants}
        self._loaded_at = self._now()
        log.info("Participant snapshot: %d entries", len(self._participants))
        return list(self._participants)

    async def refresh_participants(self, strict: bool = False) -> list[Participant]:
        """Reload the snapshot, joining a reload already in flight.

        On failure the previous snapshot is kept; with ``strict`` the
        ``ExternalFetchError`` is raised to the caller as well.
        """
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.create_task(self._load_snapshot())
        try:
            return await asyncio.shield(self._refresh_task)
        except ExternalFetchError as exc:
            if strict:
                raise
            log.warning("Participant snapshot refresh failed, keeping %d cached: %s",
                        len(self._participants), exc)
            return list(self._participants)

    async def participants(self, strict: bool = False) -> list[Participant]:
        if self.snapshot_stale:
            await self.refresh_participants(strict=strict)
        return list(self._participants)

    async def resolve(self, wallet_address: str) -> WalletNameInfo | None:
        if is_unknown_wallet(wallet_address):
            return None

        # Wrapped in a 1-tuple so a cached negative is distinguishable from a miss.
        cached = self._names.get(wallet_address)
        if cached is not None:
            return cached[0]

        await self.participants()
        if not self._participants:
            log.debug("Participant snapshot empty, not caching %s...", wallet_address[:8])
            return None

        participant = self._by_wallet.get(wallet_address)
        info = None
        if participant is not None:
            info = WalletNameInfo(
                name=participant.name,
                type=participant.type,
                short_address=format_address(wallet_address),
            )
        self._names.set(wallet_address, (info,))
        return info

    async def display_name(self, wallet_address: str) -> str:
        info = await self.resolve(wallet_address)
        return info.name if info else format_address(wallet_address)

    async def display_name_with_type(self, wallet_address: str) -> str:
        info = await self.resolve(wallet_address)
        if info:
            return f"{TYPE_BADGES[info.type]} {info.name}"
        return format_address(wallet_address)

    def clear_cache(self) -> None:
        """Reset both tiers, e.g. after bulk entity edits."""
        self._names.clear()
        self._participants = []
        self._by_wallet = {}
        self._loaded_at = None
        log.info("Wallet name cache cleared")

    def invalidate(self, pattern: str) -> int:
        """Drop cached lookups for addresses starting with ``pattern``."""
        return self._names.invalidate_by_prefix(pattern)

    def stats(self) -> ResolverStats:
        entries = [value for _, value, _ in self._names.items()]
        found = sum(1 for (info,) in entries if info is not None)
        total = len(entries)
        return ResolverStats(
            total=total,
            found=found,
            not_found=total - found,
            hit_rate=f"{found / total * 100:.1f}%" if total else "0%",
            participants=len(self._participants),
            snapshot_age_seconds=None if self._loaded_at is None else self._now() - self._loaded_at,
        )
