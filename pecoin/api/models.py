"""Pydantic models for RPC, entity-store and cache results."""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class EntityKind(str, Enum):
    TEAM = "team"
    STARTUP = "startup"
    STAFF = "staff"

    @property
    def table(self) -> str:
        return {"team": "teams", "startup": "startups", "staff": "staff"}[self.value]

    @property
    def label(self) -> str:
        return {"team": "Team", "startup": "Startup", "staff": "Staff"}[self.value]


class Participant(BaseModel):
    """A team, startup or staff member that owns a wallet."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    wallet_address: str
    type: EntityKind


class WalletNameInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    type: EntityKind
    short_address: str


class NftAsset(BaseModel):
    id: str
    name: str = ""
    image: str | None = None
    collection: str | None = None
    compressed: bool = False


class TransactionRef(BaseModel):
    signature: str
    slot: int = 0
    block_time: int | None = None
    failed: bool = False
    memo: str | None = None


class RpcError(BaseModel):
    """Per-item error inside a JSON-RPC batch response."""

    code: int = 0
    message: str = ""
    data: Any = None


class CacheStats(BaseModel):
    total_entries: int = 0
    valid_entries: int = 0
    expired_entries: int = 0
    hit_rate: float = 0.0


class BatchTiming(BaseModel):
    total_ms: int = 0
    fetch_ms: int = 0
    requested: int = 0
    from_cache: int = 0
    from_api: int = 0


class BatchResult(BaseModel):
    """Merged result of a cache-split batch lookup.

    Every requested key is present in ``values``; keys that could not be
    fetched carry the cache's default. ``error`` is set when the batched
    external call failed.
    """

    values: dict[str, Any] = Field(default_factory=dict)
    from_cache: list[str] = Field(default_factory=list)
    fetched: list[str] = Field(default_factory=list)
    error: str | None = None
    timing: BatchTiming = Field(default_factory=BatchTiming)


class ImageResult(BaseModel):
    status: Literal["HIT", "MISS", "PLACEHOLDER"]
    content: bytes = b""
    content_type: str = ""
    placeholder_path: str | None = None
    error: str | None = None
