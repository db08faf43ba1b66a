"""Load .env and settings.yaml, expose all configuration."""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

log = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent

ALCHEMY_BASE_URL = "https://solana-mainnet.g.alchemy.com/v2"
PUBLIC_RPC_URL = "https://api.mainnet-beta.solana.com"

MINUTE = 60
HOUR = 60 * MINUTE
DAY = 24 * HOUR


def _load_env() -> None:
    env_path = PROJECT_ROOT / ".env"
    load_dotenv(env_path)


def _load_yaml() -> dict:
    settings_path = PROJECT_ROOT / "settings.yaml"
    if settings_path.exists():
        try:
            with open(settings_path) as f:
                return yaml.safe_load(f) or {}
        except yaml.YAMLError:
            log.warning("Failed to parse settings.yaml, using defaults")
            return {}
    return {}


def alchemy_key(raw: str) -> str:
    """Accept either a bare Alchemy key or a full Alchemy RPC URL."""
    raw = raw.strip()
    if raw.startswith("https://"):
        return raw.rstrip("/").split("/")[-1]
    return raw


class Settings(BaseModel):
    alchemy_api_key: str = ""
    rpc_url: str = ""
    supabase_url: str = ""
    supabase_key: str = ""

    @field_validator(
        "alchemy_api_key", "rpc_url", "supabase_url", "supabase_key"
    )
    @classmethod
    def strip_secret(cls, v: str) -> str:
        return v.strip()

    pecoin_mint: str = "FDT9EMUytSwaP8GKiKdyv59rRAsT7gAB57wHUPm7wY9r"
    logo_bucket: str = "dashboard.logos"

    # Balances are volatile and cheap to refresh.
    balance_ttl: float = 2 * MINUTE
    native_balance_ttl: float = 2 * MINUTE
    balance_timeout: float = 5.0
    balance_max_entries: int = 5000

    # Cached signed URLs must always expire before the signature does.
    signed_url_ttl: float = 6 * HOUR
    signed_url_expiry: int = 7 * DAY
    signed_url_max_entries: int = 500
    signed_url_timeout: float = 10.0

    image_ttl: float = HOUR
    image_max_entries: int = 100
    image_max_bytes: int = 2 * 1024 * 1024
    image_timeout: float = 15.0

    names_ttl: float = 5 * MINUTE
    participants_ttl: float = 5 * MINUTE
    entity_timeout: float = 10.0

    nft_ttl: float = 10 * MINUTE
    nft_timeout: float = 8.0
    transactions_ttl: float = 2 * MINUTE
    transactions_empty_ttl: float = MINUTE
    transactions_limit: int = 10
    activity_max_entries: int = 2000

    ecosystem_refresh_interval: float = 5 * MINUTE
    cleanup_interval: float = 5 * MINUTE
    monitor_history: int = 100
    slow_operation_ms: int = 3000

    @field_validator(
        "balance_ttl", "native_balance_ttl", "signed_url_ttl", "image_ttl",
        "names_ttl", "participants_ttl", "nft_ttl", "transactions_ttl",
        "transactions_empty_ttl", "ecosystem_refresh_interval", "cleanup_interval",
    )
    @classmethod
    def positive_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("TTLs and intervals must be positive")
        return v

    @property
    def rpc_endpoint(self) -> str:
        """RPC URL to use: explicit override, Alchemy, then the public node."""
        if self.rpc_url:
            return self.rpc_url
        if self.alchemy_api_key:
            return f"{ALCHEMY_BASE_URL}/{alchemy_key(self.alchemy_api_key)}"
        return PUBLIC_RPC_URL


def load_settings() -> Settings:
    _load_env()
    raw = _load_yaml()
    raw["alchemy_api_key"] = alchemy_key(os.getenv("ALCHEMY_API_KEY", ""))
    raw["rpc_url"] = os.getenv("RPC_URL", raw.get("rpc_url", ""))
    raw["supabase_url"] = os.getenv("SUPABASE_URL", "")
    raw["supabase_key"] = os.getenv("SUPABASE_KEY", "")
    return Settings(**raw)
