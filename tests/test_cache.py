"""Tests for TTLCache."""

import time

from pecoin.services.cache import TTLCache


def test_set_and_get():
    cache = TTLCache(ttl=60)
    cache.set("k1", [1, 2, 3])
    assert cache.get("k1") == [1, 2, 3]


def test_get_missing_key_returns_none():
    cache = TTLCache(ttl=60)
    assert cache.get("nonexistent") is None


def test_expiry_boundary(monkeypatch):
    cache = TTLCache(ttl=10)
    base = 1000.0
    monkeypatch.setattr(time, "monotonic", lambda: base)
    cache.set("k1", "value")

    # Still valid one tick before the TTL
    monkeypatch.setattr(time, "monotonic", lambda: base + 9.999)
    assert cache.get("k1") == "value"
    assert "k1" in cache

    # Expired exactly at the TTL
    monkeypatch.setattr(time, "monotonic", lambda: base + 10)
    assert cache.get("k1") is None
    assert "k1" not in cache
    # Expired entries linger until swept
    assert len(cache) == 1


def test_per_entry_ttl_override(monkeypatch):
    cache = TTLCache(ttl=120)
    base = 1000.0
    monkeypatch.setattr(time, "monotonic", lambda: base)
    cache.set("short", "a", ttl=60)
    cache.set("long", "b")

    monkeypatch.setattr(time, "monotonic", lambda: base + 61)
    assert cache.get("short") is None
    assert cache.get("long") == "b"


def test_invalidate():
    cache = TTLCache(ttl=60)
    cache.set("k1", "val")
    assert cache.invalidate("k1") is True
    assert cache.get("k1") is None


def test_invalidate_nonexistent_key():
    cache = TTLCache(ttl=60)
    assert cache.invalidate("nope") is False


def test_invalidate_by_prefix():
    cache = TTLCache(ttl=60)
    cache.set("walletA:mint1", 1.0)
    cache.set("walletA:mint2", 2.0)
    cache.set("walletB:mint1", 3.0)
    assert cache.invalidate_by_prefix("walletA:") == 2
    assert cache.keys() == ["walletB:mint1"]


def test_invalidate_by_prefix_does_not_match_substring():
    cache = TTLCache(ttl=60)
    cache.set("team:logo.png", "a")
    cache.set("startup:team.png", "b")
    assert cache.invalidate_by_prefix("team") == 1
    assert cache.get("startup:team.png") == "b"


def test_clear():
    cache = TTLCache(ttl=60)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.clear()
    assert cache.get("a") is None
    assert len(cache) == 0


def test_overwrite_resets_timestamp(monkeypatch):
    cache = TTLCache(ttl=10)
    base = 1000.0
    monkeypatch.setattr(time, "monotonic", lambda: base)
    cache.set("k1", "old")
    monkeypatch.setattr(time, "monotonic", lambda: base + 8)
    cache.set("k1", "new")
    monkeypatch.setattr(time, "monotonic", lambda: base + 15)
    assert cache.get("k1") == "new"


def test_fifo_eviction_drops_oldest_insertion():
    cache = TTLCache(ttl=60, max_entries=3)
    for key in ("a", "b", "c", "d"):
        cache.set(key, key.upper())
    assert len(cache) == 3
    assert cache.get("a") is None
    assert cache.keys() == ["b", "c", "d"]


def test_overwrite_moves_key_to_back_of_eviction_order():
    cache = TTLCache(ttl=60, max_entries=3)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.set("c", 3)
    cache.set("a", 10)
    cache.set("d", 4)
    assert cache.get("a") == 10
    assert cache.get("b") is None


def test_purge_expired_first_keeps_valid_entries(monkeypatch):
    cache = TTLCache(ttl=10, max_entries=3, purge_expired_first=True)
    base = 1000.0
    monkeypatch.setattr(time, "monotonic", lambda: base)
    cache.set("old1", 1, ttl=5)
    cache.set("fresh", 2)
    cache.set("old2", 3, ttl=5)

    monkeypatch.setattr(time, "monotonic", lambda: base + 6)
    cache.set("new", 4)
    # Both expired entries were swept instead of evicting "fresh"
    assert len(cache) == 2
    assert cache.get("fresh") == 2
    assert cache.get("new") == 4


def test_cleanup_removes_only_expired(monkeypatch):
    cache = TTLCache(ttl=10)
    base = 1000.0
    monkeypatch.setattr(time, "monotonic", lambda: base)
    cache.set("a", 1)
    cache.set("b", 2, ttl=100)
    monkeypatch.setattr(time, "monotonic", lambda: base + 20)
    assert cache.cleanup() == 1
    assert len(cache) == 1
    assert cache.get("b") == 2


def test_stats_empty_cache_has_zero_hit_rate():
    stats = TTLCache(ttl=60).stats()
    assert stats.total_entries == 0
    assert stats.hit_rate == 0.0


def test_stats_counts_valid_and_expired(monkeypatch):
    cache = TTLCache(ttl=10)
    base = 1000.0
    monkeypatch.setattr(time, "monotonic", lambda: base)
    cache.set("a", 1)
    cache.set("b", 2, ttl=100)
    cache.set("c", 3, ttl=100)
    cache.set("d", 4, ttl=100)
    monkeypatch.setattr(time, "monotonic", lambda: base + 11)

    stats = cache.stats()
    assert stats.total_entries == 4
    assert stats.valid_entries == 3
    assert stats.expired_entries == 1
    assert stats.hit_rate == 75.0


def test_items_reports_age(clock):
    cache = TTLCache(ttl=60, clock=clock)
    cache.set("a", "x")
    clock.advance(12)
    assert list(cache.items()) == [("a", "x", 12)]
