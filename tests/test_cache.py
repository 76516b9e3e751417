from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from stock_journal.pricing.cache import ExpiringLRUCache, ohlcv_cache_key


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_get_returns_value_before_ttl():
    clock = FakeClock()
    cache = ExpiringLRUCache(3, ttl_seconds=60, clock=clock)
    cache.set("AAPL", 1)
    clock.now += 59
    assert cache.get("AAPL") == 1


def test_entry_expires_at_ttl_and_is_removed():
    clock = FakeClock()
    cache = ExpiringLRUCache(3, ttl_seconds=60, clock=clock)
    cache.set("AAPL", 1)
    clock.now += 60
    assert cache.get("AAPL") is None
    assert len(cache) == 0


def test_least_recently_used_entry_is_evicted():
    clock = FakeClock()
    cache = ExpiringLRUCache(2, ttl_seconds=60, clock=clock)
    cache.set("a", 1)
    cache.set("b", 2)
    assert cache.get("a") == 1
    cache.set("c", 3)
    assert "b" not in cache
    assert cache.get("a") == 1
    assert cache.get("c") == 3


def test_set_sweeps_expired_entries_before_evicting():
    clock = FakeClock()
    cache = ExpiringLRUCache(2, ttl_seconds=10, clock=clock)
    cache.set("old", 1)
    clock.now += 5
    cache.set("fresh", 2)
    clock.now += 6
    cache.set("new", 3)
    assert "old" not in cache
    assert cache.get("fresh") == 2
    assert cache.get("new") == 3


def test_invalidate_drops_one_key():
    cache = ExpiringLRUCache(5, ttl_seconds=60)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.invalidate("a")
    cache.invalidate("missing")
    assert cache.get("a") is None
    assert cache.get("b") == 2
    assert len(cache) == 1


def test_rejects_non_positive_size():
    with pytest.raises(ValueError):
        ExpiringLRUCache(0, ttl_seconds=60)


def test_ohlcv_key_uses_ongoing_for_windows_ending_now():
    now = datetime(2024, 3, 15, 18, 0, tzinfo=timezone.utc)
    start = now - timedelta(days=10)
    key = ohlcv_cache_key("aapl", start, now - timedelta(milliseconds=200), now=now)
    assert key == f"AAPL_{int(start.timestamp() * 1000)}_ongoing"


def test_ohlcv_key_keeps_end_for_closed_windows():
    now = datetime(2024, 3, 15, 18, 0, tzinfo=timezone.utc)
    start = datetime(2024, 1, 2, tzinfo=timezone.utc)
    end = datetime(2024, 2, 1, tzinfo=timezone.utc)
    key = ohlcv_cache_key("MSFT", start, end, now=now)
    assert key == f"MSFT_{int(start.timestamp() * 1000)}_{int(end.timestamp() * 1000)}"
