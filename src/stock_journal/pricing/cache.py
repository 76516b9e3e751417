from __future__ import annotations

import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Generic, Hashable, TypeVar

from cachetools import TTLCache

V = TypeVar("V")

ONGOING = "ongoing"


class ExpiringLRUCache(Generic[V]):
    """Bounded cache with least-recently-used eviction and a fixed time-to-live.

    Backed by ``cachetools.TTLCache``; expired entries are swept on every write
    and before the size is reported. Access is serialized with a lock because
    the web layer serves requests from a thread pool.
    """

    def __init__(
        self,
        max_entries: int,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be positive.")
        self._entries: TTLCache = TTLCache(maxsize=max_entries, ttl=ttl_seconds, timer=clock)
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> V | None:
        with self._lock:
            return self._entries.get(key)

    def set(self, key: Hashable, value: V) -> None:
        with self._lock:
            self._entries[key] = value

    def invalidate(self, key: Hashable) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            self._entries.expire()
            return len(self._entries)

    def __contains__(self, key: Any) -> bool:
        with self._lock:
            return key in self._entries


def ohlcv_cache_key(ticker: str, start: datetime, end: datetime, now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    start_ms = _epoch_ms(start)
    end_ms = _epoch_ms(end)
    # A window ending at "now" keeps one key while it is refreshed.
    end_part = ONGOING if abs(_epoch_ms(now) - end_ms) < 1000 else str(end_ms)
    return f"{ticker.upper()}_{start_ms}_{end_part}"


def _epoch_ms(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)
