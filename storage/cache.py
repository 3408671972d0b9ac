"""Key/value cache interface and an in-process TTL implementation."""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Protocol


class KeyValueCache(Protocol):
    """What the robots validator needs from a cache backend."""

    def get(self, key: str) -> Any | None:
        ...

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        ...


class InMemoryTTLCache:
    """Thread-safe dict cache with per-entry expiry."""

    def __init__(self, clock_fn: Callable[[], float] | None = None) -> None:
        self._clock = clock_fn or time.monotonic
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[float, Any]] = {}

    def get(self, key: str) -> Any | None:
        with self._lock:
            item = self._entries.get(key)
            if item is None:
                return None
            expires_at, value = item
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        with self._lock:
            self._entries[key] = (self._clock() + ttl_seconds, value)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
