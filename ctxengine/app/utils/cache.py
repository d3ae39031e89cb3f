"""
Injectable TTL caches for settings and discovery lookups.
"""

from __future__ import annotations

import time
from threading import Lock
from typing import Any, Callable, Protocol


class Cache(Protocol):
    ttl_seconds: float

    def get(self, key: str) -> Any | None:
        ...

    def set(self, key: str, value: Any, ttl_seconds: float | None = None):
        ...


class TTLCache:
    def __init__(self, ttl_seconds: float = 60, clock: Callable[[], float] | None = None):
        self.ttl_seconds = max(0.0, float(ttl_seconds))
        self._clock = clock or time.monotonic
        self._lock = Lock()
        self._entries: dict[str, tuple[float, Any]] = {}

    def get(self, key: str) -> Any | None:
        now = self._clock()
        with self._lock:
            expired = [k for k, (deadline, _) in self._entries.items() if deadline <= now]
            for k in expired:
                self._entries.pop(k, None)
            entry = self._entries.get(key)
            return entry[1] if entry else None

    def set(self, key: str, value: Any, ttl_seconds: float | None = None):
        ttl = self.ttl_seconds if ttl_seconds is None else max(0.0, float(ttl_seconds))
        if ttl <= 0:
            return
        with self._lock:
            self._entries[key] = (self._clock() + ttl, value)

    def clear(self):
        with self._lock:
            self._entries.clear()


class NullCache:
    """Cache that never stores anything; handy in tests."""

    ttl_seconds: float = 0.0

    def get(self, key: str) -> Any | None:
        return None

    def set(self, key: str, value: Any, ttl_seconds: float | None = None):
        return None
