from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock

DEFAULT_MAX_ENTRIES = 10_000


@dataclass(frozen=True)
class CacheEntry:
    value: object
    expires_at: float | None


class TtlCache:
    """
    Process-lifetime key/value memo.

    Entries carry an optional absolute expiry and are dropped lazily on read or by
    `sweep()`. When the cache is full, inserting a new key evicts the oldest inserted
    key first.
    """

    def __init__(
        self,
        *,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_entries = max(1, max_entries)
        self._clock = clock
        self._lock = Lock()
        self._entries: dict[str, CacheEntry] = {}

    def get(self, key: str) -> object | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at is not None and self._clock() > entry.expires_at:
                del self._entries[key]
                return None
            return entry.value

    def set(self, key: str, value: object, ttl_seconds: float | None = None) -> None:
        expires_at = self._clock() + ttl_seconds if ttl_seconds else None
        with self._lock:
            if key not in self._entries and len(self._entries) >= self._max_entries:
                oldest_key = next(iter(self._entries))
                del self._entries[oldest_key]
            self._entries[key] = CacheEntry(value=value, expires_at=expires_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def clear_prefix(self, prefix: str) -> int:
        with self._lock:
            doomed = [key for key in self._entries if key.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
        return len(doomed)

    def sweep(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [
                key
                for key, entry in self._entries.items()
                if entry.expires_at is not None and now > entry.expires_at
            ]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
