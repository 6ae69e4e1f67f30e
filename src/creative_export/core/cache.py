"""Injectable TTL caches.

Caches are constructed once per pipeline and passed to the components that
need them (integration registry, OAuth tokens, compiled schema validators),
so tests can substitute a deterministic clock.
"""

import threading
import time
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from typing import Any

_MISSING = object()


@dataclass
class CacheEntry:
    """A cached value with its absolute expiry on the cache clock."""

    value: Any
    expires_at: float | None = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class TTLCache:
    """Thread-safe key/value cache with per-entry expiry.

    Races between concurrent writers are harmless: the worst case is a value
    computed twice and the later write winning.
    """

    def __init__(self, default_ttl_seconds: float | None = None, clock: Callable[[], float] = time.monotonic):
        self.default_ttl_seconds = default_ttl_seconds
        self._clock = clock
        self._entries: dict[Hashable, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            if entry.is_expired(self._clock()):
                del self._entries[key]
                return default
            return entry.value

    def set(self, key: Hashable, value: Any, ttl_seconds: float | None | object = _MISSING) -> None:
        """Store a value. ``ttl_seconds=None`` keeps it for the process lifetime."""
        ttl = self.default_ttl_seconds if ttl_seconds is _MISSING else ttl_seconds
        with self._lock:
            expires_at = None if ttl is None else self._clock() + max(float(ttl), 0.0)
            self._entries[key] = CacheEntry(value=value, expires_at=expires_at)

    def delete(self, key: Hashable) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def keys(self) -> list[Hashable]:
        """Snapshot of live keys."""
        with self._lock:
            now = self._clock()
            return [key for key, entry in self._entries.items() if not entry.is_expired(now)]

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def __len__(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]
            return len(self._entries)
