"""
cache/store.py -- In-process TTL + LRU cache for role and permission lookups.

Avoids a database round-trip on every authorization check. Entries live for a
short, bounded window (default 60 seconds) and the oldest entry is evicted
once max_entries is reached.

The cache is never a source of truth. Mutations that change authorization
(role update, grant, revoke) call delete() / invalidate_prefix() before they
return, so a later get() can never observe the pre-mutation value.

Usage:
    cache = RoleCache(max_entries=1000, ttl=60)
    cache.set("role:0xabc...", "admin")
    cache.get("role:0xabc...")          # "admin" or None once expired
    cache.delete("role:0xabc...")
    cache.invalidate_prefix("perms:")
"""

import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Optional

_DEFAULT_TTL = 60  # seconds
_DEFAULT_MAX_ENTRIES = 1000


class RoleCache:
    def __init__(
        self,
        max_entries: int = _DEFAULT_MAX_ENTRIES,
        ttl: float = _DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_entries = max_entries
        self.ttl = ttl
        self._clock = clock
        # key -> (value, expires_at); insertion order doubles as LRU order
        self._entries: "OrderedDict[str, tuple[Any, float]]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value for key, or None if absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return value

    def set(self, key: str, value: Any) -> None:
        """Store value under key, evicting the least recently used entry if full."""
        with self._lock:
            self._entries.pop(key, None)
            while len(self._entries) >= self.max_entries:
                self._entries.popitem(last=False)
            self._entries[key] = (value, self._clock() + self.ttl)

    def delete(self, key: str) -> bool:
        """Remove one key. Returns True if it was present."""
        with self._lock:
            return self._entries.pop(key, None) is not None

    def invalidate_prefix(self, prefix: str) -> int:
        """Remove every key starting with prefix. Returns number removed."""
        with self._lock:
            doomed = [k for k in self._entries if k.startswith(prefix)]
            for k in doomed:
                del self._entries[k]
            return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
