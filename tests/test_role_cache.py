"""
tests/test_role_cache.py -- Unit tests for cache.store.RoleCache.

Covers:
  - get/set/delete round trip
  - TTL expiry driven by an injected clock (no sleeps)
  - LRU eviction order, including refresh-on-read
  - invalidate_prefix only touches matching keys
"""

from __future__ import annotations

from cache.store import RoleCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_set_then_get_returns_value():
    cache = RoleCache()
    cache.set("role:0xabc", "admin")
    assert cache.get("role:0xabc") == "admin"


def test_missing_key_returns_none():
    assert RoleCache().get("role:0xnope") is None


def test_entry_expires_after_ttl():
    clock = FakeClock()
    cache = RoleCache(ttl=60, clock=clock)
    cache.set("role:0xabc", "admin")
    clock.now += 59
    assert cache.get("role:0xabc") == "admin"
    clock.now += 1
    assert cache.get("role:0xabc") is None
    assert len(cache) == 0


def test_lru_evicts_oldest_when_full():
    cache = RoleCache(max_entries=2)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.set("c", 3)
    assert cache.get("a") is None
    assert cache.get("b") == 2
    assert cache.get("c") == 3


def test_read_refreshes_lru_position():
    cache = RoleCache(max_entries=2)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.get("a")  # "b" is now least recently used
    cache.set("c", 3)
    assert cache.get("a") == 1
    assert cache.get("b") is None


def test_delete_reports_presence():
    cache = RoleCache()
    cache.set("role:0xabc", "user")
    assert cache.delete("role:0xabc") is True
    assert cache.delete("role:0xabc") is False
    assert cache.get("role:0xabc") is None


def test_invalidate_prefix_removes_only_matching_keys():
    cache = RoleCache()
    cache.set("perms:0xa", ("view_users",))
    cache.set("perms:0xb", ())
    cache.set("role:0xa", "admin")
    assert cache.invalidate_prefix("perms:") == 2
    assert cache.get("role:0xa") == "admin"
    assert cache.get("perms:0xa") is None


def test_clear_empties_cache():
    cache = RoleCache()
    cache.set("a", 1)
    cache.set("b", 2)
    cache.clear()
    assert len(cache) == 0
