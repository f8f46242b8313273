"""Unit tests for the in-process query cache"""

import pytest
from app.core.query_cache import QueryCache, query_keys
from app.core.errors import DatabaseError


def test_fetch_caches_until_stale():
    now = [0.0]
    cache = QueryCache(default_stale_seconds=30, clock=lambda: now[0])
    calls = []

    def loader():
        calls.append(1)
        return {"items": len(calls)}

    key = query_keys.members("inst-1", {"page": 1})
    assert cache.fetch(key, loader) == {"items": 1}
    assert cache.fetch(key, loader) == {"items": 1}
    now[0] = 31
    assert cache.fetch(key, loader) == {"items": 2}
    assert len(calls) == 2


def test_filter_order_does_not_change_key():
    assert query_keys.transactions("inst-1", {"a": 1, "b": 2}) == query_keys.transactions("inst-1", {"b": 2, "a": 1})


def test_invalidate_by_prefix():
    cache = QueryCache()
    cache.set(query_keys.transactions("inst-1"), "txns")
    cache.set(query_keys.members("inst-1"), "members")
    cache.set(query_keys.dashboard("inst-1", "stats", 7), "stats")

    assert cache.invalidate(("transactions",)) == 1
    assert cache.get(query_keys.transactions("inst-1")) is None
    assert cache.get(query_keys.members("inst-1")) == "members"
    assert cache.invalidate(("dashboard", "inst-1")) == 1


def test_optimistic_update_applies_and_keeps_on_success():
    cache = QueryCache()
    key = query_keys.transactions("inst-1")
    cache.set(key, ["unallocated"])

    with cache.optimistic_update(("transactions",), lambda value: ["allocated"]):
        assert cache.get(key) == ["allocated"]
    assert cache.get(key) == ["allocated"]


def test_optimistic_update_rolls_back_on_failure():
    cache = QueryCache()
    key = query_keys.transactions("inst-1")
    other = query_keys.members("inst-1")
    cache.set(key, ["unallocated"])
    cache.set(other, ["member"])

    with pytest.raises(DatabaseError):
        with cache.optimistic_update(("transactions",), lambda value: ["allocated"]):
            raise DatabaseError("Failed to allocate")

    assert cache.get(key) == ["unallocated"]
    assert cache.get(other) == ["member"]
