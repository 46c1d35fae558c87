"""
Verse Library — Bounded Query Cache Tests
===========================================

What we test:
    ✅ Inserting capacity + 1 keys evicts exactly the first key
    ✅ A hit does not refresh an entry's age (FIFO, not LRU)
    ✅ Re-putting an existing key replaces the value in place
    ✅ Size never exceeds capacity
    ✅ Rehydration from ordered pairs
"""

import pytest

from verse_library.services.query_cache import BoundedQueryCache


class TestEviction:

    def test_overflow_evicts_first_inserted(self):
        cache = BoundedQueryCache(3)
        for key in ["a", "b", "c", "d"]:
            cache.put(key, [key])

        assert "a" not in cache
        assert cache.get("a") is None
        assert cache.keys() == ["b", "c", "d"]

    def test_get_does_not_refresh_recency(self):
        cache = BoundedQueryCache(2)
        cache.put("a", [1])
        cache.put("b", [2])

        assert cache.get("a") == [1]
        cache.put("c", [3])

        assert cache.keys() == ["b", "c"]

    def test_existing_key_keeps_position(self):
        cache = BoundedQueryCache(2)
        cache.put("a", [1])
        cache.put("b", [2])
        cache.put("a", [10])

        assert cache.keys() == ["a", "b"]
        assert cache.get("a") == [10]

        cache.put("c", [3])
        assert cache.keys() == ["b", "c"]

    def test_size_never_exceeds_capacity(self):
        cache = BoundedQueryCache(10)
        for i in range(100):
            cache.put(f"query-{i}", [i])
            assert len(cache) <= 10
        assert cache.keys() == [f"query-{i}" for i in range(90, 100)]

    def test_clear(self):
        cache = BoundedQueryCache(2)
        cache.put("a", [1])
        cache.clear()
        assert len(cache) == 0
        assert cache.get("a") is None


class TestConstruction:

    def test_rejects_non_positive_capacity(self):
        with pytest.raises(ValueError):
            BoundedQueryCache(0)

    def test_rehydrates_in_pair_order(self):
        cache = BoundedQueryCache(5, [("x", [1]), ("y", [2]), ("z", [3])])
        assert cache.items() == [("x", [1]), ("y", [2]), ("z", [3])]

    def test_oversized_pairs_keep_newest(self):
        cache = BoundedQueryCache(2, [("x", [1]), ("y", [2]), ("z", [3])])
        assert cache.keys() == ["y", "z"]

    def test_missing_key_returns_none(self):
        assert BoundedQueryCache(1).get("nope") is None
