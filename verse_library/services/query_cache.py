"""
Verse Library — Bounded Query Cache
=====================================

What:  Fixed-capacity, insertion-ordered key → result mapping.
Who:   Instantiated twice by the Catalog Cache: search results (50 entries)
       and filter results (10 entries), each with independent eviction.

Eviction Policy (strict FIFO, not LRU):
    - get() never changes an entry's position
    - put() of a new key into a full cache evicts the oldest-inserted key first
    - put() of an existing key replaces the value in place; its age is kept

    Because eviction always runs before insertion, len(cache) <= capacity
    holds after every operation.
"""

from collections import OrderedDict
from typing import Generic, Iterable, Iterator, List, Optional, Tuple, TypeVar

K = TypeVar("K")
V = TypeVar("V")


class BoundedQueryCache(Generic[K, V]):
    """FIFO-evicting ordered mapping with a maximum entry count."""

    def __init__(self, capacity: int, items: Optional[Iterable[Tuple[K, V]]] = None):
        """
        Args:
            capacity: Maximum number of entries (>= 1)
            items:    Optional (key, value) pairs in insertion order, e.g. when
                      rehydrating from storage. Applied through put(), so an
                      oversized list keeps only its newest `capacity` entries.
        """
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self._entries: "OrderedDict[K, V]" = OrderedDict()
        for key, value in items or ():
            self.put(key, value)

    def get(self, key: K) -> Optional[V]:
        """Return the cached value, or None when the key is absent."""
        return self._entries.get(key)

    def put(self, key: K, value: V) -> None:
        """Insert or replace a value, evicting the oldest entry when full."""
        if key in self._entries:
            self._entries[key] = value
            return
        if len(self._entries) >= self.capacity:
            self._entries.popitem(last=False)
        self._entries[key] = value

    def clear(self) -> None:
        self._entries.clear()

    def keys(self) -> List[K]:
        """Keys in insertion order (oldest first)."""
        return list(self._entries.keys())

    def items(self) -> List[Tuple[K, V]]:
        """(key, value) pairs in insertion order, the persisted form."""
        return list(self._entries.items())

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[K]:
        return iter(self.keys())

    def __repr__(self) -> str:
        return f"BoundedQueryCache(size={len(self)}, capacity={self.capacity})"
