"""Bounded classification cache.

The classifier depends on the ``ClassificationCache`` protocol, not on a
module-level dict, so tests (and callers) control capacity and eviction.
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Generic, Protocol, TypeVar

V = TypeVar("V")

DEFAULT_CACHE_SIZE = 1000


class ClassificationCache(Protocol[V]):
    def get(self, key: str) -> V | None: ...

    def put(self, key: str, value: V) -> None: ...

    def clear(self) -> None: ...

    def __len__(self) -> int: ...


class FIFOCache(Generic[V]):
    """Insertion-ordered cache that evicts the oldest entry when full.

    Reads do not refresh an entry's position. Re-inserting an existing key
    replaces its value in place.
    """

    def __init__(self, maxsize: int = DEFAULT_CACHE_SIZE) -> None:
        if maxsize < 1:
            raise ValueError(f"maxsize must be >= 1, got {maxsize}")
        self.maxsize = maxsize
        self._data: OrderedDict[str, V] = OrderedDict()

    def get(self, key: str) -> V | None:
        return self._data.get(key)

    def put(self, key: str, value: V) -> None:
        if key not in self._data and len(self._data) >= self.maxsize:
            self._data.popitem(last=False)
        self._data[key] = value

    def clear(self) -> None:
        self._data.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)
