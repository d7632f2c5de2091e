# =============================================
# File: storefront/client/store.py
# Purpose: Pluggable key-value store (get/set/expire) behind the recommendation client cache
# =============================================
from __future__ import annotations

import time
from collections import OrderedDict
from typing import Any, Callable, Iterator, Optional, Protocol, Tuple


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[Any]: ...
    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None: ...
    def delete(self, key: str) -> None: ...
    def keys(self) -> Iterator[str]: ...
    def clear(self) -> None: ...


class MemoryStore:
    """
    In-process store with optional per-entry expiry and LRU eviction.

    Stands in for browser session storage: lives as long as the owning
    session and is wiped by clear().
    """

    def __init__(self, max_entries: int = 1000, clock: Callable[[], float] = time.monotonic) -> None:
        self._max = max_entries
        self._clock = clock
        # key -> (expires_at or None, value)
        self._data: "OrderedDict[str, Tuple[Optional[float], Any]]" = OrderedDict()

    def _expired(self, exp: Optional[float], now: float) -> bool:
        return exp is not None and exp <= now

    def _prune(self) -> None:
        now = self._clock()
        dead = [k for k, (exp, _) in self._data.items() if self._expired(exp, now)]
        for k in dead:
            self._data.pop(k, None)

    def get(self, key: str) -> Optional[Any]:
        item = self._data.get(key)
        if item is None:
            return None
        exp, value = item
        if self._expired(exp, self._clock()):
            self._data.pop(key, None)
            return None
        # LRU touch
        self._data.move_to_end(key, last=True)
        return value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        exp = self._clock() + ttl if ttl is not None else None
        self._data[key] = (exp, value)
        self._data.move_to_end(key, last=True)
        while len(self._data) > self._max:
            self._data.popitem(last=False)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> Iterator[str]:
        self._prune()
        return iter(list(self._data.keys()))

    def clear(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        self._prune()
        return len(self._data)
