"""Bounded TTL cache for collaborator lookups."""
from __future__ import annotations

import time
from collections import OrderedDict
from dataclasses import dataclass
from threading import Lock
from typing import Any, Hashable, Tuple

_MISSING = object()


@dataclass
class CacheEntry:
    value: Any
    expires_at: float


class TTLCache:
    """Thread-safe TTL cache that drops the least recently used entry when full.

    ``None`` is a legitimate cached value, so :meth:`lookup` reports hits
    separately from the value.
    """

    def __init__(self, ttl_seconds: float, max_entries: int = 4096) -> None:
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._store: "OrderedDict[Hashable, CacheEntry]" = OrderedDict()
        self._lock = Lock()

    def lookup(self, key: Hashable) -> Tuple[bool, Any]:
        with self._lock:
            entry = self._store.get(key, _MISSING)
            if entry is _MISSING:
                return False, None
            if entry.expires_at < time.monotonic():
                del self._store[key]
                return False, None
            self._store.move_to_end(key)
            return True, entry.value

    def set(self, key: Hashable, value: Any) -> None:
        with self._lock:
            self._store[key] = CacheEntry(value=value, expires_at=time.monotonic() + self._ttl)
            self._store.move_to_end(key)
            while len(self._store) > self._max_entries:
                self._store.popitem(last=False)

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)
