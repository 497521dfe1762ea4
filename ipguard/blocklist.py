"""Durable set of banned client addresses."""
from __future__ import annotations

import logging
from pathlib import Path
from threading import Lock
from typing import Set, Union

from ipguard.storage import JsonFileStore

LOGGER = logging.getLogger(__name__)


class PersistentSet:
    """Thread-safe set of addresses backed by a JSON array file.

    The file is loaded once, on first access; afterwards the in-memory set
    is authoritative and every effective mutation rewrites the whole file.
    """

    def __init__(self, path: Union[str, Path], name: str = "blocked_ips") -> None:
        self._store = JsonFileStore(path, name)
        self._items: Set[str] = set()
        self._loaded = False
        self._lock = Lock()

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        with self._lock:
            if self._loaded:
                return
            raw = self._store.read([])
            items = set()
            for value in raw:
                if isinstance(value, str):
                    items.add(value)
                else:
                    LOGGER.warning(
                        "skipping non-string ban entry %r", value, extra={"store": self._store.name}
                    )
            self._items = items
            self._loaded = True

    def contains(self, address: str) -> bool:
        self._ensure_loaded()
        return address in self._items

    __contains__ = contains

    def add(self, address: str) -> bool:
        """Add ``address``; return ``True`` if it was not already present."""

        self._ensure_loaded()
        with self._lock:
            if address in self._items:
                return False
            self._items.add(address)
            self._store.write(sorted(self._items))
            return True

    def remove(self, address: str) -> bool:
        """Remove ``address``; return ``True`` if it was present."""

        self._ensure_loaded()
        with self._lock:
            if address not in self._items:
                return False
            self._items.discard(address)
            self._store.write(sorted(self._items))
            return True

    def all(self) -> Set[str]:
        self._ensure_loaded()
        with self._lock:
            return set(self._items)

    def __len__(self) -> int:
        self._ensure_loaded()
        return len(self._items)
