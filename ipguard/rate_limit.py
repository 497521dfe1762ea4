"""Per-address request counting with promotion into the ban list.

Counting uses a fixed window: a record's ``window_start`` is set by the
first hit and never moves. Once the window has elapsed the record is
evicted and the next hit starts a fresh window at count 1. This is not a
leaky bucket and not a rolling log of timestamps.
"""
from __future__ import annotations

import enum
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, Iterator, Optional, Union

from ipguard.blocklist import PersistentSet
from ipguard.storage import JsonFileStore
from ipguard.utils.time import now_ms

LOGGER = logging.getLogger(__name__)

Clock = Callable[[], int]


class Decision(enum.Enum):
    CONTINUE = "continue"
    PROMOTE = "promote"


@dataclass
class RateRecord:
    count: int
    window_start: int

    def is_stale(self, now: int, window_ms: int) -> bool:
        return now - self.window_start > window_ms

    def to_dict(self) -> Dict[str, int]:
        return {"count": self.count, "firstRequest": self.window_start}

    @classmethod
    def from_dict(cls, data: Any) -> Optional["RateRecord"]:
        if not isinstance(data, dict):
            return None
        count = data.get("count")
        first = data.get("firstRequest")
        # bool is an int subclass but never a valid counter
        if not isinstance(count, int) or isinstance(count, bool) or count < 1:
            return None
        if not isinstance(first, int) or isinstance(first, bool):
            return None
        return cls(count=count, window_start=first)


class SlidingWindowCounter:
    """Durable ``address -> RateRecord`` mapping.

    All access goes through :meth:`transaction`, which holds the counter's
    lock for the whole load-mutate-save cycle.
    """

    def __init__(self, path: Union[str, Path], name: str = "rate_limit") -> None:
        self._store = JsonFileStore(path, name)
        self._records: Dict[str, RateRecord] = {}
        self._loaded = False
        self._lock = Lock()

    def _load(self) -> None:
        records = {}
        for address, raw in self._store.read({}).items():
            record = RateRecord.from_dict(raw)
            if record is None:
                LOGGER.warning(
                    "skipping malformed rate record",
                    extra={"store": self._store.name, "client_ip": address},
                )
                continue
            records[address] = record
        self._records = records
        self._loaded = True

    @contextmanager
    def transaction(self) -> Iterator[Dict[str, RateRecord]]:
        """Yield the live mapping under the lock and persist it on clean exit."""

        with self._lock:
            if not self._loaded:
                self._load()
            yield self._records
            self._store.write(
                {address: record.to_dict() for address, record in self._records.items()}
            )

    def evict_stale(self, records: Dict[str, RateRecord], now: int, window_ms: int) -> int:
        """Drop every record whose window has elapsed; return how many went."""

        stale = [address for address, record in records.items() if record.is_stale(now, window_ms)]
        for address in stale:
            del records[address]
        return len(stale)

    def snapshot(self) -> Dict[str, RateRecord]:
        with self._lock:
            if not self._loaded:
                self._load()
            return {
                address: RateRecord(record.count, record.window_start)
                for address, record in self._records.items()
            }


class RateLimitEngine:
    """Counts hits per address and bans addresses that exceed the limit."""

    def __init__(
        self,
        counter: SlidingWindowCounter,
        banlist: PersistentSet,
        *,
        clock: Clock = now_ms,
    ) -> None:
        self._counter = counter
        self._banlist = banlist
        self._clock = clock

    def observe(self, address: str, window_ms: int, limit: int) -> Decision:
        """Record one hit for ``address``.

        Stale records for every address are evicted before the current
        address is counted, so an expired window is never reused. When the
        count goes past ``limit`` the record is dropped and the address is
        banned, both under the counter lock, so only one caller can see the
        limit crossed and no new window opens before the ban is in place.
        """

        decision = Decision.CONTINUE
        with self._counter.transaction() as records:
            now = self._clock()
            evicted = self._counter.evict_stale(records, now, window_ms)
            if evicted:
                LOGGER.debug("evicted %d stale rate records", evicted)
            record = records.get(address)
            if record is None:
                record = records[address] = RateRecord(count=0, window_start=now)
            record.count += 1
            if record.count > limit:
                del records[address]
                decision = Decision.PROMOTE
                # lock order is always counter -> ban list
                self._banlist.add(address)

        if decision is Decision.PROMOTE:
            LOGGER.warning(
                "rate limit of %d per %dms exceeded, address banned",
                limit,
                window_ms,
                extra={"client_ip": address, "decision": decision.value},
            )
        return decision
