"""Append-only request log with destructive size-based rotation."""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from ipguard.storage import JsonFileStore

LOGGER = logging.getLogger(__name__)

ESSENTIAL_HEADERS = ("host", "referer", "content-type", "accept")


def filter_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    """Keep only the headers worth persisting, compared case-insensitively."""

    return {key: value for key, value in headers.items() if key.lower() in ESSENTIAL_HEADERS}


@dataclass(frozen=True)
class LogEntry:
    ip: str
    method: str
    endpoint: str
    timestamp: str
    user_agent: Optional[Dict[str, Any]] = None
    geo: Optional[Dict[str, Any]] = None
    body: Any = None
    headers: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["userAgent"] = data.pop("user_agent")
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LogEntry":
        headers = data.get("headers") or {}
        if not isinstance(headers, dict):
            raise ValueError(f"headers must be an object, got {type(headers).__name__}")
        return cls(
            ip=data.get("ip") or "",
            method=data.get("method") or "",
            endpoint=data.get("endpoint") or "",
            timestamp=data.get("timestamp") or "",
            user_agent=data.get("userAgent"),
            geo=data.get("geo"),
            body=data.get("body"),
            headers=dict(headers),
        )


class RequestLogStore:
    """JSON array of log entries, rewritten whole on every append.

    Rotation is destructive: when the file on disk is larger than
    ``max_size`` bytes at append time, every earlier entry is discarded
    and the log restarts with just the new entry. Nothing is archived.
    """

    def __init__(self, path: Union[str, Path], name: str = "requests") -> None:
        self._store = JsonFileStore(path, name)
        self._lock = Lock()

    def append(self, entry: LogEntry, max_size: int) -> bool:
        with self._lock:
            size = self._store.size()
            if size > max_size:
                LOGGER.info(
                    "request log is %d bytes (limit %d), clearing it",
                    size,
                    max_size,
                    extra={"store": self._store.name},
                )
                entries: List[Any] = []
            else:
                entries = self._store.read([])
            entries.append(entry.to_dict())
            return self._store.write(entries)

    def load_all(self) -> List[LogEntry]:
        """Return every stored entry; an unreadable log reads as empty."""

        entries = []
        for index, raw in enumerate(self._store.read([])):
            try:
                if not isinstance(raw, dict):
                    raise TypeError(f"entry is a {type(raw).__name__}")
                entries.append(LogEntry.from_dict(raw))
            except (TypeError, ValueError) as exc:
                LOGGER.warning(
                    "skipping malformed log entry %d: %s", index, exc, extra={"store": self._store.name}
                )
        return entries

    def save_all(self, entries: Iterable[LogEntry]) -> bool:
        """Replace the whole log with ``entries``."""

        payload = [entry.to_dict() for entry in entries]
        with self._lock:
            return self._store.write(payload)
