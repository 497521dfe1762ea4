"""Durable JSON files with fail-open reads and atomic whole-file writes."""
from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Union

LOGGER = logging.getLogger(__name__)


class JsonFileStore:
    """A single JSON document on disk.

    Reads never raise: a missing, unreadable or malformed file yields the
    caller's default. Writes go to a temporary file in the same directory
    and are moved into place with ``os.replace``, so readers only ever see
    a complete document. The store does no locking of its own; owners
    serialize their read-modify-write cycles.
    """

    def __init__(self, path: Union[str, Path], name: str) -> None:
        self.path = Path(path)
        self.name = name

    def read(self, default: Any) -> Any:
        """Return the decoded document, or ``default`` if it cannot be read.

        ``default`` also dictates the expected top-level type; a document of
        another type is treated as corrupt.
        """

        try:
            with self.path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except FileNotFoundError:
            LOGGER.warning(
                "store file missing, starting empty", extra={"store": self.name, "path": str(self.path)}
            )
            return default
        except (OSError, ValueError) as exc:
            LOGGER.warning(
                "store file unreadable, starting empty: %s",
                exc,
                extra={"store": self.name, "path": str(self.path)},
            )
            return default
        if not isinstance(data, type(default)):
            LOGGER.warning(
                "store file has unexpected shape %s, starting empty",
                type(data).__name__,
                extra={"store": self.name, "path": str(self.path)},
            )
            return default
        return data

    def write(self, data: Any) -> bool:
        """Replace the document with ``data``; return ``False`` on failure."""

        tmp_name = None
        try:
            payload = json.dumps(data, indent=2)
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
            )
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self.path)
            tmp_name = None
            return True
        except (OSError, TypeError, ValueError):
            LOGGER.error(
                "failed to persist store; in-memory state is not durable",
                exc_info=True,
                extra={"store": self.name, "path": str(self.path)},
            )
            return False
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    LOGGER.debug("could not remove temp file %s", tmp_name)

    def size(self) -> int:
        """Current size of the file in bytes, ``0`` when it does not exist."""

        try:
            return self.path.stat().st_size
        except FileNotFoundError:
            return 0
        except OSError:
            LOGGER.error("failed to stat store", exc_info=True, extra={"store": self.name})
            return 0
