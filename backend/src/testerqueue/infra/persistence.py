"""Crash-safe JSON snapshots shared by all stores.

Each store owns one document. Writes go to a temporary file in the target
directory and are swapped in with ``os.replace``, so a crash mid-write leaves
the previous snapshot intact. Routine mutations only mark the store dirty;
``flush`` writes at most once per debounce window unless forced.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from testerqueue.clock import Clock, utc_now
from testerqueue.errors import PersistenceError

logger = logging.getLogger(__name__)


class SnapshotFile:
    """A single JSON document on disk."""

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def load(self) -> dict[str, Any] | None:
        """Return the stored document, or None if missing or unreadable."""
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error(f"Error loading data from {self.path}: {e}")
            return None
        if not isinstance(data, dict):
            logger.error(f"Ignoring {self.path}: expected a JSON object, got {type(data).__name__}")
            return None
        return data

    def save(self, data: dict[str, Any]) -> None:
        """Atomically replace the document on disk."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(temp_name, self.path)
        except (OSError, TypeError, ValueError) as e:
            try:
                os.unlink(temp_name)
            except FileNotFoundError:
                pass
            raise PersistenceError(f"Error saving data to {self.path}: {e}") from e


class PersistentStore(ABC):
    """Base for stores that persist one snapshot document with debounced writes."""

    def __init__(
        self,
        snapshot: SnapshotFile,
        clock: Clock = utc_now,
        debounce_seconds: float = 2.0,
    ):
        self._snapshot = snapshot
        self._clock = clock
        self._debounce = timedelta(seconds=debounce_seconds)
        self._dirty = False
        self._last_saved: datetime | None = None

    @abstractmethod
    def to_document(self) -> dict[str, Any]:
        """Serialize the full store state."""

    @abstractmethod
    def restore(self, document: dict[str, Any]) -> None:
        """Replace in-memory state from a document. Empty dict means defaults."""

    @property
    def dirty(self) -> bool:
        return self._dirty

    def load(self) -> None:
        """Load state from disk. Missing or invalid documents yield an empty store."""
        document = self._snapshot.load()
        if document is None:
            self.restore({})
            return
        try:
            self.restore(document)
        except (ValidationError, ValueError, TypeError, KeyError) as e:
            logger.error(f"Discarding invalid snapshot {self._snapshot.path}: {e}")
            self.restore({})

    def mark_dirty(self) -> None:
        self._dirty = True

    def flush(self, force: bool = False) -> bool:
        """Write the snapshot if dirty and the debounce window has passed.

        Returns True if a write happened. Write failures are logged and the
        store stays dirty so the next flush retries; memory is not rolled back.
        """
        now = self._clock()
        if not force:
            if not self._dirty:
                return False
            if self._last_saved is not None and now - self._last_saved < self._debounce:
                return False
        try:
            self._snapshot.save(self.to_document())
        except PersistenceError as e:
            logger.error(str(e))
            return False
        self._dirty = False
        self._last_saved = now
        return True

    def touch(self) -> None:
        """Mark dirty and attempt a debounced write."""
        self.mark_dirty()
        self.flush()
