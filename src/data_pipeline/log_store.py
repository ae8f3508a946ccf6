"""
Data Pipeline - Console Log Store
===================================
Bounded, append-only record of link traffic for display.

Responsibilities:
- Keep the most recent entries (2000 by default) and drop older ones
- Notify subscribers of each new entry
- Export the retained entries
"""

from __future__ import annotations

import json
import threading
import uuid
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from loguru import logger
from pydantic import BaseModel, Field

from hardware_interface import LogKind

DEFAULT_MAX_ENTRIES = 2000


def _entry_id() -> str:
    return uuid.uuid4().hex[:9]


class LogEntry(BaseModel):
    """One line of console history."""
    id: str = Field(default_factory=_entry_id)
    timestamp: datetime = Field(default_factory=datetime.now)
    kind: LogKind
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class LogConfig(BaseModel):
    """Console history settings."""
    max_entries: int = Field(DEFAULT_MAX_ENTRIES, ge=1)


class LogStore:
    """
    Ring buffer of log entries.

    Thread-safe so a blocking serial backend may add entries from
    its own thread.
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        """
        Initialize log store.

        Args:
            max_entries: Number of entries retained
        """
        if max_entries < 1:
            raise ValueError(f"max_entries must be positive, got {max_entries}")

        self._entries: deque = deque(maxlen=max_entries)
        self._lock = threading.RLock()
        self._subscribers: List[Callable[[LogEntry], None]] = []

        # Statistics
        self._total_added = 0
        self._counts: Dict[LogKind, int] = {kind: 0 for kind in LogKind}

    @property
    def max_entries(self) -> int:
        return self._entries.maxlen

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def add(self, kind: Union[LogKind, str], message: str) -> LogEntry:
        """
        Append an entry, evicting the oldest one when full.

        Args:
            kind: rx, tx, info or error
            message: Display text
        """
        entry = LogEntry(kind=LogKind(kind), message=message)
        with self._lock:
            self._entries.append(entry)
            self._total_added += 1
            self._counts[entry.kind] += 1

        self._notify_subscribers(entry)
        return entry

    def entries(self, kind: Optional[LogKind] = None) -> List[LogEntry]:
        """Retained entries, oldest first, optionally of one kind."""
        with self._lock:
            items = list(self._entries)
        if kind is not None:
            items = [e for e in items if e.kind == LogKind(kind)]
        return items

    def tail(self, count: int) -> List[LogEntry]:
        """The ``count`` most recent entries."""
        if count <= 0:
            return []
        with self._lock:
            return list(self._entries)[-count:]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def subscribe(self, callback: Callable[[LogEntry], None]) -> None:
        """
        Subscribe to new entries.

        Args:
            callback: Function to call with each new entry
        """
        self._subscribers.append(callback)
        logger.debug(f"Added log subscriber, total: {len(self._subscribers)}")

    def unsubscribe(self, callback: Callable) -> None:
        """Remove a subscriber."""
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def _notify_subscribers(self, entry: LogEntry) -> None:
        for callback in self._subscribers:
            try:
                callback(entry)
            except Exception as e:
                logger.error(f"Log subscriber error: {e}")

    def get_statistics(self) -> Dict[str, Any]:
        """Get log store statistics."""
        with self._lock:
            return {
                "retained": len(self._entries),
                "max_entries": self._entries.maxlen,
                "total_added": self._total_added,
                "by_kind": {kind.value: n for kind, n in self._counts.items()},
                "subscriber_count": len(self._subscribers),
            }

    def export_to_json(self, filepath: Union[str, Path]) -> Path:
        """
        Export retained entries to JSON.

        Args:
            filepath: Output file path
        """
        path = Path(filepath)
        data = [entry.to_dict() for entry in self.entries()]
        with open(path, "w") as f:
            json.dump(data, f, indent=2)

        logger.info(f"Exported {len(data)} log entries to {path}")
        return path
