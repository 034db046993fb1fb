"""Bounded append-only log buffer for session output."""

from __future__ import annotations

import threading
from collections import deque

from ptychat.session.models import LogEntry


class LogBuffer:
    """Thread-safe bounded buffer of :class:`LogEntry` records.

    Keeps the most recent ``max_entries`` entries in append order; older
    entries are dropped once the bound is reached.
    """

    def __init__(self, max_entries: int = 10_000) -> None:
        self._entries: deque[LogEntry] = deque(maxlen=max_entries)
        self._lock = threading.Lock()

    def append(self, entry: LogEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    def read_tail(self, n: int | None = None) -> list[LogEntry]:
        """Read the last N entries (all of them when ``n`` is None)."""
        with self._lock:
            entries = list(self._entries)
        if n is None:
            return entries
        if n <= 0:
            return []
        return entries[-n:] if len(entries) > n else entries

    @property
    def entry_count(self) -> int:
        """Current number of entries in the buffer."""
        with self._lock:
            return len(self._entries)

    def __len__(self) -> int:
        return self.entry_count
