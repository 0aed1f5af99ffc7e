"""Bounded, newest-first audit log of engine events.

Entries are also mirrored to the ``looptrade.events`` logger so they reach
whatever handlers the host process configured.
"""

import logging
from collections import deque
from datetime import datetime, timezone
from typing import Optional

from looptrade.models import LogCategory, LogEntry

logger = logging.getLogger("looptrade.events")

DEFAULT_CAPACITY = 100


class EventLog:
    """Fixed-capacity append-only log; the oldest entry is evicted when full."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._entries: deque[LogEntry] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._entries.maxlen

    def __len__(self) -> int:
        return len(self._entries)

    def append(
        self,
        category: LogCategory,
        message: str,
        timestamp: Optional[datetime] = None,
        level: int = logging.INFO,
    ) -> LogEntry:
        """Record an event and return the stored entry."""
        entry = LogEntry(
            timestamp=timestamp or datetime.now(timezone.utc),
            category=LogCategory(category),
            message=message,
        )
        self._entries.appendleft(entry)
        logger.log(level, "[%s] %s", entry.category.value, message)
        return entry

    def entries(
        self,
        limit: Optional[int] = None,
        category: Optional[LogCategory] = None,
    ) -> list[LogEntry]:
        """Entries newest-first, optionally filtered and truncated."""
        result = [
            e for e in self._entries
            if category is None or e.category == LogCategory(category)
        ]
        if limit is not None:
            result = result[:limit]
        return result
