"""Processed-code marker storage for the code exchange replay guard.

A marker records that an authorization code has been (or is being) exchanged.
Markers expire on their own; nothing deletes them explicitly.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Protocol

PROCESSED = "processed"


class MarkerStore(Protocol):
    """Key-value store with per-entry time-to-live."""

    async def get(self, key: str) -> str | None:
        """Return the value for key, or None if absent or expired."""
        ...

    async def put(self, key: str, value: str, ttl: float) -> None:
        """Store value under key for ttl seconds."""
        ...


@dataclass
class _Entry:
    value: str
    expires_at: float


@dataclass
class InMemoryMarkerStore:
    """Process-local marker store.

    Only coordinates requests served by a single process. Deployments with
    several workers need a shared store (Redis, a database table, ...)
    implementing the same two methods.
    """

    clock: Callable[[], float] = time.monotonic
    _entries: dict[str, _Entry] = field(default_factory=dict)

    async def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self.clock() >= entry.expires_at:
            del self._entries[key]
            return None
        return entry.value

    async def put(self, key: str, value: str, ttl: float) -> None:
        now = self.clock()
        self._purge(now)
        self._entries[key] = _Entry(value=value, expires_at=now + ttl)

    def _purge(self, now: float) -> None:
        expired = [k for k, e in self._entries.items() if now >= e.expires_at]
        for key in expired:
            del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)
