"""Short-lived cache for gateway reconciliation results."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Callable, Dict, Optional, Protocol

from .models import RestoreResult


class RestoreCache(Protocol):
    """Protocol describing cache operations used by the restore service."""

    def get(self, key: str) -> Optional[RestoreResult]:
        ...

    def set(self, key: str, value: RestoreResult) -> None:
        ...

    def clear(self) -> None:
        ...


@dataclass
class _CacheEntry:
    value: RestoreResult
    captured_at: datetime

    def is_expired(self, now: datetime, ttl: timedelta) -> bool:
        return now - self.captured_at >= ttl


class InMemoryRestoreCache:
    """Process-local cache keyed by client key, bounded by age and size."""

    def __init__(
        self,
        *,
        ttl_seconds: float = 300,
        max_entries: int = 10_000,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self._ttl = timedelta(seconds=ttl_seconds)
        self._max_entries = max_entries
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._entries: Dict[str, _CacheEntry] = {}
        self._lock = Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Optional[RestoreResult]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if not entry:
                return None
            if entry.is_expired(now, self._ttl):
                self._entries.pop(key, None)
                return None
            return entry.value

    def set(self, key: str, value: RestoreResult) -> None:
        now = self._clock()
        with self._lock:
            # Re-inserting moves the key to the end so eviction stays oldest-first.
            self._entries.pop(key, None)
            if len(self._entries) >= self._max_entries:
                self._sweep(now)
            while len(self._entries) >= self._max_entries:
                oldest = next(iter(self._entries))
                self._entries.pop(oldest, None)
            self._entries[key] = _CacheEntry(value=value, captured_at=now)

    def sweep(self) -> int:
        """Drop expired entries and return how many were removed."""

        with self._lock:
            return self._sweep(self._clock())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def _sweep(self, now: datetime) -> int:
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now, self._ttl)]
        for key in expired:
            self._entries.pop(key, None)
        return len(expired)
