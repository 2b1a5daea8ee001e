"""Service applying confirmed purchases to persisted entitlement records."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Dict, Iterator, Optional, Tuple

from .models import EntitlementRecord, PackId, RestoreResult, apply_pack, merge_result
from .store import EntitlementStore

logger = logging.getLogger(__name__)

RecordChange = Callable[[EntitlementRecord, datetime], EntitlementRecord]


class KeyedLock:
    """One mutex per key, discarded once no thread holds or waits on it."""

    def __init__(self) -> None:
        self._guard = Lock()
        self._locks: Dict[str, Tuple[Lock, int]] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock, users = self._locks.get(key, (None, 0))
            if lock is None:
                lock = Lock()
            self._locks[key] = (lock, users + 1)

        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                _, users = self._locks[key]
                if users <= 1:
                    del self._locks[key]
                else:
                    self._locks[key] = (lock, users - 1)


class EntitlementService:
    """Grants packs to client keys and merges reconciled results.

    Mutations for one client key are serialized by a per-key lock. The store
    saves the full mapping, so the load-mutate-save round trip also runs under
    a commit lock to keep concurrent writers for different keys from
    overwriting each other. Neither lock is ever held across gateway calls.
    """

    def __init__(
        self,
        store: EntitlementStore,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._key_locks = KeyedLock()
        self._commit_lock = Lock()

    @property
    def store(self) -> EntitlementStore:
        return self._store

    def get_record(self, client_key: str) -> Optional[EntitlementRecord]:
        return self._store.load().get(client_key)

    def grant(self, client_key: str, pack_id: PackId) -> bool:
        """Apply ``pack_id`` to the record of ``client_key``, creating it on demand."""

        if not client_key:
            raise ValueError("client_key must be provided")

        success = self._mutate(client_key, lambda record, now: apply_pack(record, pack_id, now))
        if success:
            logger.info("Granted %s to client %s", pack_id.value, client_key)
        else:
            logger.error("Failed to persist grant of %s to client %s", pack_id.value, client_key)
        return success

    def merge(self, client_key: str, result: RestoreResult) -> bool:
        """Union a reconciled result into the stored record of ``client_key``."""

        if not client_key:
            raise ValueError("client_key must be provided")

        success = self._mutate(client_key, lambda record, now: merge_result(record, result, now))
        if not success:
            logger.error("Failed to persist reconciled entitlements for client %s", client_key)
        return success

    def _mutate(self, client_key: str, change: RecordChange) -> bool:
        with self._key_locks.hold(client_key), self._commit_lock:
            entitlements = self._store.load()
            now = self._clock()
            current = entitlements.get(client_key) or EntitlementRecord(last_updated=now)
            entitlements[client_key] = change(current, now)
            return self._store.save(entitlements)
