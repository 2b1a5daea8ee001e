"""Durable key -> record storage for entitlements.

Every backend honours the same contract: ``load`` never raises and answers an
empty mapping when storage is missing or unreadable, ``save`` never raises
and reports success as a boolean. Stores do not lock; callers serialize their
own load-mutate-save sequences.
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Mapping, Optional, Protocol, Union

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor
from pydantic import ValidationError

from .exceptions import PersistenceError
from .models import EntitlementRecord, sort_packs

logger = logging.getLogger(__name__)

EntitlementMapping = Dict[str, EntitlementRecord]


class EntitlementStore(Protocol):
    """Persistence operations required by the entitlement service."""

    def load(self) -> EntitlementMapping:
        ...

    def save(self, entitlements: Mapping[str, EntitlementRecord]) -> bool:
        ...


def _records_from_document(document: Mapping[str, Any]) -> EntitlementMapping:
    records: EntitlementMapping = {}
    for client_key, raw in document.items():
        if not isinstance(raw, dict):
            logger.warning("Skipping malformed entitlement record for %s", client_key)
            continue
        try:
            records[str(client_key)] = EntitlementRecord.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Skipping invalid entitlement record for %s: %s", client_key, exc)
    return records


def _records_to_document(entitlements: Mapping[str, EntitlementRecord]) -> Dict[str, Any]:
    return {
        client_key: record.model_dump(mode="json", by_alias=True)
        for client_key, record in entitlements.items()
    }


class InMemoryEntitlementStore:
    """Dictionary backed store for tests and local development."""

    def __init__(self, initial: Optional[Mapping[str, EntitlementRecord]] = None) -> None:
        self._records: EntitlementMapping = dict(initial or {})
        self.save_count = 0

    def load(self) -> EntitlementMapping:
        return dict(self._records)

    def save(self, entitlements: Mapping[str, EntitlementRecord]) -> bool:
        self._records = dict(entitlements)
        self.save_count += 1
        return True


class JsonFileEntitlementStore:
    """Keeps the whole mapping in one JSON document on disk."""

    def __init__(self, path: Union[str, Path]) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> EntitlementMapping:
        try:
            document = self._read()
        except PersistenceError as exc:
            logger.error("Error loading entitlements from %s: %s", self._path, exc)
            return {}
        return _records_from_document(document)

    def save(self, entitlements: Mapping[str, EntitlementRecord]) -> bool:
        try:
            self._write(_records_to_document(entitlements))
        except PersistenceError as exc:
            logger.error("Error saving entitlements to %s: %s", self._path, exc)
            return False
        return True

    def _read(self) -> Mapping[str, Any]:
        try:
            if not self._path.exists():
                return {}
            text = self._path.read_text(encoding="utf-8")
            document = json.loads(text) if text.strip() else {}
        except (OSError, ValueError) as exc:
            raise PersistenceError(f"Unreadable entitlement file: {exc}") from exc
        if not isinstance(document, dict):
            raise PersistenceError("Entitlement file does not contain a JSON object")
        return document

    def _write(self, document: Mapping[str, Any]) -> None:
        tmp_path: Optional[str] = None
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=str(self._path.parent), prefix=".entitlements-", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(document, handle, indent=2)
            os.replace(tmp_path, self._path)
            tmp_path = None
        except (OSError, TypeError, ValueError) as exc:
            raise PersistenceError(f"Could not write entitlement file: {exc}") from exc
        finally:
            if tmp_path is not None:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    logger.debug("Temporary entitlement file %s already gone", tmp_path)


_CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS client_entitlements (
    client_key TEXT PRIMARY KEY,
    packs JSONB NOT NULL DEFAULT '[]'::jsonb,
    pro BOOLEAN NOT NULL DEFAULT FALSE,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
)
"""

_UPSERT_SQL = """
INSERT INTO client_entitlements (client_key, packs, pro, updated_at)
VALUES (%s, %s, %s, %s)
ON CONFLICT (client_key) DO UPDATE SET
    packs = EXCLUDED.packs,
    pro = EXCLUDED.pro,
    updated_at = EXCLUDED.updated_at
"""


def _row_to_record(row: Mapping[str, Any]) -> EntitlementRecord:
    return EntitlementRecord(
        packs=row.get("packs") or [],
        subscription_active=bool(row.get("pro")),
        last_updated=row["updated_at"],
    )


class PostgresEntitlementStore:
    """Stores one row per client key; a save upserts the full mapping in one transaction."""

    def __init__(self, connect: Callable[[], PgConnection]) -> None:
        self._connect = connect

    @contextmanager
    def _cursor(self) -> Iterator[PgCursor]:
        try:
            connection = self._connect()
        except psycopg2.Error as exc:
            raise PersistenceError(f"Could not connect to entitlement database: {exc}") from exc
        try:
            cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            try:
                yield cursor
                connection.commit()
            finally:
                cursor.close()
        except psycopg2.Error as exc:
            connection.rollback()
            raise PersistenceError(f"Entitlement database error: {exc}") from exc
        except Exception:
            connection.rollback()
            raise
        finally:
            connection.close()

    def ensure_schema(self) -> bool:
        try:
            with self._cursor() as cursor:
                cursor.execute(_CREATE_TABLE_SQL)
        except PersistenceError as exc:
            logger.error("Could not ensure entitlement schema: %s", exc)
            return False
        return True

    def load(self) -> EntitlementMapping:
        try:
            with self._cursor() as cursor:
                cursor.execute("SELECT client_key, packs, pro, updated_at FROM client_entitlements")
                rows = cursor.fetchall()
        except PersistenceError as exc:
            logger.error("Error loading entitlements from database: %s", exc)
            return {}

        records: EntitlementMapping = {}
        for row in rows:
            try:
                records[row["client_key"]] = _row_to_record(row)
            except (KeyError, ValidationError) as exc:
                logger.warning("Skipping invalid entitlement row %s: %s", row.get("client_key"), exc)
        return records

    def save(self, entitlements: Mapping[str, EntitlementRecord]) -> bool:
        rows = [
            (
                client_key,
                psycopg2.extras.Json(sort_packs(record.packs)),
                record.subscription_active,
                record.last_updated,
            )
            for client_key, record in entitlements.items()
        ]
        try:
            with self._cursor() as cursor:
                if rows:
                    cursor.executemany(_UPSERT_SQL, rows)
        except PersistenceError as exc:
            logger.error("Error saving entitlements to database: %s", exc)
            return False
        return True


__all__ = [
    "EntitlementMapping",
    "EntitlementStore",
    "InMemoryEntitlementStore",
    "JsonFileEntitlementStore",
    "PostgresEntitlementStore",
]
