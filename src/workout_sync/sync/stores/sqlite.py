"""SQLite-backed local store.

Each collection is stored in its own table holding one JSON document per
record, with the primary key and owner id lifted into indexed columns::

    CREATE TABLE "workouts" (
        id TEXT PRIMARY KEY,
        user_id TEXT,
        data TEXT NOT NULL
    )

Tables are created on first use.  All ``sqlite3`` errors are re-raised as
``LocalStoreError``.  One connection is shared across threads behind a
lock; writes are committed per call.
"""

from __future__ import annotations

import logging
import re
import sqlite3
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from ..collections import Collection, get_definition
from ..entities import SyncEntity
from ..errors import LocalStoreError

logger = logging.getLogger(__name__)

_TABLE_NAME = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")


class SqliteLocalStore:
    """Local store persisted in a SQLite database file.

    Args:
        db_path: Database file path, or ``":memory:"``.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = sqlite3.connect(
                self.db_path, check_same_thread=False
            )
            self._conn.execute("PRAGMA journal_mode=WAL")
        except sqlite3.Error as exc:
            raise LocalStoreError(
                f"cannot open database {self.db_path}: {exc}"
            ) from exc
        self._lock = threading.RLock()
        self._tables: set[str] = set()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> SqliteLocalStore:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_all(self, collection: Any, owner_id: str | None) -> list[SyncEntity]:
        table = self._table(collection)
        if owner_id is None:
            sql = f'SELECT data FROM "{table}" WHERE user_id IS NULL'
            params: tuple = ()
        else:
            sql = f'SELECT data FROM "{table}" WHERE user_id = ?'
            params = (owner_id,)
        with self._cursor() as cur:
            rows = cur.execute(sql + " ORDER BY id", params).fetchall()
        return [self._load(collection, row[0]) for row in rows]

    def get(self, collection: Any, record_id: str) -> SyncEntity | None:
        table = self._table(collection)
        with self._cursor() as cur:
            row = cur.execute(
                f'SELECT data FROM "{table}" WHERE id = ?', (record_id,)
            ).fetchone()
        return self._load(collection, row[0]) if row else None

    def count(self, collection: Any, owner_id: str | None) -> int:
        table = self._table(collection)
        with self._cursor() as cur:
            if owner_id is None:
                row = cur.execute(
                    f'SELECT COUNT(*) FROM "{table}" WHERE user_id IS NULL'
                ).fetchone()
            else:
                row = cur.execute(
                    f'SELECT COUNT(*) FROM "{table}" WHERE user_id = ?',
                    (owner_id,),
                ).fetchone()
        return int(row[0])

    def existing_ids(self, collection: Any, ids: Iterable[str]) -> set[str]:
        wanted = list(set(ids))
        if not wanted:
            return set()
        table = self._table(collection)
        found: set[str] = set()
        # Stay under SQLite's bound-parameter limit.
        with self._cursor() as cur:
            for start in range(0, len(wanted), 500):
                chunk = wanted[start : start + 500]
                placeholders = ",".join("?" * len(chunk))
                rows = cur.execute(
                    f'SELECT id FROM "{table}" WHERE id IN ({placeholders})',
                    chunk,
                ).fetchall()
                found.update(row[0] for row in rows)
        return found

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(self, collection: Any, record: SyncEntity) -> None:
        table = self._table(collection)
        self._check_id(collection, record)
        with self._cursor(commit=True) as cur:
            cur.execute(
                f'INSERT INTO "{table}" (id, user_id, data) VALUES (?, ?, ?) '
                "ON CONFLICT(id) DO UPDATE SET "
                "user_id = excluded.user_id, data = excluded.data",
                (record.id, record.user_id, record.model_dump_json()),
            )

    def insert_if_absent(self, collection: Any, record: SyncEntity) -> bool:
        table = self._table(collection)
        self._check_id(collection, record)
        with self._cursor(commit=True) as cur:
            cur.execute(
                f'INSERT OR IGNORE INTO "{table}" (id, user_id, data) '
                "VALUES (?, ?, ?)",
                (record.id, record.user_id, record.model_dump_json()),
            )
            return cur.rowcount == 1

    def delete_all_for_owner(self, collection: Any, owner_id: str) -> int:
        table = self._table(collection)
        with self._cursor(commit=True) as cur:
            cur.execute(f'DELETE FROM "{table}" WHERE user_id = ?', (owner_id,))
            return cur.rowcount

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _cursor(self, commit: bool = False) -> Iterator[sqlite3.Cursor]:
        with self._lock:
            try:
                cur = self._conn.cursor()
                try:
                    yield cur
                    if commit:
                        self._conn.commit()
                finally:
                    cur.close()
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise LocalStoreError(f"sqlite: {exc}") from exc

    def _table(self, collection: Any) -> str:
        name = Collection(collection).value
        if name in self._tables:
            return name
        if not _TABLE_NAME.match(name):
            raise LocalStoreError(f"invalid collection name: {name!r}")
        with self._cursor(commit=True) as cur:
            cur.execute(
                f'CREATE TABLE IF NOT EXISTS "{name}" ('
                "id TEXT PRIMARY KEY, user_id TEXT, data TEXT NOT NULL)"
            )
            cur.execute(
                f'CREATE INDEX IF NOT EXISTS "idx_{name}_user_id" '
                f'ON "{name}" (user_id)'
            )
        self._tables.add(name)
        logger.debug("Ensured table %s", name)
        return name

    @staticmethod
    def _check_id(collection: Any, record: SyncEntity) -> None:
        if not record.id:
            raise LocalStoreError(
                f"{Collection(collection).value}: record has no id"
            )

    @staticmethod
    def _load(collection: Any, data: str) -> SyncEntity:
        entity_type = get_definition(Collection(collection)).entity_type
        return entity_type.model_validate_json(data)
