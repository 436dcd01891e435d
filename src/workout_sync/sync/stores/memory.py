"""In-memory store adapters.

``InMemoryLocalStore`` and ``InMemoryRemoteStore`` implement the
``LocalStore`` and ``RemoteStore`` contracts with plain dicts behind a
lock.  They back the test-suite and the ``--database :memory:`` CLI mode.

The remote store stamps a server-side ``lastModified`` on every uploaded
document; ``download(since=...)`` returns only documents stamped strictly
after ``since``.
"""

from __future__ import annotations

import copy
import threading
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime
from typing import Any

from ..entities import SyncEntity
from ..errors import LocalStoreError, RemoteTransportError
from ..policies import utc_now


def _key(collection: Any) -> str:
    return getattr(collection, "value", collection)


class InMemoryLocalStore:
    """Dict-backed local store, keyed by collection then primary key."""

    def __init__(self) -> None:
        self._tables: dict[str, dict[str, SyncEntity]] = {}
        self._lock = threading.RLock()

    def _table(self, collection: Any) -> dict[str, SyncEntity]:
        return self._tables.setdefault(_key(collection), {})

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_all(self, collection: Any, owner_id: str | None) -> list[SyncEntity]:
        with self._lock:
            return [
                r for r in self._table(collection).values()
                if r.user_id == owner_id
            ]

    def get(self, collection: Any, record_id: str) -> SyncEntity | None:
        with self._lock:
            return self._table(collection).get(record_id)

    def count(self, collection: Any, owner_id: str | None) -> int:
        return len(self.get_all(collection, owner_id))

    def existing_ids(self, collection: Any, ids: Iterable[str]) -> set[str]:
        with self._lock:
            table = self._table(collection)
            return {i for i in ids if i in table}

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(self, collection: Any, record: SyncEntity) -> None:
        if not record.id:
            raise LocalStoreError(f"{_key(collection)}: record has no id")
        with self._lock:
            self._table(collection)[record.id] = record

    def insert_if_absent(self, collection: Any, record: SyncEntity) -> bool:
        if not record.id:
            raise LocalStoreError(f"{_key(collection)}: record has no id")
        with self._lock:
            table = self._table(collection)
            if record.id in table:
                return False
            table[record.id] = record
            return True

    def delete_all_for_owner(self, collection: Any, owner_id: str) -> int:
        with self._lock:
            table = self._table(collection)
            doomed = [i for i, r in table.items() if r.user_id == owner_id]
            for record_id in doomed:
                del table[record_id]
            return len(doomed)


class InMemoryRemoteStore:
    """Dict-backed remote document store.

    Args:
        clock: Source of server timestamps for ``lastModified``.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now) -> None:
        self._clock = clock
        # collection -> doc id -> (document, lastModified)
        self._docs: dict[str, dict[str, tuple[dict, datetime]]] = {}
        self._lock = threading.Lock()
        self.failures: dict[tuple[str, str], Exception] = {}
        self.calls: list[tuple[str, str, str | None, datetime | None]] = []

    # ------------------------------------------------------------------
    # RemoteStore
    # ------------------------------------------------------------------

    def upload(
        self, collection: Any, owner_id: str, documents: Sequence[dict]
    ) -> None:
        self._record("upload", collection, owner_id, None)
        self.put(collection, documents)

    def download(
        self, collection: Any, owner_id: str | None, since: datetime | None
    ) -> list[dict]:
        self._record("download", collection, owner_id, since)
        with self._lock:
            entries = list(self._docs.get(_key(collection), {}).values())
        # Newest first, like the hosted store.
        entries.sort(key=lambda entry: entry[1], reverse=True)
        return [
            dict(copy.deepcopy(doc), lastModified=stamp.isoformat())
            for doc, stamp in entries
            if (owner_id is None or doc.get("userId") == owner_id)
            and (since is None or stamp > since)
        ]

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    def put(
        self,
        collection: Any,
        documents: Iterable[dict],
        modified_at: datetime | None = None,
    ) -> None:
        """Store *documents* as if written by any client."""
        stamp = modified_at or self._clock()
        with self._lock:
            table = self._docs.setdefault(_key(collection), {})
            for doc in documents:
                doc_id = str(doc.get("id") or doc.get("localId") or "")
                stored = copy.deepcopy(doc)
                stored.pop("lastModified", None)
                table[doc_id] = (stored, stamp)

    def documents(self, collection: Any) -> list[dict]:
        with self._lock:
            return [
                copy.deepcopy(doc)
                for doc, _ in self._docs.get(_key(collection), {}).values()
            ]

    def fail(
        self,
        operation: str,
        collection: Any,
        exc: Exception | None = None,
    ) -> None:
        """Make the next and later *operation* calls on *collection* raise."""
        self.failures[(operation, _key(collection))] = exc or (
            RemoteTransportError(f"{operation} {_key(collection)} unavailable")
        )

    def _record(
        self,
        operation: str,
        collection: Any,
        owner_id: str | None,
        since: datetime | None,
    ) -> None:
        self.calls.append((operation, _key(collection), owner_id, since))
        failure = self.failures.get((operation, _key(collection)))
        if failure is not None:
            raise failure
