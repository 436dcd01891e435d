"""Contracts between the sync engine and its collaborators.

The engine only talks to these protocols; concrete adapters live in
``workout_sync.sync.stores`` (local), ``workout_sync.core.client`` (remote
over HTTP), and ``workout_sync.sync.state`` (baseline metadata).

- ``LocalStore``: typed per-collection access to the on-device store.
- ``RemoteStore``: per-collection upload/download of remote documents.
- ``BaselineStore``: last-successful-sync timestamps.
- ``SessionProvider``: resolves the signed-in owner.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from .entities import SyncEntity

Document = dict[str, Any]


@runtime_checkable
class LocalStore(Protocol):
    """On-device relational store.

    Failures are raised as ``LocalStoreError``.  ``owner_id=None`` addresses
    the ownerless catalog.
    """

    def get_all(self, collection: Any, owner_id: str | None) -> list[SyncEntity]:
        ...

    def get(self, collection: Any, record_id: str) -> SyncEntity | None:
        ...

    def upsert(self, collection: Any, record: SyncEntity) -> None:
        ...

    def insert_if_absent(self, collection: Any, record: SyncEntity) -> bool:
        """Insert *record*; no-op returning ``False`` if its id exists."""
        ...

    def delete_all_for_owner(self, collection: Any, owner_id: str) -> int:
        ...

    def count(self, collection: Any, owner_id: str | None) -> int:
        ...

    def existing_ids(self, collection: Any, ids: Iterable[str]) -> set[str]:
        """Return the subset of *ids* present in *collection*."""
        ...


@runtime_checkable
class RemoteStore(Protocol):
    """Remote document store.

    Failures are raised as ``RemoteTransportError``.  Global collections
    ignore ``owner_id``.  ``since=None`` means a full fetch; otherwise only
    documents modified strictly after ``since`` are returned.
    """

    def upload(
        self, collection: Any, owner_id: str, documents: Sequence[Document]
    ) -> None:
        ...

    def download(
        self, collection: Any, owner_id: str | None, since: datetime | None
    ) -> list[Document]:
        ...


@runtime_checkable
class BaselineStore(Protocol):
    def get_last_sync_time(
        self, owner_id: str, installation_id: str, scope: str
    ) -> datetime | None:
        ...

    def set_last_sync_time(
        self,
        owner_id: str,
        installation_id: str,
        scope: str,
        timestamp: datetime,
    ) -> None:
        ...


@runtime_checkable
class SessionProvider(Protocol):
    def get_current_owner_id(self) -> str | None:
        ...


class StaticSession:
    """Session provider returning a fixed owner id (``None`` = signed out)."""

    def __init__(self, owner_id: str | None = None) -> None:
        self.owner_id = owner_id or None

    def get_current_owner_id(self) -> str | None:
        return self.owner_id
