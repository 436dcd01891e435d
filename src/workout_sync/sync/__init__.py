"""Data-sync engine between the on-device store and the remote document store.

Public API for reconciling ~20 workout-tracking collections across devices.

Architecture
------------
A sync pass is a strictly sequential pipeline guarded by one mutex:
download every collection in parent-before-child order, merging each
remote record with a per-collection policy, then upload the owner's full
local snapshot, then advance the incremental baseline.  Failures never
escape as exceptions; callers receive a typed ``SyncOutcome``.

Modules:

- ``coordinator`` -- ``SyncCoordinator``: mutex, cooldown, entry points.
- ``downloader``  -- ``Downloader``: remote -> local merge pipeline.
- ``uploader``    -- ``Uploader``: local -> remote snapshot push.
- ``collections`` -- ``Collection`` registry and ``DOWNLOAD_PHASES``.
- ``policies``    -- merge strategies (upsert, insert-if-absent, ...).
- ``converters``  -- local entity <-> remote document mapping.
- ``entities``    -- local entity models.
- ``runner``      -- named-step phase runner.
- ``ports``       -- store/session protocols.
- ``state``       -- baseline store and installation id.
- ``models``      -- ``SyncReport`` and the ``SyncOutcome`` union.
- ``reporter``    -- Human-readable and JSON report formatting.
- ``stores``      -- in-memory and SQLite adapters.

Usage example
-------------
::

    from pathlib import Path
    from workout_sync.core.client import DocumentStoreClient
    from workout_sync.sync import (
        JsonBaselineStore, SqliteLocalStore, StaticSession,
        SyncCoordinator, format_outcome, load_or_create_installation_id,
    )

    state_dir = Path("~/.local/state/workout_sync").expanduser()
    coordinator = SyncCoordinator(
        local=SqliteLocalStore(state_dir / "workouts.db"),
        remote=DocumentStoreClient(config),
        baseline_store=JsonBaselineStore(state_dir),
        session=StaticSession("user-123"),
        installation_id=load_or_create_installation_id(state_dir),
    )
    print(format_outcome(coordinator.sync_all()))
"""

from .collections import COLLECTIONS, DOWNLOAD_PHASES, Collection
from .coordinator import SyncCoordinator
from .downloader import Downloader
from .errors import (
    LocalStoreError,
    NotAuthenticatedError,
    RemoteTransportError,
    SyncError,
    UnexpectedError,
)
from .models import (
    CollectionResult,
    DownloadFailed,
    FailureCause,
    NotAuthenticated,
    Skipped,
    Success,
    SyncOutcome,
    SyncReport,
    UploadFailed,
)
from .ports import StaticSession
from .reporter import (
    format_outcome,
    format_sync_report,
    outcome_to_json,
    report_to_json,
)
from .state import (
    InMemoryBaselineStore,
    JsonBaselineStore,
    load_or_create_installation_id,
)
from .stores import InMemoryLocalStore, InMemoryRemoteStore, SqliteLocalStore
from .uploader import Uploader

__all__ = [
    "COLLECTIONS",
    "DOWNLOAD_PHASES",
    "Collection",
    "CollectionResult",
    "DownloadFailed",
    "Downloader",
    "FailureCause",
    "InMemoryBaselineStore",
    "InMemoryLocalStore",
    "InMemoryRemoteStore",
    "JsonBaselineStore",
    "LocalStoreError",
    "NotAuthenticated",
    "NotAuthenticatedError",
    "RemoteTransportError",
    "Skipped",
    "SqliteLocalStore",
    "StaticSession",
    "Success",
    "SyncCoordinator",
    "SyncError",
    "SyncOutcome",
    "SyncReport",
    "UnexpectedError",
    "UploadFailed",
    "Uploader",
    "format_outcome",
    "format_sync_report",
    "load_or_create_installation_id",
    "outcome_to_json",
    "report_to_json",
]
