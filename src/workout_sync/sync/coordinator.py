"""Sync coordinator: the public entry points of the sync engine.

The ``SyncCoordinator`` serializes sync passes behind one mutex, picks the
scope, detects fresh installs, sequences download then upload, persists
the baseline and translates every failure into a ``SyncOutcome``.  No
exception crosses its public methods.

Entry points (all share the same mutex):

- ``sync_all()``: catalog + owner data, download then upload.
- ``sync_system_reference_data()``: catalog only; no sign-in needed.
- ``sync_user_data(owner_id)``: owner data only, download then upload.
- ``restore_from_cloud()``: wipe the owner's local rows, then a full
  download with no upload.

Each has an ``*_async`` twin that offloads the pass to a worker thread.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime, timedelta

from ..core.async_utils import run_sync
from .collections import PRIMARY_COLLECTION, user_collections
from .downloader import Downloader
from .errors import SyncError
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
from .policies import utc_now
from .ports import BaselineStore, LocalStore, RemoteStore, SessionProvider
from .runner import PhaseRunner, Step
from .uploader import Uploader

logger = logging.getLogger(__name__)

SCOPE_ALL = "all"
SCOPE_USER = "user"
SCOPE_REFERENCE = "reference"
SCOPE_RESTORE = "restore"


class SyncCoordinator:
    """Serialize and sequence sync passes.

    Args:
        local: Local store adapter.
        remote: Remote store adapter.
        baseline_store: Where last-successful-sync timestamps live.
        session: Resolves the signed-in owner.
        installation_id: Identifies this installation in baseline keys.
        cooldown: Minimum interval between successful ``sync_all`` passes;
            ``None`` or zero disables throttling.
        clock: Returns the current UTC time (injectable for tests).
    """

    def __init__(
        self,
        local: LocalStore,
        remote: RemoteStore,
        baseline_store: BaselineStore,
        session: SessionProvider,
        installation_id: str,
        *,
        cooldown: timedelta | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.local = local
        self.remote = remote
        self.baseline_store = baseline_store
        self.session = session
        self.installation_id = installation_id
        self.cooldown = cooldown
        self.clock = clock

        self.downloader = Downloader(local, remote)
        self.uploader = Uploader(local, remote)

        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    def sync_all(self) -> SyncOutcome:
        """Full bidirectional sync for the signed-in owner."""
        owner_id, failure = self._resolve_owner("sync_all")
        if failure is not None:
            return failure

        with self._lock:
            try:
                skipped = self._check_cooldown(owner_id)
            except SyncError as exc:
                return DownloadFailed(cause=FailureCause.from_error(exc))
            if skipped is not None:
                return skipped
            return self._sync_owner(owner_id, SCOPE_ALL, include_catalog=True)

    def sync_system_reference_data(self) -> SyncOutcome:
        """Download the global exercise catalog only."""
        with self._lock:
            try:
                started = self._now()
            except SyncError as exc:
                return DownloadFailed(cause=FailureCause.from_error(exc))
            downloads: list[CollectionResult] = []
            try:
                self.downloader.run(
                    None,
                    None,
                    include_catalog=True,
                    include_user=False,
                    results=downloads,
                )
                finished = self._now()
            except SyncError as exc:
                return DownloadFailed(
                    cause=FailureCause.from_error(exc),
                    report=self._report(
                        SCOPE_REFERENCE, None, True, started, downloads
                    ),
                )
            logger.info("Reference data sync complete")
            return Success(
                timestamp=finished,
                report=self._report(
                    SCOPE_REFERENCE, None, True, started, downloads,
                    completed_at=finished,
                ),
            )

    def sync_user_data(self, owner_id: str | None = None) -> SyncOutcome:
        """Owner-scoped download and upload, skipping the catalog.

        Args:
            owner_id: Owner to sync; defaults to the signed-in owner.
        """
        owner_id, failure = self._resolve_owner("sync_user_data", owner_id)
        if failure is not None:
            return failure

        with self._lock:
            return self._sync_owner(
                owner_id, SCOPE_USER, include_catalog=False
            )

    def restore_from_cloud(self) -> SyncOutcome:
        """Replace the owner's local data with the remote copy.

        Deletes every owner-scoped local row (children before parents),
        then downloads everything with no incremental filter.  Nothing is
        uploaded.  Partial deletes are not rolled back on failure.
        """
        owner_id, failure = self._resolve_owner("restore_from_cloud")
        if failure is not None:
            return failure

        with self._lock:
            try:
                started = self._now()
            except SyncError as exc:
                return DownloadFailed(cause=FailureCause.from_error(exc))
            downloads: list[CollectionResult] = []
            logger.warning(
                "Restoring from cloud: deleting local data for %s", owner_id
            )
            try:
                self._delete_owner_data(owner_id)
                self.downloader.run(
                    owner_id, None, include_catalog=True, results=downloads
                )
                finished = self._now()
                self._persist_baseline(owner_id, SCOPE_ALL, finished)
            except SyncError as exc:
                return DownloadFailed(
                    cause=FailureCause.from_error(exc),
                    report=self._report(
                        SCOPE_RESTORE, owner_id, True, started, downloads
                    ),
                )
            logger.info("Restore complete for %s", owner_id)
            return Success(
                timestamp=finished,
                report=self._report(
                    SCOPE_RESTORE, owner_id, True, started, downloads,
                    completed_at=finished,
                ),
            )

    # ------------------------------------------------------------------
    # Async wrappers
    # ------------------------------------------------------------------

    async def sync_all_async(self) -> SyncOutcome:
        return await run_sync(self.sync_all)

    async def sync_system_reference_data_async(self) -> SyncOutcome:
        return await run_sync(self.sync_system_reference_data)

    async def sync_user_data_async(
        self, owner_id: str | None = None
    ) -> SyncOutcome:
        return await run_sync(self.sync_user_data, owner_id)

    async def restore_from_cloud_async(self) -> SyncOutcome:
        return await run_sync(self.restore_from_cloud)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def last_sync_time(
        self, owner_id: str, scope: str = SCOPE_ALL
    ) -> datetime | None:
        """Stored baseline for *owner_id* on this installation."""
        return self.baseline_store.get_last_sync_time(
            owner_id, self.installation_id, scope
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _resolve_owner(
        self, entry_point: str, owner_id: str | None = None
    ) -> tuple[str | None, NotAuthenticated | None]:
        """Return ``(owner_id, None)`` or ``(None, NotAuthenticated)``.

        A session provider that raises counts as signed out.
        """
        if not owner_id:
            try:
                owner_id = PhaseRunner("prepare").run_step(
                    Step("session:owner", self.session.get_current_owner_id)
                )
            except SyncError as exc:
                logger.warning("%s: session lookup failed: %s", entry_point, exc)
                return None, NotAuthenticated(
                    message=f"not authenticated: {exc}"
                )
        if not owner_id:
            logger.warning("%s: no signed-in owner", entry_point)
            return None, NotAuthenticated()
        return owner_id, None

    def _now(self) -> datetime:
        return PhaseRunner("prepare").run_step(Step("clock", self.clock))

    def _check_cooldown(self, owner_id: str) -> Skipped | None:
        """Skip when the last full sync finished less than ``cooldown`` ago.

        The last full sync time is the ``"all"`` baseline, so the window
        survives process restarts.
        """
        if not self.cooldown:
            return None
        last_success = PhaseRunner("prepare").run_step(
            Step(
                "baseline:read",
                lambda: self.baseline_store.get_last_sync_time(
                    owner_id, self.installation_id, SCOPE_ALL
                ),
            )
        )
        if last_success is None:
            return None
        remaining = last_success + self.cooldown - self._now()
        if remaining > timedelta(0):
            logger.info(
                "Skipping sync: cooldown, %ds remaining",
                int(remaining.total_seconds()),
            )
            return Skipped(
                reason=f"cooldown: last sync completed at "
                f"{last_success.isoformat()}",
                remaining=remaining,
            )
        return None

    def _sync_owner(
        self, owner_id: str, scope: str, *, include_catalog: bool
    ) -> SyncOutcome:
        """Download then upload for one owner.  Caller holds the lock."""
        try:
            started = self._now()
        except SyncError as exc:
            return DownloadFailed(cause=FailureCause.from_error(exc))
        downloads: list[CollectionResult] = []
        uploads: list[CollectionResult] = []
        baseline: datetime | None = None

        try:
            baseline = self._resolve_baseline(owner_id, scope)
            self.downloader.run(
                owner_id,
                baseline,
                include_catalog=include_catalog,
                results=downloads,
            )
        except SyncError as exc:
            return DownloadFailed(
                cause=FailureCause.from_error(exc),
                report=self._report(
                    scope, owner_id, baseline is None, started, downloads
                ),
            )

        try:
            self.uploader.run(owner_id, results=uploads)
            finished = self._now()
            self._persist_baseline(owner_id, scope, finished)
        except SyncError as exc:
            return UploadFailed(
                cause=FailureCause.from_error(exc),
                report=self._report(
                    scope, owner_id, baseline is None, started, downloads,
                    uploads,
                ),
            )

        logger.info(
            "Sync (%s) complete for %s in %.1fs",
            scope,
            owner_id,
            (finished - started).total_seconds(),
        )
        return Success(
            timestamp=finished,
            report=self._report(
                scope, owner_id, baseline is None, started, downloads,
                uploads, completed_at=finished,
            ),
        )

    def _resolve_baseline(self, owner_id: str, scope: str) -> datetime | None:
        runner = PhaseRunner("prepare")
        is_empty_local = (
            runner.run_step(
                Step(
                    f"count:{PRIMARY_COLLECTION.value}",
                    lambda: self.local.count(PRIMARY_COLLECTION, owner_id),
                )
            )
            == 0
        )
        baseline = runner.run_step(
            Step(
                "baseline:read",
                lambda: self.baseline_store.get_last_sync_time(
                    owner_id, self.installation_id, scope
                ),
            )
        )
        if is_empty_local and baseline is not None:
            logger.info(
                "Local store empty but baseline %s found for %s; "
                "forcing full download",
                baseline.isoformat(),
                owner_id,
            )
            return None
        return baseline

    def _persist_baseline(
        self, owner_id: str, scope: str, timestamp: datetime
    ) -> None:
        PhaseRunner("persist").run_step(
            Step(
                "baseline:write",
                lambda: self.baseline_store.set_last_sync_time(
                    owner_id, self.installation_id, scope, timestamp
                ),
            )
        )

    def _delete_owner_data(self, owner_id: str) -> None:
        runner = PhaseRunner("restore")
        for collection in reversed(user_collections()):
            deleted = runner.run_step(
                Step(
                    f"delete:{collection.value}",
                    lambda c=collection: self.local.delete_all_for_owner(
                        c, owner_id
                    ),
                )
            )
            logger.debug("Deleted %d %s row(s)", deleted, collection.value)

    @staticmethod
    def _report(
        scope: str,
        owner_id: str | None,
        full: bool,
        started: datetime,
        downloads: list[CollectionResult],
        uploads: list[CollectionResult] | None = None,
        *,
        completed_at: datetime | None = None,
    ) -> SyncReport:
        return SyncReport(
            scope=scope,
            owner_id=owner_id,
            full=full,
            downloads=list(downloads),
            uploads=list(uploads or []),
            started_at=started,
            completed_at=completed_at,
        )
