"""Pydantic models for sync results.

Defines the data contracts returned by the sync coordinator:

- ``CollectionResult``: Per-collection counts for one sync pass.
- ``SyncReport``: Aggregate results for a sync pass.
- ``FailureCause``: Operation tag, category and message of a failure.
- ``Success`` / ``Skipped`` / ``NotAuthenticated`` / ``DownloadFailed`` /
  ``UploadFailed``: the ``SyncOutcome`` tagged union, discriminated on
  ``kind``.

All models are frozen (immutable) for safety.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from .errors import SyncError


class CollectionResult(BaseModel):
    """Counts for one collection in one direction.

    Attributes:
        collection: Collection name.
        downloaded: Remote documents received.
        inserted: New local rows written.
        updated: Existing local rows replaced.
        skipped: Remote records the merge policy left alone.
        orphaned: Child records skipped because their parent is missing.
        uploaded: Local records pushed to the remote store.
    """

    collection: str
    downloaded: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    orphaned: int = 0
    uploaded: int = 0

    model_config = {"frozen": True}


class SyncReport(BaseModel):
    """Aggregate report for one sync pass.

    Attributes:
        scope: ``"all"``, ``"user"``, ``"reference"`` or ``"restore"``.
        owner_id: Owner the pass ran for (``None`` for reference data).
        full: ``True`` when no incremental baseline was used.
        downloads: Per-collection download results, in pipeline order.
        uploads: Per-collection upload results, in pipeline order.
        started_at: When the pass started.
        completed_at: When the pass finished (``None`` if it failed).
    """

    scope: str
    owner_id: str | None = None
    full: bool = True
    downloads: list[CollectionResult] = []
    uploads: list[CollectionResult] = []
    started_at: datetime
    completed_at: datetime | None = None

    model_config = {"frozen": True}

    @property
    def inserted(self) -> int:
        return sum(r.inserted for r in self.downloads)

    @property
    def updated(self) -> int:
        return sum(r.updated for r in self.downloads)

    @property
    def skipped(self) -> int:
        return sum(r.skipped for r in self.downloads)

    @property
    def orphaned(self) -> int:
        return sum(r.orphaned for r in self.downloads)

    @property
    def uploaded(self) -> int:
        return sum(r.uploaded for r in self.uploads)

    def summary(self) -> str:
        """Format a human-readable summary of the sync pass.

        Returns:
            Multi-line summary string with totals.
        """
        lines = [
            f"Sync report ({self.scope})"
            + (" full" if self.full else " incremental"),
            f"  Inserted:  {self.inserted}",
            f"  Updated:   {self.updated}",
            f"  Skipped:   {self.skipped}",
            f"  Orphaned:  {self.orphaned}",
            f"  Uploaded:  {self.uploaded}",
        ]
        return "\n".join(lines)


class FailureCause(BaseModel):
    """Why a pass failed.

    Attributes:
        operation: Pipeline step that failed (e.g. ``"download:workouts"``).
        category: Error category (``remote_transport``, ``local_store``...).
        message: Human-readable error message.
    """

    operation: str | None = None
    category: str
    message: str

    model_config = {"frozen": True}

    @classmethod
    def from_error(cls, exc: SyncError) -> FailureCause:
        return cls(
            operation=exc.operation, category=exc.category, message=exc.message
        )

    def __str__(self) -> str:
        if self.operation:
            return f"{self.operation}: {self.message}"
        return self.message


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


class Success(BaseModel):
    kind: Literal["success"] = "success"
    timestamp: datetime
    report: SyncReport | None = None

    model_config = {"frozen": True}


class Skipped(BaseModel):
    """The pass did not run.  ``remaining`` is how long until it may."""

    kind: Literal["skipped"] = "skipped"
    reason: str
    remaining: timedelta = timedelta(0)

    model_config = {"frozen": True}


class NotAuthenticated(BaseModel):
    kind: Literal["not_authenticated"] = "not_authenticated"
    message: str = "not authenticated"

    model_config = {"frozen": True}


class DownloadFailed(BaseModel):
    """Download aborted; nothing was uploaded.

    ``report`` holds the collections merged before the failure.
    """

    kind: Literal["download_failed"] = "download_failed"
    cause: FailureCause
    report: SyncReport | None = None

    model_config = {"frozen": True}


class UploadFailed(BaseModel):
    """Upload aborted after a successful download.

    Downloaded data is kept locally and the baseline is not advanced.
    """

    kind: Literal["upload_failed"] = "upload_failed"
    cause: FailureCause
    report: SyncReport | None = None

    model_config = {"frozen": True}


SyncOutcome = Annotated[
    Union[Success, Skipped, NotAuthenticated, DownloadFailed, UploadFailed],
    Field(discriminator="kind"),
]

outcome_adapter: TypeAdapter[SyncOutcome] = TypeAdapter(SyncOutcome)


def is_failure(outcome: SyncOutcome) -> bool:
    """``True`` for outcomes a caller should surface as an error."""
    return not isinstance(outcome, (Success, Skipped))
