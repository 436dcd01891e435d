"""Sync report formatting functions.

Provides human-readable and machine-readable output for sync passes:

- ``format_sync_report`` -- full post-sync summary.
- ``format_outcome`` -- one outcome (success, skip or failure) as text.
- ``report_to_json`` / ``outcome_to_json`` -- structured dicts for
  ``--json`` output.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .models import (
    DownloadFailed,
    NotAuthenticated,
    Skipped,
    Success,
    UploadFailed,
)

if TYPE_CHECKING:
    from .models import SyncOutcome, SyncReport

# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def format_sync_report(report: SyncReport) -> str:
    """Format a sync report as human-readable text.

    Collections with nothing to report are left out.  Upload counts are
    shown in a separate section.

    Args:
        report: The sync report.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    header = f"Sync report ({report.scope})"
    if report.owner_id:
        header += f" for '{report.owner_id}'"
    header += " -- full" if report.full else " -- incremental"
    lines.append(header)
    lines.append(f"Started: {report.started_at.isoformat()}")
    if report.completed_at:
        lines.append(f"Completed: {report.completed_at.isoformat()}")
    lines.append("")

    lines.append(
        f"Downloaded {len(report.downloads)} collections: "
        f"{report.inserted} inserted, {report.updated} updated, "
        f"{report.skipped} skipped, {report.orphaned} orphaned"
    )
    if report.uploads:
        lines.append(
            f"Uploaded {len(report.uploads)} collections: "
            f"{report.uploaded} records"
        )
    lines.append("")

    changed = [
        r for r in report.downloads
        if r.inserted or r.updated or r.orphaned
    ]
    if changed:
        lines.append("Downloaded:")
        width = max(len(r.collection) for r in changed)
        for r in changed:
            line = (
                f"  {r.collection:<{width}}  +{r.inserted} ~{r.updated} "
                f"={r.skipped}"
            )
            if r.orphaned:
                line += f" ({r.orphaned} orphaned)"
            lines.append(line)
        lines.append("")

    pushed = [r for r in report.uploads if r.uploaded]
    if pushed:
        lines.append("Uploaded:")
        width = max(len(r.collection) for r in pushed)
        for r in pushed:
            lines.append(f"  {r.collection:<{width}}  {r.uploaded}")
        lines.append("")

    return "\n".join(lines).rstrip()


def format_outcome(outcome: SyncOutcome) -> str:
    """Format any sync outcome as human-readable text."""
    match outcome:
        case Success(report=report) if report is not None:
            return format_sync_report(report)
        case Success(timestamp=timestamp):
            return f"Sync succeeded at {timestamp.isoformat()}"
        case Skipped(reason=reason, remaining=remaining):
            seconds = int(remaining.total_seconds())
            return f"Sync skipped ({reason}); retry in {seconds}s"
        case NotAuthenticated(message=message):
            return f"Sync failed: {message}"
        case DownloadFailed(cause=cause):
            return f"Download failed: {cause}"
        case UploadFailed(cause=cause):
            return (
                f"Upload failed: {cause}\n"
                "Downloaded data was kept; the next sync will retry."
            )
    return str(outcome)


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def report_to_json(report: SyncReport) -> dict:
    """Convert a sync report to a structured dict for JSON serialisation.

    Args:
        report: The sync report.

    Returns:
        Dict with scope info, totals, and per-collection details.
    """
    return {
        "scope": report.scope,
        "owner_id": report.owner_id,
        "full": report.full,
        "started_at": report.started_at.isoformat(),
        "completed_at": (
            report.completed_at.isoformat() if report.completed_at else None
        ),
        "counts": {
            "inserted": report.inserted,
            "updated": report.updated,
            "skipped": report.skipped,
            "orphaned": report.orphaned,
            "uploaded": report.uploaded,
        },
        "downloads": [r.model_dump() for r in report.downloads],
        "uploads": [
            {"collection": r.collection, "uploaded": r.uploaded}
            for r in report.uploads
        ],
    }


def outcome_to_json(outcome: SyncOutcome) -> dict:
    """Convert any sync outcome to a dict keyed by ``kind``."""
    data: dict = {"kind": outcome.kind}
    match outcome:
        case Success(timestamp=timestamp, report=report):
            data["timestamp"] = timestamp.isoformat()
            if report is not None:
                data["report"] = report_to_json(report)
        case Skipped(reason=reason, remaining=remaining):
            data["reason"] = reason
            data["remaining_seconds"] = remaining.total_seconds()
        case NotAuthenticated(message=message):
            data["message"] = message
        case DownloadFailed(cause=cause, report=report) | UploadFailed(
            cause=cause, report=report
        ):
            data["cause"] = cause.model_dump()
            if report is not None:
                data["report"] = report_to_json(report)
    return data
