"""Exception taxonomy for the sync pipeline.

Every per-collection operation runs inside the phase runner, which attaches
the failing operation's name to the exception before re-raising it.  The
coordinator is the only place these exceptions are caught and turned into
typed outcomes; they never cross the public API.

- ``NotAuthenticatedError``: no owner id could be resolved.
- ``RemoteTransportError``: network, auth or quota failure from the remote
  document store.
- ``LocalStoreError``: constraint violation or I/O failure from the local
  store.
- ``UnexpectedError``: anything else, wrapped with its original cause.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for sync failures.

    Attributes:
        operation: Name of the pipeline step that failed (e.g.
            ``"download:workouts"``), or ``None`` if raised outside a step.
    """

    category = "unexpected"

    def __init__(self, message: str, operation: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.operation = operation

    def with_operation(self, operation: str) -> SyncError:
        """Tag the error with *operation* unless an inner step already did."""
        if self.operation is None:
            self.operation = operation
        return self

    def __str__(self) -> str:
        if self.operation:
            return f"{self.operation}: {self.message}"
        return self.message


class NotAuthenticatedError(SyncError):
    category = "not_authenticated"


class RemoteTransportError(SyncError):
    category = "remote_transport"


class LocalStoreError(SyncError):
    category = "local_store"


class UnexpectedError(SyncError):
    category = "unexpected"
