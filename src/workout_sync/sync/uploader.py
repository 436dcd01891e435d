"""Local -> remote push pipeline.

Uploads are full snapshots: every pass re-sends all of the owner's local
rows for each owner-scoped collection, in the same order the downloader
uses.  The global catalog is server-authoritative and never uploaded.
"""

from __future__ import annotations

import logging

from .collections import Collection, user_collections
from .converters import to_remote
from .models import CollectionResult
from .ports import LocalStore, RemoteStore
from .runner import Phase, PhaseRunner, Step

logger = logging.getLogger(__name__)


class Uploader:
    """Push the owner's local snapshot to the remote store.

    Args:
        local: Local store adapter.
        remote: Remote store adapter.
    """

    def __init__(self, local: LocalStore, remote: RemoteStore) -> None:
        self.local = local
        self.remote = remote

    def run(
        self,
        owner_id: str,
        results: list[CollectionResult] | None = None,
    ) -> list[CollectionResult]:
        """Upload every owner-scoped collection.

        Raises:
            SyncError: The first failing step; later collections are not
                uploaded.
        """
        collected = results if results is not None else []
        steps = [
            Step(
                f"upload:{collection.value}",
                lambda c=collection: collected.append(
                    self.upload_collection(c, owner_id)
                ),
            )
            for collection in user_collections()
        ]
        PhaseRunner("upload").run([Phase("upload", steps)])
        return collected

    def upload_collection(
        self, collection: Collection, owner_id: str
    ) -> CollectionResult:
        """Upload the owner's full local snapshot of one collection."""
        records = self.local.get_all(collection, owner_id)
        documents = [to_remote(record) for record in records]
        if documents:
            self.remote.upload(collection, owner_id, documents)
        logger.info("Uploaded %s: %d record(s)", collection.value, len(documents))
        return CollectionResult(
            collection=collection.value, uploaded=len(documents)
        )
