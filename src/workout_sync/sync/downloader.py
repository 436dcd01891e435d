"""Remote -> local merge pipeline.

The ``Downloader`` fetches each collection from the remote store, converts
documents to local entities, drops orphans and applies the collection's
merge policy.  Collections are processed in the fixed ``DOWNLOAD_PHASES``
order so parents are always written before their children.
"""

from __future__ import annotations

import logging
from datetime import datetime

from .collections import (
    CATALOG_PHASE,
    DOWNLOAD_PHASES,
    Collection,
    CollectionDef,
    get_definition,
)
from .converters import get_converter
from .entities import SyncEntity
from .models import CollectionResult
from .policies import KeyIndex, MergeAction
from .ports import LocalStore, RemoteStore
from .runner import Phase, PhaseRunner, Step

logger = logging.getLogger(__name__)


class Downloader:
    """Fetch, convert and merge remote collections into the local store.

    Args:
        local: Local store adapter.
        remote: Remote store adapter.
    """

    def __init__(self, local: LocalStore, remote: RemoteStore) -> None:
        self.local = local
        self.remote = remote

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def build_phases(
        self,
        owner_id: str | None,
        since: datetime | None,
        *,
        include_catalog: bool = True,
        include_user: bool = True,
    ) -> list[Phase]:
        """Build the ordered download phases.

        Args:
            owner_id: Owner whose data to fetch (unused for the catalog).
            since: Incremental baseline, or ``None`` for a full fetch.
            include_catalog: Include the global exercise catalog phase.
            include_user: Include the owner-scoped phases.
        """
        phases = []
        for phase_name, collections in DOWNLOAD_PHASES:
            is_catalog = phase_name == CATALOG_PHASE
            if (is_catalog and not include_catalog) or (
                not is_catalog and not include_user
            ):
                continue
            steps = [
                Step(
                    f"download:{collection.value}",
                    # Bind the loop variable now, not at call time.
                    lambda c=collection: self.download_collection(
                        c, owner_id, since
                    ),
                )
                for collection in collections
            ]
            phases.append(Phase(phase_name, steps))
        return phases

    def run(
        self,
        owner_id: str | None,
        since: datetime | None,
        *,
        include_catalog: bool = True,
        include_user: bool = True,
        results: list[CollectionResult] | None = None,
    ) -> list[CollectionResult]:
        """Run the download pipeline.

        Args:
            results: Optional list to append per-collection results to as
                they complete, so a caller still sees partial progress when
                a later step raises.

        Raises:
            SyncError: The first failing step, tagged with its name.
        """
        collected = results if results is not None else []
        phases = [
            Phase(
                phase.name,
                [
                    Step(step.name, lambda a=step.action: collected.append(a()))
                    for step in phase.steps
                ],
            )
            for phase in self.build_phases(
                owner_id,
                since,
                include_catalog=include_catalog,
                include_user=include_user,
            )
        ]
        PhaseRunner("download").run(phases)
        return collected

    # ------------------------------------------------------------------
    # Single collection
    # ------------------------------------------------------------------

    def download_collection(
        self,
        collection: Collection,
        owner_id: str | None,
        since: datetime | None,
    ) -> CollectionResult:
        """Download and merge one collection.

        Global collections ignore both *owner_id* and *since*; owner-scoped
        collections that are not incremental ignore *since*.
        """
        defn = get_definition(collection)
        remote_owner = None if defn.is_global else owner_id
        effective_since = since if defn.incremental else None

        documents = self.remote.download(
            collection, remote_owner, effective_since
        )
        converter = get_converter(defn.entity_type)
        records = [
            self._stamp_owner(defn, converter.from_remote(doc), owner_id)
            for doc in documents
        ]

        counts = {"inserted": 0, "updated": 0, "skipped": 0, "orphaned": 0}

        records, orphans = self._split_orphans(defn, records)
        counts["orphaned"] = len(orphans)

        index = defn.policy.build_index(self.local, collection, owner_id)
        for record in records:
            if not record.id:
                logger.warning(
                    "%s: skipping document without an id", collection.value
                )
                counts["skipped"] += 1
                continue
            counts[self._merge(defn, record, index)] += 1

        result = CollectionResult(
            collection=collection.value,
            downloaded=len(documents),
            **counts,
        )
        logger.info(
            "Downloaded %s: %d received, %d inserted, %d updated, "
            "%d skipped, %d orphaned",
            collection.value,
            result.downloaded,
            result.inserted,
            result.updated,
            result.skipped,
            result.orphaned,
        )
        return result

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _stamp_owner(
        defn: CollectionDef, record: SyncEntity, owner_id: str | None
    ) -> SyncEntity:
        if defn.is_global:
            if record.user_id is not None:
                return record.model_copy(update={"user_id": None})
            return record
        if record.user_id is None and owner_id:
            return record.model_copy(update={"user_id": owner_id})
        return record

    def _split_orphans(
        self, defn: CollectionDef, records: list[SyncEntity]
    ) -> tuple[list[SyncEntity], list[SyncEntity]]:
        if defn.parent is None or not records:
            return records, []

        field = defn.parent.field
        parent_ids = {getattr(r, field) for r in records}
        present = self.local.existing_ids(defn.parent.collection, parent_ids)

        kept = []
        orphans = []
        for record in records:
            if getattr(record, field) in present:
                kept.append(record)
            else:
                orphans.append(record)

        if orphans:
            logger.warning(
                "%s: skipping %d orphaned record(s) with no local %s "
                "parent (e.g. %s=%s)",
                defn.collection.value,
                len(orphans),
                defn.parent.collection.value,
                field,
                getattr(orphans[0], field),
            )
        return kept, orphans

    def _merge(
        self,
        defn: CollectionDef,
        record: SyncEntity,
        index: KeyIndex | None = None,
    ) -> str:
        """Apply the merge policy for one record; return the count key."""
        local = defn.policy.locate(self.local, defn.collection, record, index)
        decision = defn.policy.merge(local, record)

        if decision.action is MergeAction.INSERT:
            if not self.local.insert_if_absent(
                defn.collection, decision.record
            ):
                return "skipped"
            key = "inserted"
        elif decision.action is MergeAction.UPDATE:
            self.local.upsert(defn.collection, decision.record)
            key = "updated"
        else:
            return "skipped"

        if index is not None:
            index.add(decision.record)
        return key
