"""Per-collection merge strategies applied on download.

Each strategy answers two questions for an incoming remote record:

1. ``locate(store, collection, remote, index)``: which local row (if any)
   is the same logical record?  Most collections match on primary key;
   swap history and exercise usage match on a logical identity instead,
   looked up in a ``KeyIndex`` the downloader builds once per collection.
2. ``merge(local, remote)``: what to write.  Returns a ``MergeDecision``
   carrying the ``MergeAction`` and the record to persist.

Strategies are stateless (``CombineUsagePolicy`` holds only a clock) and
are shared through the static registry in ``collections.py``.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from .entities import PRType, SyncEntity

if TYPE_CHECKING:
    from .ports import LocalStore


class MergeAction(str, Enum):
    """Outcome of merging one remote record into the local store."""

    INSERT = "insert"
    UPDATE = "update"
    SKIP = "skip"


class MergeDecision(BaseModel):
    """What the downloader should write for one remote record.

    Attributes:
        action: ``INSERT`` (no local match), ``UPDATE`` (replace the local
            match) or ``SKIP`` (leave local untouched).
        record: The record to persist; ``None`` when ``action`` is SKIP.
    """

    action: MergeAction
    record: Any = None

    model_config = {"frozen": True}

    @classmethod
    def insert(cls, record: SyncEntity) -> MergeDecision:
        return cls(action=MergeAction.INSERT, record=record)

    @classmethod
    def update(cls, record: SyncEntity) -> MergeDecision:
        return cls(action=MergeAction.UPDATE, record=record)

    @classmethod
    def skip(cls) -> MergeDecision:
        return cls(action=MergeAction.SKIP)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class KeyIndex:
    """Local rows of one collection keyed on a logical identity.

    Built once per collection download and kept current with ``add()`` as
    the downloader writes, so two remote documents with the same key in
    one batch still resolve to a single local row.
    """

    def __init__(
        self,
        key: Callable[[SyncEntity], tuple],
        records: Iterable[SyncEntity] = (),
    ) -> None:
        self._key = key
        self._rows: dict[tuple, SyncEntity] = {}
        for record in records:
            self._rows.setdefault(key(record), record)

    def find(self, record: SyncEntity) -> SyncEntity | None:
        return self._rows.get(self._key(record))

    def add(self, record: SyncEntity) -> None:
        self._rows[self._key(record)] = record

    def __len__(self) -> int:
        return len(self._rows)


class MergePolicy:
    """Base strategy: match on primary key, subclasses decide the merge."""

    name = "base"

    def build_index(
        self, store: LocalStore, collection: Any, owner_id: str | None
    ) -> KeyIndex | None:
        """Index the owner's local rows once per collection download.

        Primary-key policies need no index; ``store.get`` is already keyed.
        """
        return None

    def locate(
        self,
        store: LocalStore,
        collection: Any,
        remote: SyncEntity,
        index: KeyIndex | None = None,
    ) -> SyncEntity | None:
        """Return the local record matching *remote*, or ``None``."""
        return store.get(collection, remote.id)

    def merge(
        self, local: SyncEntity | None, remote: SyncEntity
    ) -> MergeDecision:
        if local is None:
            return MergeDecision.insert(remote)
        return self.resolve(local, remote)

    def resolve(self, local: SyncEntity, remote: SyncEntity) -> MergeDecision:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{type(self).__name__}>"


class UpsertPolicy(MergePolicy):
    """Remote always replaces local (full-record last-writer-wins)."""

    name = "upsert"

    def resolve(self, local: SyncEntity, remote: SyncEntity) -> MergeDecision:
        if local == remote:
            return MergeDecision.skip()
        return MergeDecision.update(remote)


class InsertIfAbsentPolicy(MergePolicy):
    """Existing local rows are never overwritten by download."""

    name = "insert_if_absent"

    def resolve(self, local: SyncEntity, remote: SyncEntity) -> MergeDecision:
        return MergeDecision.skip()


class MonotonicAdvancePolicy(MergePolicy):
    """Programme progress only moves forward.

    Remote replaces local when its ``(current_week, current_day)`` position
    is strictly ahead.  Equal positions leave local untouched.
    """

    name = "monotonic_advance"

    def resolve(self, local: SyncEntity, remote: SyncEntity) -> MergeDecision:
        if remote.position > local.position:
            return MergeDecision.update(remote)
        return MergeDecision.skip()


class KeepHigherPolicy(MergePolicy):
    """Remote replaces local only when *field* is strictly higher."""

    name = "keep_higher"

    def __init__(self, field: str) -> None:
        self.field = field

    def resolve(self, local: SyncEntity, remote: SyncEntity) -> MergeDecision:
        if getattr(remote, self.field) > getattr(local, self.field):
            return MergeDecision.update(remote)
        return MergeDecision.skip()

    def __repr__(self) -> str:
        return f"<KeepHigherPolicy field={self.field!r}>"


class KeepBetterRecordPolicy(MergePolicy):
    """Personal records: keep whichever is better for the record type.

    ``WEIGHT`` records compare ``weight``; ``ESTIMATED_1RM`` records compare
    ``estimated_1rm`` (a missing estimate counts as zero).  The remote
    record's type decides the comparison.
    """

    name = "keep_better_record"

    def resolve(self, local: SyncEntity, remote: SyncEntity) -> MergeDecision:
        if remote.record_type == PRType.ESTIMATED_1RM:
            better = (remote.estimated_1rm or 0.0) > (
                local.estimated_1rm or 0.0
            )
        else:
            better = remote.weight > local.weight
        if better:
            return MergeDecision.update(remote)
        return MergeDecision.skip()


class LastModifiedWinsPolicy(MergePolicy):
    """Remote replaces local when its *field* timestamp is strictly later."""

    name = "last_modified_wins"

    def __init__(self, field: str = "updated_at") -> None:
        self.field = field

    def resolve(self, local: SyncEntity, remote: SyncEntity) -> MergeDecision:
        if getattr(remote, self.field) > getattr(local, self.field):
            return MergeDecision.update(remote)
        return MergeDecision.skip()


class _LogicalKeyPolicy(MergePolicy):
    """Match local rows on a tuple of fields instead of the primary key."""

    key_fields: tuple[str, ...] = ()

    def key(self, record: SyncEntity) -> tuple:
        return tuple(getattr(record, f) for f in self.key_fields)

    def build_index(
        self, store: LocalStore, collection: Any, owner_id: str | None
    ) -> KeyIndex:
        return KeyIndex(self.key, store.get_all(collection, owner_id))

    def locate(
        self,
        store: LocalStore,
        collection: Any,
        remote: SyncEntity,
        index: KeyIndex | None = None,
    ) -> SyncEntity | None:
        if index is None:
            index = self.build_index(store, collection, remote.user_id)
        return index.find(remote)


class LogicalIdentityPolicy(_LogicalKeyPolicy):
    """Swap history: de-duplicate on owner, both exercises and workout.

    A retried upload may have produced a second remote document for the
    same swap under a different id; the existing local row is updated in
    place (keeping its id) rather than duplicated.
    """

    name = "logical_identity"
    key_fields = (
        "user_id",
        "original_exercise_id",
        "swapped_to_exercise_id",
        "workout_id",
    )

    def resolve(self, local: SyncEntity, remote: SyncEntity) -> MergeDecision:
        merged = remote.model_copy(update={"id": local.id})
        if merged == local:
            return MergeDecision.skip()
        return MergeDecision.update(merged)


class CombineUsagePolicy(_LogicalKeyPolicy):
    """Exercise usage: field-wise combine of local and remote counters.

    - ``usage_count``: the larger of the two.
    - ``last_used_at``: the later of the two (either may be missing).
    - ``personal_notes``: remote only when local is missing or empty.
    - ``updated_at``: now.

    The local row keeps its id; rows are matched on owner and exercise.
    """

    name = "combine_usage"
    key_fields = ("user_id", "exercise_id")

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self.clock = clock or utc_now

    def resolve(self, local: SyncEntity, remote: SyncEntity) -> MergeDecision:
        if local.last_used_at is None:
            last_used = remote.last_used_at
        elif remote.last_used_at is None:
            last_used = local.last_used_at
        else:
            last_used = max(local.last_used_at, remote.last_used_at)

        notes = local.personal_notes
        if not notes and remote.personal_notes:
            notes = remote.personal_notes

        combined = {
            "usage_count": max(local.usage_count, remote.usage_count),
            "last_used_at": last_used,
            "personal_notes": notes,
        }
        # Nothing to combine: leave updated_at alone so repeat passes are
        # no-ops.
        if all(getattr(local, k) == v for k, v in combined.items()):
            return MergeDecision.skip()

        combined["updated_at"] = self.clock()
        return MergeDecision.update(local.model_copy(update=combined))
