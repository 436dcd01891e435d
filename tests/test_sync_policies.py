"""Tests for workout_sync.sync.policies -- per-collection merge strategies.

Each policy is exercised directly through ``merge(local, remote)``; the
logical-key policies also through ``locate()`` against an in-memory store.
"""

from datetime import datetime, timedelta, timezone

import pytest

from workout_sync.sync.collections import Collection, get_definition
from workout_sync.sync.entities import (
    Exercise,
    ExerciseMaxTracking,
    ExerciseSwapHistory,
    ExerciseUsage,
    PersonalRecord,
    Programme,
    ProgrammeProgress,
    PRType,
    Workout,
)
from workout_sync.sync.policies import (
    CombineUsagePolicy,
    InsertIfAbsentPolicy,
    KeepBetterRecordPolicy,
    KeepHigherPolicy,
    LastModifiedWinsPolicy,
    LogicalIdentityPolicy,
    MergeAction,
    MonotonicAdvancePolicy,
    UpsertPolicy,
)
from workout_sync.sync.stores.memory import InMemoryLocalStore

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
NOW = datetime(2024, 3, 2, 9, 30, tzinfo=timezone.utc)


class CountingReadsStore(InMemoryLocalStore):
    """Local store that counts full-table reads."""

    def __init__(self):
        super().__init__()
        self.get_all_calls = 0

    def get_all(self, collection, owner_id):
        self.get_all_calls += 1
        return super().get_all(collection, owner_id)


class TestNoLocalRecord:
    """Every policy inserts when there is no local match."""

    @pytest.mark.parametrize(
        "policy",
        [
            UpsertPolicy(),
            InsertIfAbsentPolicy(),
            MonotonicAdvancePolicy(),
            KeepHigherPolicy("one_rm_estimate"),
            KeepBetterRecordPolicy(),
            LastModifiedWinsPolicy(),
            LogicalIdentityPolicy(),
            CombineUsagePolicy(lambda: NOW),
        ],
        ids=repr,
    )
    def test_insert(self, policy):
        remote = Workout(id="w1", user_id="user-1")
        decision = policy.merge(None, remote)
        assert decision.action is MergeAction.INSERT
        assert decision.record is remote


class TestUpsertPolicy:
    def test_remote_replaces_local(self):
        local = Workout(id="w1", user_id="user-1", name="Push")
        remote = Workout(id="w1", user_id="user-1", name="Push day")
        decision = UpsertPolicy().merge(local, remote)
        assert decision.action is MergeAction.UPDATE
        assert decision.record == remote

    def test_identical_record_skipped(self):
        local = Workout(id="w1", user_id="user-1", name="Push")
        decision = UpsertPolicy().merge(local, local.model_copy())
        assert decision.action is MergeAction.SKIP
        assert decision.record is None


class TestInsertIfAbsentPolicy:
    def test_existing_local_never_overwritten(self):
        local = Programme(id="p1", user_id="user-1", name="Mine")
        remote = Programme(id="p1", user_id="user-1", name="Theirs")
        decision = InsertIfAbsentPolicy().merge(local, remote)
        assert decision.action is MergeAction.SKIP


class TestMonotonicAdvancePolicy:
    """Programme progress only moves forward."""

    def _progress(self, week, day):
        return ProgrammeProgress(
            id="pp1",
            user_id="user-1",
            programme_id="p1",
            current_week=week,
            current_day=day,
        )

    def test_remote_ahead_by_week(self):
        decision = MonotonicAdvancePolicy().merge(
            self._progress(2, 3), self._progress(3, 1)
        )
        assert decision.action is MergeAction.UPDATE
        assert decision.record.position == (3, 1)

    def test_remote_ahead_by_day(self):
        decision = MonotonicAdvancePolicy().merge(
            self._progress(2, 1), self._progress(2, 2)
        )
        assert decision.action is MergeAction.UPDATE

    def test_remote_behind_is_skipped(self):
        decision = MonotonicAdvancePolicy().merge(
            self._progress(3, 1), self._progress(2, 4)
        )
        assert decision.action is MergeAction.SKIP

    def test_tie_leaves_local(self):
        local = self._progress(2, 2).model_copy(
            update={"completed_workouts": 5}
        )
        decision = MonotonicAdvancePolicy().merge(local, self._progress(2, 2))
        assert decision.action is MergeAction.SKIP


class TestKeepHigherPolicy:
    def _max(self, estimate):
        return ExerciseMaxTracking(
            id="m1", user_id="user-1", one_rm_estimate=estimate
        )

    def test_higher_remote_wins(self):
        decision = KeepHigherPolicy("one_rm_estimate").merge(
            self._max(100.0), self._max(105.0)
        )
        assert decision.action is MergeAction.UPDATE
        assert decision.record.one_rm_estimate == 105.0

    def test_lower_or_equal_remote_skipped(self):
        policy = KeepHigherPolicy("one_rm_estimate")
        assert (
            policy.merge(self._max(100.0), self._max(95.0)).action
            is MergeAction.SKIP
        )
        assert (
            policy.merge(self._max(100.0), self._max(100.0)).action
            is MergeAction.SKIP
        )


class TestKeepBetterRecordPolicy:
    """Personal records compare by the field their record type names."""

    def test_weight_record_compares_weight(self):
        local = PersonalRecord(id="pr1", weight=100.0)
        remote = PersonalRecord(id="pr1", weight=102.5)
        decision = KeepBetterRecordPolicy().merge(local, remote)
        assert decision.action is MergeAction.UPDATE

    def test_lighter_weight_record_skipped(self):
        local = PersonalRecord(id="pr1", weight=100.0)
        remote = PersonalRecord(id="pr1", weight=97.5)
        decision = KeepBetterRecordPolicy().merge(local, remote)
        assert decision.action is MergeAction.SKIP

    def test_estimated_record_compares_estimate(self):
        local = PersonalRecord(
            id="pr1",
            record_type=PRType.ESTIMATED_1RM,
            weight=120.0,
            estimated_1rm=130.0,
        )
        remote = PersonalRecord(
            id="pr1",
            record_type=PRType.ESTIMATED_1RM,
            weight=100.0,
            estimated_1rm=135.0,
        )
        decision = KeepBetterRecordPolicy().merge(local, remote)
        assert decision.action is MergeAction.UPDATE

    def test_missing_estimate_counts_as_zero(self):
        local = PersonalRecord(
            id="pr1", record_type=PRType.ESTIMATED_1RM, estimated_1rm=None
        )
        remote = PersonalRecord(
            id="pr1", record_type=PRType.ESTIMATED_1RM, estimated_1rm=80.0
        )
        assert (
            KeepBetterRecordPolicy().merge(local, remote).action
            is MergeAction.UPDATE
        )
        assert (
            KeepBetterRecordPolicy().merge(remote, local).action
            is MergeAction.SKIP
        )


class TestLastModifiedWinsPolicy:
    def test_newer_remote_wins(self):
        local = Exercise(id="c1", user_id="user-1", name="Old", updated_at=T0)
        remote = Exercise(
            id="c1",
            user_id="user-1",
            name="New",
            updated_at=T0 + timedelta(minutes=1),
        )
        decision = LastModifiedWinsPolicy().merge(local, remote)
        assert decision.action is MergeAction.UPDATE
        assert decision.record.name == "New"

    def test_older_or_same_remote_skipped(self):
        local = Exercise(id="c1", user_id="user-1", updated_at=T0)
        older = Exercise(
            id="c1", user_id="user-1", updated_at=T0 - timedelta(days=1)
        )
        assert (
            LastModifiedWinsPolicy().merge(local, older).action
            is MergeAction.SKIP
        )
        assert (
            LastModifiedWinsPolicy().merge(local, local).action
            is MergeAction.SKIP
        )


# ---------------------------------------------------------------------------
# Logical-key policies
# ---------------------------------------------------------------------------


class TestLogicalIdentityPolicy:
    """Swap history de-duplicates on (owner, original, swapped-to, workout)."""

    def _swap(self, record_id, **overrides):
        fields = {
            "id": record_id,
            "user_id": "user-1",
            "original_exercise_id": "ex-1",
            "swapped_to_exercise_id": "ex-2",
            "workout_id": "w1",
            "swap_date": T0,
        }
        fields.update(overrides)
        return ExerciseSwapHistory(**fields)

    def test_locate_matches_logical_key_not_id(self):
        store = InMemoryLocalStore()
        store.upsert(Collection.SWAP_HISTORY, self._swap("local-1"))
        found = LogicalIdentityPolicy().locate(
            store, Collection.SWAP_HISTORY, self._swap("remote-9")
        )
        assert found is not None
        assert found.id == "local-1"

    def test_locate_different_workout_is_distinct(self):
        store = InMemoryLocalStore()
        store.upsert(Collection.SWAP_HISTORY, self._swap("local-1"))
        found = LogicalIdentityPolicy().locate(
            store,
            Collection.SWAP_HISTORY,
            self._swap("remote-9", workout_id="w2"),
        )
        assert found is None

    def test_index_built_once_serves_every_lookup(self):
        store = CountingReadsStore()
        store.upsert(Collection.SWAP_HISTORY, self._swap("local-1"))
        store.upsert(
            Collection.SWAP_HISTORY, self._swap("local-2", workout_id="w2")
        )
        policy = LogicalIdentityPolicy()
        index = policy.build_index(store, Collection.SWAP_HISTORY, "user-1")

        found = [
            policy.locate(store, Collection.SWAP_HISTORY, remote, index)
            for remote in (
                self._swap("r1"),
                self._swap("r2", workout_id="w2"),
                self._swap("r3", workout_id="w3"),
            )
        ]

        assert [r.id if r else None for r in found] == [
            "local-1",
            "local-2",
            None,
        ]
        assert store.get_all_calls == 1

    def test_index_sees_added_rows(self):
        index = LogicalIdentityPolicy().build_index(
            InMemoryLocalStore(), Collection.SWAP_HISTORY, "user-1"
        )
        assert index.find(self._swap("r1")) is None
        index.add(self._swap("r1"))
        assert index.find(self._swap("r2")).id == "r1"
        assert len(index) == 1

    def test_primary_key_policies_have_no_index(self):
        assert (
            UpsertPolicy().build_index(
                InMemoryLocalStore(), Collection.WORKOUTS, "user-1"
            )
            is None
        )

    def test_update_keeps_local_id(self):
        local = self._swap("local-1")
        remote = self._swap("remote-9", programme_id="p1")
        decision = LogicalIdentityPolicy().merge(local, remote)
        assert decision.action is MergeAction.UPDATE
        assert decision.record.id == "local-1"
        assert decision.record.programme_id == "p1"

    def test_same_content_different_id_skipped(self):
        decision = LogicalIdentityPolicy().merge(
            self._swap("local-1"), self._swap("remote-9")
        )
        assert decision.action is MergeAction.SKIP

    def test_logical_key_property(self):
        assert self._swap("x").logical_key == ("user-1", "ex-1", "ex-2", "w1")


class TestCombineUsagePolicy:
    """Exercise usage combines counters field by field."""

    def _usage(self, record_id="u1", **overrides):
        fields = {
            "id": record_id,
            "user_id": "user-1",
            "exercise_id": "ex-1",
            "usage_count": 0,
            "updated_at": T0,
        }
        fields.update(overrides)
        return ExerciseUsage(**fields)

    def test_combines_fields(self):
        local = self._usage(
            usage_count=5, last_used_at=T0, personal_notes=None
        )
        remote = self._usage(
            "remote-u1",
            usage_count=7,
            last_used_at=T0 - timedelta(days=2),
            personal_notes="use straps",
        )
        decision = CombineUsagePolicy(lambda: NOW).merge(local, remote)

        assert decision.action is MergeAction.UPDATE
        merged = decision.record
        assert merged.id == "u1"
        assert merged.usage_count == 7
        assert merged.last_used_at == T0
        assert merged.personal_notes == "use straps"
        assert merged.updated_at == NOW

    def test_local_notes_kept(self):
        local = self._usage(usage_count=1, personal_notes="mine")
        remote = self._usage(usage_count=3, personal_notes="theirs")
        merged = CombineUsagePolicy(lambda: NOW).merge(local, remote).record
        assert merged.personal_notes == "mine"

    def test_empty_local_notes_take_remote(self):
        local = self._usage(usage_count=1, personal_notes="")
        remote = self._usage(usage_count=1, personal_notes="pause at bottom")
        decision = CombineUsagePolicy(lambda: NOW).merge(local, remote)
        assert decision.action is MergeAction.UPDATE
        assert decision.record.personal_notes == "pause at bottom"

    def test_empty_notes_on_both_sides_skipped(self):
        decision = CombineUsagePolicy(lambda: NOW).merge(
            self._usage(personal_notes=""), self._usage(personal_notes=None)
        )
        assert decision.action is MergeAction.SKIP

    def test_missing_last_used_on_either_side(self):
        policy = CombineUsagePolicy(lambda: NOW)
        only_remote = policy.merge(
            self._usage(last_used_at=None), self._usage(last_used_at=T0)
        ).record
        assert only_remote.last_used_at == T0

        decision = policy.merge(
            self._usage(last_used_at=T0), self._usage(last_used_at=None)
        )
        assert decision.action is MergeAction.SKIP

    def test_nothing_new_is_skipped(self):
        local = self._usage(usage_count=9, last_used_at=T0)
        remote = self._usage(usage_count=4, last_used_at=T0 - timedelta(1))
        decision = CombineUsagePolicy(lambda: NOW).merge(local, remote)
        assert decision.action is MergeAction.SKIP

    def test_locate_matches_owner_and_exercise(self):
        store = InMemoryLocalStore()
        store.upsert(Collection.EXERCISE_USAGE, self._usage("local-u"))
        policy = CombineUsagePolicy()
        assert (
            policy.locate(
                store, Collection.EXERCISE_USAGE, self._usage("remote-u")
            ).id
            == "local-u"
        )
        assert (
            policy.locate(
                store,
                Collection.EXERCISE_USAGE,
                self._usage("remote-u", exercise_id="ex-2"),
            )
            is None
        )


class TestRegistryPolicies:
    """The registry wires the intended strategy to each collection."""

    @pytest.mark.parametrize(
        "collection, policy_type",
        [
            (Collection.EXERCISES, UpsertPolicy),
            (Collection.CUSTOM_EXERCISES, LastModifiedWinsPolicy),
            (Collection.PROGRAMMES, InsertIfAbsentPolicy),
            (Collection.PROGRAMME_PROGRESS, MonotonicAdvancePolicy),
            (Collection.WORKOUTS, UpsertPolicy),
            (Collection.SET_LOGS, UpsertPolicy),
            (Collection.TEMPLATE_SETS, UpsertPolicy),
            (Collection.EXERCISE_MAXES, KeepHigherPolicy),
            (Collection.PERSONAL_RECORDS, KeepBetterRecordPolicy),
            (Collection.EXERCISE_USAGE, CombineUsagePolicy),
            (Collection.SWAP_HISTORY, LogicalIdentityPolicy),
            (Collection.TRAINING_ANALYSES, InsertIfAbsentPolicy),
            (Collection.PARSE_REQUESTS, InsertIfAbsentPolicy),
        ],
    )
    def test_policy(self, collection, policy_type):
        assert isinstance(get_definition(collection).policy, policy_type)
