"""End-to-end tests for workout_sync.sync.coordinator.

All tests run the real download/upload pipeline over the in-memory
stores with a manually advanced clock.

Covers:
- Authentication gating
- Fresh-install detection and incremental baselines
- Idempotent repeat passes
- Cooldown throttling of ``sync_all``
- Mutual exclusion of concurrent passes
- Failure mapping to typed outcomes
- Restore-from-cloud parity
- Two-device convergence
- Async wrappers
"""

import threading
import time
from datetime import timedelta

from conftest import INSTALLATION, OWNER, T0, RecordingLocalStore

from workout_sync.sync.collections import Collection, user_collections
from workout_sync.sync.converters import to_remote
from workout_sync.sync.entities import (
    Exercise,
    ExerciseLog,
    ExerciseUsage,
    Programme,
    ProgrammeProgress,
    SetLog,
    Workout,
)
from workout_sync.sync.errors import LocalStoreError
from workout_sync.sync.models import (
    DownloadFailed,
    NotAuthenticated,
    Skipped,
    Success,
    UploadFailed,
)
from workout_sync.sync.state import InMemoryBaselineStore
from workout_sync.sync.stores.memory import (
    InMemoryLocalStore,
    InMemoryRemoteStore,
)


def seed(remote, collection, *records, modified_at=None):
    remote.put(
        collection, [to_remote(r) for r in records], modified_at=modified_at
    )


def seed_workout_tree(remote, modified_at=None):
    seed(
        remote,
        Collection.WORKOUTS,
        Workout(id="w1", user_id=OWNER, name="Push", date=T0),
        modified_at=modified_at,
    )
    seed(
        remote,
        Collection.EXERCISE_LOGS,
        ExerciseLog(id="el1", user_id=OWNER, workout_id="w1"),
        modified_at=modified_at,
    )
    seed(
        remote,
        Collection.SET_LOGS,
        SetLog(id="s1", user_id=OWNER, exercise_log_id="el1"),
        SetLog(id="s2", user_id=OWNER, exercise_log_id="el1"),
        modified_at=modified_at,
    )


def snapshot(store, owner=OWNER):
    return {
        c.value: sorted(store.get_all(c, owner), key=lambda r: r.id)
        for c in user_collections()
    }


def op_calls(remote, op):
    return [c for o, c, _, _ in remote.calls if o == op]


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


class TestAuthentication:
    def test_sync_all_requires_owner(self, make_coordinator, remote):
        outcome = make_coordinator(owner_id=None).sync_all()
        assert isinstance(outcome, NotAuthenticated)
        assert remote.calls == []

    def test_sync_user_data_requires_owner(self, make_coordinator, remote):
        outcome = make_coordinator(owner_id=None).sync_user_data()
        assert isinstance(outcome, NotAuthenticated)
        assert remote.calls == []

    def test_restore_requires_owner(self, make_coordinator, local):
        local.upsert(Collection.WORKOUTS, Workout(id="w1", user_id=OWNER))
        outcome = make_coordinator(owner_id=None).restore_from_cloud()
        assert isinstance(outcome, NotAuthenticated)
        assert local.count(Collection.WORKOUTS, OWNER) == 1

    def test_reference_sync_needs_no_owner(self, make_coordinator, remote):
        seed(remote, Collection.EXERCISES, Exercise(id="ex-1", name="Squat"))
        outcome = make_coordinator(owner_id=None).sync_system_reference_data()
        assert isinstance(outcome, Success)
        assert remote.calls == [("download", "exercises", None, None)]


class RaisingSession:
    """Session provider whose token refresh blows up."""

    def get_current_owner_id(self):
        raise RuntimeError("token refresh failed")


def broken_clock():
    raise RuntimeError("clock unavailable")


def coordinator_with(local, remote, baselines, *, session=None, clock=None):
    from workout_sync.sync.coordinator import SyncCoordinator
    from workout_sync.sync.ports import StaticSession

    return SyncCoordinator(
        local=local,
        remote=remote,
        baseline_store=baselines,
        session=session or StaticSession(OWNER),
        installation_id=INSTALLATION,
        clock=clock or (lambda: T0),
    )


class TestSessionAndClockFailures:
    """Collaborator exceptions come back as outcomes, never raised."""

    def test_raising_session_is_not_authenticated(
        self, local, remote, baselines
    ):
        coordinator = coordinator_with(
            local, remote, baselines, session=RaisingSession()
        )
        for outcome in (
            coordinator.sync_all(),
            coordinator.sync_user_data(),
            coordinator.restore_from_cloud(),
        ):
            assert isinstance(outcome, NotAuthenticated)
            assert "token refresh failed" in outcome.message
            assert "session:owner" in outcome.message
        assert remote.calls == []

    def test_explicit_owner_bypasses_session(self, local, remote, baselines):
        coordinator = coordinator_with(
            local, remote, baselines, session=RaisingSession()
        )
        assert isinstance(coordinator.sync_user_data(OWNER), Success)

    def test_raising_clock_is_download_failure(
        self, local, remote, baselines
    ):
        coordinator = coordinator_with(
            local, remote, baselines, clock=broken_clock
        )
        for outcome in (
            coordinator.sync_all(),
            coordinator.sync_user_data(),
            coordinator.sync_system_reference_data(),
            coordinator.restore_from_cloud(),
        ):
            assert isinstance(outcome, DownloadFailed)
            assert outcome.cause.operation == "clock"
            assert outcome.cause.category == "unexpected"

    def test_raising_clock_during_cooldown_check(
        self, local, remote, baselines
    ):
        baselines.set_last_sync_time(OWNER, INSTALLATION, "all", T0)
        coordinator = coordinator_with(
            local, remote, baselines, clock=broken_clock
        )
        coordinator.cooldown = timedelta(minutes=5)
        outcome = coordinator.sync_all()
        assert isinstance(outcome, DownloadFailed)
        assert outcome.cause.operation == "clock"


# ---------------------------------------------------------------------------
# Scopes and baselines
# ---------------------------------------------------------------------------


class TestSyncAll:
    def test_fresh_install_downloads_everything(
        self, make_coordinator, local, remote, baselines, clock
    ):
        seed(remote, Collection.EXERCISES, Exercise(id="ex-1", name="Squat"))
        seed_workout_tree(remote, modified_at=T0 - timedelta(days=30))

        outcome = make_coordinator().sync_all()

        assert isinstance(outcome, Success)
        assert outcome.timestamp == clock.now
        assert outcome.report.full is True
        assert local.count(Collection.EXERCISES, None) == 1
        assert local.count(Collection.SET_LOGS, OWNER) == 2
        assert (
            baselines.get_last_sync_time(OWNER, INSTALLATION, "all")
            == clock.now
        )

    def test_uploads_after_download(self, make_coordinator, local, remote):
        local.upsert(Collection.WORKOUTS, Workout(id="w-local", user_id=OWNER))
        seed_workout_tree(remote)

        make_coordinator().sync_all()

        first_upload = next(
            i for i, call in enumerate(remote.calls) if call[0] == "upload"
        )
        assert all(call[0] == "upload" for call in remote.calls[first_upload:])
        ids = {d["localId"] for d in remote.documents(Collection.WORKOUTS)}
        assert ids == {"w1", "w-local"}

    def test_empty_local_with_baseline_forces_full_download(
        self, make_coordinator, local, remote, baselines, clock
    ):
        baselines.set_last_sync_time(OWNER, INSTALLATION, "all", T0)
        seed_workout_tree(remote, modified_at=T0 - timedelta(days=1))
        clock.advance(hours=1)

        outcome = make_coordinator().sync_all()

        assert outcome.report.full is True
        assert local.count(Collection.WORKOUTS, OWNER) == 1
        workout_calls = [
            c for c in remote.calls if c[:2] == ("download", "workouts")
        ]
        assert workout_calls == [("download", "workouts", OWNER, None)]

    def test_incremental_after_first_pass(
        self, make_coordinator, local, remote, clock
    ):
        seed_workout_tree(remote)
        coordinator = make_coordinator()
        coordinator.sync_all()
        first_finished = clock.now

        clock.advance(minutes=10)
        seed(
            remote,
            Collection.WORKOUTS,
            Workout(id="w2", user_id=OWNER, name="Pull"),
        )
        remote.calls.clear()
        outcome = coordinator.sync_all()

        assert outcome.report.full is False
        assert ("download", "workouts", OWNER, first_finished) in remote.calls
        assert local.get(Collection.WORKOUTS, "w2") is not None

    def test_repeat_pass_is_idempotent(
        self, make_coordinator, local, remote, clock
    ):
        seed(remote, Collection.EXERCISES, Exercise(id="ex-1", name="Squat"))
        seed_workout_tree(remote)
        seed(remote, Collection.PROGRAMMES, Programme(id="p1", user_id=OWNER))
        seed(
            remote,
            Collection.EXERCISE_USAGE,
            ExerciseUsage(
                id="u1", user_id=OWNER, exercise_id="ex-1", usage_count=3
            ),
        )
        coordinator = make_coordinator()
        coordinator.sync_all()
        before = snapshot(local)

        clock.advance(minutes=1)
        outcome = coordinator.sync_all()

        assert isinstance(outcome, Success)
        assert outcome.report.inserted == 0
        assert outcome.report.updated == 0
        assert snapshot(local) == before


class TestSyncUserData:
    def test_skips_catalog(self, make_coordinator, remote, baselines, clock):
        seed(remote, Collection.EXERCISES, Exercise(id="ex-1", name="Squat"))
        outcome = make_coordinator().sync_user_data(OWNER)

        assert isinstance(outcome, Success)
        assert "exercises" not in op_calls(remote, "download")
        assert "customExercises" in op_calls(remote, "download")
        assert (
            baselines.get_last_sync_time(OWNER, INSTALLATION, "user")
            == clock.now
        )
        assert baselines.get_last_sync_time(OWNER, INSTALLATION, "all") is None

    def test_explicit_owner_overrides_session(
        self, make_coordinator, local, remote
    ):
        seed(remote, Collection.WORKOUTS, Workout(id="w9", user_id="user-2"))
        make_coordinator(owner_id=None).sync_user_data("user-2")
        assert local.get(Collection.WORKOUTS, "w9").user_id == "user-2"


class TestReferenceSync:
    def test_catalog_only_and_no_baseline(
        self, make_coordinator, local, remote, baselines
    ):
        seed(remote, Collection.EXERCISES, Exercise(id="ex-1", name="Squat"))
        seed(
            remote,
            Collection.CUSTOM_EXERCISES,
            Exercise(id="c1", user_id=OWNER, name="Mine"),
        )
        outcome = make_coordinator().sync_system_reference_data()

        assert isinstance(outcome, Success)
        assert outcome.report.scope == "reference"
        assert local.count(Collection.EXERCISES, None) == 1
        assert local.get(Collection.CUSTOM_EXERCISES, "c1") is None
        assert op_calls(remote, "upload") == []
        assert baselines.get_last_sync_time(OWNER, INSTALLATION, "all") is None


# ---------------------------------------------------------------------------
# Cooldown
# ---------------------------------------------------------------------------


class TestCooldown:
    def test_success_then_skipped_then_success(self, make_coordinator, clock):
        coordinator = make_coordinator(cooldown=timedelta(minutes=5))

        assert isinstance(coordinator.sync_all(), Success)

        clock.advance(minutes=2)
        skipped = coordinator.sync_all()
        assert isinstance(skipped, Skipped)
        assert skipped.remaining == timedelta(minutes=3)
        assert skipped.reason.startswith("cooldown")

        clock.advance(minutes=4)
        assert isinstance(coordinator.sync_all(), Success)

    def test_skip_makes_no_remote_calls(self, make_coordinator, remote, clock):
        coordinator = make_coordinator(cooldown=timedelta(minutes=5))
        coordinator.sync_all()
        remote.calls.clear()

        clock.advance(seconds=30)
        coordinator.sync_all()
        assert remote.calls == []

    def test_cooldown_applies_only_to_sync_all(
        self, make_coordinator, clock
    ):
        coordinator = make_coordinator(cooldown=timedelta(minutes=5))
        coordinator.sync_all()
        clock.advance(seconds=10)
        assert isinstance(coordinator.sync_user_data(), Success)
        assert isinstance(coordinator.sync_system_reference_data(), Success)

    def test_failed_pass_does_not_start_cooldown(
        self, make_coordinator, remote, clock
    ):
        coordinator = make_coordinator(cooldown=timedelta(minutes=5))
        remote.fail("download", Collection.WORKOUTS)
        assert isinstance(coordinator.sync_all(), DownloadFailed)

        remote.failures.clear()
        clock.advance(seconds=5)
        assert isinstance(coordinator.sync_all(), Success)

    def test_cooldown_survives_new_coordinator(self, make_coordinator, clock):
        make_coordinator(cooldown=timedelta(minutes=5)).sync_all()
        clock.advance(minutes=1)
        outcome = make_coordinator(cooldown=timedelta(minutes=5)).sync_all()
        assert isinstance(outcome, Skipped)

    def test_no_cooldown_never_skips(self, make_coordinator):
        coordinator = make_coordinator()
        assert isinstance(coordinator.sync_all(), Success)
        assert isinstance(coordinator.sync_all(), Success)


# ---------------------------------------------------------------------------
# Mutual exclusion
# ---------------------------------------------------------------------------


class OverlapDetectingRemote(InMemoryRemoteStore):
    """Remote that records the peak number of concurrent calls."""

    def __init__(self, clock):
        super().__init__(clock=clock)
        self._active = 0
        self._guard = threading.Lock()
        self.peak = 0

    def download(self, collection, owner_id, since):
        with self._guard:
            self._active += 1
            self.peak = max(self.peak, self._active)
        try:
            time.sleep(0.002)
            return super().download(collection, owner_id, since)
        finally:
            with self._guard:
                self._active -= 1


class TestMutualExclusion:
    def test_passes_never_overlap(self, baselines, clock):
        from workout_sync.sync.coordinator import SyncCoordinator
        from workout_sync.sync.ports import StaticSession

        local = RecordingLocalStore()
        remote = OverlapDetectingRemote(clock)
        seed(remote, Collection.EXERCISES, Exercise(id="ex-1", name="Squat"))
        seed_workout_tree(remote)
        coordinator = SyncCoordinator(
            local=local,
            remote=remote,
            baseline_store=baselines,
            session=StaticSession(OWNER),
            installation_id=INSTALLATION,
            clock=clock,
        )
        outcomes = []
        entry_points = [
            coordinator.sync_all,
            coordinator.sync_user_data,
            coordinator.sync_system_reference_data,
            coordinator.restore_from_cloud,
        ]
        threads = [
            threading.Thread(target=lambda fn=fn: outcomes.append(fn()))
            for fn in entry_points * 2
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert remote.peak == 1
        assert len(outcomes) == 8
        assert all(isinstance(o, Success) for o in outcomes)
        # Every local write belongs to exactly one pass.
        reported = sum(
            o.report.inserted + o.report.updated for o in outcomes
        )
        assert len(local.writes) == reported
        assert reported > 0


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class FailingLocalStore(InMemoryLocalStore):
    def insert_if_absent(self, collection, record):
        raise RuntimeError("disk full")


class ReadOnlyBaselines(InMemoryBaselineStore):
    def set_last_sync_time(self, owner_id, installation_id, scope, timestamp):
        raise LocalStoreError("state directory is read-only")


class TestFailures:
    def test_download_failure(self, make_coordinator, remote, baselines):
        seed_workout_tree(remote)
        remote.fail("download", Collection.SET_LOGS)

        outcome = make_coordinator().sync_all()

        assert isinstance(outcome, DownloadFailed)
        assert outcome.cause.operation == "download:setLogs"
        assert outcome.cause.category == "remote_transport"
        assert op_calls(remote, "upload") == []
        assert baselines.get_last_sync_time(OWNER, INSTALLATION, "all") is None
        assert [r.collection for r in outcome.report.downloads][-1] == (
            "exerciseLogs"
        )

    def test_unexpected_local_failure(self, make_coordinator, remote):
        seed_workout_tree(remote)
        outcome = make_coordinator(local_store=FailingLocalStore()).sync_all()

        assert isinstance(outcome, DownloadFailed)
        assert outcome.cause.category == "unexpected"
        assert outcome.cause.operation == "download:workouts"
        assert "RuntimeError: disk full" in outcome.cause.message

    def test_upload_failure_keeps_downloaded_data(
        self, make_coordinator, local, remote, baselines
    ):
        seed_workout_tree(remote)
        remote.fail("upload", Collection.EXERCISE_LOGS)

        outcome = make_coordinator().sync_all()

        assert isinstance(outcome, UploadFailed)
        assert outcome.cause.operation == "upload:exerciseLogs"
        assert local.count(Collection.SET_LOGS, OWNER) == 2
        assert baselines.get_last_sync_time(OWNER, INSTALLATION, "all") is None
        assert [r.collection for r in outcome.report.uploads][-1] == (
            "workouts"
        )

    def test_baseline_write_failure_is_upload_failure(
        self, local, remote, clock
    ):
        from workout_sync.sync.coordinator import SyncCoordinator
        from workout_sync.sync.ports import StaticSession

        coordinator = SyncCoordinator(
            local=local,
            remote=remote,
            baseline_store=ReadOnlyBaselines(),
            session=StaticSession(OWNER),
            installation_id=INSTALLATION,
            clock=clock,
        )
        outcome = coordinator.sync_all()
        assert isinstance(outcome, UploadFailed)
        assert outcome.cause.operation == "baseline:write"
        assert outcome.cause.category == "local_store"

    def test_coordinator_usable_after_failure(self, make_coordinator, remote):
        coordinator = make_coordinator()
        remote.fail("download", Collection.EXERCISES)
        assert isinstance(coordinator.sync_all(), DownloadFailed)
        remote.failures.clear()
        assert isinstance(coordinator.sync_all(), Success)


# ---------------------------------------------------------------------------
# Restore
# ---------------------------------------------------------------------------


class TestRestore:
    def test_replaces_owner_data(
        self, make_coordinator, local, remote, baselines, clock
    ):
        local.upsert(Collection.WORKOUTS, Workout(id="stale", user_id=OWNER))
        local.upsert(Collection.WORKOUTS, Workout(id="w-2", user_id="user-2"))
        seed_workout_tree(remote)

        outcome = make_coordinator().restore_from_cloud()

        assert isinstance(outcome, Success)
        assert outcome.report.scope == "restore"
        assert local.get(Collection.WORKOUTS, "stale") is None
        assert local.get(Collection.WORKOUTS, "w1") is not None
        assert local.get(Collection.WORKOUTS, "w-2") is not None
        assert op_calls(remote, "upload") == []
        assert (
            baselines.get_last_sync_time(OWNER, INSTALLATION, "all")
            == clock.now
        )

    def test_restore_matches_synced_state(
        self, make_coordinator, local, remote, clock
    ):
        seed(remote, Collection.EXERCISES, Exercise(id="ex-1", name="Squat"))
        seed_workout_tree(remote)
        local.upsert(Collection.PROGRAMMES, Programme(id="p1", user_id=OWNER))
        local.upsert(
            Collection.PROGRAMME_PROGRESS,
            ProgrammeProgress(
                id="pp1", user_id=OWNER, programme_id="p1", current_week=2
            ),
        )
        coordinator = make_coordinator()
        coordinator.sync_all()
        synced = snapshot(local)

        clock.advance(minutes=1)
        assert isinstance(coordinator.restore_from_cloud(), Success)
        assert snapshot(local) == synced

    def test_restore_download_failure(self, make_coordinator, local, remote):
        local.upsert(Collection.WORKOUTS, Workout(id="w0", user_id=OWNER))
        remote.fail("download", Collection.WORKOUTS)

        outcome = make_coordinator().restore_from_cloud()

        assert isinstance(outcome, DownloadFailed)
        assert outcome.cause.operation == "download:workouts"
        # Deletes are not rolled back.
        assert local.count(Collection.WORKOUTS, OWNER) == 0


# ---------------------------------------------------------------------------
# Multi-device
# ---------------------------------------------------------------------------


class TestTwoDevices:
    def test_devices_converge(self, make_coordinator, remote, clock):
        device_a = InMemoryLocalStore()
        device_b = InMemoryLocalStore()
        sync_a = make_coordinator(local_store=device_a, installation_id="a")
        sync_b = make_coordinator(local_store=device_b, installation_id="b")

        device_a.upsert(Collection.WORKOUTS, Workout(id="wa", user_id=OWNER))
        assert isinstance(sync_a.sync_all(), Success)

        clock.advance(minutes=1)
        device_b.upsert(Collection.WORKOUTS, Workout(id="wb", user_id=OWNER))
        assert isinstance(sync_b.sync_all(), Success)

        clock.advance(minutes=1)
        assert isinstance(sync_a.sync_all(), Success)

        assert snapshot(device_a) == snapshot(device_b)
        assert {w.id for w in device_a.get_all(Collection.WORKOUTS, OWNER)} == {
            "wa",
            "wb",
        }

    def test_progress_never_regresses(self, make_coordinator, remote, clock):
        device = InMemoryLocalStore()
        device.upsert(Collection.PROGRAMMES, Programme(id="p1", user_id=OWNER))
        device.upsert(
            Collection.PROGRAMME_PROGRESS,
            ProgrammeProgress(
                id="pp1",
                user_id=OWNER,
                programme_id="p1",
                current_week=4,
                current_day=2,
            ),
        )
        seed(
            remote,
            Collection.PROGRAMME_PROGRESS,
            ProgrammeProgress(
                id="pp1",
                user_id=OWNER,
                programme_id="p1",
                current_week=3,
                current_day=5,
            ),
        )
        make_coordinator(local_store=device).sync_all()

        assert device.get(Collection.PROGRAMME_PROGRESS, "pp1").position == (
            4,
            2,
        )
        (doc,) = remote.documents(Collection.PROGRAMME_PROGRESS)
        assert doc["currentWeek"] == 4


# ---------------------------------------------------------------------------
# Async wrappers and status
# ---------------------------------------------------------------------------


class TestAsync:
    async def test_sync_all_async(self, make_coordinator):
        outcome = await make_coordinator().sync_all_async()
        assert isinstance(outcome, Success)

    async def test_sync_user_data_async(self, make_coordinator):
        outcome = await make_coordinator(owner_id=None).sync_user_data_async()
        assert isinstance(outcome, NotAuthenticated)

    async def test_reference_and_restore_async(self, make_coordinator):
        coordinator = make_coordinator()
        assert isinstance(
            await coordinator.sync_system_reference_data_async(), Success
        )
        assert isinstance(await coordinator.restore_from_cloud_async(), Success)


class TestLastSyncTime:
    def test_reads_baseline(self, make_coordinator, clock):
        coordinator = make_coordinator()
        assert coordinator.last_sync_time(OWNER) is None
        coordinator.sync_all()
        assert coordinator.last_sync_time(OWNER) == clock.now
        assert coordinator.last_sync_time(OWNER, "user") is None
