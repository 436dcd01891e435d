"""Registry of synchronized collections.

Every collection the engine knows about is described once here:

- ``Collection``: Enum of collection names (the remote collection name is the
  enum value; local stores use the same key).
- ``CollectionDef``: entity type, ownership, merge policy, whether the
  download is incremental, and the parent reference used for orphan checks.
- ``COLLECTIONS``: the static registry keyed by ``Collection``.
- ``DOWNLOAD_PHASES``: the fixed phase order.  Parents always precede
  children; the uploader reuses the same order.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .entities import (
    Exercise,
    ExerciseLog,
    ExerciseMaxTracking,
    ExercisePerformanceTracking,
    ExerciseSwapHistory,
    ExerciseUsage,
    GlobalExerciseProgress,
    ParseRequest,
    PersonalRecord,
    Programme,
    ProgrammeProgress,
    ProgrammeWeek,
    ProgrammeWorkout,
    SetLog,
    SyncEntity,
    TemplateExercise,
    TemplateSet,
    TrainingAnalysis,
    Workout,
    WorkoutTemplate,
)
from .policies import (
    CombineUsagePolicy,
    InsertIfAbsentPolicy,
    KeepBetterRecordPolicy,
    KeepHigherPolicy,
    LastModifiedWinsPolicy,
    LogicalIdentityPolicy,
    MergePolicy,
    MonotonicAdvancePolicy,
    UpsertPolicy,
)


class Collection(str, Enum):
    """Synchronized collections, valued by their remote collection name."""

    EXERCISES = "exercises"
    CUSTOM_EXERCISES = "customExercises"
    PROGRAMMES = "programmes"
    PROGRAMME_WEEKS = "programmeWeeks"
    PROGRAMME_WORKOUTS = "programmeWorkouts"
    PROGRAMME_PROGRESS = "programmeProgress"
    WORKOUTS = "workouts"
    EXERCISE_LOGS = "exerciseLogs"
    SET_LOGS = "setLogs"
    TEMPLATES = "workoutTemplates"
    TEMPLATE_EXERCISES = "templateExercises"
    TEMPLATE_SETS = "templateSets"
    EXERCISE_MAXES = "exerciseMaxTracking"
    PERSONAL_RECORDS = "personalRecords"
    EXERCISE_USAGE = "userExerciseUsage"
    SWAP_HISTORY = "exerciseSwapHistory"
    PERFORMANCE_TRACKING = "exercisePerformanceTracking"
    GLOBAL_EXERCISE_PROGRESS = "globalExerciseProgress"
    TRAINING_ANALYSES = "trainingAnalyses"
    PARSE_REQUESTS = "parseRequests"


class Ownership(str, Enum):
    GLOBAL = "global"
    USER = "user"


@dataclass(frozen=True)
class ParentRef:
    """Foreign key from a child collection to its parent collection."""

    collection: Collection
    field: str


@dataclass(frozen=True)
class CollectionDef:
    """Static description of one synchronized collection.

    Attributes:
        collection: The collection key.
        entity_type: Local entity model.
        ownership: ``GLOBAL`` (ownerless catalog) or ``USER``.
        policy: Merge strategy applied on download.
        incremental: Whether download honours the ``since`` baseline.
        parent: Parent reference checked before writing, or ``None``.
    """

    collection: Collection
    entity_type: type[SyncEntity]
    ownership: Ownership
    policy: MergePolicy
    incremental: bool = False
    parent: ParentRef | None = None

    @property
    def is_global(self) -> bool:
        return self.ownership is Ownership.GLOBAL


def _user(
    collection: Collection,
    entity_type: type[SyncEntity],
    policy: MergePolicy,
    *,
    incremental: bool = False,
    parent: tuple[Collection, str] | None = None,
) -> CollectionDef:
    return CollectionDef(
        collection=collection,
        entity_type=entity_type,
        ownership=Ownership.USER,
        policy=policy,
        incremental=incremental,
        parent=ParentRef(*parent) if parent else None,
    )


_upsert = UpsertPolicy()
_insert_if_absent = InsertIfAbsentPolicy()

COLLECTIONS: dict[Collection, CollectionDef] = {
    defn.collection: defn
    for defn in (
        CollectionDef(
            collection=Collection.EXERCISES,
            entity_type=Exercise,
            ownership=Ownership.GLOBAL,
            policy=_upsert,
        ),
        _user(
            Collection.CUSTOM_EXERCISES,
            Exercise,
            LastModifiedWinsPolicy("updated_at"),
            incremental=True,
        ),
        # Programme hierarchy
        _user(Collection.PROGRAMMES, Programme, _insert_if_absent),
        _user(
            Collection.PROGRAMME_WEEKS,
            ProgrammeWeek,
            _insert_if_absent,
            parent=(Collection.PROGRAMMES, "programme_id"),
        ),
        _user(
            Collection.PROGRAMME_WORKOUTS,
            ProgrammeWorkout,
            _insert_if_absent,
            parent=(Collection.PROGRAMME_WEEKS, "week_id"),
        ),
        _user(
            Collection.PROGRAMME_PROGRESS,
            ProgrammeProgress,
            MonotonicAdvancePolicy(),
            parent=(Collection.PROGRAMMES, "programme_id"),
        ),
        # Workout hierarchy
        _user(Collection.WORKOUTS, Workout, _upsert, incremental=True),
        _user(
            Collection.EXERCISE_LOGS,
            ExerciseLog,
            _upsert,
            incremental=True,
            parent=(Collection.WORKOUTS, "workout_id"),
        ),
        _user(
            Collection.SET_LOGS,
            SetLog,
            _upsert,
            incremental=True,
            parent=(Collection.EXERCISE_LOGS, "exercise_log_id"),
        ),
        # Template hierarchy
        _user(
            Collection.TEMPLATES, WorkoutTemplate, _upsert, incremental=True
        ),
        _user(
            Collection.TEMPLATE_EXERCISES,
            TemplateExercise,
            _upsert,
            incremental=True,
            parent=(Collection.TEMPLATES, "template_id"),
        ),
        _user(
            Collection.TEMPLATE_SETS,
            TemplateSet,
            _upsert,
            incremental=True,
            parent=(Collection.TEMPLATE_EXERCISES, "template_exercise_id"),
        ),
        # Statistics
        _user(
            Collection.EXERCISE_MAXES,
            ExerciseMaxTracking,
            KeepHigherPolicy("one_rm_estimate"),
        ),
        _user(
            Collection.PERSONAL_RECORDS,
            PersonalRecord,
            KeepBetterRecordPolicy(),
        ),
        _user(Collection.EXERCISE_USAGE, ExerciseUsage, CombineUsagePolicy()),
        # Tracking / history
        _user(
            Collection.SWAP_HISTORY,
            ExerciseSwapHistory,
            LogicalIdentityPolicy(),
        ),
        _user(
            Collection.PERFORMANCE_TRACKING,
            ExercisePerformanceTracking,
            _insert_if_absent,
        ),
        _user(
            Collection.GLOBAL_EXERCISE_PROGRESS,
            GlobalExerciseProgress,
            _insert_if_absent,
        ),
        _user(
            Collection.TRAINING_ANALYSES, TrainingAnalysis, _insert_if_absent
        ),
        _user(Collection.PARSE_REQUESTS, ParseRequest, _insert_if_absent),
    )
}

CATALOG_PHASE = "catalog"

DOWNLOAD_PHASES: tuple[tuple[str, tuple[Collection, ...]], ...] = (
    (CATALOG_PHASE, (Collection.EXERCISES,)),
    ("custom_reference", (Collection.CUSTOM_EXERCISES,)),
    (
        "programmes",
        (
            Collection.PROGRAMMES,
            Collection.PROGRAMME_WEEKS,
            Collection.PROGRAMME_WORKOUTS,
            Collection.PROGRAMME_PROGRESS,
        ),
    ),
    (
        "workouts",
        (Collection.WORKOUTS, Collection.EXERCISE_LOGS, Collection.SET_LOGS),
    ),
    (
        "templates",
        (
            Collection.TEMPLATES,
            Collection.TEMPLATE_EXERCISES,
            Collection.TEMPLATE_SETS,
        ),
    ),
    (
        "statistics",
        (
            Collection.EXERCISE_MAXES,
            Collection.PERSONAL_RECORDS,
            Collection.EXERCISE_USAGE,
        ),
    ),
    (
        "tracking",
        (
            Collection.SWAP_HISTORY,
            Collection.PERFORMANCE_TRACKING,
            Collection.GLOBAL_EXERCISE_PROGRESS,
            Collection.TRAINING_ANALYSES,
            Collection.PARSE_REQUESTS,
        ),
    ),
)

# Primary user-data collection; zero owner rows here means a fresh install.
PRIMARY_COLLECTION = Collection.WORKOUTS


def user_collections() -> list[Collection]:
    """Owner-scoped collections in download (parent-first) order."""
    return [
        collection
        for _, collections in DOWNLOAD_PHASES
        for collection in collections
        if not COLLECTIONS[collection].is_global
    ]


def get_definition(collection: Collection) -> CollectionDef:
    return COLLECTIONS[collection]
