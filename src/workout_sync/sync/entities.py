"""Local entity shapes for every synchronized collection.

These are the records the on-device store holds.  All models are frozen
pydantic models; merge policies build replacement records with
``model_copy(update=...)`` rather than mutating in place.

Every field has a default so that converters stay total: a remote document
missing a field still yields a valid local record.  Timestamps default to
the Unix epoch (UTC) rather than "now" so conversion is deterministic.

Ownership:

- ``Exercise`` with ``user_id=None`` is global catalog data.
- Everything else carries ``user_id`` (the owner id).
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, field_validator

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class WorkoutStatus(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class ProgrammeType(str, Enum):
    STRENGTH = "STRENGTH"
    POWERLIFTING = "POWERLIFTING"
    BODYBUILDING = "BODYBUILDING"
    GENERAL_FITNESS = "GENERAL_FITNESS"
    OLYMPIC_LIFTING = "OLYMPIC_LIFTING"
    HYBRID = "HYBRID"


class ProgrammeDifficulty(str, Enum):
    BEGINNER = "BEGINNER"
    NOVICE = "NOVICE"
    INTERMEDIATE = "INTERMEDIATE"
    ADVANCED = "ADVANCED"
    EXPERT = "EXPERT"


class ProgrammeStatus(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class PRType(str, Enum):
    """Kind of personal record; decides which field "better" compares."""

    WEIGHT = "WEIGHT"
    ESTIMATED_1RM = "ESTIMATED_1RM"


class OneRMType(str, Enum):
    AUTOMATICALLY_CALCULATED = "AUTOMATICALLY_CALCULATED"
    MANUALLY_ENTERED = "MANUALLY_ENTERED"


class ProgressTrend(str, Enum):
    IMPROVING = "IMPROVING"
    STALLING = "STALLING"
    DECLINING = "DECLINING"


class VolumeTrend(str, Enum):
    INCREASING = "INCREASING"
    MAINTAINING = "MAINTAINING"
    DECREASING = "DECREASING"


class ParseStatus(str, Enum):
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    IMPORTED = "IMPORTED"


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


class SyncEntity(BaseModel):
    """Common shape: a stable primary key and an optional owner."""

    id: str = ""
    user_id: str | None = None

    model_config = {"frozen": True}

    @field_validator("*", mode="after")
    @classmethod
    def _assume_utc(cls, value: Any) -> Any:
        # Naive timestamps from older documents are UTC.
        if isinstance(value, datetime) and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


# ---------------------------------------------------------------------------
# Exercise catalog and custom exercises
# ---------------------------------------------------------------------------


class ExerciseMuscle(BaseModel):
    muscle: str = ""
    is_primary: bool = False
    emphasis_modifier: float = 1.0

    model_config = {"frozen": True}


class ExerciseInstruction(BaseModel):
    instruction_type: str = "EXECUTION"
    content: str = ""
    order_index: int = 0
    language_code: str = "en"

    model_config = {"frozen": True}


class Exercise(SyncEntity):
    """Catalog exercise (``user_id is None``) or a user's custom exercise.

    Muscles, aliases and instructions are embedded: the remote catalog is
    denormalized, one document per exercise.
    """

    name: str = ""
    category: str = "OTHER"
    movement_pattern: str = "OTHER"
    is_compound: bool = False
    equipment: str = "NONE"
    difficulty: str | None = None
    requires_weight: bool = False
    recommended_rep_range: str | None = None
    rm_scaling_type: str = "STANDARD"
    rest_duration_seconds: int = 90
    muscles: tuple[ExerciseMuscle, ...] = ()
    aliases: tuple[str, ...] = ()
    instructions: tuple[ExerciseInstruction, ...] = ()
    created_at: datetime = EPOCH
    updated_at: datetime = EPOCH


# ---------------------------------------------------------------------------
# Programme hierarchy
# ---------------------------------------------------------------------------


class Programme(SyncEntity):
    name: str = ""
    description: str | None = None
    duration_weeks: int = 0
    programme_type: ProgrammeType = ProgrammeType.STRENGTH
    difficulty: ProgrammeDifficulty = ProgrammeDifficulty.BEGINNER
    is_custom: bool = False
    is_active: bool = False
    status: ProgrammeStatus = ProgrammeStatus.NOT_STARTED
    created_at: datetime = EPOCH
    started_at: datetime | None = None
    completed_at: datetime | None = None
    completion_notes: str | None = None
    squat_max: float | None = None
    bench_max: float | None = None
    deadlift_max: float | None = None
    ohp_max: float | None = None
    weight_calculation_rules: str | None = None
    progression_rules: str | None = None
    template_name: str | None = None


class ProgrammeWeek(SyncEntity):
    programme_id: str = ""
    week_number: int = 0
    name: str | None = None
    description: str | None = None
    is_deload: bool = False
    phase: str | None = None


class ProgrammeWorkout(SyncEntity):
    week_id: str = ""
    day_number: int = 0
    name: str = ""
    description: str | None = None
    estimated_duration: int | None = None
    workout_structure: str = ""


class ProgrammeProgress(SyncEntity):
    programme_id: str = ""
    current_week: int = 0
    current_day: int = 0
    completed_workouts: int = 0
    total_workouts: int = 0
    last_workout_date: datetime | None = None
    adherence_percentage: float = 0.0
    strength_progress: str | None = None

    @property
    def position(self) -> tuple[int, int]:
        """``(current_week, current_day)``; compared lexicographically."""
        return (self.current_week, self.current_day)


# ---------------------------------------------------------------------------
# Workout hierarchy
# ---------------------------------------------------------------------------


class Workout(SyncEntity):
    name: str | None = None
    notes: str | None = None
    date: datetime = EPOCH
    status: WorkoutStatus = WorkoutStatus.NOT_STARTED
    programme_id: str | None = None
    week_number: int | None = None
    day_number: int | None = None
    programme_workout_name: str | None = None
    is_programme_workout: bool = False
    duration_seconds: int | None = None
    timer_start_time: datetime | None = None
    timer_elapsed_seconds: int = 0


class ExerciseLog(SyncEntity):
    workout_id: str = ""
    exercise_id: str = ""
    exercise_order: int = 0
    superset_group: int | None = None
    notes: str | None = None
    original_exercise_id: str | None = None
    is_swapped: bool = False


class SetLog(SyncEntity):
    exercise_log_id: str = ""
    set_order: int = 0
    target_reps: int | None = None
    target_weight: float | None = None
    target_rpe: float | None = None
    actual_reps: int = 0
    actual_weight: float = 0.0
    actual_rpe: float | None = None
    tag: str | None = None
    notes: str | None = None
    is_completed: bool = False
    completed_at: datetime | None = None


# ---------------------------------------------------------------------------
# Template hierarchy
# ---------------------------------------------------------------------------


class WorkoutTemplate(SyncEntity):
    name: str = ""
    description: str | None = None
    created_at: datetime = EPOCH
    updated_at: datetime = EPOCH


class TemplateExercise(SyncEntity):
    template_id: str = ""
    exercise_id: str = ""
    exercise_order: int = 0
    notes: str | None = None


class TemplateSet(SyncEntity):
    template_exercise_id: str = ""
    set_order: int = 0
    target_reps: int | None = None
    target_weight: float | None = None
    target_rpe: float | None = None
    notes: str | None = None


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------


class ExerciseMaxTracking(SyncEntity):
    exercise_id: str = ""
    source_set_id: str | None = None
    most_weight_lifted: float = 0.0
    most_weight_reps: int = 0
    most_weight_rpe: float | None = None
    most_weight_date: datetime = EPOCH
    one_rm_estimate: float = 0.0
    context: str = ""
    one_rm_confidence: float = 0.0
    recorded_at: datetime = EPOCH
    one_rm_type: OneRMType = OneRMType.AUTOMATICALLY_CALCULATED
    notes: str | None = None


class PersonalRecord(SyncEntity):
    exercise_id: str = ""
    weight: float = 0.0
    reps: int = 0
    rpe: float | None = None
    record_date: datetime = EPOCH
    previous_weight: float | None = None
    previous_reps: int | None = None
    previous_date: datetime | None = None
    improvement_percentage: float = 0.0
    record_type: PRType = PRType.WEIGHT
    volume: float = 0.0
    estimated_1rm: float | None = None
    notes: str | None = None
    workout_id: str | None = None


class ExerciseUsage(SyncEntity):
    exercise_id: str = ""
    usage_count: int = 0
    last_used_at: datetime | None = None
    personal_notes: str | None = None
    created_at: datetime = EPOCH
    updated_at: datetime = EPOCH


# ---------------------------------------------------------------------------
# Tracking / history
# ---------------------------------------------------------------------------


class ExerciseSwapHistory(SyncEntity):
    original_exercise_id: str = ""
    swapped_to_exercise_id: str = ""
    swap_date: datetime = EPOCH
    workout_id: str | None = None
    programme_id: str | None = None

    @property
    def logical_key(self) -> tuple[str | None, str, str, str | None]:
        """Identity used for de-duplication instead of the primary key."""
        return (
            self.user_id,
            self.original_exercise_id,
            self.swapped_to_exercise_id,
            self.workout_id,
        )


class ExercisePerformanceTracking(SyncEntity):
    programme_id: str = ""
    exercise_id: str = ""
    exercise_name: str = ""
    target_weight: float = 0.0
    achieved_weight: float = 0.0
    target_sets: int = 0
    completed_sets: int = 0
    target_reps: int | None = None
    achieved_reps: int = 0
    missed_reps: int = 0
    was_successful: bool = False
    workout_date: datetime = EPOCH
    workout_id: str = ""
    is_deload_workout: bool = False
    deload_reason: str | None = None
    average_rpe: float | None = None
    notes: str | None = None


class GlobalExerciseProgress(SyncEntity):
    exercise_id: str = ""
    current_working_weight: float = 0.0
    estimated_max: float = 0.0
    last_updated: datetime = EPOCH
    recent_avg_rpe: float | None = None
    consecutive_stalls: int = 0
    last_pr_date: datetime | None = None
    last_pr_weight: float | None = None
    trend: ProgressTrend = ProgressTrend.STALLING
    volume_trend: VolumeTrend | None = None
    total_volume_last_30_days: float = 0.0


class TrainingAnalysis(SyncEntity):
    analysis_date: datetime = EPOCH
    period_start: date = EPOCH.date()
    period_end: date = EPOCH.date()
    overall_assessment: str = ""
    key_insights_json: str = ""
    recommendations_json: str = ""
    warnings_json: str = ""


class ParseRequest(SyncEntity):
    raw_text: str = ""
    created_at: datetime = EPOCH
    status: ParseStatus = ParseStatus.PROCESSING
    error: str | None = None
    result_json: str | None = None
    completed_at: datetime | None = None
