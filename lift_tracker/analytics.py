from __future__ import annotations

import calendar
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Dict, List, NamedTuple, Optional, TypeVar

import numpy as np

from .constants import DEFAULT_RECENT_RECORDS_LIMIT
from .models import (
    EXERCISE_BODY_PARTS,
    MAIN_EXERCISES,
    BodyPart,
    Exercise,
    TimeOfDay,
    WorkoutRecord,
    is_main_exercise,
)

LabelT = TypeVar("LabelT")


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def shift_months(moment: datetime, months: int) -> datetime:
    """Calendar month arithmetic, clamping the day to the target month's length."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


class DatePeriod(str, Enum):
    """Calendar periods used by `calculate_volume`."""

    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"

    def contains(self, moment: datetime, now: Optional[datetime] = None) -> bool:
        now = now or _now_utc()
        if self is DatePeriod.WEEK:
            return moment.isocalendar()[:2] == now.isocalendar()[:2]
        if self is DatePeriod.MONTH:
            return (moment.year, moment.month) == (now.year, now.month)
        return shift_months(now, -3) <= moment <= now


class ComparisonPeriod(str, Enum):
    """Sliding day windows used by the frequency and volume comparisons."""

    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"

    @property
    def days(self) -> int:
        return {"week": 7, "month": 30, "quarter": 90}[self.value]


class FatigueBand(str, Enum):
    NO_DATA = "noData"
    RECOVERED = "recovered"
    MODERATE = "moderate"
    ELEVATED = "elevated"
    HIGH = "high"
    EXTREME = "extreme"


class ProgressBand(str, Enum):
    """Coarser bands for the exercise summary card."""

    LOW = "low"
    BUILDING = "building"
    STRONG = "strong"
    PEAK = "peak"


FATIGUE_SUGGESTIONS: Dict[FatigueBand, str] = {
    FatigueBand.NO_DATA: "Log a session to get a recommendation.",
    FatigueBand.RECOVERED: "Fully recovered, room to push.",
    FatigueBand.MODERATE: "Moderate load, keep progressing.",
    FatigueBand.ELEVATED: "Elevated load, watch recovery.",
    FatigueBand.HIGH: "High load, consider a lighter session.",
    FatigueBand.EXTREME: "Near maximal, schedule a deload.",
}


@dataclass(frozen=True)
class CategoryTags:
    top_label: str
    mid_label: str
    top_share: float = 0.40
    mid_share: float = 0.30


CATEGORY_TAGS: Dict[BodyPart, CategoryTags] = {
    BodyPart.CHEST: CategoryTags("Bench Specialist", "Chest Focused"),
    BodyPart.LEGS: CategoryTags("Leg Day Devotee", "Leg Focused"),
    BodyPart.BACK: CategoryTags("Pulling Powerhouse", "Back Focused"),
    BodyPart.SHOULDERS: CategoryTags("Boulder Shoulders", "Shoulder Focused"),
    BodyPart.ARMS: CategoryTags("Arm Sculptor", "Arm Focused"),
    BodyPart.CORE: CategoryTags("Core Crusher", "Core Focused"),
}

# Minimum number of logged workouts for each overall tag, highest first.
VOLUME_TAGS: tuple[tuple[int, str], ...] = (
    (100, "Iron Veteran"),
    (50, "Regular Lifter"),
    (20, "Getting Started"),
)
BEGINNER_TAG = "Beginner"


class ProgressPoint(NamedTuple):
    date: datetime
    weight: float


# --- volume / fatigue -------------------------------------------------------


def calculate_volume(
    records: Iterable[WorkoutRecord],
    period: DatePeriod,
    *,
    now: Optional[datetime] = None,
) -> float:
    """Sum of weight x sets over records inside `period` (sets counts as 1 when absent)."""
    now = now or _now_utc()
    period = DatePeriod(period)
    return sum((record.volume for record in records if period.contains(record.date, now)), 0.0)


def calculate_fatigue(current_weight: float, personal_record: float) -> float:
    """Current effort as a percentage of the personal record; 0 without a PR."""
    if personal_record <= 0:
        return 0.0
    return current_weight / personal_record * 100


def fatigue_band(level: float) -> FatigueBand:
    if level == 0:
        return FatigueBand.NO_DATA
    if level < 60:
        return FatigueBand.RECOVERED
    if level < 70:
        return FatigueBand.MODERATE
    if level < 80:
        return FatigueBand.ELEVATED
    if level < 90:
        return FatigueBand.HIGH
    return FatigueBand.EXTREME


def progress_band(level: float) -> ProgressBand:
    if level < 60:
        return ProgressBand.LOW
    if level < 80:
        return ProgressBand.BUILDING
    if level < 90:
        return ProgressBand.STRONG
    return ProgressBand.PEAK


# --- selection helpers ------------------------------------------------------


def filter_for_exercise(records: Iterable[WorkoutRecord], exercise_id: str) -> List[WorkoutRecord]:
    """Records for one exercise; `bigThree` selects bench, squat and deadlift together."""
    if exercise_id == Exercise.BIG_THREE.value:
        return [record for record in records if is_main_exercise(record.exercise_id)]
    return [record for record in records if record.exercise_id == exercise_id]


def records_between(records: Iterable[WorkoutRecord], start: datetime, end: datetime) -> List[WorkoutRecord]:
    return [record for record in records if start <= record.date <= end]


def recent_records(
    records: Iterable[WorkoutRecord],
    days: int,
    *,
    now: Optional[datetime] = None,
) -> List[WorkoutRecord]:
    now = now or _now_utc()
    return records_between(records, now - timedelta(days=days), now)


def _previous_window(days: int, now: datetime) -> tuple[datetime, datetime]:
    end = now - timedelta(days=days)
    return end - timedelta(days=days), end


def other_workouts(records: Iterable[WorkoutRecord]) -> List[WorkoutRecord]:
    """Accessory work (anything outside the main lifts), newest first."""
    others = [record for record in records if not is_main_exercise(record.exercise_id)]
    return sorted(others, key=lambda record: record.date, reverse=True)


def other_workouts_by_type(records: Iterable[WorkoutRecord]) -> Dict[str, List[WorkoutRecord]]:
    grouped: Dict[str, List[WorkoutRecord]] = {}
    for record in other_workouts(records):
        grouped.setdefault(record.exercise_id, []).append(record)
    return grouped


# --- progress ---------------------------------------------------------------


def progress_series(records: Iterable[WorkoutRecord], exercise_id: str) -> List[ProgressPoint]:
    """
    New personal-record points for one exercise.

    Records are walked in date order and a point is emitted only when the
    running maximum is exceeded, so the weights are strictly increasing.
    """
    ordered = sorted(
        (record for record in records if record.exercise_id == exercise_id),
        key=lambda record: record.date,
    )
    points: List[ProgressPoint] = []
    current_max = 0.0
    for record in ordered:
        if record.weight > current_max:
            current_max = record.weight
            points.append(ProgressPoint(record.date, record.weight))
    return points


# --- comparisons ------------------------------------------------------------


@dataclass(frozen=True)
class FrequencyStats:
    current: int
    previous: int
    period: ComparisonPeriod

    @property
    def change_percentage(self) -> float:
        if self.previous <= 0:
            return 0.0
        return (self.current - self.previous) / self.previous * 100

    @property
    def is_improved(self) -> bool:
        return self.current > self.previous


@dataclass(frozen=True)
class VolumeStats:
    current: float
    previous: float
    period: ComparisonPeriod

    @property
    def change_percentage(self) -> float:
        if self.previous <= 0:
            return 0.0
        return (self.current - self.previous) / self.previous * 100

    @property
    def is_improved(self) -> bool:
        return self.current > self.previous


def frequency_stats(
    records: Sequence[WorkoutRecord],
    period: ComparisonPeriod,
    *,
    now: Optional[datetime] = None,
) -> FrequencyStats:
    """Sessions in the last `period.days` versus the equal-length window before it."""
    now = now or _now_utc()
    period = ComparisonPeriod(period)
    current = len(recent_records(records, period.days, now=now))
    start, end = _previous_window(period.days, now)
    previous = len(records_between(records, start, end))
    return FrequencyStats(current=current, previous=previous, period=period)


def volume_stats(
    records: Sequence[WorkoutRecord],
    period: ComparisonPeriod,
    *,
    now: Optional[datetime] = None,
) -> VolumeStats:
    now = now or _now_utc()
    period = ComparisonPeriod(period)
    current = sum((record.volume for record in recent_records(records, period.days, now=now)), 0.0)
    start, end = _previous_window(period.days, now)
    previous = sum((record.volume for record in records_between(records, start, end)), 0.0)
    return VolumeStats(current=current, previous=previous, period=period)


# --- per-exercise summaries -------------------------------------------------


@dataclass(frozen=True)
class ExerciseStats:
    exercise_id: str
    max_weight: float
    current_weight: float
    weekly_volume: float
    monthly_volume: float
    recent_records: List[WorkoutRecord] = field(default_factory=list)

    @property
    def progress(self) -> float:
        return calculate_fatigue(self.current_weight, self.max_weight)

    @property
    def progress_band(self) -> ProgressBand:
        return progress_band(self.progress)

    @property
    def weekly_average_volume(self) -> float:
        return self.monthly_volume / 4

    @property
    def max_volume(self) -> float:
        return max((record.volume for record in self.recent_records), default=0.0)

    @property
    def average_sets(self) -> float:
        if not self.recent_records:
            return 0.0
        total_sets = sum(record.sets for record in self.recent_records if record.sets is not None)
        return total_sets / len(self.recent_records)

    @property
    def frequency(self) -> float:
        # Recent records are treated as roughly four weeks of training.
        return len(self.recent_records) / 4


def exercise_stats(
    records: Sequence[WorkoutRecord],
    exercise_id: str,
    *,
    now: Optional[datetime] = None,
    recent_limit: int = DEFAULT_RECENT_RECORDS_LIMIT,
) -> ExerciseStats:
    now = now or _now_utc()
    selected = sorted(filter_for_exercise(records, exercise_id), key=lambda record: record.date, reverse=True)
    # Weekly/monthly volume match the exercise id literally, so `bigThree` has none of its own.
    exact = [record for record in records if record.exercise_id == exercise_id]
    return ExerciseStats(
        exercise_id=exercise_id,
        max_weight=max((record.weight for record in selected), default=0.0),
        current_weight=selected[0].weight if selected else 0.0,
        weekly_volume=sum((record.volume for record in recent_records(exact, 7, now=now)), 0.0),
        monthly_volume=sum((record.volume for record in recent_records(exact, 30, now=now)), 0.0),
        recent_records=selected[:recent_limit],
    )


@dataclass(frozen=True)
class FatigueStat:
    exercise_id: str
    name: str
    current_weight: float
    max_weight: float
    fatigue_level: float

    @property
    def band(self) -> FatigueBand:
        return fatigue_band(self.fatigue_level)

    @property
    def suggestion(self) -> str:
        return FATIGUE_SUGGESTIONS[self.band]


def fatigue_stats(records: Sequence[WorkoutRecord]) -> List[FatigueStat]:
    """Latest weight against the PR for each main lift."""
    stats: List[FatigueStat] = []
    for exercise in MAIN_EXERCISES:
        lifts = [record for record in records if record.exercise_id == exercise.value]
        max_weight = max((record.weight for record in lifts), default=0.0)
        latest = max(lifts, key=lambda record: record.date, default=None)
        current_weight = latest.weight if latest is not None else 0.0
        stats.append(
            FatigueStat(
                exercise_id=exercise.value,
                name=exercise.label,
                current_weight=current_weight,
                max_weight=max_weight,
                fatigue_level=calculate_fatigue(current_weight, max_weight),
            )
        )
    return stats


# --- streaks, categories, tags ----------------------------------------------


def longest_streak(days: Iterable[date | datetime]) -> int:
    """
    Longest run of consecutive calendar days.

    A day difference of exactly 1 extends the run; any other difference,
    including 0 for a repeated day, restarts it at 1.
    """
    ordinals = sorted(
        (day.date() if isinstance(day, datetime) else day).toordinal() for day in days
    )
    if not ordinals:
        return 0
    longest = current = 1
    for step in np.diff(np.asarray(ordinals, dtype=np.int64)):
        current = current + 1 if step == 1 else 1
        longest = max(longest, current)
    return longest


def most_frequent(labels: Iterable[LabelT], order: Sequence[LabelT]) -> Optional[LabelT]:
    """
    Arg-max of label counts.

    Ties go to the label that comes first in `order`; labels missing from
    `order` rank after it, in first-seen order.
    """
    counts: Dict[LabelT, int] = {}
    for label in labels:
        counts[label] = counts.get(label, 0) + 1
    if not counts:
        return None
    ranking = {label: index for index, label in enumerate(order)}
    first_seen = {label: index for index, label in enumerate(counts)}
    return min(
        counts,
        key=lambda label: (-counts[label], ranking.get(label, len(ranking)), first_seen[label]),
    )


def body_part_of(record: WorkoutRecord) -> Optional[BodyPart]:
    if record.body_part:
        try:
            return BodyPart(record.body_part)
        except ValueError:
            return None
    try:
        return EXERCISE_BODY_PARTS.get(Exercise(record.exercise_id))
    except ValueError:
        return None


def most_frequent_body_part(records: Iterable[WorkoutRecord]) -> Optional[BodyPart]:
    parts = (body_part_of(record) for record in records)
    return most_frequent((part for part in parts if part is not None), list(BodyPart))


def most_frequent_time_of_day(records: Iterable[WorkoutRecord]) -> Optional[TimeOfDay]:
    return most_frequent((TimeOfDay.from_hour(record.date.hour) for record in records), list(TimeOfDay))


def training_tags(records: Sequence[WorkoutRecord]) -> List[str]:
    """
    Profile tags derived from body-part shares and the number of logged workouts.

    Falls back to a single beginner tag when nothing qualifies.
    """
    total = len(records)
    tags: List[str] = []
    if total:
        counts: Dict[BodyPart, int] = {}
        for record in records:
            part = body_part_of(record)
            if part is not None:
                counts[part] = counts.get(part, 0) + 1
        for part in BodyPart:
            share = counts.get(part, 0) / total
            thresholds = CATEGORY_TAGS[part]
            if share >= thresholds.top_share:
                tags.append(thresholds.top_label)
            elif share >= thresholds.mid_share:
                tags.append(thresholds.mid_label)
        for minimum, label in VOLUME_TAGS:
            if total >= minimum:
                tags.append(label)
                break
    return tags or [BEGINNER_TAG]
