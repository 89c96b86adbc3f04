from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

import pandas as pd

from .analytics import ComparisonPeriod, filter_for_exercise, shift_months
from .models import WorkoutRecord

FRAME_COLUMNS = ["id", "date", "day", "exercise_id", "weight", "sets", "volume"]


@dataclass(frozen=True)
class VolumeBucket:
    label: str
    start: datetime
    end: datetime
    volume: float


def workouts_to_dataframe(records: Sequence[WorkoutRecord]) -> pd.DataFrame:
    """Normalise workout records into a pandas DataFrame sorted by date."""
    rows = [
        {
            "id": record.id,
            "date": pd.Timestamp(record.date),
            "exercise_id": record.exercise_id,
            "weight": float(record.weight),
            "sets": record.effective_sets,
            "volume": record.volume,
        }
        for record in records
    ]
    if not rows:
        return pd.DataFrame(columns=FRAME_COLUMNS)
    df = pd.DataFrame(rows)
    df["date"] = pd.to_datetime(df["date"], utc=True)
    df["day"] = df["date"].dt.normalize()
    df.sort_values("date", inplace=True)
    df.reset_index(drop=True, inplace=True)
    return df[FRAME_COLUMNS]


def workouts_by_day(records: Sequence[WorkoutRecord]) -> Dict[date, List[WorkoutRecord]]:
    """Group records by calendar day, newest record first within each day."""
    grouped: Dict[date, List[WorkoutRecord]] = {}
    for record in sorted(records, key=lambda item: item.date, reverse=True):
        grouped.setdefault(record.date.date(), []).append(record)
    return grouped


def daily_volume(records: Sequence[WorkoutRecord]) -> pd.Series:
    """Total volume per calendar day (UTC), indexed by day."""
    df = workouts_to_dataframe(records)
    if df.empty:
        return pd.Series(dtype="float64")
    return df.groupby("day")["volume"].sum()


def _window_volume(df: pd.DataFrame, start: datetime, end: datetime) -> float:
    if df.empty:
        return 0.0
    mask = (df["date"] >= pd.Timestamp(start)) & (df["date"] <= pd.Timestamp(end))
    return float(df.loc[mask, "volume"].sum())


def volume_comparison(
    records: Sequence[WorkoutRecord],
    period: ComparisonPeriod,
    *,
    exercise_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> List[VolumeBucket]:
    """
    Chart buckets for the volume card, oldest first.

    week: the last 7 calendar days; month: four trailing 7-day windows;
    quarter: three trailing 30-day windows ending on monthly anniversaries of today.
    """
    now = now or datetime.now(timezone.utc)
    period = ComparisonPeriod(period)
    selected = filter_for_exercise(records, exercise_id) if exercise_id else list(records)
    df = workouts_to_dataframe(selected)
    buckets: List[VolumeBucket] = []

    if period is ComparisonPeriod.WEEK:
        per_day = daily_volume(selected)
        today = pd.Timestamp(now).normalize()
        days = pd.date_range(end=today, periods=7, freq="D")
        per_day = per_day.reindex(days, fill_value=0.0)
        for day, volume in per_day.items():
            start = day.to_pydatetime()
            buckets.append(VolumeBucket(str(day.day), start, start + timedelta(days=1), float(volume)))
        return buckets

    if period is ComparisonPeriod.MONTH:
        for week_index in range(4):
            end = now - timedelta(days=7 * week_index)
            start = end - timedelta(days=6)
            buckets.append(VolumeBucket(f"Week {4 - week_index}", start, end, _window_volume(df, start, end)))
    else:
        for month_index in range(3):
            end = shift_months(now, -month_index)
            start = end - timedelta(days=30)
            buckets.append(VolumeBucket(end.strftime("%b"), start, end, _window_volume(df, start, end)))
    buckets.reverse()
    return buckets
