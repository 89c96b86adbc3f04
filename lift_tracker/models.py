from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional

__all__ = [
    "ValidationError",
    "parse_instant",
    "coerce_number",
    "validate_weight",
    "validate_sets",
    "new_record_id",
    "Exercise",
    "BodyPart",
    "TimeOfDay",
    "OperationType",
    "MAIN_EXERCISES",
    "EXERCISE_BODY_PARTS",
    "is_main_exercise",
    "WeightRecord",
    "WorkoutRecord",
    "PendingOperation",
]


class ValidationError(ValueError):
    """Raised when user-supplied data cannot be normalised safely."""


def parse_instant(value: Any, *, field: str = "date") -> datetime:
    """
    Parse an instant into a timezone-aware UTC datetime.

    Accepts `datetime.datetime`, `datetime.date` (midnight UTC) or ISO-8601 text.
    Naive values are taken to be UTC.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, str):
        candidate = value.strip()
        if not candidate:
            raise ValidationError(f"{field} cannot be empty.")
        if candidate.endswith("Z"):
            candidate = candidate[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(candidate)
        except ValueError as exc:
            raise ValidationError(
                f"{field} must be an ISO-8601 date or timestamp; received {value!r}."
            ) from exc
    else:
        raise ValidationError(f"{field} must be a date or ISO-8601 text; received {value!r}.")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def coerce_number(
    value: Any,
    *,
    field: str = "value",
    minimum: float | None = None,
    allow_float: bool = True,
) -> float:
    """Convert arbitrary input into a float, raising `ValidationError` on junk or breached bounds."""
    if value is None:
        raise ValidationError(f"{field} is required.")

    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number; received {value!r}.")

    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} is required.")
        try:
            number = float(stripped)
        except ValueError as exc:
            raise ValidationError(f"{field} must be a number; received {value!r}.") from exc
    else:
        raise ValidationError(f"{field} must be a number; received {value!r}.")

    if number != number:  # NaN
        raise ValidationError(f"{field} must be a number; received {value!r}.")

    if not allow_float and number != round(number):
        raise ValidationError(f"{field} must be an integer; received {value!r}.")

    if minimum is not None and number < minimum:
        raise ValidationError(f"{field} must be >= {minimum}; received {number}.")

    return number


def validate_weight(value: Any, *, field: str = "weight") -> float:
    """Weights are strictly positive kilograms."""
    weight = coerce_number(value, field=field)
    if weight <= 0:
        raise ValidationError(f"{field} must be positive; received {weight}.")
    return weight


def validate_sets(value: Any, *, field: str = "sets") -> Optional[int]:
    if value is None or value == "":
        return None
    return int(coerce_number(value, field=field, minimum=1, allow_float=False))


def new_record_id() -> str:
    return str(uuid.uuid4()).upper()


class Exercise(str, Enum):
    """Canonical exercise catalog keys with special meaning in the analytics."""

    BENCH = "bench"
    SQUAT = "squat"
    DEADLIFT = "deadlift"
    BIG_THREE = "bigThree"

    @property
    def label(self) -> str:
        return _EXERCISE_LABELS[self]


class BodyPart(str, Enum):
    CHEST = "chest"
    BACK = "back"
    LEGS = "legs"
    SHOULDERS = "shoulders"
    ARMS = "arms"
    CORE = "core"


class TimeOfDay(str, Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    NIGHT = "night"

    @classmethod
    def from_hour(cls, hour: int) -> "TimeOfDay":
        if 5 <= hour < 12:
            return cls.MORNING
        if 12 <= hour < 17:
            return cls.AFTERNOON
        if 17 <= hour < 22:
            return cls.EVENING
        return cls.NIGHT


class OperationType(str, Enum):
    ADD = "add"
    UPDATE = "update"
    DELETE = "delete"


_EXERCISE_LABELS: dict[Exercise, str] = {
    Exercise.BENCH: "Bench Press",
    Exercise.SQUAT: "Squat",
    Exercise.DEADLIFT: "Deadlift",
    Exercise.BIG_THREE: "Big Three",
}

MAIN_EXERCISES: tuple[Exercise, ...] = (Exercise.BENCH, Exercise.SQUAT, Exercise.DEADLIFT)

EXERCISE_BODY_PARTS: dict[Exercise, BodyPart] = {
    Exercise.BENCH: BodyPart.CHEST,
    Exercise.SQUAT: BodyPart.LEGS,
    Exercise.DEADLIFT: BodyPart.BACK,
}


def is_main_exercise(exercise_id: str) -> bool:
    return exercise_id in {exercise.value for exercise in MAIN_EXERCISES}


def _isoformat(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat()


@dataclass(frozen=True)
class WeightRecord:
    """A body-weight measurement owned by exactly one user."""

    id: str
    user_id: str
    weight: float
    date: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "weight": self.weight,
            "date": _isoformat(self.date),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "WeightRecord":
        record_id = str(payload.get("id") or "").strip()
        user_id = str(payload.get("userId") or "").strip()
        if not record_id:
            raise ValidationError("id is required.")
        if not user_id:
            raise ValidationError("userId is required.")
        return cls(
            id=record_id,
            user_id=user_id,
            weight=validate_weight(payload.get("weight")),
            date=parse_instant(payload.get("date")),
        )

    def with_changes(self, **changes: Any) -> "WeightRecord":
        return replace(self, **changes)


@dataclass(frozen=True)
class WorkoutRecord:
    """A single logged lift; `sets` counts as 1 when absent."""

    id: str
    exercise_id: str
    weight: float
    date: datetime
    sets: Optional[int] = None
    note: Optional[str] = None
    body_part: Optional[str] = None

    @property
    def effective_sets(self) -> int:
        return self.sets if self.sets is not None else 1

    @property
    def volume(self) -> float:
        return self.weight * self.effective_sets

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "exerciseId": self.exercise_id,
            "weight": self.weight,
            "date": _isoformat(self.date),
        }
        if self.sets is not None:
            payload["sets"] = self.sets
        if self.note:
            payload["note"] = self.note
        if self.body_part:
            payload["bodyPart"] = self.body_part
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "WorkoutRecord":
        record_id = str(payload.get("id") or "").strip()
        exercise_id = str(payload.get("exerciseId") or "").strip()
        if not record_id:
            raise ValidationError("id is required.")
        if not exercise_id:
            raise ValidationError("exerciseId is required.")
        note = payload.get("note")
        body_part = payload.get("bodyPart")
        return cls(
            id=record_id,
            exercise_id=exercise_id,
            weight=coerce_number(payload.get("weight"), field="weight", minimum=0.0),
            date=parse_instant(payload.get("date")),
            sets=validate_sets(payload.get("sets")),
            note=str(note) if note else None,
            body_part=str(body_part) if body_part else None,
        )


@dataclass(frozen=True)
class PendingOperation:
    """A weight-record mutation not yet confirmed by the remote store."""

    id: str
    type: OperationType
    payload: Dict[str, Any]
    enqueued_at: datetime
    # Carried through persistence but never incremented or read by the sync engine.
    retry_count: int = 0

    @classmethod
    def create(cls, op_type: OperationType, record: WeightRecord, *, now: datetime) -> "PendingOperation":
        return cls(
            id=new_record_id(),
            type=OperationType(op_type),
            payload=record.to_dict(),
            enqueued_at=now,
        )

    @property
    def record_id(self) -> str:
        return str(self.payload.get("id") or "")

    def record(self) -> WeightRecord:
        return WeightRecord.from_dict(self.payload)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "payload": dict(self.payload),
            "enqueued_at": _isoformat(self.enqueued_at),
            "retry_count": self.retry_count,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "PendingOperation":
        raw_payload = payload.get("payload")
        if not isinstance(raw_payload, Mapping):
            raise ValidationError("payload must be a mapping.")
        try:
            op_type = OperationType(payload.get("type"))
        except ValueError as exc:
            raise ValidationError(f"Unknown operation type {payload.get('type')!r}.") from exc
        return cls(
            id=str(payload.get("id") or ""),
            type=op_type,
            payload=dict(raw_payload),
            enqueued_at=parse_instant(payload.get("enqueued_at"), field="enqueued_at"),
            retry_count=int(coerce_number(payload.get("retry_count", 0), field="retry_count", allow_float=False)),
        )
