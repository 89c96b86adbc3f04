from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from lift_tracker.models import (
    OperationType,
    PendingOperation,
    TimeOfDay,
    ValidationError,
    WeightRecord,
    WorkoutRecord,
    parse_instant,
    validate_sets,
    validate_weight,
)


def test_parse_instant_normalises_to_utc() -> None:
    assert parse_instant("2024-05-01T10:00:00Z") == datetime(2024, 5, 1, 10, tzinfo=timezone.utc)
    assert parse_instant("2024-05-01T12:00:00+02:00") == datetime(2024, 5, 1, 10, tzinfo=timezone.utc)
    assert parse_instant(date(2024, 5, 1)) == datetime(2024, 5, 1, tzinfo=timezone.utc)
    assert parse_instant(datetime(2024, 5, 1, 8)).tzinfo is timezone.utc


@pytest.mark.parametrize("raw", ["", "yesterday", 12, None])
def test_parse_instant_rejects_junk(raw) -> None:
    with pytest.raises(ValidationError):
        parse_instant(raw)


@pytest.mark.parametrize("raw", [0, -1, "abc", None, True, float("nan")])
def test_validate_weight_requires_positive_number(raw) -> None:
    with pytest.raises(ValidationError):
        validate_weight(raw)


def test_validate_sets() -> None:
    assert validate_sets(None) is None
    assert validate_sets("3") == 3
    with pytest.raises(ValidationError):
        validate_sets(0)
    with pytest.raises(ValidationError):
        validate_sets(2.5)


def test_workout_volume_defaults_sets_to_one() -> None:
    moment = datetime(2024, 5, 1, tzinfo=timezone.utc)
    assert WorkoutRecord("a", "bench", 100.0, moment).volume == pytest.approx(100.0)
    assert WorkoutRecord("b", "bench", 100.0, moment, sets=3).volume == pytest.approx(300.0)


def test_weight_record_from_dict_requires_owner() -> None:
    with pytest.raises(ValidationError):
        WeightRecord.from_dict({"id": "r1", "weight": 80, "date": "2024-05-01"})


def test_pending_operation_survives_serialisation() -> None:
    record = WeightRecord("r1", "u1", 81.5, datetime(2024, 5, 1, 7, tzinfo=timezone.utc))
    operation = PendingOperation.create(OperationType.UPDATE, record, now=datetime(2024, 5, 2, tzinfo=timezone.utc))

    restored = PendingOperation.from_dict(operation.to_dict())

    assert restored == operation
    assert restored.retry_count == 0
    assert restored.record() == record


def test_pending_operation_rejects_unknown_type() -> None:
    with pytest.raises(ValidationError):
        PendingOperation.from_dict(
            {"id": "x", "type": "upsert", "payload": {}, "enqueued_at": "2024-05-01T00:00:00+00:00"}
        )


@pytest.mark.parametrize(
    ("hour", "expected"),
    [
        (4, TimeOfDay.NIGHT),
        (5, TimeOfDay.MORNING),
        (11, TimeOfDay.MORNING),
        (12, TimeOfDay.AFTERNOON),
        (17, TimeOfDay.EVENING),
        (21, TimeOfDay.EVENING),
        (22, TimeOfDay.NIGHT),
    ],
)
def test_time_of_day_buckets(hour: int, expected: TimeOfDay) -> None:
    assert TimeOfDay.from_hour(hour) is expected
