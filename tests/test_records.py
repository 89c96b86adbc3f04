from __future__ import annotations

from datetime import datetime, timezone

import pytest

from lift_tracker.models import ValidationError, WeightRecord
from lift_tracker.records import WeightRecordStore


def _record(record_id: str, day: int, weight: float = 80.0, user: str = "u1") -> WeightRecord:
    return WeightRecord(record_id, user, weight, datetime(2024, 5, day, 8, tzinfo=timezone.utc))


def test_records_are_kept_newest_first(store) -> None:
    records = WeightRecordStore(store, "u1")
    records.add(_record("a", 1))
    records.add(_record("c", 9))
    records.add(_record("b", 5))

    assert [record.id for record in records.load()] == ["c", "b", "a"]


def test_duplicate_id_is_rejected(store) -> None:
    records = WeightRecordStore(store, "u1")
    records.add(_record("a", 1))
    with pytest.raises(ValidationError):
        records.add(_record("a", 2))


def test_record_must_belong_to_store_user(store) -> None:
    with pytest.raises(ValidationError):
        WeightRecordStore(store, "u1").add(_record("a", 1, user="u2"))


def test_update_and_remove(store) -> None:
    records = WeightRecordStore(store, "u1")
    records.add(_record("a", 1, 80.0))

    records.update(_record("a", 1, 79.0))
    assert records.get("a").weight == pytest.approx(79.0)

    removed = records.remove("a")
    assert removed is not None and removed.id == "a"
    assert records.remove("a") is None
    assert records.load() == []

    with pytest.raises(ValidationError):
        records.update(_record("zz", 3))


def test_users_do_not_share_caches(store) -> None:
    WeightRecordStore(store, "u1").add(_record("a", 1))
    assert WeightRecordStore(store, "u2").load() == []
