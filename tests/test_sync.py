from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from lift_tracker.models import OperationType, WeightRecord
from lift_tracker.pending import PendingOperationQueue
from lift_tracker.remote import InMemoryRemoteStore, weight_record_path
from lift_tracker.sync import (
    RecordDecodingError,
    SyncEngine,
    decode_weight_document,
    encode_weight_document,
    group_by_record,
    resolve_conflict,
)

D1 = datetime(2024, 5, 1, 8, tzinfo=timezone.utc)
D2 = datetime(2024, 5, 3, 8, tzinfo=timezone.utc)


def _record(record_id: str, weight: float = 80.0, when: datetime = D1) -> WeightRecord:
    return WeightRecord(record_id, "u1", weight, when)


def _path(record_id: str) -> str:
    return weight_record_path("u1", record_id)


def test_resolve_conflict_is_last_write_wins_by_record_date() -> None:
    local = _record("a", 100.0, D1)
    server = _record("a", 90.0, D2)
    assert resolve_conflict(local, server).weight == pytest.approx(90.0)

    local = _record("a", 100.0, D2)
    server = _record("a", 90.0, D1)
    assert resolve_conflict(local, server).weight == pytest.approx(100.0)


def test_equal_dates_favour_local_copy() -> None:
    local = _record("a", 100.0, D1)
    assert resolve_conflict(local, _record("a", 90.0, D1)) is local


def test_decode_weight_document_falls_back_to_document_id() -> None:
    record = decode_weight_document({"userId": "u1", "weight": 80, "date": D1.isoformat()}, document_id="doc-1")
    assert record.id == "doc-1"

    with pytest.raises(RecordDecodingError):
        decode_weight_document({"userId": "u1", "weight": 80, "date": D1.isoformat()})
    with pytest.raises(RecordDecodingError):
        decode_weight_document({"id": "a", "userId": "u1", "weight": -3, "date": D1.isoformat()})


def test_group_by_record_preserves_queue_order(store) -> None:
    queue = PendingOperationQueue(store)
    queue.enqueue(OperationType.ADD, _record("a"))
    queue.enqueue(OperationType.ADD, _record("b"))
    queue.enqueue(OperationType.UPDATE, _record("a", 79.0))

    groups = group_by_record(queue.list())

    assert [[operation.type for operation in group] for group in groups] == [
        [OperationType.ADD, OperationType.UPDATE],
        [OperationType.ADD],
    ]


@pytest.mark.asyncio
async def test_draining_empty_queue_succeeds_without_remote_calls(store, remote) -> None:
    engine = SyncEngine(remote, PendingOperationQueue(store))
    assert await engine.drain() is True
    assert remote.calls == []


@pytest.mark.asyncio
async def test_drain_adds_new_records_and_leaves_queue_alone(store, remote) -> None:
    queue = PendingOperationQueue(store)
    queue.enqueue(OperationType.ADD, _record("a"))
    queue.enqueue(OperationType.ADD, _record("b", 82.0))

    assert await SyncEngine(remote, queue).drain() is True

    assert remote.documents[_path("a")] == encode_weight_document(_record("a"))
    assert remote.documents[_path("b")]["weight"] == pytest.approx(82.0)
    assert len(queue.list()) == 2


@pytest.mark.asyncio
async def test_server_copy_wins_when_its_date_is_later(store) -> None:
    remote = InMemoryRemoteStore({_path("a"): encode_weight_document(_record("a", 90.0, D2))})
    queue = PendingOperationQueue(store)
    queue.enqueue(OperationType.UPDATE, _record("a", 100.0, D1))

    assert await SyncEngine(remote, queue).drain() is True
    assert remote.documents[_path("a")]["weight"] == pytest.approx(90.0)


@pytest.mark.asyncio
async def test_local_copy_wins_when_its_date_is_later(store) -> None:
    remote = InMemoryRemoteStore({_path("a"): encode_weight_document(_record("a", 90.0, D1))})
    queue = PendingOperationQueue(store)
    queue.enqueue(OperationType.UPDATE, _record("a", 100.0, D2))

    assert await SyncEngine(remote, queue).drain() is True
    assert remote.documents[_path("a")]["weight"] == pytest.approx(100.0)


@pytest.mark.asyncio
@pytest.mark.parametrize(("local_date", "server_date"), [(D1, D2), (D2, D1)])
async def test_delete_always_removes_the_document(store, local_date, server_date) -> None:
    remote = InMemoryRemoteStore({_path("a"): encode_weight_document(_record("a", 90.0, server_date))})
    queue = PendingOperationQueue(store)
    queue.enqueue(OperationType.DELETE, _record("a", 100.0, local_date))

    assert await SyncEngine(remote, queue).drain() is True
    assert _path("a") not in remote.documents


@pytest.mark.asyncio
async def test_undecodable_remote_document_is_treated_as_no_conflict(store) -> None:
    remote = InMemoryRemoteStore({_path("a"): {"legacy": True}})
    queue = PendingOperationQueue(store)
    queue.enqueue(OperationType.UPDATE, _record("a", 77.0))

    assert await SyncEngine(remote, queue).drain() is True
    assert remote.documents[_path("a")]["weight"] == pytest.approx(77.0)
    assert remote.documents[_path("a")]["legacy"] is True
    assert ("update", _path("a")) in remote.calls


@pytest.mark.asyncio
async def test_update_of_missing_document_fails(store, remote) -> None:
    queue = PendingOperationQueue(store)
    queue.enqueue(OperationType.UPDATE, _record("ghost"))

    assert await SyncEngine(remote, queue).drain() is False
    assert _path("ghost") not in remote.documents


@pytest.mark.asyncio
async def test_operations_on_one_record_apply_in_queue_order(store) -> None:
    remote = InMemoryRemoteStore(latency=0.001)
    queue = PendingOperationQueue(store)
    queue.enqueue(OperationType.ADD, _record("a", 80.0))
    queue.enqueue(OperationType.ADD, _record("b", 70.0))
    queue.enqueue(OperationType.UPDATE, _record("a", 79.0))
    queue.enqueue(OperationType.DELETE, _record("a", 79.0))

    assert await SyncEngine(remote, queue).drain() is True

    calls_for_a = [method for method, path in remote.calls if path == _path("a")]
    assert calls_for_a == ["get", "set", "get", "set", "get", "delete"]
    assert _path("a") not in remote.documents
    assert _path("b") in remote.documents


@pytest.mark.asyncio
async def test_failure_is_aggregated_and_later_operations_on_that_record_wait(store, remote) -> None:
    remote.fail("set", _path("a"))
    queue = PendingOperationQueue(store)
    queue.enqueue(OperationType.ADD, _record("a"))
    queue.enqueue(OperationType.UPDATE, _record("a", 79.0))
    queue.enqueue(OperationType.ADD, _record("b"))

    assert await SyncEngine(remote, queue).drain() is False

    assert [method for method, path in remote.calls if path == _path("a")] == ["get", "set"]
    assert _path("b") in remote.documents
    assert len(queue.list()) == 3


@pytest.mark.asyncio
async def test_offline_remote_reduces_to_false(store, remote) -> None:
    remote.online = False
    queue = PendingOperationQueue(store)
    queue.enqueue(OperationType.ADD, _record("a"))

    assert await SyncEngine(remote, queue).drain() is False


@pytest.mark.asyncio
async def test_trigger_during_running_drain_is_ignored(store) -> None:
    remote = InMemoryRemoteStore(latency=0.01)
    queue = PendingOperationQueue(store)
    queue.enqueue(OperationType.ADD, _record("a"))
    engine = SyncEngine(remote, queue)

    first = asyncio.create_task(engine.drain())
    await asyncio.sleep(0)
    assert engine.is_draining is True

    assert await engine.drain() is False
    assert await first is True
    assert engine.is_draining is False
    assert [method for method, _ in remote.calls] == ["get", "set"]


@pytest.mark.asyncio
async def test_unexpected_errors_do_not_escape_drain(store, remote) -> None:
    remote.fail("get", _path("a"), RuntimeError("socket closed"))
    queue = PendingOperationQueue(store)
    queue.enqueue(OperationType.ADD, _record("a"))

    assert await SyncEngine(remote, queue).drain() is False
