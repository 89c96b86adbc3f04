from __future__ import annotations

from datetime import datetime, timezone

from lift_tracker.constants import PENDING_OPERATIONS_KEY
from lift_tracker.kvstore import SQLiteKeyValueStore
from lift_tracker.models import OperationType, WeightRecord
from lift_tracker.pending import PendingOperationQueue


def _record(record_id: str, weight: float = 80.0) -> WeightRecord:
    return WeightRecord(record_id, "u1", weight, datetime(2024, 5, 1, 8, tzinfo=timezone.utc))


def test_queue_survives_restart(tmp_path, clock) -> None:
    path = tmp_path / "queue.db"
    queue = PendingOperationQueue(SQLiteKeyValueStore(path), clock=clock)
    queue.enqueue(OperationType.ADD, _record("a"))
    queue.enqueue(OperationType.UPDATE, _record("a", 79.0))
    queue.enqueue(OperationType.DELETE, _record("b"))
    before = queue.list()

    reloaded = PendingOperationQueue(SQLiteKeyValueStore(path))

    assert reloaded.list() == before
    assert [operation.type for operation in before] == [OperationType.ADD, OperationType.UPDATE, OperationType.DELETE]
    assert reloaded.pending_count == 3
    assert all(operation.retry_count == 0 for operation in before)
    assert all(operation.enqueued_at == clock.now for operation in before)


def test_enqueue_assigns_fresh_operation_ids(store) -> None:
    queue = PendingOperationQueue(store)
    first = queue.enqueue(OperationType.ADD, _record("a"))
    second = queue.enqueue(OperationType.ADD, _record("b"))
    assert first.id != second.id


def test_corrupt_queue_reads_as_empty(store) -> None:
    store.set_bytes(PENDING_OPERATIONS_KEY, b"\x00garbage")
    assert PendingOperationQueue(store).list() == []

    store.set_bytes(PENDING_OPERATIONS_KEY, b'[{"id": "x", "type": "nope", "payload": {}}]')
    assert PendingOperationQueue(store).list() == []


def test_listeners_receive_pending_count(store) -> None:
    queue = PendingOperationQueue(store)
    seen: list[int] = []
    unsubscribe = queue.subscribe(seen.append)

    queue.enqueue(OperationType.ADD, _record("a"))
    queue.enqueue(OperationType.ADD, _record("b"))
    queue.clear()
    unsubscribe()
    queue.enqueue(OperationType.ADD, _record("c"))

    assert seen == [0, 1, 2, 0]
    assert len(queue) == 1
