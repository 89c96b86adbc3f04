"""Drain the pending operation queue against the remote store."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .models import OperationType, PendingOperation, ValidationError, WeightRecord, parse_instant, validate_weight
from .pending import PendingOperationQueue
from .remote import RemoteStore, RemoteStoreError, weight_record_path

LOGGER = logging.getLogger(__name__)


class RecordDecodingError(ValueError):
    """Raised when a remote document cannot be read as a weight record."""


def encode_weight_document(record: WeightRecord) -> Dict[str, Any]:
    """Full remote document for a weight record (the id is stored so conflicts can be decoded later)."""
    return {
        "id": record.id,
        "userId": record.user_id,
        "weight": record.weight,
        "date": record.date.isoformat(),
    }


def decode_weight_document(data: Mapping[str, Any], *, document_id: Optional[str] = None) -> WeightRecord:
    """
    Read a remote weight document, raising `RecordDecodingError` when it is malformed.

    The stored `id` field wins over the document id when both are present.
    """
    record_id = data.get("id") or document_id
    user_id = data.get("userId")
    if not isinstance(record_id, str) or not record_id:
        raise RecordDecodingError("Invalid record data format: missing id")
    if not isinstance(user_id, str) or not user_id:
        raise RecordDecodingError("Invalid record data format: missing userId")
    try:
        weight = validate_weight(data.get("weight"))
        moment = parse_instant(data.get("date"))
    except ValidationError as exc:
        raise RecordDecodingError(f"Invalid record data format: {exc}") from exc
    return WeightRecord(id=record_id, user_id=user_id, weight=weight, date=moment)


def resolve_conflict(local: WeightRecord, server: WeightRecord) -> WeightRecord:
    """
    Last-write-wins by the record's own date, not by sync time.

    Two edits to the same historical date silently overwrite each other; this
    mirrors the behaviour users already rely on.
    """
    if server.date > local.date:
        return server
    return local


def group_by_record(operations: Sequence[PendingOperation]) -> List[List[PendingOperation]]:
    """Group operations by target record id, keeping queue order inside and across groups."""
    groups: Dict[str, List[PendingOperation]] = {}
    for operation in operations:
        groups.setdefault(operation.record_id, []).append(operation)
    return list(groups.values())


class SyncEngine:
    """
    Applies queued weight-record mutations to the remote store.

    Operations for different records run concurrently; operations for the same
    record run one after another in queue order. `drain` never raises and never
    clears the queue: the caller decides whether to `clear()` after a success.

    A `drain()` issued while another is running is ignored and returns False
    without touching the remote store. False therefore means "not confirmed by
    this call", not necessarily "failed"; check `is_draining` beforehand to
    tell the two apart.
    """

    def __init__(self, remote: RemoteStore, queue: PendingOperationQueue) -> None:
        self._remote = remote
        self._queue = queue
        self._draining = False

    @property
    def is_draining(self) -> bool:
        return self._draining

    async def drain(self) -> bool:
        # A trigger that arrives mid-drain is ignored rather than queued. It reports
        # False so callers never clear the queue on behalf of the running pass.
        if self._draining:
            LOGGER.debug("Drain already in progress; ignoring trigger.")
            return False

        self._draining = True
        try:
            operations = self._queue.list()
            if not operations:
                return True

            groups = group_by_record(operations)
            outcomes = await asyncio.gather(*(self._apply_group(group) for group in groups))
            results = [result for group_results in outcomes for result in group_results]
            succeeded = sum(1 for result in results if result)
            LOGGER.info(
                "Drained %s pending operation(s) across %s record(s): %s succeeded, %s failed",
                len(results),
                len(groups),
                succeeded,
                len(results) - succeeded,
            )
            return all(results)
        finally:
            self._draining = False

    async def _apply_group(self, group: Sequence[PendingOperation]) -> List[bool]:
        results: List[bool] = []
        for index, operation in enumerate(group):
            ok = await self.apply_operation(operation)
            results.append(ok)
            if not ok:
                # Later mutations of this record wait for the next drain so they are never applied out of order.
                skipped = len(group) - index - 1
                if skipped:
                    LOGGER.warning("Deferring %s later operation(s) for record %s", skipped, operation.record_id)
                results.extend([False] * skipped)
                break
        return results

    async def apply_operation(self, operation: PendingOperation) -> bool:
        """Apply one operation; every failure is reduced to False."""
        try:
            record = operation.record()
        except ValidationError as exc:
            LOGGER.warning("Pending operation %s has an unreadable payload: %s", operation.id, exc)
            return False

        try:
            await self._apply(operation.type, record)
        except RemoteStoreError as exc:
            LOGGER.warning("Remote %s of %s failed: %s", operation.type.value, record.id, exc)
            return False
        except Exception as exc:  # transport errors must not escape a drain
            LOGGER.warning("Unexpected error applying %s to %s: %s", operation.type.value, record.id, exc)
            return False
        return True

    async def _apply(self, op_type: OperationType, record: WeightRecord) -> None:
        path = weight_record_path(record.user_id, record.id)
        server_data = await self._remote.get(path)

        server_record: Optional[WeightRecord] = None
        if server_data is not None:
            try:
                server_record = decode_weight_document(server_data)
            except RecordDecodingError as exc:
                LOGGER.debug("Remote document %s is not decodable, applying without conflict check: %s", path, exc)

        if server_record is not None:
            winner = resolve_conflict(record, server_record)
            if op_type is OperationType.DELETE:
                # The winner is computed but a delete is always carried out.
                await self._remote.delete(path)
            else:
                await self._remote.set(path, encode_weight_document(winner))
            LOGGER.debug("Resolved conflict on %s in favour of the %s copy", path, "server" if winner is server_record else "local")
            return

        if op_type is OperationType.ADD:
            await self._remote.set(path, encode_weight_document(record))
        elif op_type is OperationType.UPDATE:
            await self._remote.update(path, {"weight": record.weight, "date": record.date.isoformat()})
        else:
            await self._remote.delete(path)
