"""Durable, ordered log of weight-record mutations awaiting remote confirmation."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, List, Mapping

from .constants import PENDING_OPERATIONS_KEY
from .kvstore import KeyValueStore, read_json, write_json
from .models import OperationType, PendingOperation, ValidationError, WeightRecord

LOGGER = logging.getLogger(__name__)

CountListener = Callable[[int], None]


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class PendingOperationQueue:
    """
    Insertion-ordered queue persisted as one blob.

    Every mutation reads, modifies and writes the entire queue. There is no
    per-operation removal: the queue is cleared wholesale after a successful
    drain.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        key: str = PENDING_OPERATIONS_KEY,
        clock: Callable[[], datetime] = _now_utc,
    ) -> None:
        self._store = store
        self._key = key
        self._clock = clock
        self._listeners: List[CountListener] = []
        self.pending_count = len(self.list())

    def subscribe(self, listener: CountListener) -> Callable[[], None]:
        """Register a pending-count listener; returns an unsubscribe callable."""
        self._listeners.append(listener)
        listener(self.pending_count)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _publish(self, count: int) -> None:
        self.pending_count = count
        for listener in list(self._listeners):
            listener(count)

    def list(self) -> List[PendingOperation]:
        """Queue contents in insertion order; missing or corrupt data reads as empty."""
        payload = read_json(self._store, self._key)
        if payload is None:
            return []
        if not isinstance(payload, list):
            LOGGER.warning("Pending operation log under %s is not a list; treating as empty.", self._key)
            return []
        try:
            return [PendingOperation.from_dict(item) for item in payload if isinstance(item, Mapping)]
        except (ValidationError, TypeError, ValueError) as exc:
            LOGGER.warning("Pending operation log under %s is corrupt; treating as empty: %s", self._key, exc)
            return []

    def enqueue(self, op_type: OperationType | str, record: WeightRecord) -> PendingOperation:
        operation = PendingOperation.create(OperationType(op_type), record, now=self._clock())
        operations = self.list()
        operations.append(operation)
        write_json(self._store, self._key, [item.to_dict() for item in operations])
        LOGGER.info("Queued %s for weight record %s (%s pending)", operation.type.value, record.id, len(operations))
        self._publish(len(operations))
        return operation

    def clear(self) -> None:
        self._store.remove_key(self._key)
        self._publish(0)

    def __len__(self) -> int:
        return len(self.list())
