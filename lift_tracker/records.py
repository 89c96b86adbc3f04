from __future__ import annotations

import logging
from typing import Callable, Generic, Iterable, List, Mapping, Optional, TypeVar

from .constants import WEIGHT_RECORDS_CACHE_PREFIX, WORKOUT_RECORDS_CACHE_PREFIX
from .kvstore import KeyValueStore, read_json, write_json
from .models import ValidationError, WeightRecord, WorkoutRecord

LOGGER = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", WeightRecord, WorkoutRecord)


class RecordStore(Generic[RecordT]):
    """
    Local cache of one user's records, newest first.

    This is the source of truth while offline: mutations land here before the
    remote store ever sees them. Each write persists the full list under a
    single key.
    """

    def __init__(
        self,
        store: KeyValueStore,
        key: str,
        decode: Callable[[Mapping[str, object]], RecordT],
    ) -> None:
        self._store = store
        self._key = key
        self._decode = decode

    @property
    def key(self) -> str:
        return self._key

    def load(self) -> List[RecordT]:
        payload = read_json(self._store, self._key)
        if not isinstance(payload, list):
            return []
        records: List[RecordT] = []
        for item in payload:
            if not isinstance(item, Mapping):
                continue
            try:
                records.append(self._decode(item))
            except ValidationError as exc:
                LOGGER.warning("Dropping unreadable cached record in %s: %s", self._key, exc)
        return records

    def save(self, records: Iterable[RecordT]) -> None:
        ordered = sorted(records, key=lambda record: record.date, reverse=True)
        write_json(self._store, self._key, [record.to_dict() for record in ordered])

    def get(self, record_id: str) -> Optional[RecordT]:
        for record in self.load():
            if record.id == record_id:
                return record
        return None

    def add(self, record: RecordT) -> List[RecordT]:
        records = self.load()
        if any(existing.id == record.id for existing in records):
            raise ValidationError(f"Record {record.id} already exists.")
        records.insert(0, record)
        self.save(records)
        return records

    def update(self, record: RecordT) -> List[RecordT]:
        records = self.load()
        for index, existing in enumerate(records):
            if existing.id == record.id:
                records[index] = record
                break
        else:
            raise ValidationError(f"Record {record.id} does not exist.")
        self.save(records)
        return records

    def remove(self, record_id: str) -> Optional[RecordT]:
        records = self.load()
        kept = [record for record in records if record.id != record_id]
        if len(kept) == len(records):
            return None
        removed = next(record for record in records if record.id == record_id)
        self.save(kept)
        return removed

    def replace(self, records: Iterable[RecordT]) -> None:
        """Swap the cache contents for freshly pulled records."""
        self.save(records)

    def clear(self) -> None:
        self._store.remove_key(self._key)


class WeightRecordStore(RecordStore[WeightRecord]):
    def __init__(self, store: KeyValueStore, user_id: str) -> None:
        super().__init__(store, f"{WEIGHT_RECORDS_CACHE_PREFIX}:{user_id}", WeightRecord.from_dict)
        self.user_id = user_id

    def add(self, record: WeightRecord) -> List[WeightRecord]:
        if record.user_id != self.user_id:
            raise ValidationError(f"Record {record.id} belongs to {record.user_id}, not {self.user_id}.")
        return super().add(record)


class WorkoutRecordStore(RecordStore[WorkoutRecord]):
    def __init__(self, store: KeyValueStore, user_id: str) -> None:
        super().__init__(store, f"{WORKOUT_RECORDS_CACHE_PREFIX}:{user_id}", WorkoutRecord.from_dict)
        self.user_id = user_id
