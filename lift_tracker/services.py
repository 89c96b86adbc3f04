from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from .analytics import (
    ComparisonPeriod,
    ExerciseStats,
    FatigueStat,
    FrequencyStats,
    VolumeStats,
    exercise_stats,
    fatigue_stats,
    filter_for_exercise,
    frequency_stats,
    longest_streak,
    most_frequent_body_part,
    most_frequent_time_of_day,
    other_workouts_by_type,
    shift_months,
    training_tags,
    volume_stats,
)
from .config import get_config
from .constants import PROFILE_STATS_CACHE_KEY, PROFILE_STATS_LAST_UPDATE_KEY
from .kvstore import KeyValueStore
from .metrics import VolumeBucket, volume_comparison
from .models import (
    MAIN_EXERCISES,
    Exercise,
    OperationType,
    ValidationError,
    WeightRecord,
    WorkoutRecord,
    new_record_id,
    parse_instant,
    validate_sets,
    validate_weight,
)
from .pending import PendingOperationQueue
from .records import WeightRecordStore, WorkoutRecordStore
from .remote import (
    RemoteStore,
    RemoteStoreError,
    trainings_collection,
    training_day_path,
    training_record_path,
    training_records_collection,
    weight_record_path,
    weight_records_collection,
)
from .stats_cache import CachedStatsLoader, StatsCache, training_stats_cache
from .sync import RecordDecodingError, SyncEngine, decode_weight_document, encode_weight_document

LOGGER = logging.getLogger(__name__)

Connectivity = Callable[[], Awaitable[bool]]


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


async def always_online() -> bool:
    return True


async def always_offline() -> bool:
    return False


# --- remote reads -----------------------------------------------------------


async def fetch_weight_records(
    remote: RemoteStore,
    user_id: str,
    *,
    since: Optional[datetime] = None,
) -> List[WeightRecord]:
    """Weight records for a user, newest first; malformed documents are skipped."""
    documents = await remote.list_documents(weight_records_collection(user_id))
    records: List[WeightRecord] = []
    for document_id, data in documents:
        try:
            record = decode_weight_document({"userId": user_id, **data}, document_id=document_id)
        except RecordDecodingError as exc:
            LOGGER.warning("Skipping weight document %s: %s", document_id, exc)
            continue
        if since is None or record.date > since:
            records.append(record)
    records.sort(key=lambda record: record.date, reverse=True)
    return records


async def fetch_workouts(remote: RemoteStore, user_id: str) -> List[WorkoutRecord]:
    """Every workout under `users/{user}/trainings/{day}/records`, oldest first."""
    days = await remote.list_documents(trainings_collection(user_id))
    batches = await asyncio.gather(
        *(remote.list_documents(training_records_collection(user_id, day_id)) for day_id, _ in days)
    )
    workouts: List[WorkoutRecord] = []
    for batch in batches:
        for document_id, data in batch:
            try:
                workouts.append(WorkoutRecord.from_dict({"id": document_id, **data}))
            except ValidationError as exc:
                LOGGER.warning("Skipping workout document %s: %s", document_id, exc)
    workouts.sort(key=lambda record: record.date)
    return workouts


# --- weight records ---------------------------------------------------------


@dataclass(frozen=True)
class SyncResult:
    drained: bool
    cleared: bool
    pulled: Optional[int]
    pending: int
    skipped: bool = False


class WeightTracker:
    """
    Entry point for weight-record mutations.

    Every mutation is applied optimistically to the local record store first.
    With `offline_first` it is then always queued; otherwise it is written
    straight to the remote store when connectivity allows and queued on
    failure.
    """

    def __init__(
        self,
        user_id: str,
        *,
        records: WeightRecordStore,
        queue: PendingOperationQueue,
        engine: SyncEngine,
        remote: RemoteStore,
        connectivity: Connectivity = always_online,
        offline_first: Optional[bool] = None,
        sync_window_months: Optional[int] = None,
        clock: Callable[[], datetime] = _now_utc,
    ) -> None:
        config = get_config()
        self.user_id = user_id
        self.records = records
        self.queue = queue
        self.engine = engine
        self._remote = remote
        self._connectivity = connectivity
        self.offline_first = config.offline_first if offline_first is None else offline_first
        self.sync_window_months = sync_window_months or config.sync_window_months
        self._clock = clock

    def list_records(self) -> List[WeightRecord]:
        return self.records.load()

    async def add_weight(self, weight: Any, *, when: Any = None) -> WeightRecord:
        record = WeightRecord(
            id=new_record_id(),
            user_id=self.user_id,
            weight=validate_weight(weight),
            date=parse_instant(when) if when is not None else self._clock(),
        )
        self.records.add(record)
        await self._submit(OperationType.ADD, record)
        return record

    async def update_weight(self, record_id: str, *, weight: Any = None, when: Any = None) -> WeightRecord:
        existing = self.records.get(record_id)
        if existing is None:
            raise ValidationError(f"Unknown weight record {record_id}.")
        changes: Dict[str, Any] = {}
        if weight is not None:
            changes["weight"] = validate_weight(weight)
        if when is not None:
            changes["date"] = parse_instant(when)
        record = existing.with_changes(**changes)
        self.records.update(record)
        await self._submit(OperationType.UPDATE, record)
        return record

    async def delete_weight(self, record_id: str) -> WeightRecord:
        removed = self.records.remove(record_id)
        if removed is None:
            raise ValidationError(f"Unknown weight record {record_id}.")
        await self._submit(OperationType.DELETE, removed)
        return removed

    async def _submit(self, op_type: OperationType, record: WeightRecord) -> None:
        if self.offline_first:
            self.queue.enqueue(op_type, record)
            return
        if not await self._connectivity():
            LOGGER.info("Offline; queueing %s of %s", op_type.value, record.id)
            self.queue.enqueue(op_type, record)
            return
        try:
            await self._write_remote(op_type, record)
        except RemoteStoreError as exc:
            LOGGER.warning("Direct %s of %s failed, queueing instead: %s", op_type.value, record.id, exc)
            self.queue.enqueue(op_type, record)

    async def _write_remote(self, op_type: OperationType, record: WeightRecord) -> None:
        path = weight_record_path(record.user_id, record.id)
        if op_type is OperationType.ADD:
            await self._remote.set(path, encode_weight_document(record))
        elif op_type is OperationType.UPDATE:
            await self._remote.update(path, {"weight": record.weight, "date": record.date.isoformat()})
        else:
            await self._remote.delete(path)

    async def pull_recent(self) -> List[WeightRecord]:
        since = shift_months(self._clock(), -self.sync_window_months)
        return await fetch_weight_records(self._remote, self.user_id, since=since)

    async def sync(self) -> SyncResult:
        """
        Drain the queue, clear it only when every operation succeeded, then
        refresh the local cache from the remote window.

        A call made while another drain is running does nothing and reports
        `skipped=True` rather than a failure.
        """
        if self.engine.is_draining:
            LOGGER.info("Sync already in progress; skipping.")
            return SyncResult(
                drained=False, cleared=False, pulled=None, pending=self.queue.pending_count, skipped=True
            )
        drained = await self.engine.drain()
        cleared = False
        if drained:
            self.queue.clear()
            cleared = True

        pulled: Optional[int] = None
        try:
            fresh = await self.pull_recent()
        except RemoteStoreError as exc:
            LOGGER.warning("Pull after sync failed, keeping cached weight records: %s", exc)
        else:
            self.records.replace(self._overlay_pending(fresh))
            pulled = len(fresh)
        return SyncResult(drained=drained, cleared=cleared, pulled=pulled, pending=self.queue.pending_count)

    def _overlay_pending(self, fresh: List[WeightRecord]) -> List[WeightRecord]:
        # Unconfirmed local intent stays visible until a later drain confirms it.
        merged = {record.id: record for record in fresh}
        for operation in self.queue.list():
            try:
                record = operation.record()
            except ValidationError:
                continue
            if record.user_id != self.user_id:
                continue
            if operation.type is OperationType.DELETE:
                merged.pop(record.id, None)
            else:
                merged[record.id] = record
        return list(merged.values())


def build_weight_tracker(
    store: KeyValueStore,
    remote: RemoteStore,
    user_id: str,
    *,
    connectivity: Connectivity = always_online,
    offline_first: Optional[bool] = None,
    clock: Callable[[], datetime] = _now_utc,
) -> WeightTracker:
    queue = PendingOperationQueue(store, clock=clock)
    return WeightTracker(
        user_id,
        records=WeightRecordStore(store, user_id),
        queue=queue,
        engine=SyncEngine(remote, queue),
        remote=remote,
        connectivity=connectivity,
        offline_first=offline_first,
        clock=clock,
    )


# --- training stats ---------------------------------------------------------


@dataclass(frozen=True)
class TrainingSummary:
    exercise_id: str
    frequency: FrequencyStats
    volume: VolumeStats
    exercise: ExerciseStats
    fatigue: List[FatigueStat]
    volume_chart: List[VolumeBucket]
    other_workouts: Dict[str, List[WorkoutRecord]] = field(default_factory=dict)


class TrainingStatsService:
    """Workout logging plus the cached statistics shown on the training card."""

    def __init__(
        self,
        user_id: str,
        *,
        remote: RemoteStore,
        workouts: WorkoutRecordStore,
        cache: StatsCache[List[WorkoutRecord]],
        clock: Callable[[], datetime] = _now_utc,
    ) -> None:
        self.user_id = user_id
        self._remote = remote
        self.workouts = workouts
        self._clock = clock
        self.loader: CachedStatsLoader[List[WorkoutRecord]] = CachedStatsLoader(cache, self.fetch)

    async def fetch(self) -> List[WorkoutRecord]:
        records = await fetch_workouts(self._remote, self.user_id)
        self.workouts.replace(records)
        return records

    async def add_workout(
        self,
        exercise_id: str,
        weight: Any,
        *,
        sets: Any = None,
        note: Optional[str] = None,
        body_part: Optional[str] = None,
        when: Any = None,
    ) -> WorkoutRecord:
        exercise_key = (exercise_id or "").strip()
        if not exercise_key:
            raise ValidationError("exercise is required.")
        if exercise_key == Exercise.BIG_THREE.value:
            raise ValidationError("bigThree is an aggregate and cannot be logged directly.")
        record = WorkoutRecord(
            id=new_record_id(),
            exercise_id=exercise_key,
            weight=validate_weight(weight),
            date=parse_instant(when) if when is not None else self._clock(),
            sets=validate_sets(sets),
            note=note.strip() if note and note.strip() else None,
            body_part=body_part,
        )
        self.workouts.add(record)
        day = record.date.date()
        try:
            await self._remote.set(training_day_path(self.user_id, day), {"date": day.isoformat()})
            await self._remote.set(training_record_path(self.user_id, day, record.id), record.to_dict())
        except RemoteStoreError as exc:
            LOGGER.warning("Workout %s saved locally only: %s", record.id, exc)
        return record

    async def records(self) -> List[WorkoutRecord]:
        snapshot = await self.loader.load()
        if snapshot is None:
            return self.workouts.load()
        return snapshot

    async def force_refresh(self) -> List[WorkoutRecord]:
        snapshot = await self.loader.force_refresh()
        return snapshot if snapshot is not None else self.workouts.load()

    async def summary(
        self,
        exercise_id: str = Exercise.BIG_THREE.value,
        *,
        frequency_period: ComparisonPeriod = ComparisonPeriod.WEEK,
        volume_period: ComparisonPeriod = ComparisonPeriod.WEEK,
        refresh: bool = False,
    ) -> TrainingSummary:
        records = await (self.force_refresh() if refresh else self.records())
        return summarise_training(
            records,
            exercise_id,
            frequency_period=frequency_period,
            volume_period=volume_period,
            now=self._clock(),
        )


def summarise_training(
    records: List[WorkoutRecord],
    exercise_id: str,
    *,
    frequency_period: ComparisonPeriod = ComparisonPeriod.WEEK,
    volume_period: ComparisonPeriod = ComparisonPeriod.WEEK,
    now: Optional[datetime] = None,
) -> TrainingSummary:
    now = now or _now_utc()
    selected = filter_for_exercise(records, exercise_id)
    return TrainingSummary(
        exercise_id=exercise_id,
        frequency=frequency_stats(selected, frequency_period, now=now),
        volume=volume_stats(selected, volume_period, now=now),
        exercise=exercise_stats(records, exercise_id, now=now, recent_limit=get_config().recent_records_limit),
        fatigue=fatigue_stats(records),
        volume_chart=volume_comparison(records, volume_period, exercise_id=exercise_id, now=now),
        other_workouts=other_workouts_by_type(records),
    )


# --- profile aggregate ------------------------------------------------------


@dataclass(frozen=True)
class ProfileSummary:
    user_id: str
    latest_weight: Optional[float]
    latest_weight_date: Optional[datetime]
    total_workouts: int
    personal_records: Dict[str, float]
    longest_streak: int
    favourite_body_part: Optional[str]
    favourite_time_of_day: Optional[str]
    tags: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "latestWeight": self.latest_weight,
            "latestWeightDate": self.latest_weight_date.isoformat() if self.latest_weight_date else None,
            "totalWorkouts": self.total_workouts,
            "personalRecords": dict(self.personal_records),
            "longestStreak": self.longest_streak,
            "favouriteBodyPart": self.favourite_body_part,
            "favouriteTimeOfDay": self.favourite_time_of_day,
            "tags": list(self.tags),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ProfileSummary":
        latest_date = payload.get("latestWeightDate")
        latest_weight = payload.get("latestWeight")
        return cls(
            user_id=str(payload["userId"]),
            latest_weight=float(latest_weight) if latest_weight is not None else None,
            latest_weight_date=parse_instant(latest_date) if latest_date else None,
            total_workouts=int(payload.get("totalWorkouts", 0)),
            personal_records={str(key): float(value) for key, value in dict(payload.get("personalRecords") or {}).items()},
            longest_streak=int(payload.get("longestStreak", 0)),
            favourite_body_part=payload.get("favouriteBodyPart"),
            favourite_time_of_day=payload.get("favouriteTimeOfDay"),
            tags=[str(tag) for tag in payload.get("tags") or []],
        )


def summarise_profile(user_id: str, weights: List[WeightRecord], workouts: List[WorkoutRecord]) -> ProfileSummary:
    latest = max(weights, key=lambda record: record.date, default=None)
    personal_records = {
        exercise.value: max((record.weight for record in workouts if record.exercise_id == exercise.value), default=0.0)
        for exercise in MAIN_EXERCISES
    }
    body_part = most_frequent_body_part(workouts)
    time_of_day = most_frequent_time_of_day(workouts)
    return ProfileSummary(
        user_id=user_id,
        latest_weight=latest.weight if latest else None,
        latest_weight_date=latest.date if latest else None,
        total_workouts=len(workouts),
        personal_records=personal_records,
        longest_streak=longest_streak(record.date for record in workouts),
        favourite_body_part=body_part.value if body_part else None,
        favourite_time_of_day=time_of_day.value if time_of_day else None,
        tags=training_tags(workouts),
    )


async def fetch_profile_summary(remote: RemoteStore, user_id: str) -> ProfileSummary:
    weights, workouts = await asyncio.gather(
        fetch_weight_records(remote, user_id),
        fetch_workouts(remote, user_id),
    )
    return summarise_profile(user_id, weights, workouts)


def profile_stats_cache(
    store: KeyValueStore,
    user_id: str,
    *,
    refresh_interval: float | timedelta | None = None,
    clock: Callable[[], datetime] = _now_utc,
) -> StatsCache[ProfileSummary]:
    """Per-user profile aggregate snapshot (300 s by default, independent of the training cache)."""
    interval = refresh_interval if refresh_interval is not None else get_config().cache_intervals.profile_stats_seconds
    return StatsCache(
        store,
        payload_key=f"{PROFILE_STATS_CACHE_KEY}:{user_id}",
        timestamp_key=f"{PROFILE_STATS_LAST_UPDATE_KEY}:{user_id}",
        refresh_interval=interval,
        encode=lambda summary: summary.to_dict(),
        decode=ProfileSummary.from_dict,
        clock=clock,
    )


def build_training_service(
    store: KeyValueStore,
    remote: RemoteStore,
    user_id: str,
    *,
    clock: Callable[[], datetime] = _now_utc,
) -> TrainingStatsService:
    return TrainingStatsService(
        user_id,
        remote=remote,
        workouts=WorkoutRecordStore(store, user_id),
        cache=training_stats_cache(store, user_id=user_id, clock=clock),
        clock=clock,
    )


def build_profile_loader(
    store: KeyValueStore,
    remote: RemoteStore,
    user_id: str,
    *,
    clock: Callable[[], datetime] = _now_utc,
) -> CachedStatsLoader[ProfileSummary]:
    async def _fetch() -> ProfileSummary:
        return await fetch_profile_summary(remote, user_id)

    return CachedStatsLoader(profile_stats_cache(store, user_id, clock=clock), _fetch)
