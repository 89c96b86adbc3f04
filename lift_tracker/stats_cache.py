from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Generic, List, Mapping, Optional, TypeVar

from .config import get_config
from .constants import TRAINING_STATS_CACHE_KEY, TRAINING_STATS_LAST_UPDATE_KEY
from .kvstore import KeyValueStore, read_json, write_json
from .models import ValidationError, WorkoutRecord, parse_instant
from .remote import RemoteStoreError

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _as_interval(value: float | timedelta) -> timedelta:
    return value if isinstance(value, timedelta) else timedelta(seconds=float(value))


class StatsCache(Generic[T]):
    """
    Time-boxed snapshot persisted in the key-value store.

    The snapshot and its last-update instant live under separate keys. A
    snapshot is stale once more than `refresh_interval` has passed since the
    last `put`, or when it was never written. With an `owner`, the owning user
    is kept under `{payload_key}_owner`; a snapshot written for anyone else
    reads as absent and stale.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        payload_key: str,
        timestamp_key: str,
        refresh_interval: float | timedelta,
        encode: Callable[[T], Any],
        decode: Callable[[Any], T],
        clock: Callable[[], datetime] = _now_utc,
        owner: Optional[str] = None,
    ) -> None:
        self._store = store
        self.owner = owner
        self.owner_key = f"{payload_key}_owner"
        self.payload_key = payload_key
        self.timestamp_key = timestamp_key
        self.refresh_interval = _as_interval(refresh_interval)
        self._encode = encode
        self._decode = decode
        self._clock = clock

    def _owned(self) -> bool:
        if self.owner is None:
            return True
        return read_json(self._store, self.owner_key) == self.owner

    def get(self) -> Optional[T]:
        if not self._owned():
            return None
        payload = read_json(self._store, self.payload_key)
        if payload is None:
            return None
        try:
            return self._decode(payload)
        except (ValidationError, TypeError, ValueError, KeyError) as exc:
            LOGGER.warning("Discarding unreadable stats snapshot %s: %s", self.payload_key, exc)
            return None

    def put(self, snapshot: T) -> None:
        write_json(self._store, self.payload_key, self._encode(snapshot))
        write_json(self._store, self.timestamp_key, self._clock().isoformat())
        if self.owner is not None:
            write_json(self._store, self.owner_key, self.owner)

    def last_update(self) -> Optional[datetime]:
        raw = read_json(self._store, self.timestamp_key)
        if raw is None:
            return None
        try:
            return parse_instant(raw, field=self.timestamp_key)
        except ValidationError:
            return None

    def is_stale(self) -> bool:
        if not self._owned():
            return True
        last = self.last_update()
        if last is None:
            return True
        return self._clock() - last > self.refresh_interval

    def invalidate(self) -> None:
        self._store.remove_key(self.payload_key)
        self._store.remove_key(self.timestamp_key)
        self._store.remove_key(self.owner_key)


def _encode_workouts(records: List[WorkoutRecord]) -> list[dict[str, Any]]:
    return [record.to_dict() for record in records]


def _decode_workouts(payload: Any) -> List[WorkoutRecord]:
    if not isinstance(payload, list):
        raise ValidationError("training stats snapshot must be a list")
    return [WorkoutRecord.from_dict(item) for item in payload if isinstance(item, Mapping)]


def training_stats_cache(
    store: KeyValueStore,
    *,
    user_id: Optional[str] = None,
    refresh_interval: float | timedelta | None = None,
    clock: Callable[[], datetime] = _now_utc,
) -> StatsCache[List[WorkoutRecord]]:
    """Workout-record snapshot behind the training stats card (60 s by default)."""
    interval = refresh_interval if refresh_interval is not None else get_config().cache_intervals.training_stats_seconds
    return StatsCache(
        store,
        payload_key=TRAINING_STATS_CACHE_KEY,
        timestamp_key=TRAINING_STATS_LAST_UPDATE_KEY,
        refresh_interval=interval,
        encode=_encode_workouts,
        decode=_decode_workouts,
        clock=clock,
        owner=user_id,
    )


class CachedStatsLoader(Generic[T]):
    """
    Serves a cached snapshot immediately and refreshes it from upstream when stale.

    Construction reads the cache synchronously so a caller always has something
    to show; `load()` then refreshes only if the cache is stale.
    """

    def __init__(self, cache: StatsCache[T], fetch: Callable[[], Awaitable[T]]) -> None:
        self._cache = cache
        self._fetch = fetch
        self.snapshot: Optional[T] = cache.get()
        self.is_loading = self.snapshot is None

    @property
    def cache(self) -> StatsCache[T]:
        return self._cache

    async def load(self) -> Optional[T]:
        if self._cache.is_stale():
            await self.refresh()
        self.is_loading = False
        return self.snapshot

    async def force_refresh(self) -> Optional[T]:
        # Forcing only re-runs the staleness check; a fresh cache is not bypassed.
        # Kept as-is until the intended semantics are confirmed.
        return await self.load()

    async def refresh(self) -> Optional[T]:
        try:
            snapshot = await self._fetch()
        except RemoteStoreError as exc:
            LOGGER.warning("Stats refresh for %s failed, serving cached data: %s", self._cache.payload_key, exc)
            return self.snapshot
        self._cache.put(snapshot)
        self.snapshot = snapshot
        return snapshot
