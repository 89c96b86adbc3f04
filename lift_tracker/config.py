from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

from .constants import (
    DEFAULT_PROFILE_STATS_REFRESH_SECONDS,
    DEFAULT_RECENT_RECORDS_LIMIT,
    DEFAULT_SYNC_WINDOW_MONTHS,
    DEFAULT_TRAINING_STATS_REFRESH_SECONDS,
)
from .env import get_env

try:  # pragma: no cover - Python 3.11+
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover - Python <3.11
    try:
        import tomli as tomllib  # type: ignore
    except ModuleNotFoundError:
        tomllib = None  # type: ignore


@dataclass(frozen=True)
class CacheIntervals:
    # Two independent refresh intervals; the profile aggregate query is the expensive one.
    training_stats_seconds: float = DEFAULT_TRAINING_STATS_REFRESH_SECONDS
    profile_stats_seconds: float = DEFAULT_PROFILE_STATS_REFRESH_SECONDS


@dataclass(frozen=True)
class AppConfig:
    cache_intervals: CacheIntervals = CacheIntervals()
    offline_first: bool = True
    sync_window_months: int = DEFAULT_SYNC_WINDOW_MONTHS
    recent_records_limit: int = DEFAULT_RECENT_RECORDS_LIMIT


def _config_path() -> Path | None:
    """Resolve the TOML configuration file, if present."""
    env_override = get_env("CONFIG")
    if env_override:
        path = Path(env_override).expanduser()
        return path if path.exists() else None

    default_path = Path("config/lift_tracker.toml")
    if default_path.exists():
        return default_path
    return None


def _load_toml(path: Path) -> Mapping[str, Any]:
    if tomllib is None:
        raise RuntimeError("TOML configuration requires Python 3.11+ or the 'tomli' package.")
    with path.open("rb") as handle:
        return tomllib.load(handle)


def _coerce_seconds(raw: Any, default: float) -> float:
    if raw is None or isinstance(raw, bool):
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return default
    return value if value >= 0 else default


def _coerce_positive_int(raw: Any, default: int) -> int:
    if raw is None or isinstance(raw, bool):
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


def _coerce_intervals(raw: Mapping[str, Any] | None) -> CacheIntervals:
    base = CacheIntervals()
    if not raw:
        return base
    return CacheIntervals(
        training_stats_seconds=_coerce_seconds(raw.get("training_stats_seconds"), base.training_stats_seconds),
        profile_stats_seconds=_coerce_seconds(raw.get("profile_stats_seconds"), base.profile_stats_seconds),
    )


def _build_config(raw: Mapping[str, Any]) -> AppConfig:
    base = AppConfig()
    intervals_section = raw.get("cache_intervals")
    intervals = _coerce_intervals(intervals_section if isinstance(intervals_section, Mapping) else None)
    offline_first = raw.get("offline_first")
    return AppConfig(
        cache_intervals=intervals,
        offline_first=offline_first if isinstance(offline_first, bool) else base.offline_first,
        sync_window_months=_coerce_positive_int(raw.get("sync_window_months"), base.sync_window_months),
        recent_records_limit=_coerce_positive_int(raw.get("recent_records_limit"), base.recent_records_limit),
    )


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """Load configuration once, falling back to built-in defaults."""
    path = _config_path()
    if not path:
        return AppConfig()
    data = _load_toml(path)
    return _build_config(data)


def as_dict() -> dict[str, Any]:
    """Return the effective configuration for debug/CLI display."""
    config = get_config()
    return {
        "cache_intervals": {
            "training_stats_seconds": config.cache_intervals.training_stats_seconds,
            "profile_stats_seconds": config.cache_intervals.profile_stats_seconds,
        },
        "offline_first": config.offline_first,
        "sync_window_months": config.sync_window_months,
        "recent_records_limit": config.recent_records_limit,
        "source": str(_config_path() or "defaults"),
    }
