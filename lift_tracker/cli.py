from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional

import typer

from .analytics import ComparisonPeriod
from .config import as_dict as config_as_dict
from .constants import DEFAULT_USER_PLACEHOLDER
from .env import get_env, get_env_flag
from .kvstore import SQLiteKeyValueStore, data_dir
from .models import Exercise, ValidationError
from .pending import PendingOperationQueue
from .remote import JsonFileRemoteStore
from .services import (
    ProfileSummary,
    TrainingSummary,
    WeightTracker,
    always_offline,
    always_online,
    build_profile_loader,
    build_training_service,
    build_weight_tracker,
)

REMOTE_FILENAME = "remote_store.json"

app = typer.Typer(help="Log body weight and lifts offline, then sync them when back online.")
weight_app = typer.Typer(help="Add, edit, and list body-weight records.")
queue_app = typer.Typer(help="Inspect the pending operation queue.")
workout_app = typer.Typer(help="Log strength workouts.")
stats_app = typer.Typer(help="Training and profile statistics.")


def _fail(message: str, *, code: int = 1) -> None:
    typer.secho(message, fg=typer.colors.RED, err=True)
    raise typer.Exit(code=code)


def _resolve_user(user: Optional[str]) -> str:
    candidate = (user or get_env("USER") or DEFAULT_USER_PLACEHOLDER).strip()
    if not candidate:
        raise typer.BadParameter("User id must not be empty.", param_name="user")
    return candidate


def _remote_store(offline: bool) -> JsonFileRemoteStore:
    remote = JsonFileRemoteStore(data_dir() / REMOTE_FILENAME)
    if offline or get_env_flag("OFFLINE"):
        remote.online = False
    return remote


def _weight_tracker(user: Optional[str], offline: bool) -> WeightTracker:
    remote = _remote_store(offline)
    connectivity = always_online if remote.online else always_offline
    return build_weight_tracker(SQLiteKeyValueStore(), remote, _resolve_user(user), connectivity=connectivity)


def _format_weight(weight: float) -> str:
    return f"{weight:.1f} kg"


def _echo_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, sort_keys=True))


USER_OPTION = typer.Option(None, "--user", "-u", help="User id (defaults to LIFT_TRACKER_USER).")
OFFLINE_OPTION = typer.Option(False, "--offline", help="Simulate lost connectivity.")


@app.callback()
def configure(
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Logging level (DEBUG, INFO, WARNING...). Defaults to LIFT_TRACKER_LOG_LEVEL or WARNING.",
    ),
) -> None:
    level_name = (log_level or get_env("LOG_LEVEL") or "WARNING").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        raise typer.BadParameter(f"Unknown log level {level_name}.", param_name="log-level")
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s", force=True)


# --- weight -----------------------------------------------------------------


@weight_app.command("add")
def weight_add(
    weight: float = typer.Argument(..., help="Body weight in kilograms."),
    date: Optional[str] = typer.Option(None, "--date", "-d", help="ISO date or timestamp (defaults to now)."),
    user: Optional[str] = USER_OPTION,
    offline: bool = OFFLINE_OPTION,
) -> None:
    """
    Record a body-weight measurement.
    """
    tracker = _weight_tracker(user, offline)
    try:
        record = asyncio.run(tracker.add_weight(weight, when=date))
    except ValidationError as exc:
        raise typer.BadParameter(str(exc)) from exc
    typer.echo(f"Added {record.id}: {_format_weight(record.weight)} on {record.date.date().isoformat()}.")
    typer.echo(f"Pending operations: {tracker.queue.pending_count}")


@weight_app.command("update")
def weight_update(
    record_id: str = typer.Argument(..., help="Id of the record to change."),
    weight: Optional[float] = typer.Option(None, "--weight", "-w", help="New weight in kilograms."),
    date: Optional[str] = typer.Option(None, "--date", "-d", help="New ISO date or timestamp."),
    user: Optional[str] = USER_OPTION,
    offline: bool = OFFLINE_OPTION,
) -> None:
    """
    Change the weight or date of an existing record.
    """
    if weight is None and date is None:
        raise typer.BadParameter("Provide --weight and/or --date.")
    tracker = _weight_tracker(user, offline)
    try:
        record = asyncio.run(tracker.update_weight(record_id, weight=weight, when=date))
    except ValidationError as exc:
        raise typer.BadParameter(str(exc), param_name="record_id") from exc
    typer.echo(f"Updated {record.id}: {_format_weight(record.weight)} on {record.date.date().isoformat()}.")


@weight_app.command("delete")
def weight_delete(
    record_id: str = typer.Argument(..., help="Id of the record to delete."),
    user: Optional[str] = USER_OPTION,
    offline: bool = OFFLINE_OPTION,
) -> None:
    """
    Delete a body-weight record.
    """
    tracker = _weight_tracker(user, offline)
    try:
        record = asyncio.run(tracker.delete_weight(record_id))
    except ValidationError as exc:
        raise typer.BadParameter(str(exc), param_name="record_id") from exc
    typer.echo(f"Deleted {record.id}.")


@weight_app.command("list")
def weight_list(
    user: Optional[str] = USER_OPTION,
    as_json: bool = typer.Option(False, "--json", help="Emit JSON instead of a table."),
) -> None:
    """
    Show cached weight records, newest first.
    """
    tracker = _weight_tracker(user, offline=True)
    records = tracker.list_records()
    if as_json:
        _echo_json([record.to_dict() for record in records])
        return
    if not records:
        typer.echo("No weight records yet.")
        raise typer.Exit(code=0)
    for record in records:
        typer.echo(f"{record.date.date().isoformat()}  {_format_weight(record.weight):>9}  {record.id}")


# --- sync / queue -----------------------------------------------------------


@app.command("sync")
def sync_command(
    user: Optional[str] = USER_OPTION,
    offline: bool = OFFLINE_OPTION,
) -> None:
    """
    Push pending operations, then pull recent weight records.
    """
    tracker = _weight_tracker(user, offline)
    result = asyncio.run(tracker.sync())
    if result.skipped:
        typer.echo("A sync is already running; nothing to do.")
        raise typer.Exit(code=0)
    if result.drained:
        typer.secho("Pending operations synced.", fg=typer.colors.GREEN)
    else:
        typer.secho("Some operations could not be synced; they stay queued.", fg=typer.colors.YELLOW)
    if result.pulled is None:
        typer.echo("Pull failed; showing cached records.")
    else:
        typer.echo(f"Pulled {result.pulled} record(s).")
    typer.echo(f"Pending operations: {result.pending}")
    if not result.drained:
        raise typer.Exit(code=1)


@queue_app.command("show")
def queue_show(as_json: bool = typer.Option(False, "--json", help="Emit JSON instead of a table.")) -> None:
    """
    List queued operations in the order they will be applied.
    """
    operations = PendingOperationQueue(SQLiteKeyValueStore()).list()
    if as_json:
        _echo_json([operation.to_dict() for operation in operations])
        return
    if not operations:
        typer.echo("Queue is empty.")
        raise typer.Exit(code=0)
    for operation in operations:
        typer.echo(
            f"{operation.enqueued_at.isoformat()}  {operation.type.value:<6}  {operation.record_id}"
        )


@queue_app.command("clear")
def queue_clear(
    force: bool = typer.Option(False, "--force", "-f", help="Skip the confirmation prompt."),
) -> None:
    """
    Discard every queued operation without syncing it.
    """
    queue = PendingOperationQueue(SQLiteKeyValueStore())
    if not force and not typer.confirm(f"Discard {len(queue)} pending operation(s)?"):
        raise typer.Exit(code=1)
    queue.clear()
    typer.echo("Queue cleared.")


# --- workouts ---------------------------------------------------------------


@workout_app.command("add")
def workout_add(
    exercise: str = typer.Argument(..., help="Exercise key (bench, squat, deadlift, or any accessory lift)."),
    weight: float = typer.Argument(..., help="Working weight in kilograms."),
    sets: Optional[int] = typer.Option(None, "--sets", "-s", help="Number of sets (defaults to 1)."),
    note: Optional[str] = typer.Option(None, "--note", help="Free-form note."),
    body_part: Optional[str] = typer.Option(None, "--body-part", help="Body part for accessory lifts."),
    date: Optional[str] = typer.Option(None, "--date", "-d", help="ISO date or timestamp (defaults to now)."),
    user: Optional[str] = USER_OPTION,
    offline: bool = OFFLINE_OPTION,
) -> None:
    """
    Log a workout set for an exercise.
    """
    service = build_training_service(SQLiteKeyValueStore(), _remote_store(offline), _resolve_user(user))
    try:
        record = asyncio.run(
            service.add_workout(exercise, weight, sets=sets, note=note, body_part=body_part, when=date)
        )
    except ValidationError as exc:
        raise typer.BadParameter(str(exc)) from exc
    typer.echo(
        f"Logged {record.exercise_id}: {_format_weight(record.weight)} x {record.effective_sets} "
        f"(volume {record.volume:.1f})."
    )


# --- stats ------------------------------------------------------------------


def _echo_training(summary: TrainingSummary) -> None:
    exercise = summary.exercise
    typer.echo(f"Exercise: {summary.exercise_id}")
    typer.echo(
        f"Frequency: {summary.frequency.current} vs {summary.frequency.previous} "
        f"({summary.frequency.change_percentage:+.1f}%)"
    )
    typer.echo(
        f"Volume: {summary.volume.current:.1f} vs {summary.volume.previous:.1f} "
        f"({summary.volume.change_percentage:+.1f}%)"
    )
    typer.echo(
        f"Max {_format_weight(exercise.max_weight)}, current {_format_weight(exercise.current_weight)}, "
        f"progress {exercise.progress:.1f}% ({exercise.progress_band.value})"
    )
    for stat in summary.fatigue:
        typer.echo(f"  {stat.exercise_id:<9} fatigue {stat.fatigue_level:5.1f}%  {stat.band.value:<8} {stat.suggestion}")
    typer.echo("Volume chart: " + ", ".join(f"{bucket.label}={bucket.volume:.0f}" for bucket in summary.volume_chart))
    if summary.other_workouts:
        typer.echo("Other workouts: " + ", ".join(f"{key} ({len(items)})" for key, items in summary.other_workouts.items()))


def _echo_profile(summary: ProfileSummary) -> None:
    latest = (
        f"{_format_weight(summary.latest_weight)} on {summary.latest_weight_date.date().isoformat()}"
        if summary.latest_weight is not None and summary.latest_weight_date is not None
        else "n/a"
    )
    typer.echo(f"User: {summary.user_id}")
    typer.echo(f"Latest weight: {latest}")
    typer.echo(f"Total workouts: {summary.total_workouts}, longest streak: {summary.longest_streak} day(s)")
    typer.echo(
        "Personal records: "
        + ", ".join(f"{key}={_format_weight(value)}" for key, value in summary.personal_records.items())
    )
    typer.echo("Tags: " + ", ".join(summary.tags))


@stats_app.command("training")
def stats_training(
    exercise: str = typer.Option(Exercise.BIG_THREE.value, "--exercise", "-e", help="Exercise key or bigThree."),
    period: ComparisonPeriod = typer.Option(ComparisonPeriod.WEEK, "--period", "-p", help="Comparison window."),
    refresh: bool = typer.Option(False, "--refresh", help="Refresh from the remote store if the cache is stale."),
    user: Optional[str] = USER_OPTION,
    offline: bool = OFFLINE_OPTION,
    as_json: bool = typer.Option(False, "--json", help="Emit the chart buckets as JSON."),
) -> None:
    """
    Frequency, volume, progress, and fatigue for the selected exercise.
    """
    service = build_training_service(SQLiteKeyValueStore(), _remote_store(offline), _resolve_user(user))
    summary = asyncio.run(
        service.summary(exercise, frequency_period=period, volume_period=period, refresh=refresh)
    )
    if as_json:
        _echo_json(
            [
                {"label": bucket.label, "start": bucket.start.isoformat(), "end": bucket.end.isoformat(), "volume": bucket.volume}
                for bucket in summary.volume_chart
            ]
        )
        return
    _echo_training(summary)


@stats_app.command("profile")
def stats_profile(
    refresh: bool = typer.Option(False, "--refresh", help="Refresh from the remote store if the cache is stale."),
    user: Optional[str] = USER_OPTION,
    offline: bool = OFFLINE_OPTION,
    as_json: bool = typer.Option(False, "--json", help="Emit JSON instead of text."),
) -> None:
    """
    Profile aggregate: latest weight, personal records, streak, and tags.
    """
    loader = build_profile_loader(SQLiteKeyValueStore(), _remote_store(offline), _resolve_user(user))
    summary = asyncio.run(loader.force_refresh() if refresh else loader.load())
    if summary is None:
        _fail("Profile statistics are unavailable (remote store unreachable and nothing cached).")
    if as_json:
        _echo_json(summary.to_dict())
        return
    _echo_profile(summary)


@app.command("config")
def config_show() -> None:
    """
    Show the effective configuration (cache intervals, sync window).
    """
    config = config_as_dict()
    typer.echo(f"Config source: {config.get('source')}")
    intervals = config.get("cache_intervals", {})
    typer.echo(
        "Cache intervals: "
        f"training={intervals.get('training_stats_seconds')}s, profile={intervals.get('profile_stats_seconds')}s"
    )
    typer.echo(f"Offline first: {config.get('offline_first')}")
    typer.echo(f"Sync window: {config.get('sync_window_months')} month(s)")
    typer.echo(f"Data directory: {data_dir()}")


app.add_typer(weight_app, name="weight", help="Body-weight records.")
app.add_typer(queue_app, name="queue", help="Pending operation queue.")
app.add_typer(workout_app, name="workout", help="Workout logging.")
app.add_typer(stats_app, name="stats", help="Training and profile statistics.")


def main() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
