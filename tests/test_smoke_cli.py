from __future__ import annotations

import json

from typer.testing import CliRunner

from lift_tracker.cli import app
from lift_tracker.services import SyncResult, WeightTracker


def test_cli_smoke(tmp_path, monkeypatch):
    runner = CliRunner()
    data_dir = tmp_path / "data"
    monkeypatch.setenv("LIFT_TRACKER_DATA_DIR", str(data_dir))
    monkeypatch.setenv("LIFT_TRACKER_USER", "alice")

    add_result = runner.invoke(app, ["weight", "add", "81.5"])
    assert add_result.exit_code == 0, add_result.stdout
    assert "Pending operations: 1" in add_result.stdout

    queue_result = runner.invoke(app, ["queue", "show", "--json"])
    assert queue_result.exit_code == 0, queue_result.stdout
    queued = json.loads(queue_result.stdout)
    assert [item["type"] for item in queued] == ["add"]

    offline_sync = runner.invoke(app, ["sync", "--offline"])
    assert offline_sync.exit_code == 1
    assert "stay queued" in offline_sync.stdout

    sync_result = runner.invoke(app, ["--log-level", "info", "sync"])
    assert sync_result.exit_code == 0, sync_result.stdout
    assert "Pulled 1 record(s)." in sync_result.stdout
    assert "Pending operations: 0" in sync_result.stdout

    remote_payload = json.loads((data_dir / "remote_store.json").read_text(encoding="utf-8"))
    assert any(path.startswith("users/alice/weightRecords/") for path in remote_payload)

    list_result = runner.invoke(app, ["weight", "list", "--json"])
    assert list_result.exit_code == 0, list_result.stdout
    records = json.loads(list_result.stdout)
    assert len(records) == 1 and records[0]["weight"] == 81.5

    update_result = runner.invoke(app, ["weight", "update", records[0]["id"], "--weight", "80.9"])
    assert update_result.exit_code == 0, update_result.stdout

    workout_result = runner.invoke(app, ["workout", "add", "bench", "100", "--sets", "3"])
    assert workout_result.exit_code == 0, workout_result.stdout
    assert "Logged bench" in workout_result.stdout

    training_result = runner.invoke(app, ["stats", "training", "--exercise", "bench"])
    assert training_result.exit_code == 0, training_result.stdout
    assert "Exercise: bench" in training_result.stdout

    profile_result = runner.invoke(app, ["stats", "profile", "--json"])
    assert profile_result.exit_code == 0, profile_result.stdout
    profile = json.loads(profile_result.stdout)
    assert profile["totalWorkouts"] == 1
    assert profile["personalRecords"]["bench"] == 100.0

    config_result = runner.invoke(app, ["config"])
    assert config_result.exit_code == 0
    assert "Config source: defaults" in config_result.stdout

    clear_result = runner.invoke(app, ["queue", "clear", "--force"])
    assert clear_result.exit_code == 0
    assert "Queue cleared." in clear_result.stdout


def test_cli_rejects_invalid_weight(tmp_path, monkeypatch):
    runner = CliRunner()
    monkeypatch.setenv("LIFT_TRACKER_DATA_DIR", str(tmp_path / "data"))

    result = runner.invoke(app, ["weight", "add", "0"])
    assert result.exit_code != 0

    missing = runner.invoke(app, ["weight", "delete", "NOPE"])
    assert missing.exit_code != 0


def test_cli_sync_already_running_is_not_a_failure(tmp_path, monkeypatch):
    runner = CliRunner()
    monkeypatch.setenv("LIFT_TRACKER_DATA_DIR", str(tmp_path / "data"))

    async def _skipped(self):
        return SyncResult(drained=False, cleared=False, pulled=None, pending=3, skipped=True)

    monkeypatch.setattr(WeightTracker, "sync", _skipped)

    result = runner.invoke(app, ["sync"])
    assert result.exit_code == 0, result.stdout
    assert "already running" in result.stdout
    assert "stay queued" not in result.stdout
