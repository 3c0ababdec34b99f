from __future__ import annotations

import json
import socket
from pathlib import Path

import pytest
from conftest import make_project, make_session
from typer.testing import CliRunner

from timetracker.cli import app
from timetracker.models import AppState
from timetracker.slots import SlotStore
from timetracker.snapshot import SnapshotStore

runner = CliRunner()


def _free_port() -> int:
    sock = socket.socket()
    sock.bind(("127.0.0.1", 0))
    port = int(sock.getsockname()[1])
    sock.close()
    return port


@pytest.fixture
def offline_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    config_path = tmp_path / "config.json"
    config_path.write_text(
        json.dumps(
            {
                "api_url": f"http://127.0.0.1:{_free_port()}/api",
                "request_timeout_s": 1,
                "db_path": str(tmp_path / "cache.sqlite"),
                "state_dir": str(tmp_path / "state"),
            }
        )
    )
    monkeypatch.setenv("TIMETRACKER_CONFIG", str(config_path))
    return tmp_path


def _seed_backup(state_dir: Path) -> None:
    SnapshotStore(SlotStore(state_dir)).write(
        AppState(
            projects=(make_project("p1", "Website", total_time_spent=60),),
            completed_sessions=(make_session("s1", "p1", 60),),
        )
    )


def test_root_help_lists_commands() -> None:
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    for command in ("status", "projects", "stats", "backup", "restore", "config"):
        assert command in result.stdout


def test_status_reports_offline_fallback(offline_env: Path) -> None:
    _seed_backup(offline_env / "state")

    result = runner.invoke(app, ["status"])

    assert result.exit_code == 0
    assert "disconnected" in result.stdout
    assert "snapshot" in result.stdout
    assert "Projects: 1" in result.stdout


def test_projects_lists_backup_contents(offline_env: Path) -> None:
    _seed_backup(offline_env / "state")

    result = runner.invoke(app, ["projects"])

    assert result.exit_code == 0
    assert "Website" in result.stdout
    assert "00:01:00" in result.stdout


def test_stats_prints_totals(offline_env: Path) -> None:
    _seed_backup(offline_env / "state")

    result = runner.invoke(app, ["stats", "--days", "3"])

    assert result.exit_code == 0
    assert "Sessions: 1" in result.stdout
    assert "Most active: Website" in result.stdout


def test_backup_and_backups(offline_env: Path) -> None:
    _seed_backup(offline_env / "state")

    result = runner.invoke(app, ["backup"])
    assert result.exit_code == 0
    assert "Backed up 1 projects" in result.stdout

    listing = runner.invoke(app, ["backups"])
    assert listing.exit_code == 0
    assert "backup-latest" in listing.stdout
    assert "backup-at-" in listing.stdout


def test_restore_from_latest_backup(offline_env: Path) -> None:
    _seed_backup(offline_env / "state")

    result = runner.invoke(app, ["restore"])

    assert result.exit_code == 0
    assert "Restored 1 projects" in result.stdout


def test_restore_unknown_key_fails(offline_env: Path) -> None:
    result = runner.invoke(app, ["restore", "--key", "backup-at-nothing"])

    assert result.exit_code == 1
    assert "Restore failed" in result.stdout


def test_setting_defaults_offline(offline_env: Path) -> None:
    result = runner.invoke(app, ["setting", "themeMode"])

    assert result.exit_code == 0
    assert "light" in result.stdout


def test_config_shows_effective_values(offline_env: Path) -> None:
    result = runner.invoke(app, ["config"])

    assert result.exit_code == 0
    assert "poll_interval_s" in result.stdout


def test_projects_show_goal_progress(offline_env: Path) -> None:
    SnapshotStore(SlotStore(offline_env / "state")).write(
        AppState(
            projects=(make_project("p1", "Website", total_time_spent=3600, goal_hours=2),),
            completed_sessions=(make_session("s1", "p1", 3600),),
        )
    )

    result = runner.invoke(app, ["projects"])

    assert result.exit_code == 0
    assert "50% of 2 hours goal" in result.stdout


def test_status_shows_running_session(offline_env: Path) -> None:
    SlotStore(offline_env / "state").write(
        "current-session",
        {
            "activeProject": "p1",
            "activeSessions": [
                {"id": "a1", "projectId": "p1", "startTime": "2024-01-03T08:00:00+00:00"}
            ],
        },
    )

    result = runner.invoke(app, ["status"])

    assert result.exit_code == 0
    assert "Running: a1" in result.stdout
    assert "recorded, started" in result.stdout


def test_config_set_writes_file(offline_env: Path) -> None:
    result = runner.invoke(
        app, ["config", "--set", "poll_interval_s=30", "--set", "poll_enabled=false"]
    )

    assert result.exit_code == 0
    stored = json.loads((offline_env / "config.json").read_text())
    assert stored["poll_interval_s"] == 30
    assert stored["poll_enabled"] is False
    assert stored["state_dir"] == str(offline_env / "state")
    assert '"poll_interval_s": 30' in result.stdout


def test_config_set_rejects_unknown_key(offline_env: Path) -> None:
    before = (offline_env / "config.json").read_text()

    result = runner.invoke(app, ["config", "--set", "colour=red"])

    assert result.exit_code == 1
    assert "Unknown config setting" in result.stdout
    assert (offline_env / "config.json").read_text() == before
