from __future__ import annotations

import datetime as dt
from pathlib import Path

import pytest
from conftest import make_project, make_session

from timetracker.errors import CorruptStateError
from timetracker.models import AppState
from timetracker.slots import SlotStore
from timetracker.snapshot import HISTORY_PREFIX, LATEST_KEY, SnapshotStore


def _state(*project_ids: str) -> AppState:
    return AppState(
        projects=tuple(make_project(pid) for pid in project_ids),
        completed_sessions=tuple(make_session(f"s-{pid}", pid) for pid in project_ids),
        active_project=project_ids[0] if project_ids else None,
    )


def test_slot_round_trip_and_missing(tmp_path: Path) -> None:
    slots = SlotStore(tmp_path / "state")

    assert slots.read("settings") is None
    slots.write("settings", {"themeMode": "dark"})

    assert slots.exists("settings")
    assert slots.read("settings") == {"themeMode": "dark"}
    slots.delete("settings")
    slots.delete("settings")
    assert slots.read("settings") is None


def test_corrupt_slot_raises(tmp_path: Path) -> None:
    slots = SlotStore(tmp_path)
    (tmp_path / "broken.json").write_text("{oops")
    (tmp_path / "blank.json").write_text("   ")

    with pytest.raises(CorruptStateError):
        slots.read("broken")
    assert slots.read("blank") is None


def test_slot_keys_are_restricted(tmp_path: Path) -> None:
    slots = SlotStore(tmp_path)

    with pytest.raises(ValueError):
        slots.write("../outside", {})


def test_snapshot_write_and_read_latest(tmp_path: Path) -> None:
    store = SnapshotStore(SlotStore(tmp_path))

    written = store.write(_state("p1", "p2"))
    latest = store.read_latest()

    assert latest == written
    assert latest.version == 1
    assert latest.to_state() == _state("p1", "p2")
    raw = store.slots.read(LATEST_KEY)
    assert set(raw) == {
        "version",
        "projects",
        "completedSessions",
        "activeProject",
        "activeSessions",
        "lastBackup",
    }


def test_history_is_bounded(tmp_path: Path) -> None:
    store = SnapshotStore(SlotStore(tmp_path), history_limit=5)
    start = dt.datetime(2024, 1, 1, tzinfo=dt.UTC)

    for minute in range(7):
        store.write(_state(f"p{minute}"), taken_at=start + dt.timedelta(minutes=minute))

    history = store.list_history()
    assert len(history) == 5
    assert all(key.startswith(HISTORY_PREFIX) for key in history)
    oldest = store.read(history[0])
    assert oldest is not None
    assert oldest.projects[0].id == "p2"


def test_read_latest_skips_corrupt_latest(tmp_path: Path) -> None:
    store = SnapshotStore(SlotStore(tmp_path))
    store.write(_state("p1"), taken_at=dt.datetime(2024, 1, 1, tzinfo=dt.UTC))
    (tmp_path / f"{LATEST_KEY}.json").write_text("not json at all")

    latest = store.read_latest()

    assert latest is not None
    assert latest.projects[0].id == "p1"


def test_read_latest_with_nothing_readable(tmp_path: Path) -> None:
    store = SnapshotStore(SlotStore(tmp_path))
    assert store.read_latest() is None

    (tmp_path / f"{LATEST_KEY}.json").write_text('{"projects": [{"name": "no id"}]}')
    assert store.read_latest() is None
    with pytest.raises(CorruptStateError):
        store.read(LATEST_KEY)
