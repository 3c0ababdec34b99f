from __future__ import annotations

from pathlib import Path

import pytest
from conftest import FakeRemote

from timetracker.errors import ValidationError
from timetracker.settings import (
    SETTINGS_KEY,
    ColorPalette,
    SettingKey,
    SettingsService,
    ThemeMode,
)
from timetracker.slots import SlotStore


def _service(tmp_path: Path, remote: FakeRemote) -> SettingsService:
    return SettingsService(remote, SlotStore(tmp_path))  # type: ignore[arg-type]


def test_defaults_when_nothing_is_stored(tmp_path: Path, remote: FakeRemote) -> None:
    service = _service(tmp_path, remote)

    assert service.get(SettingKey.THEME_MODE) is ThemeMode.LIGHT
    assert service.get("colorPalette") is ColorPalette.BLUE
    assert service.get("fontSize") is None


def test_remote_value_wins(tmp_path: Path, remote: FakeRemote) -> None:
    remote.settings["themeMode"] = "dark"
    service = _service(tmp_path, remote)
    service.slots.write(SETTINGS_KEY, {"themeMode": "light"})

    assert service.get(SettingKey.THEME_MODE) is ThemeMode.DARK
    assert service.status.reachable is True


def test_put_offline_is_kept_locally(tmp_path: Path, remote: FakeRemote) -> None:
    service = _service(tmp_path, remote)
    remote.offline = True

    assert service.put(SettingKey.COLOR_PALETTE, ColorPalette.GREEN) == "green"

    assert service.get(SettingKey.COLOR_PALETTE) is ColorPalette.GREEN
    assert service.slots.read(SETTINGS_KEY) == {"colorPalette": "green"}
    assert service.status.reachable is False
    assert remote.settings == {}


def test_put_online_reaches_server(tmp_path: Path, remote: FakeRemote) -> None:
    service = _service(tmp_path, remote)

    service.put("themeMode", "dark")
    service.put("fontSize", 14)

    assert remote.settings == {"themeMode": "dark", "fontSize": "14"}
    assert service.get("fontSize") == "14"


def test_put_rejects_invalid_known_value(tmp_path: Path, remote: FakeRemote) -> None:
    service = _service(tmp_path, remote)

    with pytest.raises(ValidationError):
        service.put(SettingKey.THEME_MODE, "sepia")

    assert remote.calls == []


def test_invalid_stored_value_falls_back_to_default(tmp_path: Path, remote: FakeRemote) -> None:
    remote.settings["colorPalette"] = "neon"

    assert _service(tmp_path, remote).get(SettingKey.COLOR_PALETTE) is ColorPalette.BLUE


def test_all_merges_defaults_local_and_remote(tmp_path: Path, remote: FakeRemote) -> None:
    service = _service(tmp_path, remote)
    service.slots.write(SETTINGS_KEY, {"colorPalette": "pink", "fontSize": "12"})
    remote.settings["themeMode"] = "dark"

    assert service.all() == {"themeMode": "dark", "colorPalette": "pink", "fontSize": "12"}
