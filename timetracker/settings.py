from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from .api import RemoteService
from .errors import ApiError, ConnectivityError, NotFoundError, StorageError, ValidationError
from .providers import ServerStatus
from .slots import SlotStore

logger = logging.getLogger(__name__)

SETTINGS_KEY = "settings"


class SettingKey(str, Enum):
    THEME_MODE = "themeMode"
    COLOR_PALETTE = "colorPalette"


class ThemeMode(str, Enum):
    LIGHT = "light"
    DARK = "dark"


class ColorPalette(str, Enum):
    BLUE = "blue"
    PURPLE = "purple"
    GREEN = "green"
    ORANGE = "orange"
    PINK = "pink"


_TYPES: dict[SettingKey, type[Enum]] = {
    SettingKey.THEME_MODE: ThemeMode,
    SettingKey.COLOR_PALETTE: ColorPalette,
}

DEFAULTS: dict[SettingKey, Enum] = {
    SettingKey.THEME_MODE: ThemeMode.LIGHT,
    SettingKey.COLOR_PALETTE: ColorPalette.BLUE,
}


def _known(key: str | SettingKey) -> SettingKey | None:
    try:
        return SettingKey(key)
    except ValueError:
        return None


def _key_name(key: str | SettingKey) -> str:
    return key.value if isinstance(key, SettingKey) else str(key)


class SettingsService:
    """User preferences: remote first, then the local settings slot, then defaults."""

    def __init__(
        self,
        remote: RemoteService,
        slots: SlotStore,
        status: ServerStatus | None = None,
    ):
        self.remote = remote
        self.slots = slots
        self.status = status or ServerStatus()

    def _read_local(self) -> dict[str, str]:
        try:
            data = self.slots.read(SETTINGS_KEY)
        except StorageError as exc:
            logger.warning("settings slot unreadable", exc_info=exc)
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items() if v is not None}

    def _read_remote(self, name: str) -> str | None:
        try:
            value = self.remote.get_setting(name)
        except ConnectivityError as exc:
            self.status.mark_unreachable(str(exc))
            return None
        except NotFoundError:
            self.status.mark_reachable()
            return None
        except ApiError as exc:
            self.status.mark_reachable()
            logger.warning("setting %s could not be read remotely", name, exc_info=exc)
            return None
        self.status.mark_reachable()
        return value

    def get(self, key: str | SettingKey) -> Any:
        """Typed value for known keys, raw string (or None) for anything else."""
        name = _key_name(key)
        raw = self._read_remote(name)
        if raw is None:
            raw = self._read_local().get(name)
        known = _known(name)
        if known is None:
            return raw
        if raw is None:
            return DEFAULTS[known]
        try:
            return _TYPES[known](raw)
        except ValueError:
            logger.warning("ignoring invalid %s value %r", name, raw)
            return DEFAULTS[known]

    def put(self, key: str | SettingKey, value: Any) -> str:
        name = _key_name(key)
        known = _known(name)
        text = value.value if isinstance(value, Enum) else str(value)
        if known is not None:
            try:
                _TYPES[known](text)
            except ValueError as exc:
                raise ValidationError(f"invalid value for {name}: {text!r}") from exc
        local = self._read_local()
        local[name] = text
        try:
            self.slots.write(SETTINGS_KEY, local)
        except StorageError as exc:
            logger.warning("settings slot write failed", exc_info=exc)
        try:
            self.remote.put_setting(name, text)
        except ConnectivityError as exc:
            self.status.mark_unreachable(str(exc))
            logger.warning("setting %s kept locally, server unreachable", name)
        except ApiError as exc:
            self.status.mark_reachable()
            logger.warning("server rejected setting %s", name, exc_info=exc)
        else:
            self.status.mark_reachable()
        return text

    def all(self) -> dict[str, str]:
        merged = {k.value: v.value for k, v in DEFAULTS.items()}
        merged.update(self._read_local())
        try:
            merged.update(self.remote.get_settings())
        except ConnectivityError as exc:
            self.status.mark_unreachable(str(exc))
        except ApiError as exc:
            self.status.mark_reachable()
            logger.warning("settings could not be listed remotely", exc_info=exc)
        else:
            self.status.mark_reachable()
        return merged
