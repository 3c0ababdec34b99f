from __future__ import annotations

import json
import os
import warnings
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

DEFAULT_CONFIG_PATH = Path("~/.config/timetracker/config.json").expanduser()

CONFIG_ENV_OVERRIDES = {
    "api_url": "TIMETRACKER_API_URL",
    "request_timeout_s": "TIMETRACKER_REQUEST_TIMEOUT_S",
    "poll_interval_s": "TIMETRACKER_POLL_INTERVAL_S",
    "backup_interval_s": "TIMETRACKER_BACKUP_INTERVAL_S",
    "tick_interval_s": "TIMETRACKER_TICK_INTERVAL_S",
    "heartbeat_ticks": "TIMETRACKER_HEARTBEAT_TICKS",
    "backup_history_limit": "TIMETRACKER_BACKUP_HISTORY_LIMIT",
    "db_path": "TIMETRACKER_DB",
    "state_dir": "TIMETRACKER_STATE_DIR",
    "log_level": "TIMETRACKER_LOG_LEVEL",
    "poll_enabled": "TIMETRACKER_POLL_ENABLED",
}

_INT_KEYS = {"poll_interval_s", "backup_interval_s", "heartbeat_ticks", "backup_history_limit"}
_FLOAT_KEYS = {"request_timeout_s", "tick_interval_s"}
_BOOL_KEYS = {"poll_enabled"}


def get_config_path(path: Path | None = None) -> Path:
    candidate = path or Path(os.getenv("TIMETRACKER_CONFIG", DEFAULT_CONFIG_PATH))
    return candidate.expanduser()


def read_config_file(path: Path | None = None) -> dict[str, Any]:
    config_path = get_config_path(path)
    if not config_path.exists():
        return {}
    raw = config_path.read_text()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("invalid config json") from exc
    if not isinstance(data, dict):
        raise ValueError("config must be an object")
    return data


def write_config_file(data: dict[str, Any], path: Path | None = None) -> Path:
    config_path = get_config_path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(data, ensure_ascii=False, indent=2) + "\n")
    return config_path


def get_env_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, env_var in CONFIG_ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is not None:
            overrides[key] = value
    return overrides


@dataclass
class TimetrackerConfig:
    api_url: str = "http://localhost:3001/api"
    request_timeout_s: float = 5.0
    poll_interval_s: int = 15
    backup_interval_s: int = 300
    tick_interval_s: float = 1.0
    # Running timers re-send their elapsed value to the server this often.
    heartbeat_ticks: int = 15
    backup_history_limit: int = 5
    db_path: str = "~/.timetracker/cache.sqlite"
    state_dir: str = "~/.timetracker/state"
    log_level: str = "WARNING"
    # Watch the server for sessions started by other clients.
    poll_enabled: bool = True

    def resolved_db_path(self) -> Path:
        return Path(self.db_path).expanduser()

    def resolved_state_dir(self) -> Path:
        return Path(self.state_dir).expanduser()

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _parse_int(value: object, default: int, *, key: str) -> int:
    if value is None:
        return default
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _parse_float(value: object, default: float, *, key: str) -> float:
    if value is None:
        return default
    try:
        parsed = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid float for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default
    if parsed <= 0:
        warnings.warn(f"Non-positive value for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default
    return parsed


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    if value.lower() in {"1", "true", "yes", "on"}:
        return True
    if value.lower() in {"0", "false", "off", "no"}:
        return False
    return default


def _coerce_bool(value: object, default: bool, *, key: str) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        return _parse_bool(value, default)
    warnings.warn(f"Invalid bool for {key}: {value!r}", RuntimeWarning, stacklevel=2)
    return default


def load_config(path: Path | None = None) -> TimetrackerConfig:
    cfg = TimetrackerConfig()
    config_path = get_config_path(path)
    if config_path.exists():
        try:
            data = json.loads(config_path.read_text())
        except json.JSONDecodeError:
            warnings.warn(f"Ignoring invalid config json at {config_path}", RuntimeWarning, stacklevel=2)
            data = {}
        if isinstance(data, dict):
            cfg = _apply_dict(cfg, data)
    cfg = _apply_dict(cfg, get_env_overrides())
    return cfg


def _apply_dict(cfg: TimetrackerConfig, data: dict[str, Any]) -> TimetrackerConfig:
    for key, value in data.items():
        if not hasattr(cfg, key):
            continue
        if key in _INT_KEYS:
            setattr(cfg, key, _parse_int(value, getattr(cfg, key), key=key))
            continue
        if key in _BOOL_KEYS:
            setattr(cfg, key, _coerce_bool(value, getattr(cfg, key), key=key))
            continue
        if key in _FLOAT_KEYS:
            setattr(cfg, key, _parse_float(value, getattr(cfg, key), key=key))
            continue
        if value is None:
            continue
        setattr(cfg, key, str(value))
    return cfg
