from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Any

from .errors import CorruptStateError, StorageError, ValidationError
from .models import AppState, Project, Session, projects_from_records, sessions_from_records
from .slots import SlotStore

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1
LATEST_KEY = "backup-latest"
HISTORY_PREFIX = "backup-at-"
DEFAULT_HISTORY_LIMIT = 5


@dataclass(frozen=True)
class Snapshot:
    version: int
    projects: tuple[Project, ...]
    completed_sessions: tuple[Session, ...]
    active_project: str | None
    active_sessions: tuple[Session, ...]
    last_backup: str

    @classmethod
    def from_state(cls, state: AppState, *, taken_at: dt.datetime | None = None) -> Snapshot:
        moment = taken_at or dt.datetime.now(dt.UTC)
        return cls(
            version=SNAPSHOT_VERSION,
            projects=state.projects,
            completed_sessions=state.completed_sessions,
            active_project=state.active_project,
            active_sessions=state.active_sessions,
            last_backup=moment.isoformat(),
        )

    def to_state(self) -> AppState:
        return AppState(
            projects=self.projects,
            active_sessions=self.active_sessions,
            completed_sessions=self.completed_sessions,
            active_project=self.active_project,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "projects": [p.to_dict() for p in self.projects],
            "completedSessions": [s.to_dict() for s in self.completed_sessions],
            "activeProject": self.active_project,
            "activeSessions": [s.to_dict() for s in self.active_sessions],
            "lastBackup": self.last_backup,
        }

    @classmethod
    def from_dict(cls, data: Any) -> Snapshot:
        if not isinstance(data, dict):
            raise CorruptStateError("snapshot must be an object")
        try:
            projects = projects_from_records(list(data.get("projects") or []))
            completed = sessions_from_records(list(data.get("completedSessions") or []))
            active = sessions_from_records(list(data.get("activeSessions") or []))
            version = int(data.get("version") or SNAPSHOT_VERSION)
        except (ValidationError, TypeError, ValueError) as exc:
            raise CorruptStateError(f"snapshot records invalid: {exc}") from exc
        active_project = data.get("activeProject")
        return cls(
            version=version,
            projects=tuple(projects),
            completed_sessions=tuple(completed),
            active_project=str(active_project) if active_project else None,
            active_sessions=tuple(active),
            last_backup=str(data.get("lastBackup") or ""),
        )


def _history_key(moment: dt.datetime) -> str:
    return HISTORY_PREFIX + moment.astimezone(dt.UTC).strftime("%Y%m%dT%H%M%S%fZ")


class SnapshotStore:
    """Latest full-state backup plus a bounded set of timestamped copies."""

    def __init__(self, slots: SlotStore, *, history_limit: int = DEFAULT_HISTORY_LIMIT):
        self.slots = slots
        self.history_limit = max(0, history_limit)

    def write(self, state: AppState, *, taken_at: dt.datetime | None = None) -> Snapshot:
        moment = taken_at or dt.datetime.now(dt.UTC)
        snapshot = Snapshot.from_state(state, taken_at=moment)
        payload = snapshot.to_dict()
        self.slots.write(LATEST_KEY, payload)
        if self.history_limit:
            self.slots.write(_history_key(moment), payload)
        self.prune()
        return snapshot

    def prune(self) -> list[str]:
        history = self.list_history()
        excess = history[: max(0, len(history) - self.history_limit)]
        for key in excess:
            self.slots.delete(key)
        return excess

    def list_history(self) -> list[str]:
        """Timestamped snapshot keys, oldest first."""
        return self.slots.keys(HISTORY_PREFIX)

    def read(self, key: str) -> Snapshot | None:
        data = self.slots.read(key)
        if data is None:
            return None
        return Snapshot.from_dict(data)

    def read_latest(self) -> Snapshot | None:
        """Newest readable snapshot, or None. Corrupt slots are logged and skipped."""
        candidates = [LATEST_KEY, *reversed(self.list_history())]
        for key in candidates:
            try:
                snapshot = self.read(key)
            except CorruptStateError as exc:
                logger.warning("backup slot %s is corrupt, skipping", key, exc_info=exc)
                continue
            except StorageError as exc:
                logger.warning("backup slot %s unreadable", key, exc_info=exc)
                continue
            if snapshot is not None:
                return snapshot
        return None
