from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from .errors import ValidationError

COLOR_PALETTE = (
    "red-500",
    "blue-500",
    "green-500",
    "yellow-500",
    "purple-500",
    "pink-500",
    "indigo-500",
    "orange-500",
    "teal-500",
    "cyan-500",
    "lime-500",
    "emerald-500",
    "sky-500",
    "amber-500",
    "rose-500",
    "fuchsia-500",
    "slate-500",
    "gray-500",
)
DEFAULT_COLOR = "blue-500"


class TimerType(str, Enum):
    STOPWATCH = "stopwatch"
    COUNTDOWN = "countdown"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


def _require_str(data: dict[str, Any], key: str, kind: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{kind} missing required field: {key}")
    return value


def _optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


def _optional_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    return float(value)


@dataclass(frozen=True)
class Project:
    id: str
    name: str
    color: str = DEFAULT_COLOR
    description: str = ""
    total_time_spent: int = 0
    goal_hours: float | None = None
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "color": self.color,
            "totalTimeSpent": self.total_time_spent,
            "goalHours": self.goal_hours,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Project:
        try:
            total = int(data.get("totalTimeSpent") or 0)
            goal_hours = _optional_float(data.get("goalHours"))
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"invalid project record: {exc}") from exc
        return cls(
            id=_require_str(data, "id", "project"),
            name=str(data.get("name") or ""),
            description=str(data.get("description") or ""),
            color=str(data.get("color") or DEFAULT_COLOR),
            total_time_spent=total,
            goal_hours=goal_hours,
            created_at=str(data.get("createdAt") or ""),
            updated_at=str(data.get("updatedAt") or ""),
        )

    def with_total(self, total: int, *, updated_at: str) -> Project:
        return replace(self, total_time_spent=max(0, int(total)), updated_at=updated_at)


def validate_project(project: Project) -> None:
    """Reject records the remote service would refuse anyway."""
    if not project.id:
        raise ValidationError("project id is required")
    if not project.name.strip():
        raise ValidationError("project name is required")
    if project.color not in COLOR_PALETTE:
        raise ValidationError(f"unknown project color: {project.color}")
    if project.goal_hours is not None and project.goal_hours <= 0:
        raise ValidationError("goal hours must be positive")
    if project.total_time_spent < 0:
        raise ValidationError("total time spent cannot be negative")
    if project.created_at and project.updated_at and project.updated_at < project.created_at:
        raise ValidationError("updatedAt precedes createdAt")


@dataclass(frozen=True)
class Session:
    id: str
    project_id: str
    start_time: str
    type: TimerType = TimerType.STOPWATCH
    end_time: str | None = None
    duration: int = 0
    initial_duration: int | None = None

    @property
    def status(self) -> SessionStatus:
        return SessionStatus.ACTIVE if self.end_time is None else SessionStatus.COMPLETED

    @property
    def is_active(self) -> bool:
        return self.end_time is None

    def completed(self, *, end_time: str, duration: int) -> Session:
        return replace(self, end_time=end_time, duration=max(0, int(duration)))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "projectId": self.project_id,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "duration": self.duration,
            "type": self.type.value,
            "status": self.status.value,
        }
        if self.initial_duration is not None:
            data["initialDuration"] = self.initial_duration
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Session:
        raw_type = data.get("type") or TimerType.STOPWATCH.value
        try:
            timer_type = TimerType(raw_type)
            duration = int(data.get("duration") or 0)
            initial_duration = _optional_int(data.get("initialDuration"))
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"invalid session record: {exc}") from exc
        end_time = data.get("endTime") or None
        # Server rows carry an explicit status; an active row never has an end time.
        if data.get("status") == SessionStatus.ACTIVE.value:
            end_time = None
        return cls(
            id=_require_str(data, "id", "session"),
            project_id=_require_str(data, "projectId", "session"),
            start_time=_require_str(data, "startTime", "session"),
            end_time=end_time,
            duration=max(0, duration),
            type=timer_type,
            initial_duration=initial_duration,
        )


@dataclass(frozen=True)
class AppState:
    projects: tuple[Project, ...] = ()
    active_sessions: tuple[Session, ...] = ()
    completed_sessions: tuple[Session, ...] = ()
    active_project: str | None = None

    def project(self, project_id: str) -> Project | None:
        for project in self.projects:
            if project.id == project_id:
                return project
        return None

    def is_empty(self) -> bool:
        return not self.projects and not self.completed_sessions


@dataclass(frozen=True)
class CurrentSession:
    """What this client was doing: the part of state that never goes to the server."""

    active_project: str | None = None
    active_sessions: tuple[Session, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "activeProject": self.active_project,
            "activeSessions": [s.to_dict() for s in self.active_sessions],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CurrentSession:
        active_project = data.get("activeProject")
        sessions = data.get("activeSessions") or []
        if not isinstance(sessions, list):
            raise ValidationError("activeSessions must be a list")
        return cls(
            active_project=str(active_project) if active_project else None,
            active_sessions=tuple(Session.from_dict(s) for s in sessions),
        )


def projects_from_records(records: list[dict[str, Any]]) -> list[Project]:
    return [Project.from_dict(r) for r in records]


def sessions_from_records(records: list[dict[str, Any]]) -> list[Session]:
    return [Session.from_dict(r) for r in records]
